"""Source-to-target ID mappings."""

import logging
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


def _coerce_id(value: Any) -> int:
    # JSON object keys come back as strings
    return int(value)


class IdMapping:
    """
    Mapping from source-system ID to target-system ID for one entity type.

    Entries are only ever added. Re-adding a known source ID keeps the
    existing target ID, so a mapping built across resumed runs is stable.
    """

    def __init__(self, entries: Optional[Mapping[Any, Any]] = None, entity: str = ""):
        self.entity = entity
        self._entries: Dict[int, int] = {}
        if entries:
            for source_id, target_id in entries.items():
                self.add(source_id, target_id)

    def add(self, source_id: Any, target_id: Any) -> bool:
        """
        Record a mapping.

        Returns:
            True if the entry was new
        """
        source_id = _coerce_id(source_id)
        target_id = _coerce_id(target_id)

        existing = self._entries.get(source_id)
        if existing is not None:
            if existing != target_id:
                logger.warning(
                    f"Ignoring remap of {self.entity or 'entity'} {source_id}: "
                    f"already mapped to {existing}, got {target_id}"
                )
            return False

        self._entries[source_id] = target_id
        return True

    def merge(self, other: Mapping[Any, Any]) -> "IdMapping":
        """Return a new mapping holding the union of both."""
        merged = IdMapping(self._entries, entity=self.entity)
        for source_id, target_id in other.items():
            merged.add(source_id, target_id)
        return merged

    def get(self, source_id: Any, default: Optional[int] = None) -> Optional[int]:
        try:
            return self._entries.get(_coerce_id(source_id), default)
        except (TypeError, ValueError):
            return default

    def is_empty(self) -> bool:
        """An empty mapping means the producing phase has not run."""
        return not self._entries

    def items(self) -> Iterator[Tuple[int, int]]:
        return iter(self._entries.items())

    def to_dict(self) -> Dict[int, int]:
        return dict(self._entries)

    def __contains__(self, source_id: Any) -> bool:
        return self.get(source_id) is not None

    def __getitem__(self, source_id: Any) -> int:
        value = self.get(source_id)
        if value is None:
            raise KeyError(source_id)
        return value

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, IdMapping):
            return self._entries == other._entries
        if isinstance(other, Mapping):
            return self._entries == {_coerce_id(k): _coerce_id(v) for k, v in other.items()}
        return NotImplemented

    def __repr__(self) -> str:
        return f"IdMapping(entity={self.entity!r}, size={len(self._entries)})"


def mapping_from_json(data: Optional[Mapping[Any, Any]]) -> Dict[int, int]:
    """Restore integer keys/values on a mapping loaded from JSON."""
    if not data:
        return {}
    return {_coerce_id(k): _coerce_id(v) for k, v in data.items()}


def mapping_to_json(mapping: Mapping[int, int]) -> Dict[str, int]:
    return {str(k): v for k, v in mapping.items()}
