"""In-memory wizard store."""

from typing import Dict, Optional, Tuple

from ..models.wizard import WizardState
from .base import NAMESPACE, WizardStore


class InMemoryWizardStore(WizardStore):
    """
    Holds serialized state in a dict keyed by the exact store pair.

    Used by tests and as the API default.
    """

    def __init__(self, namespace: str = NAMESPACE):
        super().__init__(namespace)
        self._data: Dict[Tuple[str, str], str] = {}

    def save(self, state: WizardState) -> None:
        self._data[state.store_pair] = self.serialize(state)

    def load(self, source_store: str, target_store: str) -> Optional[WizardState]:
        raw = self._data.get((source_store, target_store))
        if raw is None:
            return None
        return self.deserialize(raw, source_store, target_store)

    def clear(self, source_store: str, target_store: str) -> None:
        self._data.pop((source_store, target_store), None)

    def put_raw(self, source_store: str, target_store: str, raw: str) -> None:
        """Store arbitrary text in a store pair's slot."""
        self._data[(source_store, target_store)] = raw
