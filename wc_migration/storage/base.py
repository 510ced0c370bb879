"""Base wizard store interface."""

from abc import ABC, abstractmethod
from typing import Optional
from urllib.parse import quote
import json
import logging

from ..models.wizard import WizardState

logger = logging.getLogger(__name__)

NAMESPACE = "wc-migration-wizard-state"


def storage_key(source_store: str, target_store: str, namespace: str = NAMESPACE) -> str:
    """Key scoping wizard state to one store pair."""
    return f"{namespace}-{source_store}-{target_store}"


def _escape_part(part: str) -> str:
    # "-" separates the key parts, so it must not appear raw inside one
    return quote(part, safe="").replace("-", "%2D")


def slot_name(source_store: str, target_store: str, namespace: str = NAMESPACE) -> str:
    """
    File-name safe form of the store-pair key.

    Unlike the plain key, distinct pairs never share a slot name:
    ("shop", "x-y") and ("shop-x", "y") map to different names.
    """
    prefix = quote(namespace, safe="")
    return f"{prefix}-{_escape_part(source_store)}-{_escape_part(target_store)}"


class WizardStore(ABC):
    """
    Durable storage for wizard state, keyed by store pair.

    Implementations treat unreadable data as absent: `load` returns None
    rather than raising so the caller can start fresh.
    """

    def __init__(self, namespace: str = NAMESPACE):
        self.namespace = namespace

    def key_for(self, source_store: str, target_store: str) -> str:
        return storage_key(source_store, target_store, self.namespace)

    def slot_for(self, source_store: str, target_store: str) -> str:
        return slot_name(source_store, target_store, self.namespace)

    @abstractmethod
    def save(self, state: WizardState) -> None:
        """Write the state, replacing whatever is stored for its store pair."""
        pass

    @abstractmethod
    def load(self, source_store: str, target_store: str) -> Optional[WizardState]:
        """Read the state for a store pair, or None if absent or corrupt."""
        pass

    @abstractmethod
    def clear(self, source_store: str, target_store: str) -> None:
        """Remove the stored state for a store pair. No-op if absent."""
        pass

    def serialize(self, state: WizardState) -> str:
        return json.dumps(state.to_dict(), indent=2, default=str)

    def deserialize(self, raw: str, source_store: str, target_store: str) -> Optional[WizardState]:
        """Parse stored text, returning None for anything unusable."""
        key = self.key_for(source_store, target_store)
        try:
            state = WizardState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Discarding corrupt wizard state at {key}: {e}")
            return None

        if state.store_pair != (source_store, target_store):
            logger.warning(
                f"Discarding wizard state at {key}: belongs to "
                f"{state.source_store} -> {state.target_store}"
            )
            return None

        return state
