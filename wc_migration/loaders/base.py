"""Base loader interface for the target store."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

from ..models.migration import EntityType
from ..models.record import TransformedRecord

logger = logging.getLogger(__name__)


class BaseLoader(ABC):
    """
    Base class for target writers.

    Loaders are synchronous; the executor runs them off the event loop and
    wraps each call in the shared rate limiter and retry policy. Failures
    are raised using the error taxonomy in `wc_migration.errors` so the
    executor can tell a duplicate from a transient or fatal rejection.
    """

    target_service = "target"

    @abstractmethod
    def find_existing(self, entity: EntityType, record: TransformedRecord) -> Optional[int]:
        """
        Look up an item with the same natural key in the target.

        Returns:
            Target ID of the existing item, or None
        """
        pass

    @abstractmethod
    def create(self, entity: EntityType, record: TransformedRecord) -> int:
        """
        Create an item in the target.

        Returns:
            Target ID of the created item

        Raises:
            DuplicateError, RateLimitError, TransientError or TargetWriteError
        """
        pass

    @abstractmethod
    def update(self, entity: EntityType, target_id: int, data: Dict[str, Any]) -> None:
        """Patch an existing target item."""
        pass

    def validate_connection(self) -> bool:
        """Validate the connection to the target service."""
        return True
