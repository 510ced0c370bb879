"""Per-item record models for migration runs."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
from datetime import datetime

# Source ID for most entities, lower-cased natural key for customers and coupons
ResumeKey = Union[int, str]


class ItemOutcome(str, Enum):
    """Outcome of migrating a single source item."""
    SUCCESSFUL = "successful"
    SKIPPED = "skipped"  # already existed in the target
    FAILED = "failed"


@dataclass
class TransformedRecord:
    """A source item converted to a target payload."""
    source_id: int
    entity: str
    data: Dict[str, Any]
    natural_key: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    transformed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_id": self.source_id,
            "entity": self.entity,
            "data": self.data,
            "natural_key": self.natural_key,
            "warnings": self.warnings,
            "transformed_at": self.transformed_at.isoformat(),
        }


@dataclass
class ItemResult:
    """Result of attempting to migrate one source item."""
    source_id: int
    resume_key: ResumeKey
    outcome: ItemOutcome
    target_id: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    processed_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def migrated(self) -> bool:
        """Successful and skipped items both count as migrated."""
        return self.outcome in (ItemOutcome.SUCCESSFUL, ItemOutcome.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "source_id": self.source_id,
            "resume_key": self.resume_key,
            "outcome": self.outcome.value,
            "target_id": self.target_id,
            "error": self.error,
            "error_code": self.error_code,
            "retry_count": self.retry_count,
            "processed_at": self.processed_at.isoformat(),
        }
