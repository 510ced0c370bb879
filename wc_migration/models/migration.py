"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import os

from ..errors import ConfigurationError
from .mapping import mapping_from_json, mapping_to_json
from .record import ItemOutcome, ItemResult, ResumeKey


class EntityType(str, Enum):
    """Entity collections that can be migrated."""
    CATEGORIES = "categories"
    PRODUCTS = "products"
    CUSTOMERS = "customers"
    ORDERS = "orders"
    COUPONS = "coupons"
    REVIEWS = "reviews"
    PAGES = "pages"
    BLOG_POSTS = "blog_posts"


@dataclass
class MigrationStats:
    """
    Aggregate outcome counters for one batch run.

    total is the number of pending items the run set out to process, so
    total == successful + skipped + failed once the run has finished.
    """
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.successful + self.skipped + self.failed

    @property
    def is_conserved(self) -> bool:
        return self.total == self.processed

    def record(self, result: ItemResult) -> None:
        """Count one item outcome."""
        if result.outcome == ItemOutcome.SUCCESSFUL:
            self.successful += 1
        elif result.outcome == ItemOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            if result.error:
                self.warnings.append(result.error)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "successful": self.successful,
            "skipped": self.skipped,
            "failed": self.failed,
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationStats":
        """Create from dictionary representation."""
        return cls(
            total=int(data.get("total", 0)),
            successful=int(data.get("successful", 0)),
            skipped=int(data.get("skipped", 0)),
            failed=int(data.get("failed", 0)),
            warnings=list(data.get("warnings", [])),
        )


@dataclass
class BatchProgress:
    """Live progress of a run, rebuilt from the event stream. Never persisted."""
    total: int = 0
    completed: int = 0
    current: Optional[Dict[str, Any]] = None

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return round(100.0 * self.completed / self.total, 1)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "completed": self.completed,
            "current": self.current,
            "percent": self.percent,
        }


@dataclass
class ExecutionResult:
    """Outcome of one executor run for one entity type."""
    entity: EntityType
    stats: MigrationStats = field(default_factory=MigrationStats)
    migrated_keys: List[ResumeKey] = field(default_factory=list)
    id_mapping: Dict[int, int] = field(default_factory=dict)
    error: Optional[str] = None
    cancelled: bool = False
    total_in_source: int = 0
    already_migrated: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        """True when the run finished without a run-level error."""
        return self.error is None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "entity": self.entity.value,
            "stats": self.stats.to_dict(),
            "migrated_keys": list(self.migrated_keys),
            "id_mapping": mapping_to_json(self.id_mapping),
            "error": self.error,
            "cancelled": self.cancelled,
            "total_in_source": self.total_in_source,
            "already_migrated": self.already_migrated,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionResult":
        """Create from dictionary representation."""
        return cls(
            entity=EntityType(data["entity"]),
            stats=MigrationStats.from_dict(data.get("stats", {})),
            migrated_keys=list(data.get("migrated_keys", [])),
            id_mapping=mapping_from_json(data.get("id_mapping")),
            error=data.get("error"),
            cancelled=bool(data.get("cancelled", False)),
            total_in_source=int(data.get("total_in_source", 0)),
            already_migrated=int(data.get("already_migrated", 0)),
        )


@dataclass
class WooCommerceCredentials:
    """WooCommerce REST API credentials."""
    url: str
    consumer_key: str
    consumer_secret: str

    def validate(self) -> None:
        missing = [name for name in ("url", "consumer_key", "consumer_secret") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing WooCommerce credentials: {', '.join(missing)}")

    @classmethod
    def from_env(cls) -> "WooCommerceCredentials":
        return cls(
            url=os.environ.get("WC_URL", ""),
            consumer_key=os.environ.get("WC_CONSUMER_KEY", ""),
            consumer_secret=os.environ.get("WC_CONSUMER_SECRET", ""),
        )

    @property
    def store_key(self) -> str:
        """Identifier used to scope wizard state."""
        return self.url.rstrip("/")


@dataclass
class BigCommerceCredentials:
    """BigCommerce API account credentials."""
    store_hash: str
    access_token: str

    def validate(self) -> None:
        missing = [name for name in ("store_hash", "access_token") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing BigCommerce credentials: {', '.join(missing)}")

    @classmethod
    def from_env(cls) -> "BigCommerceCredentials":
        return cls(
            store_hash=os.environ.get("BC_STORE_HASH", ""),
            access_token=os.environ.get("BC_ACCESS_TOKEN", ""),
        )


@dataclass
class WordPressCredentials:
    """WordPress REST API access. Public content needs only the URL."""
    url: str
    username: Optional[str] = None
    application_password: Optional[str] = None

    def validate(self) -> None:
        if not self.url:
            raise ConfigurationError("Missing WordPress URL")

    @classmethod
    def from_env(cls) -> "WordPressCredentials":
        return cls(
            url=os.environ.get("WP_URL") or os.environ.get("WC_URL", ""),
            username=os.environ.get("WP_USERNAME"),
            application_password=os.environ.get("WP_APP_PASSWORD"),
        )
