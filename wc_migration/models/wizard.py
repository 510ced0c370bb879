"""Wizard state and the typed result data attached to each phase."""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from dateutil import parser as date_parser

from .mapping import mapping_from_json, mapping_to_json
from .migration import EntityType, ExecutionResult
from .phase import PHASES, PhaseNumber, PhaseStatus
from .record import ResumeKey


def _union_keys(existing: List[ResumeKey], new: List[ResumeKey]) -> List[ResumeKey]:
    seen = set(existing)
    merged = list(existing)
    for key in new:
        if key not in seen:
            seen.add(key)
            merged.append(key)
    return merged


def _merge_mapping(existing: Dict[int, int], new: Dict[int, int]) -> Dict[int, int]:
    merged = dict(existing)
    for source_id, target_id in new.items():
        merged.setdefault(source_id, target_id)
    return merged


@dataclass(frozen=True)
class EntityProgress:
    """
    Cumulative progress for one entity type across resumed runs.

    migrated and skipped accumulate; failed reflects the latest run since
    failed items are retried on the next run.
    """
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    mapping: Dict[int, int] = field(default_factory=dict)
    migrated_keys: List[ResumeKey] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def absorb(self, result: ExecutionResult) -> "EntityProgress":
        """Fold an execution result into the running totals."""
        return EntityProgress(
            total=max(self.total, result.total_in_source),
            migrated=self.migrated + result.stats.successful,
            skipped=self.skipped + result.stats.skipped,
            failed=result.stats.failed,
            mapping=_merge_mapping(self.mapping, result.id_mapping),
            migrated_keys=_union_keys(self.migrated_keys, result.migrated_keys),
            warnings=list(result.stats.warnings),
        )

    def checkpoint(self, keys: List[ResumeKey], mapping: Dict[int, int]) -> "EntityProgress":
        """Union in keys and mappings without touching the counters."""
        return replace(
            self,
            mapping=_merge_mapping(self.mapping, mapping),
            migrated_keys=_union_keys(self.migrated_keys, list(keys)),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "migrated": self.migrated,
            "skipped": self.skipped,
            "failed": self.failed,
            "mapping": mapping_to_json(self.mapping),
            "migrated_keys": list(self.migrated_keys),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EntityProgress":
        """Create from dictionary representation."""
        if isinstance(data, EntityProgress):
            return data
        data = data or {}
        return cls(
            total=int(data.get("total", 0)),
            migrated=int(data.get("migrated", 0)),
            skipped=int(data.get("skipped", 0)),
            failed=int(data.get("failed", 0)),
            mapping=mapping_from_json(data.get("mapping")),
            migrated_keys=list(data.get("migrated_keys", [])),
            warnings=list(data.get("warnings", [])),
        )


@dataclass(frozen=True)
class PhaseData:
    """Base class for per-phase result payloads."""

    # entity -> attribute holding its EntityProgress
    ENTITY_FIELDS: ClassVar[Dict[EntityType, Optional[str]]] = {}

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            data[f.name] = value.to_dict() if isinstance(value, EntityProgress) else value
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PhaseData":
        data = data or {}
        kwargs = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in cls.ENTITY_FIELDS.values():
                value = EntityProgress.from_dict(value) if value is not None else None
            kwargs[f.name] = value
        return cls(**kwargs)

    @classmethod
    def check_fields(cls, data: Dict[str, Any]) -> None:
        """Raise ValueError if data carries keys this payload does not define."""
        unknown = set(data) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown {cls.__name__} fields: {sorted(unknown)}")

    def merge(self, partial: Dict[str, Any]) -> "PhaseData":
        """Shallow merge: each top-level key in partial replaces the current value."""
        self.check_fields(partial)
        merged = self.to_dict()
        for key, value in partial.items():
            merged[key] = value.to_dict() if isinstance(value, EntityProgress) else value
        return type(self).from_dict(merged)

    def entity_progress(self, entity: EntityType) -> EntityProgress:
        attr = self.ENTITY_FIELDS.get(entity)
        if attr is None:
            raise KeyError(f"{type(self).__name__} does not track {entity.value}")
        return getattr(self, attr) or EntityProgress()

    def with_entity_progress(self, entity: EntityType, progress: EntityProgress) -> "PhaseData":
        attr = self.ENTITY_FIELDS.get(entity)
        if attr is None:
            raise KeyError(f"{type(self).__name__} does not track {entity.value}")
        return replace(self, **{attr: progress})

    def with_entity_result(self, entity: EntityType, result: ExecutionResult) -> "PhaseData":
        """Fold a finished run into this phase's data."""
        return self.with_entity_progress(entity, self.entity_progress(entity).absorb(result))

    def with_checkpoint(
        self,
        entity: EntityType,
        keys: List[ResumeKey],
        mapping: Dict[int, int]
    ) -> "PhaseData":
        """Record migrated keys and mappings from a run still in flight."""
        return self.with_entity_progress(entity, self.entity_progress(entity).checkpoint(keys, mapping))


@dataclass(frozen=True)
class FoundationPhaseData(PhaseData):
    """Category structure results."""
    ENTITY_FIELDS = {EntityType.CATEGORIES: None}

    categories_created: int = 0
    categories_skipped: int = 0
    categories_errored: int = 0
    category_id_mapping: Dict[int, int] = field(default_factory=dict)
    migrated_category_ids: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "categories_created": self.categories_created,
            "categories_skipped": self.categories_skipped,
            "categories_errored": self.categories_errored,
            "category_id_mapping": mapping_to_json(self.category_id_mapping),
            "migrated_category_ids": list(self.migrated_category_ids),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FoundationPhaseData":
        """Create from dictionary representation."""
        data = data or {}
        return cls(
            categories_created=int(data.get("categories_created", 0)),
            categories_skipped=int(data.get("categories_skipped", 0)),
            categories_errored=int(data.get("categories_errored", 0)),
            category_id_mapping=mapping_from_json(data.get("category_id_mapping")),
            migrated_category_ids=[int(i) for i in data.get("migrated_category_ids", [])],
            warnings=list(data.get("warnings", [])),
        )

    def entity_progress(self, entity: EntityType) -> EntityProgress:
        if entity != EntityType.CATEGORIES:
            raise KeyError(f"FoundationPhaseData does not track {entity.value}")
        return EntityProgress(
            total=self.categories_created + self.categories_skipped + self.categories_errored,
            migrated=self.categories_created,
            skipped=self.categories_skipped,
            failed=self.categories_errored,
            mapping=dict(self.category_id_mapping),
            migrated_keys=list(self.migrated_category_ids),
            warnings=list(self.warnings),
        )

    def with_entity_progress(self, entity: EntityType, progress: EntityProgress) -> "FoundationPhaseData":
        if entity != EntityType.CATEGORIES:
            raise KeyError(f"FoundationPhaseData does not track {entity.value}")
        return FoundationPhaseData(
            categories_created=progress.migrated,
            categories_skipped=progress.skipped,
            categories_errored=progress.failed,
            category_id_mapping=progress.mapping,
            migrated_category_ids=[int(k) for k in progress.migrated_keys],
            warnings=progress.warnings,
        )


@dataclass(frozen=True)
class CoreDataPhaseData(PhaseData):
    """Product catalog and customer results."""
    ENTITY_FIELDS = {EntityType.PRODUCTS: "products", EntityType.CUSTOMERS: "customers"}

    products: EntityProgress = field(default_factory=EntityProgress)
    customers: EntityProgress = field(default_factory=EntityProgress)


@dataclass(frozen=True)
class TransactionsPhaseData(PhaseData):
    """Order history and coupon results."""
    ENTITY_FIELDS = {EntityType.ORDERS: "orders", EntityType.COUPONS: "coupons"}

    orders: Optional[EntityProgress] = None
    coupons: Optional[EntityProgress] = None


@dataclass(frozen=True)
class ContentPhaseData(PhaseData):
    """Review, page and blog post results."""
    ENTITY_FIELDS = {
        EntityType.REVIEWS: "reviews",
        EntityType.PAGES: "pages",
        EntityType.BLOG_POSTS: "blog",
    }

    reviews: Optional[EntityProgress] = None
    pages: Optional[EntityProgress] = None
    blog: Optional[EntityProgress] = None


PHASE_DATA_TYPES: Dict[PhaseNumber, Type[PhaseData]] = {
    PhaseNumber.FOUNDATION: FoundationPhaseData,
    PhaseNumber.CORE_DATA: CoreDataPhaseData,
    PhaseNumber.TRANSACTIONS: TransactionsPhaseData,
    PhaseNumber.CONTENT: ContentPhaseData,
}

ENTITY_PHASE: Dict[EntityType, PhaseNumber] = {
    entity: phase
    for phase, data_type in PHASE_DATA_TYPES.items()
    for entity in data_type.ENTITY_FIELDS
}


def empty_phase_data(phase: int) -> PhaseData:
    return PHASE_DATA_TYPES[PhaseNumber(phase)]()


def coerce_phase_data(phase: int, data: Any) -> Optional[PhaseData]:
    """Accept a typed payload or a plain dict for the given phase."""
    if data is None:
        return None
    data_type = PHASE_DATA_TYPES[PhaseNumber(phase)]
    if isinstance(data, data_type):
        return data
    if isinstance(data, PhaseData):
        raise TypeError(f"Phase {phase} expects {data_type.__name__}, got {type(data).__name__}")
    if not isinstance(data, dict):
        raise TypeError(f"Phase {phase} data must be a mapping, got {type(data).__name__}")
    data_type.check_fields(data)
    return data_type.from_dict(data)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return date_parser.isoparse(value)


@dataclass(frozen=True)
class PhaseState:
    """State of a single phase."""
    status: PhaseStatus
    data: Optional[PhaseData] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "status": self.status.value,
            "data": self.data.to_dict() if self.data is not None else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, phase: int, data: Dict[str, Any]) -> "PhaseState":
        """Create from dictionary representation."""
        return cls(
            status=PhaseStatus(data["status"]),
            data=coerce_phase_data(phase, data.get("data")),
            started_at=_parse_timestamp(data.get("started_at")),
            completed_at=_parse_timestamp(data.get("completed_at")),
        )


@dataclass(frozen=True)
class WizardState:
    """
    The wizard aggregate for one source/target store pair.

    Instances are never mutated; the state machine returns new ones.
    """
    current_phase: PhaseNumber
    phases: Dict[PhaseNumber, PhaseState]
    source_store: str
    target_store: str
    last_updated: Optional[datetime] = None

    @property
    def store_pair(self) -> Tuple[str, str]:
        return (self.source_store, self.target_store)

    def phase(self, number: int) -> PhaseState:
        return self.phases[PhaseNumber(number)]

    def status_of(self, number: int) -> PhaseStatus:
        return self.phase(number).status

    def statuses(self) -> Dict[int, str]:
        return {int(n): p.status.value for n, p in sorted(self.phases.items())}

    def equivalent(self, other: "WizardState") -> bool:
        """Compare ignoring timestamps."""
        return (
            self.store_pair == other.store_pair
            and self.current_phase == other.current_phase
            and {n: (p.status, p.data) for n, p in self.phases.items()}
            == {n: (p.status, p.data) for n, p in other.phases.items()}
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "current_phase": int(self.current_phase),
            "phases": {str(int(n)): p.to_dict() for n, p in sorted(self.phases.items())},
            "source_store": self.source_store,
            "target_store": self.target_store,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WizardState":
        """
        Create from dictionary representation.

        Raises:
            KeyError, ValueError, TypeError: If the data is malformed
        """
        phases = {
            PhaseNumber(int(n)): PhaseState.from_dict(int(n), p)
            for n, p in data["phases"].items()
        }
        missing = set(PHASES) - set(phases)
        if missing:
            raise ValueError(f"Wizard state is missing phases: {sorted(int(m) for m in missing)}")

        return cls(
            current_phase=PhaseNumber(int(data["current_phase"])),
            phases=phases,
            source_store=str(data["source_store"]),
            target_store=str(data["target_store"]),
            last_updated=_parse_timestamp(data.get("last_updated")),
        )


def create_initial_wizard_state(
    source_store: str,
    target_store: str,
    now: Optional[datetime] = None
) -> WizardState:
    """Fresh state: required phases pending, optional phases locked, on phase 1."""
    phases = {
        number: PhaseState(status=PhaseStatus.PENDING if info.is_required else PhaseStatus.LOCKED)
        for number, info in PHASES.items()
    }
    return WizardState(
        current_phase=PhaseNumber.FOUNDATION,
        phases=phases,
        source_store=source_store,
        target_store=target_store,
        last_updated=now or datetime.utcnow(),
    )
