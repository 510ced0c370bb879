"""Data models for the migration application."""

from .phase import (
    PhaseNumber,
    PhaseStatus,
    PhaseInfo,
    PHASES,
)
from .mapping import IdMapping
from .record import (
    ItemOutcome,
    ItemResult,
    TransformedRecord,
)
from .migration import (
    EntityType,
    MigrationStats,
    BatchProgress,
    ExecutionResult,
    WooCommerceCredentials,
    BigCommerceCredentials,
    WordPressCredentials,
)
from .wizard import (
    EntityProgress,
    PhaseData,
    FoundationPhaseData,
    CoreDataPhaseData,
    TransactionsPhaseData,
    ContentPhaseData,
    PhaseState,
    WizardState,
    create_initial_wizard_state,
)

__all__ = [
    "PhaseNumber",
    "PhaseStatus",
    "PhaseInfo",
    "PHASES",
    "IdMapping",
    "ItemOutcome",
    "ItemResult",
    "TransformedRecord",
    "EntityType",
    "MigrationStats",
    "BatchProgress",
    "ExecutionResult",
    "WooCommerceCredentials",
    "BigCommerceCredentials",
    "WordPressCredentials",
    "EntityProgress",
    "PhaseData",
    "FoundationPhaseData",
    "CoreDataPhaseData",
    "TransactionsPhaseData",
    "ContentPhaseData",
    "PhaseState",
    "WizardState",
    "create_initial_wizard_state",
]
