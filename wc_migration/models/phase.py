"""Phase definitions for the migration wizard."""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Tuple


class PhaseNumber(IntEnum):
    """Ordinal of each wizard phase."""
    FOUNDATION = 1
    CORE_DATA = 2
    TRANSACTIONS = 3
    CONTENT = 4


class PhaseStatus(str, Enum):
    """Status of a single wizard phase."""
    LOCKED = "locked"
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    SKIPPED = "skipped"


# Statuses that count as "done" for progress and navigation
TERMINAL_STATUSES = (PhaseStatus.COMPLETE, PhaseStatus.SKIPPED)


@dataclass(frozen=True)
class PhaseInfo:
    """Static metadata for a phase."""
    number: PhaseNumber
    name: str
    short_name: str
    description: str
    is_required: bool
    dependencies: Tuple[PhaseNumber, ...] = ()


PHASES: Dict[PhaseNumber, PhaseInfo] = {
    PhaseNumber.FOUNDATION: PhaseInfo(
        number=PhaseNumber.FOUNDATION,
        name="Foundation",
        short_name="Foundation",
        description="Set up your category structure in BigCommerce",
        is_required=True,
        dependencies=(),
    ),
    PhaseNumber.CORE_DATA: PhaseInfo(
        number=PhaseNumber.CORE_DATA,
        name="Core Data",
        short_name="Core Data",
        description="Migrate your product catalog and customer accounts",
        is_required=True,
        dependencies=(PhaseNumber.FOUNDATION,),
    ),
    PhaseNumber.TRANSACTIONS: PhaseInfo(
        number=PhaseNumber.TRANSACTIONS,
        name="Transactions",
        short_name="Transactions",
        description="Transfer order history and discount codes",
        is_required=False,
        dependencies=(PhaseNumber.CORE_DATA,),
    ),
    PhaseNumber.CONTENT: PhaseInfo(
        number=PhaseNumber.CONTENT,
        name="Content",
        short_name="Content",
        description="Migrate reviews, pages, and blog posts",
        is_required=False,
        dependencies=(PhaseNumber.CORE_DATA,),
    ),
}


def validate_phase_table(phases: Dict[PhaseNumber, PhaseInfo]) -> None:
    """
    Check the phase table is well formed.

    Every prerequisite must be a required phase that comes earlier. A required
    phase can never be skipped, so entering a phase only ever depends on
    prerequisites that were actually completed.

    Raises:
        ValueError: If the table violates these rules
    """
    for number, info in phases.items():
        if info.number != number:
            raise ValueError(f"Phase {number} is registered with number {info.number}")
        for dep in info.dependencies:
            if dep not in phases:
                raise ValueError(f"Phase {number} depends on unknown phase {dep}")
            if dep >= number:
                raise ValueError(f"Phase {number} depends on later phase {dep}")
            if not phases[dep].is_required:
                raise ValueError(f"Phase {number} depends on optional phase {dep}")


validate_phase_table(PHASES)
