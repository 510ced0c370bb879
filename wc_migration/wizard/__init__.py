"""Migration wizard: phase state machine and store-pair sessions."""

from .state_machine import (
    GoToPhase,
    StartPhase,
    CompletePhase,
    SkipPhase,
    UpdatePhaseData,
    ResetWizard,
    LoadState,
    reduce,
    go_to_phase,
    start_phase,
    complete_phase,
    skip_phase,
    update_phase_data,
    reset_wizard,
    is_phase_available,
    is_phase_complete,
    get_next_available_phase,
    get_previous_phase,
    are_required_phases_complete,
    can_skip,
    can_proceed,
)
from .session import MigrationWizard

__all__ = [
    "GoToPhase",
    "StartPhase",
    "CompletePhase",
    "SkipPhase",
    "UpdatePhaseData",
    "ResetWizard",
    "LoadState",
    "reduce",
    "go_to_phase",
    "start_phase",
    "complete_phase",
    "skip_phase",
    "update_phase_data",
    "reset_wizard",
    "is_phase_available",
    "is_phase_complete",
    "get_next_available_phase",
    "get_previous_phase",
    "are_required_phases_complete",
    "can_skip",
    "can_proceed",
    "MigrationWizard",
]
