"""
Phase state machine for the migration wizard.

All transitions go through `reduce`, a pure function from (state, action) to a
new state. Invalid transitions are logged as warnings and return the state
unchanged; nothing here raises for a rejected request and nothing does I/O.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from ..models.phase import PHASES, PhaseNumber, PhaseStatus, TERMINAL_STATUSES
from ..models.wizard import (
    PhaseData,
    PhaseState,
    WizardState,
    coerce_phase_data,
    create_initial_wizard_state,
    empty_phase_data,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GoToPhase:
    phase: int


@dataclass(frozen=True)
class StartPhase:
    phase: int


@dataclass(frozen=True)
class CompletePhase:
    phase: int
    data: Any = None


@dataclass(frozen=True)
class SkipPhase:
    phase: int


@dataclass(frozen=True)
class UpdatePhaseData:
    phase: int
    partial: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResetWizard:
    pass


@dataclass(frozen=True)
class LoadState:
    state: WizardState


Action = Union[GoToPhase, StartPhase, CompletePhase, SkipPhase, UpdatePhaseData, ResetWizard, LoadState]


# Queries

def is_phase_available(state: WizardState, phase: int) -> bool:
    """A phase can be entered once every prerequisite is complete (skipped does not count)."""
    info = PHASES[PhaseNumber(phase)]
    return all(state.status_of(dep) == PhaseStatus.COMPLETE for dep in info.dependencies)


def is_phase_complete(state: WizardState, phase: int) -> bool:
    """Complete or skipped."""
    return state.status_of(phase) in TERMINAL_STATUSES


def get_next_available_phase(state: WizardState, current: Optional[int] = None) -> Optional[PhaseNumber]:
    """The phase after `current` if it can be entered, else None."""
    current = state.current_phase if current is None else current
    next_phase = int(current) + 1
    if next_phase not in PHASES:
        return None
    if is_phase_available(state, next_phase):
        return PhaseNumber(next_phase)
    return None


def get_previous_phase(state: WizardState, current: Optional[int] = None) -> Optional[PhaseNumber]:
    current = state.current_phase if current is None else current
    previous = int(current) - 1
    return PhaseNumber(previous) if previous in PHASES else None


def are_required_phases_complete(state: WizardState) -> bool:
    return all(
        state.status_of(number) == PhaseStatus.COMPLETE
        for number, info in PHASES.items()
        if info.is_required
    )


def can_skip(state: WizardState, phase: Optional[int] = None) -> bool:
    """Only optional phases that are not yet complete can be skipped."""
    phase = state.current_phase if phase is None else phase
    info = PHASES[PhaseNumber(phase)]
    return not info.is_required and state.status_of(phase) != PhaseStatus.COMPLETE


def can_proceed(state: WizardState) -> bool:
    """The current phase is done and the next one can be entered."""
    return (
        is_phase_complete(state, state.current_phase)
        and get_next_available_phase(state) is not None
    )


# Transitions

def _valid_phase(phase: Any) -> Optional[PhaseNumber]:
    try:
        return PhaseNumber(int(phase))
    except (TypeError, ValueError):
        logger.warning(f"Unknown phase {phase!r}")
        return None


def _with_phase(state: WizardState, phase: PhaseNumber, phase_state: PhaseState, now: datetime) -> WizardState:
    phases = dict(state.phases)
    phases[phase] = phase_state
    return replace(state, phases=phases, last_updated=now)


def _go_to_phase(state: WizardState, action: GoToPhase, now: datetime) -> WizardState:
    phase = _valid_phase(action.phase)
    if phase is None:
        return state

    if not is_phase_available(state, phase):
        logger.warning(f"Cannot go to phase {int(phase)}: prerequisites not complete")
        return state

    if state.current_phase == phase:
        return state

    return replace(state, current_phase=phase, last_updated=now)


def _start_phase(state: WizardState, action: StartPhase, now: datetime) -> WizardState:
    phase = _valid_phase(action.phase)
    if phase is None:
        return state

    current = state.phase(phase)
    if current.status == PhaseStatus.IN_PROGRESS:
        return state

    if current.status != PhaseStatus.PENDING:
        logger.warning(f"Cannot start phase {int(phase)} from status '{current.status.value}'")
        return state

    return _with_phase(
        state, phase,
        replace(current, status=PhaseStatus.IN_PROGRESS, started_at=now),
        now,
    )


def _complete_phase(state: WizardState, action: CompletePhase, now: datetime) -> WizardState:
    phase = _valid_phase(action.phase)
    if phase is None:
        return state

    current = state.phase(phase)
    if current.status in (PhaseStatus.LOCKED, PhaseStatus.SKIPPED):
        logger.warning(f"Cannot complete phase {int(phase)} from status '{current.status.value}'")
        return state

    try:
        data = coerce_phase_data(phase, action.data)
    except (TypeError, ValueError) as e:
        logger.warning(f"Rejected data for phase {int(phase)}: {e}")
        return state

    phases = dict(state.phases)
    phases[phase] = replace(
        current,
        status=PhaseStatus.COMPLETE,
        data=data if data is not None else current.data,
        completed_at=now,
    )

    # Unlock dependents whose prerequisites are now all complete
    for number, info in PHASES.items():
        if phases[number].status != PhaseStatus.LOCKED:
            continue
        if all(phases[dep].status == PhaseStatus.COMPLETE for dep in info.dependencies):
            phases[number] = replace(phases[number], status=PhaseStatus.PENDING)
            logger.info(f"Phase {int(number)} ({info.name}) unlocked")

    logger.info(f"Phase {int(phase)} ({PHASES[phase].name}) complete")
    return replace(state, phases=phases, last_updated=now)


def _skip_phase(state: WizardState, action: SkipPhase, now: datetime) -> WizardState:
    phase = _valid_phase(action.phase)
    if phase is None:
        return state

    info = PHASES[phase]
    if info.is_required:
        logger.warning(f"Cannot skip required phase {int(phase)} ({info.name})")
        return state

    current = state.phase(phase)
    if current.status == PhaseStatus.COMPLETE:
        logger.warning(f"Cannot skip phase {int(phase)}: already complete")
        return state

    if current.status == PhaseStatus.SKIPPED:
        return state

    logger.info(f"Phase {int(phase)} ({info.name}) skipped")
    return _with_phase(
        state, phase,
        replace(current, status=PhaseStatus.SKIPPED, completed_at=now),
        now,
    )


def _update_phase_data(state: WizardState, action: UpdatePhaseData, now: datetime) -> WizardState:
    phase = _valid_phase(action.phase)
    if phase is None:
        return state

    partial = action.partial
    if isinstance(partial, PhaseData):
        partial = partial.to_dict()

    current = state.phase(phase)
    base = current.data if current.data is not None else empty_phase_data(phase)
    try:
        merged = base.merge(dict(partial))
    except (TypeError, ValueError) as e:
        logger.warning(f"Rejected data update for phase {int(phase)}: {e}")
        return state

    return _with_phase(state, phase, replace(current, data=merged), now)


def _reset_wizard(state: WizardState, action: ResetWizard, now: datetime) -> WizardState:
    logger.info(f"Resetting wizard for {state.source_store} -> {state.target_store}")
    return create_initial_wizard_state(state.source_store, state.target_store, now)


def _load_state(state: WizardState, action: LoadState, now: datetime) -> WizardState:
    return action.state


_HANDLERS: Dict[type, Callable[[WizardState, Any, datetime], WizardState]] = {
    GoToPhase: _go_to_phase,
    StartPhase: _start_phase,
    CompletePhase: _complete_phase,
    SkipPhase: _skip_phase,
    UpdatePhaseData: _update_phase_data,
    ResetWizard: _reset_wizard,
    LoadState: _load_state,
}


def reduce(state: WizardState, action: Action, now: Optional[datetime] = None) -> WizardState:
    """
    Apply an action to the wizard state.

    Args:
        state: Current state (never modified)
        action: Transition to apply
        now: Timestamp for bookkeeping fields, defaults to utcnow

    Returns:
        The new state, or `state` itself if the transition was rejected
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unknown wizard action: {action!r}")
    return handler(state, action, now or datetime.utcnow())


# Convenience wrappers

def go_to_phase(state: WizardState, phase: int, now: Optional[datetime] = None) -> WizardState:
    return reduce(state, GoToPhase(phase), now)


def start_phase(state: WizardState, phase: int, now: Optional[datetime] = None) -> WizardState:
    return reduce(state, StartPhase(phase), now)


def complete_phase(state: WizardState, phase: int, data: Any = None, now: Optional[datetime] = None) -> WizardState:
    return reduce(state, CompletePhase(phase, data), now)


def skip_phase(state: WizardState, phase: int, now: Optional[datetime] = None) -> WizardState:
    return reduce(state, SkipPhase(phase), now)


def update_phase_data(state: WizardState, phase: int, partial: Dict[str, Any], now: Optional[datetime] = None) -> WizardState:
    return reduce(state, UpdatePhaseData(phase, partial), now)


def reset_wizard(state: WizardState, now: Optional[datetime] = None) -> WizardState:
    return reduce(state, ResetWizard(), now)
