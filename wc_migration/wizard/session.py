"""Store-pair wizard session with auto-save."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from ..models.mapping import IdMapping
from ..models.migration import EntityType, ExecutionResult
from ..models.phase import PHASES, PhaseNumber
from ..models.record import ResumeKey
from ..models.wizard import (
    ENTITY_PHASE,
    PhaseData,
    WizardState,
    create_initial_wizard_state,
    empty_phase_data,
)
from ..storage.base import WizardStore
from ..storage.memory_store import InMemoryWizardStore
from . import state_machine as sm

logger = logging.getLogger(__name__)


class MigrationWizard:
    """
    The wizard for one WooCommerce store / BigCommerce store pair.

    Owns the WizardState. Every operation goes through the reducer and, when
    the state changed, is written to the store before returning.
    """

    def __init__(
        self,
        source_store: str,
        target_store: str,
        store: Optional[WizardStore] = None,
        auto_save: bool = True
    ):
        """
        Load persisted state for the store pair or start fresh.

        Args:
            source_store: Source store identifier (WooCommerce URL)
            target_store: Target store identifier (BigCommerce store hash)
            store: Persistence backend, defaults to in-memory
            auto_save: Persist after every state change
        """
        self.source_store = source_store
        self.target_store = target_store
        self.store = store if store is not None else InMemoryWizardStore()
        self.auto_save = auto_save

        loaded = self.store.load(source_store, target_store)
        if loaded is not None:
            logger.info(f"Resuming wizard for {source_store} -> {target_store}")
            self._state = loaded
        else:
            self._state = create_initial_wizard_state(source_store, target_store)
            self._persist()

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def current_phase(self) -> PhaseNumber:
        return self._state.current_phase

    def dispatch(self, action: sm.Action, now: Optional[datetime] = None) -> WizardState:
        new_state = sm.reduce(self._state, action, now)
        if new_state is not self._state:
            self._state = new_state
            self._persist()
        return self._state

    def save(self) -> None:
        """Write the current state regardless of auto_save."""
        self.store.save(self._state)

    def _persist(self) -> None:
        if self.auto_save:
            self.store.save(self._state)

    # Navigation

    def go_to_phase(self, phase: int) -> WizardState:
        return self.dispatch(sm.GoToPhase(phase))

    def next_phase(self) -> WizardState:
        next_phase = sm.get_next_available_phase(self._state)
        if next_phase is None:
            logger.warning(f"No available phase after {int(self.current_phase)}")
            return self._state
        return self.go_to_phase(next_phase)

    def previous_phase(self) -> WizardState:
        previous = sm.get_previous_phase(self._state)
        if previous is None:
            return self._state
        return self.go_to_phase(previous)

    # Lifecycle

    def start_phase(self, phase: int) -> WizardState:
        return self.dispatch(sm.StartPhase(phase))

    def complete_phase(self, phase: int, data: Any = None) -> WizardState:
        return self.dispatch(sm.CompletePhase(phase, data))

    def skip_phase(self, phase: int) -> WizardState:
        return self.dispatch(sm.SkipPhase(phase))

    def update_phase_data(self, phase: int, partial: Dict[str, Any]) -> WizardState:
        return self.dispatch(sm.UpdatePhaseData(phase, partial))

    def reset_wizard(self) -> WizardState:
        """Clear persisted state and start over for the same store pair."""
        self.store.clear(self.source_store, self.target_store)
        self._state = sm.reduce(self._state, sm.ResetWizard())
        self._persist()
        return self._state

    # Queries

    def is_phase_available(self, phase: int) -> bool:
        return sm.is_phase_available(self._state, phase)

    def is_phase_complete(self, phase: int) -> bool:
        return sm.is_phase_complete(self._state, phase)

    @property
    def can_proceed(self) -> bool:
        return sm.can_proceed(self._state)

    @property
    def can_skip(self) -> bool:
        return sm.can_skip(self._state)

    def are_required_phases_complete(self) -> bool:
        return sm.are_required_phases_complete(self._state)

    def get_phase_data(self, phase: int) -> PhaseData:
        """The phase's data, or an empty payload of the right type."""
        data = self._state.phase(phase).data
        return data if data is not None else empty_phase_data(phase)

    def get_mapping(self, entity: EntityType) -> IdMapping:
        phase = ENTITY_PHASE[entity]
        progress = self.get_phase_data(phase).entity_progress(entity)
        return IdMapping(progress.mapping, entity=entity.value)

    def get_category_mapping(self) -> IdMapping:
        return self.get_mapping(EntityType.CATEGORIES)

    def get_product_mapping(self) -> IdMapping:
        return self.get_mapping(EntityType.PRODUCTS)

    def get_customer_mapping(self) -> IdMapping:
        return self.get_mapping(EntityType.CUSTOMERS)

    def get_resume_set(self, entity: EntityType) -> Set[ResumeKey]:
        """Keys already migrated for an entity across all previous runs."""
        phase = ENTITY_PHASE[entity]
        return set(self.get_phase_data(phase).entity_progress(entity).migrated_keys)

    # Execution results

    def checkpoint_entity(
        self,
        entity: EntityType,
        keys: List[ResumeKey],
        mapping: Dict[int, int]
    ) -> WizardState:
        """Persist migrated keys and mappings from a run in progress."""
        if not keys and not mapping:
            return self._state
        phase = ENTITY_PHASE[entity]
        data = self.get_phase_data(phase).with_checkpoint(entity, keys, mapping)
        return self.update_phase_data(phase, data.to_dict())

    def record_entity_result(self, entity: EntityType, result: ExecutionResult) -> WizardState:
        """
        Fold a run's result into the owning phase's data.

        Runs that failed before migrating anything leave the state untouched.
        Aborted runs only contribute the keys and mappings they did migrate.
        """
        if not result.succeeded:
            return self.checkpoint_entity(entity, result.migrated_keys, result.id_mapping)

        phase = ENTITY_PHASE[entity]
        data = self.get_phase_data(phase).with_entity_result(entity, result)
        logger.info(
            f"Recorded {entity.value}: {result.stats.successful} migrated, "
            f"{result.stats.skipped} skipped, {result.stats.failed} failed"
        )
        return self.update_phase_data(phase, data.to_dict())

    def summary(self) -> Dict[str, Any]:
        """Status overview for display."""
        return {
            "source_store": self.source_store,
            "target_store": self.target_store,
            "current_phase": int(self.current_phase),
            "phases": [
                {
                    "number": int(number),
                    "name": info.name,
                    "required": info.is_required,
                    "status": self._state.status_of(number).value,
                    "available": self.is_phase_available(number),
                }
                for number, info in PHASES.items()
            ],
            "required_complete": self.are_required_phases_complete(),
            "can_proceed": self.can_proceed,
            "can_skip": self.can_skip,
            "last_updated": self._state.last_updated.isoformat() if self._state.last_updated else None,
        }
