"""Wizard state endpoints for a store pair."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Path

from ...models.mapping import mapping_to_json
from ...models.migration import EntityType
from ...storage.base import WizardStore
from ...wizard.session import MigrationWizard
from ..deps import get_wizard_store
from ..models import CompletePhaseRequest, PhaseDataUpdate, WizardKey, WizardResponse

logger = logging.getLogger(__name__)

router = APIRouter()

PhaseParam = Path(..., ge=1, le=4, description="Phase number")


def _wizard(key: WizardKey, store: WizardStore) -> MigrationWizard:
    return MigrationWizard(key.source_store, key.target_store, store)


def _response(wizard: MigrationWizard, changed: bool = True) -> Dict[str, Any]:
    response = WizardResponse(**wizard.summary(), state=wizard.state.to_dict()).model_dump()
    response["changed"] = changed
    return response


def _apply(wizard: MigrationWizard, operation, *args) -> Dict[str, Any]:
    """Run a wizard operation; rejected transitions leave the state as it was."""
    before = wizard.state
    operation(*args)
    return _response(wizard, changed=wizard.state is not before)


@router.get("")
async def get_wizard(source_store: str, target_store: str, store: WizardStore = Depends(get_wizard_store)):
    """Get the wizard for a store pair, creating it on first use."""
    return _response(_wizard(WizardKey(source_store=source_store, target_store=target_store), store))


@router.post("/go/{phase}")
async def go_to_phase(key: WizardKey, phase: int = PhaseParam, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    return _apply(wizard, wizard.go_to_phase, phase)


@router.post("/next")
async def next_phase(key: WizardKey, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    return _apply(wizard, wizard.next_phase)


@router.post("/previous")
async def previous_phase(key: WizardKey, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    return _apply(wizard, wizard.previous_phase)


@router.post("/phases/{phase}/start")
async def start_phase(key: WizardKey, phase: int = PhaseParam, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    return _apply(wizard, wizard.start_phase, phase)


@router.post("/phases/{phase}/complete")
async def complete_phase(
    body: CompletePhaseRequest,
    phase: int = PhaseParam,
    store: WizardStore = Depends(get_wizard_store),
):
    wizard = _wizard(body, store)
    return _apply(wizard, wizard.complete_phase, phase, body.data)


@router.post("/phases/{phase}/skip")
async def skip_phase(key: WizardKey, phase: int = PhaseParam, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    return _apply(wizard, wizard.skip_phase, phase)


@router.patch("/phases/{phase}/data")
async def update_phase_data(
    body: PhaseDataUpdate,
    phase: int = PhaseParam,
    store: WizardStore = Depends(get_wizard_store),
):
    wizard = _wizard(body, store)
    return _apply(wizard, wizard.update_phase_data, phase, body.data)


@router.post("/reset")
async def reset_wizard(key: WizardKey, store: WizardStore = Depends(get_wizard_store)):
    wizard = _wizard(key, store)
    wizard.reset_wizard()
    logger.info(f"Wizard reset for {key.source_store} -> {key.target_store}")
    return _response(wizard)


@router.get("/entities/{entity}")
async def get_entity_progress(
    entity: EntityType,
    source_store: str,
    target_store: str,
    store: WizardStore = Depends(get_wizard_store),
):
    """Resume set and ID mapping recorded for one entity type."""
    wizard = _wizard(WizardKey(source_store=source_store, target_store=target_store), store)
    return {
        "entity": entity.value,
        "migrated_keys": sorted(wizard.get_resume_set(entity), key=str),
        "id_mapping": mapping_to_json(wizard.get_mapping(entity).to_dict()),
    }
