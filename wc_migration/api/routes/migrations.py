"""Streaming migration endpoints."""

import asyncio
import logging
from typing import Dict, Set

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from ...errors import ConfigurationError
from ...models.migration import EntityType
from ...orchestrator import BatchMigrationExecutor, WizardRunner
from ...progress import SSE_HEADERS, ProgressEvent, QueueSink
from ...storage.base import WizardStore
from ...wizard.session import MigrationWizard
from ..deps import ExecutorFactory, get_executor_factory, get_wizard_store
from ..models import MigrateRequest

logger = logging.getLogger(__name__)

router = APIRouter()

# Keep references so runs are not garbage collected mid-flight
_running: Set[asyncio.Task] = set()


def _request_mappings(body: MigrateRequest) -> Dict[EntityType, Dict[int, int]]:
    return {
        EntityType.CATEGORIES: body.category_id_mapping,
        EntityType.PRODUCTS: body.product_id_mapping,
        EntityType.CUSTOMERS: body.customer_id_mapping,
        EntityType.PAGES: body.page_id_mapping,
    }


async def _run_migration(
    entity: EntityType,
    body: MigrateRequest,
    executor: BatchMigrationExecutor,
    store: WizardStore,
    sink: QueueSink,
    cancel_event: asyncio.Event
) -> None:
    try:
        if body.use_wizard:
            wizard = MigrationWizard(
                body.wc_credentials.to_credentials().store_key,
                body.bc_credentials.store_hash,
                store,
            )
            await WizardRunner(wizard, executor).run_entity(
                entity, scope=body.scope or None, sink=sink, cancel_event=cancel_event
            )
        else:
            await executor.run(
                entity,
                resume_set=body.migrated_ids,
                mappings=_request_mappings(body),
                scope=body.scope or None,
                sink=sink,
                cancel_event=cancel_event,
            )
    except Exception as e:
        logger.error(f"{entity.value} migration crashed: {e}")
        sink.emit(ProgressEvent.failed(f"Migration failed: {e}", entity.value))
    finally:
        sink.close()


@router.post("/{entity}")
async def migrate_entity(
    entity: EntityType,
    body: MigrateRequest,
    request: Request,
    executor_factory: ExecutorFactory = Depends(get_executor_factory),
    store: WizardStore = Depends(get_wizard_store),
):
    """Migrate one entity type, streaming progress as Server-Sent Events."""
    try:
        executor = executor_factory(body)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    sink = QueueSink()
    cancel_event = asyncio.Event()
    task = asyncio.create_task(_run_migration(entity, body, executor, store, sink, cancel_event))
    _running.add(task)
    task.add_done_callback(_running.discard)

    async def event_stream():
        try:
            async for chunk in sink.stream():
                if await request.is_disconnected():
                    logger.info(f"Client disconnected, cancelling {entity.value} migration")
                    break
                yield chunk
        finally:
            if not task.done():
                cancel_event.set()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
