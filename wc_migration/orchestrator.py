"""Migration orchestrator - runs entity migrations and drives the wizard phases."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from .config import Settings, get_settings
from .entities import (
    SOURCE_WORDPRESS,
    EntityDefinition,
    dependency_message,
    get_definition,
)
from .errors import ConfigurationError, DependencyError, DuplicateError, MigrationError
from .extractors.base import BaseExtractor
from .loaders.base import BaseLoader
from .models.migration import EntityType, ExecutionResult
from .models.phase import PHASES, PhaseNumber, PhaseStatus
from .models.record import ItemOutcome, ItemResult, ResumeKey
from .models.wizard import ENTITY_PHASE
from .progress import ProgressReporter, ProgressSink
from .services.rate_limiter import RateLimiter, get_rate_limiter
from .services.retry import retry_async
from .services.transformer import EntityTransformer, TransformContext
from .wizard.session import MigrationWizard

logger = logging.getLogger(__name__)

PHASE_ENTITIES: Dict[PhaseNumber, List[EntityType]] = {
    PhaseNumber.FOUNDATION: [EntityType.CATEGORIES],
    PhaseNumber.CORE_DATA: [EntityType.PRODUCTS, EntityType.CUSTOMERS],
    PhaseNumber.TRANSACTIONS: [EntityType.ORDERS, EntityType.COUPONS],
    PhaseNumber.CONTENT: [EntityType.REVIEWS, EntityType.PAGES, EntityType.BLOG_POSTS],
}

# Mappings handed to the transformer, and the context attribute each fills
CONTEXT_MAPPINGS = {
    EntityType.CATEGORIES: "category_mapping",
    EntityType.PRODUCTS: "product_mapping",
    EntityType.CUSTOMERS: "customer_mapping",
    EntityType.PAGES: "page_mapping",
}

CheckpointFn = Callable[[List[ResumeKey], Dict[int, int]], Any]


def normalize_resume_set(definition: EntityDefinition, keys: Iterable[Any]) -> Set[ResumeKey]:
    """Coerce stored keys to the entity's key type (JSON may hand back strings)."""
    normalized: Set[ResumeKey] = set()
    sample = definition.resume_key({"id": 0, "email": "", "code": ""})
    for key in keys or ():
        if isinstance(sample, int):
            try:
                normalized.add(int(key))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed resume key {key!r} for {definition.entity.value}")
        else:
            normalized.add(str(key).strip().lower())
    return normalized


class BatchMigrationExecutor:
    """
    Migrates one entity collection from the source stores to BigCommerce.

    A run fetches the whole source collection, drops everything in the
    resume set, then writes the rest in fixed-size batches. Per-item
    failures are recorded and never stop the run; a failed fetch or a
    missing dependency ends the run with a single error event.
    """

    def __init__(
        self,
        source: BaseExtractor,
        target: BaseLoader,
        wordpress: Optional[BaseExtractor] = None,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None,
        transformer: Optional[EntityTransformer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """
        Initialize the executor.

        Args:
            source: WooCommerce reader
            target: BigCommerce writer
            wordpress: WordPress reader for pages and blog posts
            settings: Batch size, paging caps and retry policy
            rate_limiter: Limiter shared by every run writing to the target
            transformer: Source to target payload conversion
            sleep: Backoff sleep, replaceable in tests
        """
        self.source = source
        self.target = target
        self.wordpress = wordpress
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or get_rate_limiter(self.settings)
        self.transformer = transformer or EntityTransformer()
        self._sleep = sleep

    def supports(self, entity: EntityType) -> bool:
        """Whether a reader is configured for the entity's source."""
        if get_definition(entity).source == SOURCE_WORDPRESS:
            return self.wordpress is not None
        return True

    def _reader_for(self, definition: EntityDefinition) -> BaseExtractor:
        if definition.source == SOURCE_WORDPRESS:
            if self.wordpress is None:
                raise ConfigurationError(f"WordPress connection required to migrate {definition.entity.value}")
            return self.wordpress
        return self.source

    async def run(
        self,
        entity: EntityType,
        resume_set: Iterable[ResumeKey] = (),
        mappings: Optional[Dict[EntityType, Dict[int, int]]] = None,
        scope: Optional[Dict[str, Any]] = None,
        sink: Optional[ProgressSink] = None,
        checkpoint: Optional[CheckpointFn] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExecutionResult:
        """
        Run one migration of an entity type.

        Args:
            entity: Entity type to migrate
            resume_set: Keys migrated by earlier runs; never re-submitted
            mappings: ID mappings of other entities (and this one, for
                hierarchies resumed part way)
            scope: Source filter, e.g. {"category": 12} or {"status": ["completed"]}
            sink: Receives the progress stream
            checkpoint: Called with (keys, mapping) after every batch
            cancel_event: Set to stop between items

        Returns:
            ExecutionResult; `error` is set for run-level failures
        """
        entity = EntityType(entity)
        definition = get_definition(entity)
        reporter = ProgressReporter(sink, entity.value)
        result = ExecutionResult(entity=entity)
        mappings = {EntityType(k): dict(v or {}) for k, v in (mappings or {}).items()}

        for wanted in definition.wants:
            if not mappings.get(wanted):
                result.stats.warnings.append(
                    f"No {wanted.value} mapping available, {entity.value} will not reference migrated {wanted.value}"
                )

        try:
            self._check_dependencies(definition, mappings)
            items = await self._fetch(definition, scope, result)
            context = await self._build_context(definition, mappings, result)
        except MigrationError as e:
            logger.error(f"Cannot migrate {entity.value}: {e}")
            return self._abort(result, reporter, str(e))

        items, exclusions = definition.filter_items(items, scope, mappings)
        result.stats.warnings.extend(exclusions)

        resume = normalize_resume_set(definition, resume_set)
        pending = [item for item in items if definition.resume_key(item) not in resume]
        result.total_in_source = len(items)
        result.already_migrated = len(items) - len(pending)
        result.stats.total = len(pending)

        logger.info(
            f"Migrating {len(pending)} {entity.value} "
            f"({result.already_migrated} of {len(items)} already migrated)"
        )
        reporter.started(
            len(pending),
            total_in_source=result.total_in_source,
            already_migrated=result.already_migrated,
        )

        batch_size = max(1, self.settings.batch_size)
        completed = 0
        for start in range(0, len(pending), batch_size):
            batch_keys: List[ResumeKey] = []
            batch_mapping: Dict[int, int] = {}

            for item in pending[start:start + batch_size]:
                if cancel_event is not None and cancel_event.is_set():
                    self._checkpoint(checkpoint, batch_keys, batch_mapping, result)
                    result.cancelled = True
                    result.stats.total = result.stats.processed
                    logger.warning(f"{entity.value} migration cancelled after {completed} items")
                    return self._abort(result, reporter, "cancelled")

                reporter.progress(completed, current={"id": item.get("id"), "name": definition.display(item)})

                outcome = await self._migrate_item(definition, item, context, result.stats.warnings)
                result.stats.record(outcome)
                completed += 1

                if outcome.migrated:
                    result.migrated_keys.append(outcome.resume_key)
                    batch_keys.append(outcome.resume_key)
                    if outcome.target_id is not None:
                        result.id_mapping[outcome.source_id] = outcome.target_id
                        batch_mapping[outcome.source_id] = outcome.target_id
                        if definition.self_referencing:
                            getattr(context, CONTEXT_MAPPINGS[entity])[outcome.source_id] = outcome.target_id

                # Let the stream flush between items
                await asyncio.sleep(0)

            reporter.progress(completed)
            self._checkpoint(checkpoint, batch_keys, batch_mapping, result)

        result.completed_at = datetime.utcnow()
        reporter.complete(result.stats, result.migrated_keys, result.id_mapping)
        logger.info(
            f"{entity.value}: {result.stats.successful} migrated, {result.stats.skipped} skipped, "
            f"{result.stats.failed} failed"
        )
        return result

    def _check_dependencies(
        self,
        definition: EntityDefinition,
        mappings: Dict[EntityType, Dict[int, int]]
    ) -> None:
        for required in definition.requires:
            if not mappings.get(required):
                raise DependencyError(dependency_message(definition.entity, required), missing=required.value)

    def _abort(self, result: ExecutionResult, reporter: ProgressReporter, message: str) -> ExecutionResult:
        result.error = message
        result.completed_at = datetime.utcnow()
        reporter.error(message)
        return result

    def _checkpoint(
        self,
        checkpoint: Optional[CheckpointFn],
        keys: List[ResumeKey],
        mapping: Dict[int, int],
        result: ExecutionResult
    ) -> None:
        if checkpoint is None or (not keys and not mapping):
            return
        try:
            checkpoint(list(keys), dict(mapping))
        except OSError as e:
            # The run carries on; the final result still holds these keys
            logger.error(f"Failed to save {result.entity.value} checkpoint: {e}")
            result.stats.warnings.append(f"Checkpoint not saved: {e}")

    async def _fetch(
        self,
        definition: EntityDefinition,
        scope: Optional[Dict[str, Any]],
        result: ExecutionResult
    ) -> List[Dict[str, Any]]:
        reader = self._reader_for(definition)
        extraction = await asyncio.to_thread(
            reader.fetch_all,
            definition.resource,
            definition.params(scope),
            self.settings.page_size,
            self.settings.max_pages_for(definition.entity.value),
        )
        result.stats.warnings.extend(extraction.warnings)
        return extraction.records

    async def _build_context(
        self,
        definition: EntityDefinition,
        mappings: Dict[EntityType, Dict[int, int]],
        result: ExecutionResult
    ) -> TransformContext:
        context = TransformContext(**{
            attr: dict(mappings.get(entity, {})) for entity, attr in CONTEXT_MAPPINGS.items()
        })

        if definition.entity == EntityType.BLOG_POSTS:
            reader = self._reader_for(definition)
            for resource, attr in (("tags", "tags"), ("categories", "blog_categories"), ("users", "authors")):
                try:
                    lookup = await asyncio.to_thread(reader.fetch_lookup, resource)
                except MigrationError as e:
                    result.stats.warnings.append(f"Could not load WordPress {resource}: {e}")
                    logger.warning(f"Could not load WordPress {resource}: {e}")
                    continue
                setattr(context, attr, lookup)

        return context

    async def _call(self, fn: Callable[[], Any], on_retry: Callable[[int, BaseException, float], None]) -> Any:
        """Run a blocking target call through the rate limiter with retries."""
        async def attempt():
            async with self.rate_limiter.slot():
                return await asyncio.to_thread(fn)

        return await retry_async(
            attempt,
            attempts=self.settings.retry_attempts,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            factor=self.settings.retry_factor,
            on_retry=on_retry,
            sleep=self._sleep,
        )

    async def _migrate_item(
        self,
        definition: EntityDefinition,
        item: Dict[str, Any],
        context: TransformContext,
        warnings: List[str]
    ) -> ItemResult:
        entity = definition.entity
        source_id = int(item["id"])
        key = definition.resume_key(item)
        label = definition.display(item)
        retries = 0

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            nonlocal retries
            retries = attempt

        try:
            record = self.transformer.transform(entity, item, context)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Failed to transform {entity.value} {source_id}: {e}")
            return ItemResult(
                source_id=source_id,
                resume_key=key,
                outcome=ItemOutcome.FAILED,
                error=f"{label}: could not transform ({e})",
                error_code="TRANSFORM_ERROR",
            )
        warnings.extend(record.warnings)

        try:
            existing = await self._call(lambda: self.target.find_existing(entity, record), on_retry)
            if existing is not None:
                logger.debug(f"{entity.value} {label} already exists as {existing}")
                return ItemResult(source_id, key, ItemOutcome.SKIPPED, target_id=existing, retry_count=retries)

            target_id = await self._call(lambda: self.target.create(entity, record), on_retry)

        except DuplicateError as e:
            existing = e.existing_id
            if existing is None:
                try:
                    existing = await self._call(lambda: self.target.find_existing(entity, record), on_retry)
                except MigrationError as lookup_error:
                    logger.warning(f"Duplicate {entity.value} {label} could not be looked up: {lookup_error}")
            return ItemResult(source_id, key, ItemOutcome.SKIPPED, target_id=existing, retry_count=retries)

        except MigrationError as e:
            logger.error(f"Failed to migrate {entity.value} {label}: {e}")
            return ItemResult(
                source_id, key, ItemOutcome.FAILED,
                error=f"{label}: {e.message}", error_code=e.code, retry_count=retries,
            )

        except Exception as e:
            logger.error(f"Failed to migrate {entity.value} {label}: {e}")
            return ItemResult(
                source_id, key, ItemOutcome.FAILED,
                error=f"{label}: {e}", error_code="UNEXPECTED_ERROR", retry_count=retries,
            )

        await self._after_create(definition, item, record.data, target_id, warnings, on_retry)
        return ItemResult(source_id, key, ItemOutcome.SUCCESSFUL, target_id=target_id, retry_count=retries)

    async def _after_create(
        self,
        definition: EntityDefinition,
        item: Dict[str, Any],
        payload: Dict[str, Any],
        target_id: int,
        warnings: List[str],
        on_retry: Callable[[int, BaseException, float], None]
    ) -> None:
        """Follow-up writes that cannot be part of the create call."""
        if definition.entity != EntityType.ORDERS:
            return

        note = self.transformer.refund_note(item)
        if not note:
            return

        notes = f"{payload.get('staff_notes', '')}\n\n{note}".strip()
        try:
            await self._call(lambda: self.target.update(EntityType.ORDERS, target_id, {"staff_notes": notes}), on_retry)
        except MigrationError as e:
            logger.warning(f"Refund history not added to order {target_id}: {e}")
            warnings.append(f"Order #{item['id']}: refund history not added ({e.message})")
        except Exception as e:
            logger.error(f"Failed to add refund history to order {target_id}: {e}")
            warnings.append(f"Order #{item['id']}: refund history not added ({e})")


class WizardRunner:
    """
    Runs migrations on behalf of a MigrationWizard.

    Resume sets and dependency mappings come from the wizard's phase data,
    checkpoints are written back after each batch, and a phase is completed
    once every one of its entities finished without a run-level error.
    """

    def __init__(self, wizard: MigrationWizard, executor: BatchMigrationExecutor):
        self.wizard = wizard
        self.executor = executor

    def mappings(self) -> Dict[EntityType, Dict[int, int]]:
        """Every mapping recorded so far, keyed by entity type."""
        return {
            mapped: self.wizard.get_mapping(mapped).to_dict()
            for mapped in CONTEXT_MAPPINGS
        }

    async def run_entity(
        self,
        entity: EntityType,
        scope: Optional[Dict[str, Any]] = None,
        sink: Optional[ProgressSink] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ExecutionResult:
        entity = EntityType(entity)
        phase = ENTITY_PHASE[entity]

        if not self.wizard.is_phase_available(phase):
            result = ExecutionResult(entity=entity)
            message = f"Phase {int(phase)} ({PHASES[phase].name}) is locked until its prerequisites are complete"
            logger.warning(message)
            result.error = message
            ProgressReporter(sink, entity.value).error(message)
            return result

        if self.wizard.state.status_of(phase) == PhaseStatus.PENDING:
            self.wizard.start_phase(phase)

        result = await self.executor.run(
            entity,
            resume_set=self.wizard.get_resume_set(entity),
            mappings=self.mappings(),
            scope=scope,
            sink=sink,
            checkpoint=lambda keys, mapping: self.wizard.checkpoint_entity(entity, keys, mapping),
            cancel_event=cancel_event,
        )
        self.wizard.record_entity_result(entity, result)
        return result

    async def run_phase(
        self,
        phase: int,
        sink: Optional[ProgressSink] = None,
        cancel_event: Optional[asyncio.Event] = None,
        complete: bool = True
    ) -> Dict[EntityType, ExecutionResult]:
        """
        Run every entity of a phase in order.

        Stops at the first run-level error. Entities whose source is not
        configured (no WordPress connection) are left out with a warning.
        """
        phase = PhaseNumber(phase)
        results: Dict[EntityType, ExecutionResult] = {}

        entities = []
        for entity in PHASE_ENTITIES[phase]:
            if self.executor.supports(entity):
                entities.append(entity)
            else:
                logger.warning(f"Skipping {entity.value}: no WordPress connection configured")

        logger.info(f"=== PHASE {int(phase)}: {PHASES[phase].name.upper()} ===")
        for entity in entities:
            result = await self.run_entity(entity, sink=sink, cancel_event=cancel_event)
            results[entity] = result
            if not result.succeeded:
                logger.error(f"Phase {int(phase)} stopped: {entity.value} failed with {result.error}")
                return results

        if complete and entities:
            self.wizard.complete_phase(phase)
            logger.info(f"Phase {int(phase)} ({PHASES[phase].name}) complete")

        return results
