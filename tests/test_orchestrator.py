"""Tests for the batch migration executor and the wizard runner."""

import asyncio

import pytest

from wc_migration.errors import FetchError, RateLimitError, TargetWriteError, TransientError
from wc_migration.models.migration import EntityType
from wc_migration.models.phase import PhaseStatus
from wc_migration.orchestrator import BatchMigrationExecutor, WizardRunner, normalize_resume_set
from wc_migration.entities import get_definition
from wc_migration.progress import EventType, ListSink, ProgressSink

from .conftest import make_products


def categories(*rows):
    return [{"id": i, "name": name, "parent": parent} for i, name, parent in rows]


class TestResume:
    @pytest.mark.asyncio
    async def test_resume_set_items_are_not_resubmitted(self, executor, source, target):
        source.collections["products"] = make_products(10)
        sink = ListSink()

        result = await executor.run(EntityType.PRODUCTS, resume_set={1, 2, 3}, sink=sink)

        assert target.created_ids(EntityType.PRODUCTS) == [4, 5, 6, 7, 8, 9, 10]
        assert result.stats.total == 7
        assert result.total_in_source == 10
        assert result.already_migrated == 3

        complete = sink.of_type(EventType.COMPLETE)[0]
        union = set(complete.migrated_ids) | {1, 2, 3}
        assert len(union) == 10
        assert len(complete.migrated_ids) == complete.stats["successful"] + complete.stats["skipped"]

    @pytest.mark.asyncio
    async def test_event_sequence(self, executor, source):
        source.collections["products"] = make_products(4)
        sink = ListSink()

        await executor.run(EntityType.PRODUCTS, sink=sink)

        assert sink.types[0] == "started"
        assert sink.types[-1] == "complete"
        assert set(sink.types[1:-1]) == {"progress"}
        started = sink.events[0]
        assert started.total == 4
        assert started.total_in_source == 4
        counts = [e.completed for e in sink.of_type(EventType.PROGRESS)]
        assert counts == sorted(counts)
        assert counts[-1] == 4

    @pytest.mark.asyncio
    async def test_progress_names_current_item(self, executor, source):
        source.collections["products"] = make_products(1)
        sink = ListSink()

        await executor.run(EntityType.PRODUCTS, sink=sink)

        current = sink.of_type(EventType.PROGRESS)[0].current
        assert current == {"id": 1, "name": "Product 1"}

    @pytest.mark.asyncio
    async def test_everything_already_migrated(self, executor, source, target):
        source.collections["products"] = make_products(3)
        sink = ListSink()

        result = await executor.run(EntityType.PRODUCTS, resume_set=[1, 2, 3], sink=sink)

        assert target.created == []
        assert result.stats.total == 0
        assert sink.types == ["started", "complete"]

    @pytest.mark.asyncio
    async def test_string_resume_keys_from_json(self, executor, source, target):
        source.collections["products"] = make_products(3)

        await executor.run(EntityType.PRODUCTS, resume_set=["1", "2"])

        assert target.created_ids(EntityType.PRODUCTS) == [3]

    def test_normalize_resume_set(self):
        assert normalize_resume_set(get_definition(EntityType.PRODUCTS), ["1", 2, "x"]) == {1, 2}
        assert normalize_resume_set(get_definition(EntityType.CUSTOMERS), [" A@Example.com "]) == {"a@example.com"}


class TestItemOutcomes:
    @pytest.mark.asyncio
    async def test_existing_items_are_skipped_and_mapped(self, executor, source, target):
        source.collections["products"] = make_products(2)
        target.existing[(EntityType.PRODUCTS, "SKU-2")] = 502

        result = await executor.run(EntityType.PRODUCTS)

        assert result.stats.successful == 1
        assert result.stats.skipped == 1
        assert result.id_mapping[2] == 502
        assert 2 in result.migrated_keys

    @pytest.mark.asyncio
    async def test_duplicate_on_create_counts_as_skipped(self, executor, source, target):
        source.collections["products"] = make_products(2)
        target.duplicates[1] = 777

        result = await executor.run(EntityType.PRODUCTS)

        assert result.stats.skipped == 1
        assert result.stats.failed == 0
        assert result.id_mapping[1] == 777

    @pytest.mark.asyncio
    async def test_failed_item_does_not_stop_the_batch(self, executor, source, target):
        source.collections["products"] = make_products(5)
        target.failures[2] = [TargetWriteError("Invalid price", status=422)]

        result = await executor.run(EntityType.PRODUCTS)

        assert result.succeeded
        assert result.stats.successful == 4
        assert result.stats.failed == 1
        assert 2 not in result.migrated_keys
        assert 2 not in result.id_mapping
        assert any("Invalid price" in w for w in result.stats.warnings)

    @pytest.mark.asyncio
    async def test_stats_are_conserved(self, executor, source, target):
        source.collections["products"] = make_products(7)
        target.failures[3] = [TargetWriteError("bad", status=400)]
        target.existing[(EntityType.PRODUCTS, "SKU-5")] = 55

        result = await executor.run(EntityType.PRODUCTS)

        assert result.stats.is_conserved
        assert result.stats.total == 7

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, executor, source, target, sleeps):
        source.collections["products"] = make_products(1)
        target.failures[1] = [TransientError("gateway", status=502), RateLimitError("slow down", retry_after=0.0)]

        result = await executor.run(EntityType.PRODUCTS)

        assert result.stats.successful == 1
        assert len(sleeps) == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, executor, source, target):
        source.collections["products"] = make_products(1)
        target.failures[1] = [TransientError("down", status=503) for _ in range(5)]

        result = await executor.run(EntityType.PRODUCTS)

        assert result.stats.failed == 1
        assert "down" in result.stats.warnings[-1]
        assert len(target.failures[1]) == 2

    @pytest.mark.asyncio
    async def test_transform_failure_is_an_item_failure(self, executor, source, target):
        source.collections["orders"] = [
            {"id": 1, "status": "completed", "line_items": [{"product_id": 1, "quantity": "two"}]},
            {"id": 2, "status": "completed", "line_items": []},
        ]

        result = await executor.run(EntityType.ORDERS, mappings={EntityType.PRODUCTS: {1: 101}})

        assert result.stats.failed == 1
        assert result.stats.successful == 1
        assert any("could not transform" in w for w in result.stats.warnings)


class TestRunLevelErrors:
    @pytest.mark.asyncio
    async def test_fetch_failure_emits_a_single_error(self, executor, source, target):
        source.fail_with = FetchError("WooCommerce returned 401: Unauthorized", status=401)
        sink = ListSink()

        result = await executor.run(EntityType.PRODUCTS, sink=sink)

        assert not result.succeeded
        assert sink.types == ["error"]
        assert "401" in sink.events[0].error
        assert target.created == []

    @pytest.mark.asyncio
    async def test_orders_require_product_mapping(self, executor, source, target):
        source.collections["orders"] = [{"id": 1, "status": "completed"}]
        sink = ListSink()

        result = await executor.run(EntityType.ORDERS, sink=sink)

        assert result.error == "Product ID mapping required. Please migrate products first."
        assert sink.types == ["error"]
        assert source.requests == []

    @pytest.mark.asyncio
    async def test_reviews_require_product_mapping(self, executor):
        sink = ListSink()

        result = await executor.run(EntityType.REVIEWS, mappings={EntityType.PRODUCTS: {}}, sink=sink)

        assert result.error == "Product ID mapping required. Please migrate products first."

    @pytest.mark.asyncio
    async def test_missing_category_mapping_is_only_a_warning(self, executor, source):
        source.collections["products"] = make_products(1)

        result = await executor.run(EntityType.PRODUCTS)

        assert result.succeeded
        assert any("categories mapping" in w for w in result.stats.warnings)

    @pytest.mark.asyncio
    async def test_pages_without_wordpress_connection(self, source, target, settings, fast_limiter, no_sleep):
        executor = BatchMigrationExecutor(source, target, settings=settings, rate_limiter=fast_limiter, sleep=no_sleep)
        sink = ListSink()

        result = await executor.run(EntityType.PAGES, sink=sink)

        assert not executor.supports(EntityType.PAGES)
        assert "WordPress connection required" in result.error
        assert sink.types == ["error"]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_between_items(self, executor, source, target):
        source.collections["products"] = make_products(6)
        cancel = asyncio.Event()
        sink = ListSink()

        class CancelAfterTwo(ProgressSink):
            def emit(self, event):
                sink.emit(event)
                if event.type == EventType.PROGRESS and event.completed == 1:
                    cancel.set()

        result = await executor.run(EntityType.PRODUCTS, sink=CancelAfterTwo(), cancel_event=cancel)

        assert result.cancelled
        assert result.error == "cancelled"
        assert target.created_ids(EntityType.PRODUCTS) == [1, 2]
        assert result.migrated_keys == [1, 2]
        assert result.stats.is_conserved
        assert sink.types[-1] == "error"

    @pytest.mark.asyncio
    async def test_cancel_before_first_item(self, executor, source, target):
        source.collections["products"] = make_products(2)
        cancel = asyncio.Event()
        cancel.set()

        result = await executor.run(EntityType.PRODUCTS, cancel_event=cancel)

        assert result.cancelled
        assert target.created == []
        assert result.stats.total == 0


class TestCheckpoints:
    @pytest.mark.asyncio
    async def test_checkpoint_after_each_batch(self, executor, source):
        source.collections["products"] = make_products(7)
        calls = []

        await executor.run(EntityType.PRODUCTS, checkpoint=lambda keys, mapping: calls.append((keys, mapping)))

        assert [keys for keys, _ in calls] == [[1, 2, 3], [4, 5, 6], [7]]
        assert calls[0][1] == {1: 1000, 2: 1001, 3: 1002}

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_is_a_warning(self, executor, source):
        source.collections["products"] = make_products(2)

        def broken(keys, mapping):
            raise OSError("read-only file system")

        result = await executor.run(EntityType.PRODUCTS, checkpoint=broken)

        assert result.succeeded
        assert result.migrated_keys == [1, 2]
        assert any("Checkpoint not saved" in w for w in result.stats.warnings)


class TestHierarchies:
    @pytest.mark.asyncio
    async def test_categories_parents_first(self, executor, source, target):
        source.collections["products/categories"] = categories(
            (3, "Shirts", 2), (2, "Clothing", 1), (1, "Apparel", 0), (4, "Toys", 0)
        )

        result = await executor.run(EntityType.CATEGORIES)

        created = {record.source_id: (record, target_id) for _, record, target_id in target.created}
        assert [record.source_id for _, record, _ in target.created] == [1, 4, 2, 3]
        assert created[2][0].data["parent_id"] == created[1][1]
        assert created[3][0].data["parent_id"] == created[2][1]
        assert created[1][0].data["parent_id"] == 0
        assert result.stats.successful == 4

    @pytest.mark.asyncio
    async def test_categories_deeper_than_five_levels_are_excluded(self, executor, source, target):
        rows = [(1, "L1", 0)] + [(i, f"L{i}", i - 1) for i in range(2, 8)]
        source.collections["products/categories"] = categories(*rows)

        result = await executor.run(EntityType.CATEGORIES)

        assert sorted(target.created_ids(EntityType.CATEGORIES)) == [1, 2, 3, 4, 5]
        assert result.total_in_source == 5
        assert sum("levels deep" in w for w in result.stats.warnings) == 2

    @pytest.mark.asyncio
    async def test_resumed_category_run_uses_recorded_parents(self, executor, source, target):
        source.collections["products/categories"] = categories((1, "Apparel", 0), (2, "Clothing", 1))

        await executor.run(EntityType.CATEGORIES, resume_set={1}, mappings={EntityType.CATEGORIES: {1: 501}})

        _, record, _ = target.created[0]
        assert record.data["parent_id"] == 501

    @pytest.mark.asyncio
    async def test_pages_link_to_parents_created_in_the_same_run(self, executor, wordpress, target):
        wordpress.collections["pages"] = [
            {"id": 20, "title": {"rendered": "Team"}, "slug": "team", "parent": 10, "status": "publish"},
            {"id": 10, "title": {"rendered": "About"}, "slug": "about", "parent": 0, "status": "publish"},
        ]

        result = await executor.run(EntityType.PAGES)

        assert [record.source_id for _, record, _ in target.created] == [10, 20]
        parent_target = result.id_mapping[10]
        assert target.created[1][1].data["parent_id"] == parent_target


class TestEntityRules:
    @pytest.mark.asyncio
    async def test_customers_keyed_by_email(self, executor, source, target):
        source.collections["customers"] = [
            {"id": 1, "email": "Ann@Example.com", "first_name": "Ann"},
            {"id": 2, "email": "", "first_name": "Nobody"},
            {"id": 3, "email": "bob@example.com", "first_name": "Bob"},
        ]

        result = await executor.run(EntityType.CUSTOMERS, resume_set={"bob@example.com"})

        assert target.created_ids(EntityType.CUSTOMERS) == [1]
        assert result.migrated_keys == ["ann@example.com"]
        assert result.already_migrated == 1
        assert any("no email" in w for w in result.stats.warnings)

    @pytest.mark.asyncio
    async def test_reviews_for_unmigrated_products_are_left_out(self, executor, source, target):
        source.collections["products/reviews"] = [
            {"id": 1, "product_id": 10, "status": "approved", "review": "Great hat. Love it", "rating": 5},
            {"id": 2, "product_id": 11, "status": "approved", "review": "Fine", "rating": 3},
            {"id": 3, "product_id": 10, "status": "spam", "review": "Buy now", "rating": 1},
        ]

        result = await executor.run(EntityType.REVIEWS, mappings={EntityType.PRODUCTS: {10: 110}})

        assert target.created_ids(EntityType.REVIEWS) == [1]
        assert target.created[0][1].data["product_id"] == 110
        assert "1 reviews skipped - product not found in BC" in result.stats.warnings

    @pytest.mark.asyncio
    async def test_order_scope_becomes_status_filter(self, executor, source):
        source.collections["orders"] = []

        await executor.run(
            EntityType.ORDERS,
            mappings={EntityType.PRODUCTS: {1: 101}},
            scope={"status": ["completed", "processing"]},
        )

        assert source.requests[0] == ("orders", 1, {"status": "completed,processing"})

    @pytest.mark.asyncio
    async def test_order_refunds_are_noted(self, executor, source, target):
        source.collections["orders"] = [{
            "id": 7,
            "status": "refunded",
            "total": "20.00",
            "line_items": [{"product_id": 1, "quantity": 1, "total": "20.00", "name": "Hat"}],
            "refunds": [{"total": "-20.00", "reason": "Damaged"}],
        }]

        await executor.run(EntityType.ORDERS, mappings={EntityType.PRODUCTS: {1: 101}})

        assert len(target.updates) == 1
        entity, target_id, data = target.updates[0]
        assert entity == EntityType.ORDERS
        assert target_id == 1000
        assert "WC Refund History: 1 refund(s) totaling $20.00. Damaged" in data["staff_notes"]

    @pytest.mark.asyncio
    async def test_unexpected_refund_note_failure_is_a_warning(self, executor, source, target):
        refunded = {
            "status": "refunded",
            "total": "20.00",
            "line_items": [{"product_id": 1, "quantity": 1, "total": "20.00", "name": "Hat"}],
            "refunds": [{"total": "-20.00", "reason": "Damaged"}],
        }
        source.collections["orders"] = [{"id": 7, **refunded}, {"id": 8, **refunded}]
        target.update_failures = [RuntimeError("socket closed")]

        result = await executor.run(EntityType.ORDERS, mappings={EntityType.PRODUCTS: {1: 101}})

        assert result.error is None
        assert result.stats.successful == 2
        assert "Order #7: refund history not added (socket closed)" in result.stats.warnings
        assert len(target.updates) == 1

    @pytest.mark.asyncio
    async def test_blog_posts_use_wordpress_lookups(self, executor, wordpress, target):
        wordpress.collections["posts"] = [
            {"id": 5, "title": {"rendered": "Hello"}, "slug": "hello", "status": "publish", "tags": [1], "author": 2},
        ]
        wordpress.lookups = {"tags": {1: "news"}, "users": {2: "Jo"}}

        result = await executor.run(EntityType.BLOG_POSTS)

        payload = target.created[0][1].data
        assert payload["tags"] == ["news"]
        assert payload["author"] == "Jo"
        assert any("Could not load WordPress categories" in w for w in result.stats.warnings)


class TestWizardRunner:
    @pytest.mark.asyncio
    async def test_run_entity_records_progress(self, wizard, executor, source):
        source.collections["products/categories"] = categories((1, "Apparel", 0), (2, "Clothing", 1))
        runner = WizardRunner(wizard, executor)

        result = await runner.run_entity(EntityType.CATEGORIES)

        assert result.succeeded
        assert wizard.get_resume_set(EntityType.CATEGORIES) == {1, 2}
        assert wizard.get_category_mapping().to_dict() == result.id_mapping
        assert wizard.state.status_of(1) == PhaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_second_run_resumes(self, wizard, executor, source, target):
        source.collections["products/categories"] = categories((1, "Apparel", 0))
        runner = WizardRunner(wizard, executor)
        await runner.run_entity(EntityType.CATEGORIES)

        source.collections["products/categories"] = categories((1, "Apparel", 0), (2, "Clothing", 1))
        result = await runner.run_entity(EntityType.CATEGORIES)

        assert target.created_ids(EntityType.CATEGORIES) == [1, 2]
        assert result.already_migrated == 1
        assert wizard.get_phase_data(1).categories_created == 2

    @pytest.mark.asyncio
    async def test_locked_phase_is_refused(self, wizard, executor, source):
        source.collections["orders"] = []
        sink = ListSink()

        result = await WizardRunner(wizard, executor).run_entity(EntityType.ORDERS, sink=sink)

        assert "locked" in result.error
        assert sink.types == ["error"]
        assert source.requests == []

    @pytest.mark.asyncio
    async def test_run_phase_completes_and_unlocks(self, wizard, executor, source):
        source.collections["products/categories"] = categories((1, "Apparel", 0))
        source.collections["products"] = [{"id": 9, "name": "Hat", "sku": "HAT", "categories": [{"id": 1}]}]
        source.collections["customers"] = [{"id": 4, "email": "ann@example.com"}]
        runner = WizardRunner(wizard, executor)

        await runner.run_phase(1)
        results = await runner.run_phase(2)

        assert set(results) == {EntityType.PRODUCTS, EntityType.CUSTOMERS}
        product = [record for entity, record, _ in executor.target.created if entity == EntityType.PRODUCTS][0]
        assert product.data["categories"] == [wizard.get_category_mapping()[1]]
        assert wizard.state.status_of(2) == PhaseStatus.COMPLETE
        assert wizard.state.status_of(3) == PhaseStatus.PENDING

    @pytest.mark.asyncio
    async def test_run_phase_stops_at_run_level_error(self, wizard, executor, source):
        source.collections["products/categories"] = categories((1, "Apparel", 0))
        runner = WizardRunner(wizard, executor)
        await runner.run_phase(1)
        source.fail_with = FetchError("timeout")

        results = await runner.run_phase(2)

        assert list(results) == [EntityType.PRODUCTS]
        assert wizard.state.status_of(2) == PhaseStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_content_phase_without_wordpress(self, wizard, source, target, settings, fast_limiter, no_sleep):
        executor = BatchMigrationExecutor(source, target, settings=settings, rate_limiter=fast_limiter, sleep=no_sleep)
        wizard.complete_phase(1)
        wizard.complete_phase(2, {"products": {"mapping": {"10": 110}, "migrated_keys": [10]}})
        source.collections["products/reviews"] = [
            {"id": 1, "product_id": 10, "status": "approved", "review": "Nice", "rating": 4},
        ]

        results = await WizardRunner(wizard, executor).run_phase(4)

        assert list(results) == [EntityType.REVIEWS]
        assert wizard.state.status_of(4) == PhaseStatus.COMPLETE
