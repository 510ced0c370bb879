"""Tests for MigrationWizard sessions."""

from wc_migration.models.migration import EntityType, ExecutionResult, MigrationStats
from wc_migration.models.phase import PhaseNumber, PhaseStatus
from wc_migration.storage.memory_store import InMemoryWizardStore
from wc_migration.wizard.session import MigrationWizard

from .conftest import SOURCE_STORE, TARGET_STORE


def finished(entity, successful=0, skipped=0, failed=0, keys=(), mapping=None, total_in_source=0):
    result = ExecutionResult(
        entity=entity,
        stats=MigrationStats(total=successful + skipped + failed, successful=successful, skipped=skipped, failed=failed),
        migrated_keys=list(keys),
        id_mapping=dict(mapping or {}),
        total_in_source=total_in_source,
    )
    return result


class TestPersistence:
    def test_new_wizard_is_saved_immediately(self, wizard, wizard_store):
        assert wizard_store.load(SOURCE_STORE, TARGET_STORE) is not None

    def test_state_survives_a_new_session(self, wizard, wizard_store):
        wizard.complete_phase(1, {"categories_created": 2, "category_id_mapping": {"7": 70}})
        wizard.go_to_phase(2)

        resumed = MigrationWizard(SOURCE_STORE, TARGET_STORE, wizard_store)

        assert resumed.current_phase == PhaseNumber.CORE_DATA
        assert resumed.state.status_of(1) == PhaseStatus.COMPLETE
        assert resumed.get_category_mapping().to_dict() == {7: 70}

    def test_store_pairs_are_isolated(self, wizard, wizard_store):
        wizard.complete_phase(1)

        other = MigrationWizard(SOURCE_STORE, "hash2", wizard_store)

        assert other.state.status_of(1) == PhaseStatus.PENDING

    def test_rejected_transition_does_not_save(self, wizard_store):
        wizard = MigrationWizard(SOURCE_STORE, TARGET_STORE, wizard_store)
        saved = dict(wizard_store._data)

        wizard.skip_phase(1)

        assert wizard_store._data == saved

    def test_reset_clears_storage(self, wizard, wizard_store):
        wizard.complete_phase(1)
        wizard.reset_wizard()

        loaded = wizard_store.load(SOURCE_STORE, TARGET_STORE)
        assert loaded.status_of(1) == PhaseStatus.PENDING
        assert wizard.current_phase == PhaseNumber.FOUNDATION

    def test_corrupt_state_starts_fresh(self):
        store = InMemoryWizardStore()
        store.put_raw(SOURCE_STORE, TARGET_STORE, "{not json")

        wizard = MigrationWizard(SOURCE_STORE, TARGET_STORE, store)

        assert wizard.state.statuses() == {1: "pending", 2: "pending", 3: "locked", 4: "locked"}


class TestNavigation:
    def test_next_phase_stops_at_locked_phase(self, wizard):
        wizard.next_phase()
        assert wizard.current_phase == PhaseNumber.FOUNDATION

        wizard.complete_phase(1)
        wizard.next_phase()
        assert wizard.current_phase == PhaseNumber.CORE_DATA

    def test_previous_phase(self, wizard):
        wizard.complete_phase(1)
        wizard.next_phase()
        wizard.previous_phase()

        assert wizard.current_phase == PhaseNumber.FOUNDATION

    def test_summary(self, wizard):
        summary = wizard.summary()

        assert summary["source_store"] == SOURCE_STORE
        assert summary["current_phase"] == 1
        assert [p["status"] for p in summary["phases"]] == ["pending", "pending", "locked", "locked"]
        assert summary["phases"][0]["available"] is True
        assert summary["phases"][1]["available"] is False
        assert summary["required_complete"] is False


class TestEntityResults:
    def test_record_result_accumulates_across_runs(self, wizard):
        wizard.record_entity_result(
            EntityType.PRODUCTS,
            finished(EntityType.PRODUCTS, successful=2, keys=[1, 2], mapping={1: 11, 2: 12}, total_in_source=4),
        )
        wizard.record_entity_result(
            EntityType.PRODUCTS,
            finished(EntityType.PRODUCTS, successful=1, skipped=1, keys=[3, 4], mapping={3: 13, 4: 14},
                     total_in_source=4),
        )

        progress = wizard.get_phase_data(2).products
        assert progress.migrated == 3
        assert progress.skipped == 1
        assert progress.total == 4
        assert wizard.get_resume_set(EntityType.PRODUCTS) == {1, 2, 3, 4}
        assert wizard.get_product_mapping().to_dict() == {1: 11, 2: 12, 3: 13, 4: 14}

    def test_categories_are_stored_in_foundation_fields(self, wizard):
        wizard.record_entity_result(
            EntityType.CATEGORIES,
            finished(EntityType.CATEGORIES, successful=1, failed=1, keys=[5], mapping={5: 105}),
        )

        data = wizard.get_phase_data(1)
        assert data.categories_created == 1
        assert data.categories_errored == 1
        assert data.migrated_category_ids == [5]
        assert data.category_id_mapping == {5: 105}

    def test_failed_run_only_keeps_migrated_keys(self, wizard):
        result = finished(EntityType.CUSTOMERS, successful=1, keys=["a@example.com"], mapping={9: 90})
        result.error = "cancelled"

        wizard.record_entity_result(EntityType.CUSTOMERS, result)

        progress = wizard.get_phase_data(2).customers
        assert progress.migrated == 0
        assert progress.migrated_keys == ["a@example.com"]
        assert progress.mapping == {9: 90}
        assert wizard.get_customer_mapping()[9] == 90

    def test_checkpoint_is_idempotent(self, wizard):
        wizard.checkpoint_entity(EntityType.ORDERS, [1, 2], {1: 501, 2: 502})
        wizard.checkpoint_entity(EntityType.ORDERS, [2, 1], {1: 501})

        progress = wizard.get_phase_data(3).orders
        assert progress.migrated_keys == [1, 2]
        assert progress.mapping == {1: 501, 2: 502}

    def test_empty_checkpoint_does_not_change_state(self, wizard):
        before = wizard.state

        wizard.checkpoint_entity(EntityType.PAGES, [], {})

        assert wizard.state is before

    def test_mapping_of_untouched_entity_is_empty(self, wizard):
        assert wizard.get_mapping(EntityType.PAGES).is_empty()
        assert len(wizard.get_mapping(EntityType.PAGES)) == 0
        assert wizard.get_resume_set(EntityType.REVIEWS) == set()
