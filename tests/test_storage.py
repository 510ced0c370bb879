"""Tests for wizard state persistence."""

import json
from datetime import datetime

import pytest

from wc_migration.models.phase import PhaseStatus
from wc_migration.models.wizard import create_initial_wizard_state
from wc_migration.storage.base import NAMESPACE, slot_name, storage_key
from wc_migration.storage.file_store import JsonFileWizardStore
from wc_migration.storage.memory_store import InMemoryWizardStore
from wc_migration.wizard import state_machine as sm
from wc_migration.wizard.session import MigrationWizard

NOW = datetime(2024, 5, 1, 12, 0, 0)
SOURCE = "https://shop.example.com"
TARGET = "abc123"


@pytest.fixture
def state():
    initial = create_initial_wizard_state(SOURCE, TARGET, NOW)
    state = sm.complete_phase(initial, 1, {"categories_created": 3, "category_id_mapping": {1: 11}}, now=NOW)
    return sm.update_phase_data(state, 2, {"customers": {"migrated_keys": ["a@example.com"]}}, now=NOW)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryWizardStore()
    return JsonFileWizardStore(str(tmp_path / "wizard"))


class TestStorageKey:
    def test_key_includes_namespace_and_pair(self):
        assert storage_key("a", "b") == f"{NAMESPACE}-a-b"

    def test_custom_namespace(self):
        assert InMemoryWizardStore(namespace="test").key_for("a", "b") == "test-a-b"

    def test_slot_names_keep_dashed_pairs_apart(self):
        assert storage_key("shop", "x-y") == storage_key("shop-x", "y")

        assert slot_name("shop", "x-y") != slot_name("shop-x", "y")


class TestStores:
    def test_round_trip(self, store, state):
        store.save(state)

        loaded = store.load(SOURCE, TARGET)

        assert loaded == state

    def test_missing_pair_loads_none(self, store):
        assert store.load(SOURCE, "other") is None

    def test_clear(self, store, state):
        store.save(state)
        store.clear(SOURCE, TARGET)

        assert store.load(SOURCE, TARGET) is None

    def test_clear_missing_is_a_no_op(self, store):
        store.clear(SOURCE, TARGET)

    def test_save_replaces_previous_state(self, store, state):
        store.save(state)
        store.save(sm.reset_wizard(state, now=NOW))

        assert store.load(SOURCE, TARGET).status_of(1).value == "pending"

    def test_pairs_sharing_a_key_do_not_overwrite_each_other(self, store):
        first = MigrationWizard("shop", "x-y", store)
        first.complete_phase(1)

        second = MigrationWizard("shop-x", "y", store)

        assert second.state.status_of(1) == PhaseStatus.PENDING
        assert store.load("shop", "x-y").status_of(1) == PhaseStatus.COMPLETE


class TestCorruptState:
    def test_unparseable_json_is_discarded(self):
        store = InMemoryWizardStore()
        store.put_raw(SOURCE, TARGET, "{{{")

        assert store.load(SOURCE, TARGET) is None

    def test_missing_phases_are_discarded(self, state):
        store = InMemoryWizardStore()
        data = state.to_dict()
        del data["phases"]["4"]
        store.put_raw(SOURCE, TARGET, json.dumps(data))

        assert store.load(SOURCE, TARGET) is None

    def test_unknown_status_is_discarded(self, state):
        store = InMemoryWizardStore()
        data = state.to_dict()
        data["phases"]["1"]["status"] = "exploded"
        store.put_raw(SOURCE, TARGET, json.dumps(data))

        assert store.load(SOURCE, TARGET) is None

    def test_state_for_another_pair_is_discarded(self, state):
        store = InMemoryWizardStore()
        store.put_raw(SOURCE, "somewhere-else", store.serialize(state))

        assert store.load(SOURCE, "somewhere-else") is None


class TestJsonFileStore:
    def test_creates_directory(self, tmp_path):
        directory = tmp_path / "nested" / "wizard"

        JsonFileWizardStore(str(directory))

        assert directory.is_dir()

    def test_file_name_is_safe_for_urls(self, tmp_path, state):
        store = JsonFileWizardStore(str(tmp_path))
        store.save(state)

        path = store.path_for(SOURCE, TARGET)
        assert path.parent == tmp_path
        assert "/" not in path.name
        assert json.loads(path.read_text())["source_store"] == SOURCE

    def test_no_temporary_files_left_behind(self, tmp_path, state):
        store = JsonFileWizardStore(str(tmp_path))
        store.save(state)
        store.save(state)

        assert [p.name for p in tmp_path.iterdir()] == [store.path_for(SOURCE, TARGET).name]

    def test_failed_write_keeps_previous_state(self, tmp_path, state, monkeypatch):
        store = JsonFileWizardStore(str(tmp_path))
        store.save(state)

        def boom(_state):
            raise OSError("disk full")

        monkeypatch.setattr(store, "serialize", boom)
        with pytest.raises(OSError):
            store.save(sm.reset_wizard(state, now=NOW))

        monkeypatch.undo()
        assert store.load(SOURCE, TARGET) == state
        assert len(list(tmp_path.iterdir())) == 1

    def test_truncated_file_loads_none(self, tmp_path, state):
        store = JsonFileWizardStore(str(tmp_path))
        store.save(state)
        path = store.path_for(SOURCE, TARGET)
        path.write_text(path.read_text()[:40])

        assert store.load(SOURCE, TARGET) is None
