"""
Unit tests for local persisted state (settings, history, last session)
"""
from datetime import datetime, timedelta, timezone

import pytest

from fieldreport.state import JsonFileStore, LocalState, MemoryStore
from fieldreport.models import HistoryItem, SessionSnapshot, Settings, StorageError
from fieldreport.config import HISTORY_KEY, MAX_HISTORY_ITEMS, SESSION_KEY, SETTINGS_KEY


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def local_state(store):
    return LocalState(store)


def _item(report, n: int) -> HistoryItem:
    saved_at = datetime(2026, 3, 14, tzinfo=timezone.utc) + timedelta(minutes=n)
    return HistoryItem(id=f"item-{n}", report=report.model_copy(deep=True), saved_at=saved_at)


# ============================================================================
# SETTINGS TESTS
# ============================================================================

class TestSettings:

    def test_defaults_when_absent(self, local_state):
        settings = local_state.load_settings()
        assert settings == Settings()
        assert settings.auto_upload is False

    def test_round_trip(self, local_state):
        saved = Settings(messaging_number="+62 812-3456", upload_url="https://script.example.com/exec", auto_upload=True)
        local_state.save_settings(saved)
        assert local_state.load_settings() == saved

    def test_corrupt_record_gives_defaults(self, store, local_state):
        store.write(SETTINGS_KEY, "{not json")
        assert local_state.load_settings() == Settings()


# ============================================================================
# HISTORY TESTS
# ============================================================================

class TestHistory:

    def test_empty_when_absent(self, local_state):
        assert local_state.load_history() == []

    def test_newest_first(self, local_state, sample_report):
        local_state.add_history(_item(sample_report, 1))
        history = local_state.add_history(_item(sample_report, 2))

        assert [item.id for item in history] == ["item-2", "item-1"]
        assert [item.id for item in local_state.load_history()] == ["item-2", "item-1"]

    def test_oldest_evicted_beyond_limit(self, local_state, sample_report):
        for n in range(MAX_HISTORY_ITEMS + 1):
            history = local_state.add_history(_item(sample_report, n))

        assert len(history) == MAX_HISTORY_ITEMS
        assert "item-0" not in [item.id for item in history]
        assert history[0].id == f"item-{MAX_HISTORY_ITEMS}"

    def test_delete(self, local_state, sample_report):
        local_state.add_history(_item(sample_report, 1))
        local_state.add_history(_item(sample_report, 2))

        remaining = local_state.delete_history("item-1")

        assert [item.id for item in remaining] == ["item-2"]
        assert [item.id for item in local_state.load_history()] == ["item-2"]

    def test_image_survives_round_trip(self, local_state, sample_report):
        local_state.add_history(_item(sample_report, 1))
        loaded = local_state.load_history()[0]

        assert loaded.image.data_url == sample_report.image.data_url
        assert loaded.report.timestamp == sample_report.timestamp

    def test_corrupt_record_gives_empty(self, store, local_state):
        store.write(HISTORY_KEY, '[{"id": 1}]')
        assert local_state.load_history() == []


# ============================================================================
# SESSION TESTS
# ============================================================================

class TestSession:

    def test_absent(self, local_state):
        assert local_state.load_session() is None

    def test_save_load_clear(self, local_state, sample_report):
        sample_report.location = "Block C, 2nd floor"
        local_state.save_session(SessionSnapshot(report=sample_report))

        snapshot = local_state.load_session()
        assert snapshot.report.location == "Block C, 2nd floor"
        assert snapshot.image == sample_report.image

        local_state.clear_session()
        assert local_state.load_session() is None

    def test_corrupt_record_is_absent(self, store, local_state):
        store.write(SESSION_KEY, "null")
        assert local_state.load_session() is None

    def test_records_are_independent(self, store, local_state, sample_report):
        local_state.add_history(_item(sample_report, 1))
        local_state.save_session(SessionSnapshot(report=sample_report))
        local_state.clear_session()

        assert len(local_state.load_history()) == 1
        assert HISTORY_KEY in store.records


# ============================================================================
# FILE STORE TESTS
# ============================================================================

class TestJsonFileStore:

    def test_write_read_delete(self, tmp_path):
        store = JsonFileStore(tmp_path / "state")

        assert store.read("settings") is None
        store.write("settings", '{"auto_upload": true}')

        assert (tmp_path / "state" / "settings.json").exists()
        assert store.read("settings") == '{"auto_upload": true}'
        assert not list((tmp_path / "state").glob("*.tmp"))

        store.delete("settings")
        store.delete("settings")
        assert store.read("settings") is None

    def test_local_state_on_disk(self, tmp_path, sample_report):
        LocalState(JsonFileStore(tmp_path)).add_history(_item(sample_report, 1))
        assert LocalState(JsonFileStore(tmp_path)).load_history()[0].id == "item-1"

    def test_write_failure_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")

        with pytest.raises(StorageError):
            JsonFileStore(blocker).write("settings", "{}")
