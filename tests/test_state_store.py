"""Tests for the file-backed State Store."""

import json
import logging

import pytest

from project_bootstrap.errors import PreflightError
from project_bootstrap.execution_state import PhaseStatus
from project_bootstrap.state_store import StateStore, lock_path_for, state_lock


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state.json")


class TestQueries:
    """has_succeeded / get on empty and populated stores."""

    def test_missing_file_means_never_run(self, store):
        assert store.has_succeeded("install") is False
        assert store.get("install").status == PhaseStatus.NEVER_RUN
        assert store.records() == []

    def test_mark_success_is_visible_immediately(self, store):
        store.mark_success("install", "exit code 0")
        assert store.has_succeeded("install")
        assert store.get("install").detail == "exit code 0"

    def test_failed_record_is_not_success(self, store):
        store.mark_failure("install", "exit code 2")
        assert store.has_succeeded("install") is False
        assert store.get("install").status == PhaseStatus.FAILED

    def test_success_overwrites_failure(self, store):
        store.mark_failure("install", "exit code 2")
        store.mark_success("install", "exit code 0")
        records = store.records()
        assert len(records) == 1
        assert records[0].status == PhaseStatus.SUCCEEDED


class TestPersistence:
    """Records survive a new StateStore instance (new process)."""

    def test_records_survive_reopen(self, tmp_path):
        path = tmp_path / "state.json"
        StateStore(path).mark_success("install", "ok")

        reopened = StateStore(path)
        assert reopened.has_succeeded("install")
        assert reopened.count_succeeded() == 1

    def test_file_layout(self, store):
        store.mark_success("install", "ok")
        data = json.loads(store.path.read_text())
        assert data["version"] == 1
        entry = data["phases"]["install"]
        assert set(entry) == {"phase_id", "status", "timestamp", "detail"}
        assert entry["status"] == "succeeded"

    def test_unknown_fields_are_ignored(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "version": 7,
            "owner": "future-release",
            "phases": {
                "install": {
                    "phase_id": "install",
                    "status": "succeeded",
                    "timestamp": "2026-01-01T00:00:00+00:00",
                    "detail": "ok",
                    "duration": 12.5,
                },
            },
        }))
        assert StateStore(path).has_succeeded("install")

    def test_remark_updates_detail(self, store):
        store.mark_success("install", "first")
        store.mark_success("install", "second")
        assert store.get("install").detail == "second"
        assert store.count_succeeded() == 1

    def test_no_temp_files_left_behind(self, store):
        store.mark_success("a")
        store.mark_success("b")
        leftovers = [p.name for p in store.path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []


class TestCorruption:
    """Unreadable state fails open: treated as empty, logged, never fatal."""

    def test_corrupt_json_reads_as_empty(self, tmp_path, caplog):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with caplog.at_level(logging.WARNING):
            store = StateStore(path)
            assert store.has_succeeded("install") is False
        assert "PersistenceWarning" in caplog.text

    def test_wrong_shape_reads_as_empty(self, tmp_path, caplog):
        path = tmp_path / "state.json"
        path.write_text(json.dumps(["install"]))
        with caplog.at_level(logging.WARNING):
            assert StateStore(path).records() == []
        assert "PersistenceWarning" in caplog.text

    def test_malformed_entry_is_skipped(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({
            "phases": {
                "bad": "succeeded",
                "good": {"status": "succeeded"},
            },
        }))
        store = StateStore(path)
        assert store.has_succeeded("good")
        assert not store.has_succeeded("bad")

    def test_write_after_corruption_recovers(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("garbage")
        StateStore(path).mark_success("install")
        assert StateStore(path).has_succeeded("install")


class TestClear:

    def test_clear_removes_record(self, store):
        store.mark_success("install")
        assert store.clear("install") is True
        assert not store.has_succeeded("install")
        assert not StateStore(store.path).has_succeeded("install")

    def test_clear_missing_is_not_an_error(self, store):
        assert store.clear("never-declared") is False

    def test_clear_all(self, store):
        store.mark_success("a")
        store.mark_success("b")
        store.clear_all()
        assert store.records() == []
        assert not store.path.exists()

    def test_clear_all_without_file(self, store):
        store.clear_all()
        assert store.records() == []


class TestLock:

    def test_lock_is_released(self, tmp_path):
        state_path = tmp_path / "state.json"
        with state_lock(state_path) as lock_file:
            assert lock_file.exists()
        assert not lock_path_for(state_path).exists()

    def test_second_holder_is_refused(self, tmp_path):
        state_path = tmp_path / "state.json"
        with state_lock(state_path):
            with pytest.raises(PreflightError) as exc_info:
                with state_lock(state_path):
                    pass
        assert "holds the lock" in str(exc_info.value)

    def test_lock_released_on_error(self, tmp_path):
        state_path = tmp_path / "state.json"
        with pytest.raises(RuntimeError):
            with state_lock(state_path):
                raise RuntimeError("boom")
        assert not lock_path_for(state_path).exists()
