"""Tests for logging setup, structured events and operator views."""

import json
import logging

import pytest

from project_bootstrap.events import EVENT_LOGGER_NAME, FAILURE, START, EventLog
from project_bootstrap.execution_state import BatchResult, BatchState
from project_bootstrap.logging_config import setup_logging
from project_bootstrap.observe import (
    find_reports,
    format_duration,
    print_recap,
    write_batch_report,
)


class TestLogging:

    def test_file_log_plain(self, tmp_path):
        log_path = setup_logging(tmp_path / "logs")
        EventLog().emit(START, "install", dry_run=None)

        assert log_path.name.startswith("bootstrap_")
        content = log_path.read_text()
        assert "project_bootstrap.events: [START] install" in content
        assert "dry_run" not in content

    def test_file_log_json(self, tmp_path):
        log_path = setup_logging(tmp_path / "logs", log_format="json")
        EventLog().emit(FAILURE, "migrate", detail="exit code 2", exit_code=2)

        lines = [json.loads(line) for line in log_path.read_text().splitlines()]
        event = [line for line in lines if line.get("event") == FAILURE][0]
        assert event["level"] == "ERROR"
        assert event["phase_id"] == "migrate"
        assert event["exit_code"] == 2

    def test_no_log_dir(self):
        assert setup_logging(None) is None

    def test_events_are_kept_in_order(self, caplog):
        events = EventLog()
        with caplog.at_level(logging.INFO, logger=EVENT_LOGGER_NAME):
            events.emit(START, "a")
            events.emit(FAILURE, "a", detail="exit code 1")
            events.emit(START, "b")
        assert events.names() == ["start", "failure", "start"]
        assert events.names("b") == ["start"]
        assert "[FAILURE] a (detail=exit code 1)" in caplog.text


@pytest.mark.parametrize("seconds,expected", [
    (0.25, "250ms"),
    (4.2, "4.2s"),
    (125, "2m 5s"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


class TestRecap:

    def test_recap_lists_failures_and_recovery(self, capsys):
        result = BatchResult(state=BatchState.ABORTED)
        result.succeeded.append("install")
        result.record_failure("migrate", "timeout")
        result.not_attempted.append("seed")

        print_recap(result)
        out = capsys.readouterr().out

        assert "✗ migrate: timeout (first)" in out
        assert "NEVER ATTEMPTED" in out
        assert "bootstrap run --force-phase <id>" in out

    def test_recap_clean_run(self, capsys):
        print_recap(BatchResult(state=BatchState.COMPLETED, dry_run=True))
        out = capsys.readouterr().out
        assert "dry-run" in out
        assert "No failures detected" in out


class TestReports:

    def test_reports_newest_first(self, tmp_path):
        older = BatchResult(state=BatchState.COMPLETED, started_at="2026-01-01T00:00:00+00:00")
        newer = BatchResult(state=BatchState.ABORTED, started_at="2026-02-01T00:00:00+00:00")
        write_batch_report(older, tmp_path, ["install"])
        write_batch_report(newer, tmp_path)

        reports = find_reports(tmp_path)

        assert [r["state"] for r in reports] == ["aborted", "completed"]
        assert reports[1]["requested"] == ["install"]

    def test_unreadable_report_is_ignored(self, tmp_path):
        (tmp_path / "batch_broken.json").write_text("{")
        assert find_reports(tmp_path) == []

    def test_missing_dir(self, tmp_path):
        assert find_reports(tmp_path / "nope") == []
