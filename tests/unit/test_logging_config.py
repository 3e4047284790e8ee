"""
Unit tests for structured logging and run correlation.
"""

import json
import logging

import pytest

from prunarr.logging_config import JSONFormatter, log_run, run_id_var, stage_var


def make_record(message="hello", **extra):
    record = logging.LogRecord("prunarr.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        payload = json.loads(JSONFormatter().format(make_record()))
        assert payload["level"] == "INFO"
        assert payload["logger"] == "prunarr.test"
        assert payload["message"] == "hello"
        assert "run_id" not in payload

    def test_known_extras_copied(self):
        record = make_record(item_id=7, deletion_action="full_removal", unrelated="x")
        payload = json.loads(JSONFormatter().format(record))
        assert payload["item_id"] == 7
        assert payload["deletion_action"] == "full_removal"
        assert "unrelated" not in payload

    def test_includes_run_context(self):
        with log_run("queue_sweep", run_id="run-123"):
            payload = json.loads(JSONFormatter().format(make_record()))
        assert payload["run_id"] == "run-123"
        assert payload["stage"] == "queue_sweep"


class TestLogRun:
    """Tests for the log_run context manager."""

    def test_sets_and_resets_context(self):
        with log_run("rule_evaluation") as run_id:
            assert run_id_var.get() == run_id
            assert stage_var.get() == "rule_evaluation"
        assert run_id_var.get() is None
        assert stage_var.get() is None

    def test_logs_start_and_complete(self, caplog):
        caplog.set_level(logging.INFO, logger="prunarr.runs")
        with log_run("queue_sweep"):
            pass
        events = [record.event for record in caplog.records if record.name == "prunarr.runs"]
        assert events == ["run_start", "run_complete"]

    def test_logs_failure_and_reraises(self, caplog):
        caplog.set_level(logging.INFO, logger="prunarr.runs")
        with pytest.raises(RuntimeError):
            with log_run("queue_sweep"):
                raise RuntimeError("boom")
        failed = [record for record in caplog.records if getattr(record, "event", None) == "run_failed"]
        assert len(failed) == 1
        assert failed[0].exc_info is not None
        assert run_id_var.get() is None
