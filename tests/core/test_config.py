"""Tests for settings and logging helpers."""

import json
import logging
import sys

import pytest
import structlog

from dqengine.core.config import Settings
from dqengine.core.logging import (
    configure_logging,
    end_run_metrics,
    get_logger,
    get_run_metrics,
    increment_analyzers_run,
    increment_query,
    log_context,
    record_operation_timing,
    record_rows_scanned,
    start_run_metrics,
)


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.hll_precision == 12
        assert settings.kll_k == 200
        assert settings.profile_top_n == 20
        assert (settings.config_path / "patterns" / "default.yaml").exists()

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DQENGINE_KLL_K", "64")
        monkeypatch.setenv("DQENGINE_PROFILE_TOP_N", "5")

        settings = Settings()

        assert settings.kll_k == 64
        assert settings.profile_top_n == 5


class TestRunMetrics:
    def test_counters_accumulate_while_active(self):
        start_run_metrics("test")
        increment_query()
        increment_query()
        increment_analyzers_run()
        record_operation_timing("mean.amount", 0.25)
        record_operation_timing("mean.amount", 0.25)

        metrics = end_run_metrics()

        assert metrics is not None
        assert metrics.queries == 2
        assert metrics.analyzers_run == 1
        assert metrics.timings == {"mean.amount": 0.5}
        assert metrics.end_time is not None
        assert get_run_metrics() is None

    def test_counters_are_noops_without_run(self):
        assert get_run_metrics() is None
        increment_query()
        assert get_run_metrics() is None

    def test_rows_and_summary(self):
        start_run_metrics("scan")
        record_rows_scanned(500)
        record_rows_scanned(250)

        summary = end_run_metrics().to_dict()

        assert summary["run_name"] == "scan"
        assert summary["rows_scanned"] == 750
        assert summary["store_writes"] == 0


@pytest.fixture
def restore_logging():
    yield
    structlog.reset_defaults()
    logging.basicConfig(level=logging.WARNING, stream=sys.__stderr__, force=True)


class TestLogging:
    def test_log_context_binds_and_restores(self):
        with log_context(series_id="orders"):
            with log_context(partition="2024-01-01"):
                assert structlog.contextvars.get_contextvars() == {
                    "series_id": "orders",
                    "partition": "2024-01-01",
                }
            assert structlog.contextvars.get_contextvars() == {"series_id": "orders"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_json_format(self, capsys, restore_logging):
        configure_logging(Settings(log_format="json", log_level="DEBUG"))
        with log_context(table="orders"):
            get_logger("tests").debug("profile_started", columns=3)

        line = capsys.readouterr().err.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "profile_started"
        assert event["table"] == "orders"
        assert event["columns"] == 3
        assert event["level"] == "debug"

    def test_level_filters_events(self, capsys, restore_logging):
        configure_logging(Settings(log_format="json", log_level="WARNING"))
        get_logger("tests").info("ignored")

        assert "ignored" not in capsys.readouterr().err
