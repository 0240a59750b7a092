"""Property-based tests for logging functionality.

**Feature: stop-place-sync, Property 17: Log entry format**

Every log entry emitted by the service contains:
- timestamp
- severity level
- event name
- the service name
"""

import json
import logging
from datetime import datetime

import pytest
import structlog
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from src.models.config import LoggingConfig
from src.utils.logging_config import SERVICE_NAME, configure_logging, configure_logging_from_config


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.reset_defaults()


def last_entry(capsys) -> dict:
    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    try:
        return json.loads(lines[-1])
    except (IndexError, json.JSONDecodeError) as e:
        raise AssertionError(f"Log output is not a JSON line: {lines}") from e


@given(
    log_level=st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    error_message=st.text(min_size=1, max_size=200),
)
@settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_property_17_log_entry_contains_required_fields(
    capsys, log_level: str, error_message: str
) -> None:
    """
    Property 17: Log entry format

    *For any* event at any level, the JSON entry carries timestamp, level,
    event name, service name and the bound context.
    """
    configure_logging(log_level="DEBUG", json_logs=True)
    log = structlog.stdlib.get_logger("stop_place_sync_test")

    getattr(log, log_level.lower())("sync_cycle_failed", error=error_message, mode="DELTA")

    log_entry = last_entry(capsys)
    datetime.fromisoformat(log_entry["timestamp"].replace("Z", "+00:00"))
    assert log_entry["level"].upper() == log_level
    assert log_entry["event"] == "sync_cycle_failed"
    assert log_entry["service"] == SERVICE_NAME
    assert log_entry["error"] == error_message
    assert log_entry["mode"] == "DELTA"


def test_events_below_configured_level_are_dropped(capsys):
    configure_logging(log_level="WARNING", json_logs=True)
    log = structlog.stdlib.get_logger("stop_place_sync_test")

    log.info("sync_cycle_started")
    log.warning("repository_busy", operation="push_batch")

    lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
    assert len(lines) == 1
    assert json.loads(lines[0])["event"] == "repository_busy"


def test_context_variables_are_merged(capsys):
    configure_logging(log_level="INFO", json_logs=True)
    log = structlog.stdlib.get_logger("stop_place_sync_test")

    with structlog.contextvars.bound_contextvars(cycle_id="abc123"):
        log.info("sync_cycle_started")

    assert last_entry(capsys)["cycle_id"] == "abc123"


def test_log_file_receives_entries(tmp_path, capsys):
    log_file = tmp_path / "sync.log"
    configure_logging_from_config(
        LoggingConfig(log_level="INFO", json_logs=True, log_file=str(log_file))
    )
    log = structlog.stdlib.get_logger("stop_place_sync_test")

    log.info("watermark_advanced", synced_until="2024-01-01T00:00:00+00:00")
    for handler in logging.root.handlers:
        handler.flush()

    entry = json.loads(log_file.read_text().strip().splitlines()[-1])
    assert entry["event"] == "watermark_advanced"
    assert last_entry(capsys)["event"] == "watermark_advanced"
