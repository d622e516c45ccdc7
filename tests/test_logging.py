"""
Tests for incident-correlated logging and logging setup.
"""
import asyncio
import json
import logging

import pytest

from incident_commander.logging_config import configure_cli_logging, reset_logging_config, setup_logging
from incident_commander.logging_context import (
    JSONFormatter,
    LoggingContext,
    clear_context,
    get_context,
    get_logger,
    set_context,
)


@pytest.fixture(autouse=True)
def clean_logging():
    clear_context()
    yield
    clear_context()
    reset_logging_config()
    logging.getLogger().setLevel(logging.WARNING)


def test_context_prefix_and_extra(caplog):
    logger = get_logger("incident_commander.test")

    with caplog.at_level(logging.INFO):
        with LoggingContext(incident_id="inc-1", alarm_name="HighErrorAlarm"):
            logger.info("planning")
        logger.info("outside")

    inside, outside = caplog.records
    assert inside.getMessage() == "[inc-1] planning"
    assert inside.incident_id == "inc-1"
    assert inside.alarm_name == "HighErrorAlarm"
    assert outside.getMessage() == "outside"
    assert not hasattr(outside, "incident_id")


def test_context_nesting_restores():
    with LoggingContext(incident_id="inc-1"):
        with LoggingContext(provider="AWS"):
            assert get_context() == {"incident_id": "inc-1", "provider": "AWS"}
        assert get_context() == {"incident_id": "inc-1"}
    assert get_context() == {}


def test_set_and_clear_context():
    set_context(incident_id="inc-9")
    assert get_context()["incident_id"] == "inc-9"
    clear_context()
    assert get_context() == {}


@pytest.mark.asyncio
async def test_context_is_isolated_per_task():
    seen = {}

    async def handle(incident_id):
        with LoggingContext(incident_id=incident_id):
            await asyncio.sleep(0.01)
            seen[incident_id] = get_context()["incident_id"]

    await asyncio.gather(handle("inc-a"), handle("inc-b"))

    assert seen == {"inc-a": "inc-a", "inc-b": "inc-b"}


def test_json_formatter():
    record = logging.LogRecord("incident_commander.x", logging.WARNING, __file__, 10, "veto %s", ("RESTART",), None)
    record.incident_id = "inc-2"

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "WARNING"
    assert data["message"] == "veto RESTART"
    assert data["incident_id"] == "inc-2"
    assert "provider" not in data
    assert data["timestamp"].endswith("+00:00")


def test_json_formatter_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        import sys
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

    data = json.loads(JSONFormatter().format(record))
    assert "RuntimeError: boom" in data["exception"]


def test_setup_logging_with_file(tmp_path):
    log_file = tmp_path / "logs" / "commander.log"

    setup_logging(level="DEBUG", log_file=log_file)
    logging.getLogger("incident_commander.test").debug("written to file")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert logging.getLogger().level == logging.DEBUG
    assert "written to file" in log_file.read_text()


def test_setup_logging_is_idempotent():
    setup_logging(level="INFO")
    handlers = list(logging.getLogger().handlers)

    setup_logging(level="ERROR")

    assert logging.getLogger().handlers == handlers
    assert logging.getLogger().level == logging.ERROR


@pytest.mark.parametrize("verbose,quiet,level", [
    (False, False, logging.INFO),
    (True, False, logging.DEBUG),
    (False, True, logging.WARNING),
    (True, True, logging.WARNING),
])
def test_configure_cli_logging(verbose, quiet, level):
    configure_cli_logging(verbose=verbose, quiet=quiet)
    assert logging.getLogger().level == level
