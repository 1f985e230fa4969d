"""Tests for repowatch.core.logging module."""

import json

import pytest

from repowatch.core.logging import (
    correlation_id_var,
    get_logger,
    new_correlation_id,
    setup_logging,
)


def test_setup_logging_configures_structlog() -> None:
    """Test that setup_logging() configures structlog without errors."""
    setup_logging(log_level="INFO")


def test_logger_outputs_json(capsys: pytest.CaptureFixture[str]) -> None:
    """Test that logger outputs valid JSON with expected fields."""
    setup_logging(log_level="INFO")
    logger = get_logger("test")

    logger.info("alerts.poll.started", login="octocat", jobs=3)

    captured = capsys.readouterr()
    log_data = json.loads(captured.out.strip())

    assert log_data["event"] == "alerts.poll.started"
    assert log_data["login"] == "octocat"
    assert log_data["jobs"] == 3
    assert "timestamp" in log_data
    assert log_data["level"] == "info"


def test_logger_includes_correlation_id(capsys: pytest.CaptureFixture[str]) -> None:
    """Test that correlation ID is included in log output when set."""
    setup_logging(log_level="INFO")
    logger = get_logger("test")

    correlation_id_var.set("cycle-123")
    logger.info("alerts.poll.complete")

    captured = capsys.readouterr()
    log_data = json.loads(captured.out.strip())

    assert log_data["correlation_id"] == "cycle-123"


def test_new_correlation_id_sets_context() -> None:
    """Test that new_correlation_id() generates and stores a fresh ID."""
    first = new_correlation_id()
    second = new_correlation_id()

    assert len(first) == 12
    assert first != second
    assert correlation_id_var.get() == second


def test_logger_filters_below_level(capsys: pytest.CaptureFixture[str]) -> None:
    """Test that debug events are dropped at INFO level."""
    setup_logging(log_level="INFO")
    logger = get_logger("test")

    logger.debug("alerts.fetch.first_page_only")

    captured = capsys.readouterr()
    assert captured.out.strip() == ""


def test_logger_exception_info(capsys: pytest.CaptureFixture[str]) -> None:
    """Test that exc_info=True includes exception traceback in JSON."""
    setup_logging(log_level="INFO")
    logger = get_logger("test")

    try:
        raise ValueError("Test exception")
    except ValueError:
        logger.error("test.exception.occurred", exc_info=True)

    captured = capsys.readouterr()
    log_data = json.loads(captured.out.strip())

    assert "exception" in log_data
    assert "ValueError" in log_data["exception"]
