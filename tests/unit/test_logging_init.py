from __future__ import annotations

import logging
from io import StringIO

from workforce_import.logging.init import (
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def _capture(logger: logging.Logger) -> StringIO:
    out = StringIO()
    handler = logger.handlers[0]
    handler.setStream(out)
    return out


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == "workforce_import"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent_and_debug_lowers_level():
    first = setup_logging()
    second = setup_logging(debug=True)
    assert first is second
    assert len(second.handlers) == 1
    assert second.level == logging.DEBUG
    assert second.handlers[0].level == logging.DEBUG


def test_labeled_prefixes():
    logger = setup_logging()
    out = _capture(logger)
    logger.info("info message")
    logger.warning("warning message")
    logger.error("error message")
    log_summary("batch=b rows=1")
    lines = out.getvalue().strip().splitlines()
    assert lines == [
        "INFO info message",
        "WARN warning message",
        "ERROR error message",
        "SUMMARY batch=b rows=1",
    ]


def test_module_loggers_share_application_handler():
    logger = setup_logging()
    out = _capture(logger)
    logging.getLogger("workforce_import.services.orchestrator").info("child message")
    assert "INFO child message" in out.getvalue()


def test_debug_hidden_by_default():
    logger = setup_logging()
    out = _capture(logger)
    logger.debug("hidden")
    assert out.getvalue() == ""


def test_get_logger_and_reset():
    logger = get_logger()
    assert logger is get_logger()
    reset_logging()
    assert logger.handlers == []
    assert logging.getLevelName(SUMMARY_LEVEL) == "SUMMARY"
