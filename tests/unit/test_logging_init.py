from __future__ import annotations

import logging
from io import StringIO

from portfolio_snapshot.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    reset_logging,
    setup_logging,
)


def test_setup_logging_creates_single_stderr_handler():
    logger = setup_logging()
    assert logger.name == LOGGER_NAME
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent():
    first = setup_logging()
    second = setup_logging(logging.DEBUG)
    assert first is second
    assert len(second.handlers) == 1
    assert get_logger() is first


def test_labeled_prefixes():
    stream = StringIO()
    logger = logging.getLogger("test_portfolio_labels")
    logger.setLevel(logging.INFO)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    logger.info("info message")
    logger.warning("warn message")
    logger.error("error message")
    logger.log(SUMMARY_LEVEL, "command=snapshot")

    lines = stream.getvalue().splitlines()
    assert lines == ["INFO info message", "WARN warn message", "ERROR error message", "SUMMARY command=snapshot"]


def test_module_loggers_share_app_handler(capsys):
    setup_logging()
    logging.getLogger("portfolio_snapshot.services.orchestrator").warning("child warning")
    log_summary("command=test")
    err = capsys.readouterr().err
    assert "WARN child warning" in err
    assert "SUMMARY command=test" in err


def test_logs_go_to_stderr_not_stdout(capsys):
    setup_logging().info("hello")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "INFO hello" in captured.err


def test_reset_logging_removes_handlers():
    logger = setup_logging()
    reset_logging()
    assert logger.handlers == []
    assert setup_logging() is logger
