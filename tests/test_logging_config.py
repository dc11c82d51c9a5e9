"""Tests for ci_report/logging_config.py"""

import logging

import pytest

from ci_report.logging_config import PACKAGE_LOGGER, configure_logging


@pytest.fixture(autouse=True)
def restore_package_logger():
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_logs_to_stderr_not_stdout(capsys):
    configure_logging()
    logging.getLogger("ci_report.pipeline").info("Parsing: report.xml")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "| INFO | ci_report.pipeline | Parsing: report.xml" in captured.err


def test_verbose_enables_debug():
    assert configure_logging(verbose=True).level == logging.DEBUG
    assert configure_logging().level == logging.INFO


def test_reconfiguring_replaces_handler():
    configure_logging()
    logger = configure_logging(verbose=True)
    assert len(logger.handlers) == 1
