"""
Tests for isoenvelope/logging_config.py
"""

from __future__ import annotations

import io
import logging

import pytest

from isoenvelope import ThresholdFixedEnvelope, setup_logging
from isoenvelope.logging_config import DEFAULT_FORMAT, LOGGER_NAME


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TestSetupLogging:

    def test_returns_package_logger(self):
        logger = setup_logging()
        assert logger.name == "isoenvelope"
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1
        assert not logger.propagate

    def test_repeated_calls_do_not_stack_handlers(self):
        setup_logging()
        logger = setup_logging(logging.DEBUG)
        assert len(logger.handlers) == 1
        assert logger.level == logging.DEBUG

    def test_foreign_handlers_are_kept(self):
        logger = logging.getLogger(LOGGER_NAME)
        foreign = logging.NullHandler()
        logger.addHandler(foreign)
        setup_logging()
        setup_logging()
        assert foreign in logger.handlers
        assert len(logger.handlers) == 2

    def test_stream_and_format(self):
        buf = io.StringIO()
        logger = setup_logging(logging.DEBUG, stream=buf)
        logger.getChild("tabulator").info("hello")
        assert logger.handlers[0].formatter._fmt == DEFAULT_FORMAT
        assert "INFO isoenvelope.tabulator: hello" in buf.getvalue()

    def test_custom_format_without_timestamp_default(self):
        buf = io.StringIO()
        setup_logging(stream=buf, fmt="[%(levelname)s] %(message)s").info("ready")
        assert buf.getvalue() == "[INFO] ready\n"

    def test_propagate_flag(self):
        assert setup_logging(propagate=True).propagate

    def test_file_handler_receives_module_records(self, toy_iso, tmp_path):
        log_file = tmp_path / "run.log"
        logger = setup_logging(logging.DEBUG, log_file=str(log_file), stream=io.StringIO())
        assert len(logger.handlers) == 2

        ThresholdFixedEnvelope(toy_iso, 0.05)
        for handler in logger.handlers:
            handler.flush()

        text = log_file.read_text(encoding="utf-8")
        assert "Logging initialized at DEBUG." in text
        assert "isoenvelope.tabulator" in text
        assert "Threshold tabulation: 3 configurations" in text
