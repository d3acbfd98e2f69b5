"""Tests for core logging module."""

import logging
from io import StringIO

import pytest

from .lib import get_logger, setup_logging


class TestLogging:
    """Test core logging API."""

    @pytest.mark.unit
    def test_get_logger(self) -> None:
        """Verify logger instance creation."""
        logger = get_logger("test")
        assert logger.name == "test"
        assert isinstance(logger, logging.Logger)

    @pytest.mark.unit
    def test_get_logger_default_name(self) -> None:
        """Verify default logger name."""
        logger = get_logger()
        assert logger.name == "asset-timeline"

    @pytest.mark.unit
    def test_setup_logging_accepts_level_name(self) -> None:
        """Level names are accepted as well as ints."""
        stream = StringIO()
        setup_logging(level="debug", stream=stream)
        logger = get_logger("test_setup")
        logger.debug("test message")

        # basicConfig is a no-op when logging was already configured,
        # so only the API contract is checked here.
        assert logger.level == logging.NOTSET

    @pytest.mark.unit
    def test_setup_logging_uses_environment(self, monkeypatch) -> None:
        """Falls back to ASSET_LOG_LEVEL when no level is given."""
        monkeypatch.setenv("ASSET_LOG_LEVEL", "WARNING")
        setup_logging(stream=StringIO())
