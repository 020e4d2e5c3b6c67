# tests/common/test_logger.py
"""
Unit тесты для модуля логирования (ridehail/common/logger.py).
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from ridehail.common.constants import TypeMsg
from ridehail.common.logger import (
    ColoredFormatter,
    JsonFormatter,
    _get_caller_info,
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
)


def make_record(level: int = logging.INFO, msg: str = "Test message", exc_info=None) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    record.module = "test_module"
    record.funcName = "test_function"
    return record


class TestJsonFormatter:
    """Тесты для JsonFormatter."""

    def test_format_basic_record(self) -> None:
        result = json.loads(JsonFormatter().format(make_record()))

        assert result["level"] == "INFO"
        assert result["message"] == "Test message"
        assert result["function"] == "test_function"
        assert result["line"] == 10
        assert result["timestamp"].endswith("Z")

    def test_format_with_extra_data(self) -> None:
        """Дополнительные данные попадают в поле extra."""
        record = make_record(logging.WARNING)
        record.extra_data = {"ride_id": "r-1", "driver_id": 10}

        result = json.loads(JsonFormatter().format(record))

        assert result["extra"] == {"ride_id": "r-1", "driver_id": 10}

    def test_format_with_exception(self) -> None:
        try:
            raise ValueError("Test exception")
        except ValueError:
            exc_info = sys.exc_info()

        result = json.loads(JsonFormatter().format(make_record(logging.ERROR, exc_info=exc_info)))

        assert "ValueError: Test exception" in result["exception"]


class TestColoredFormatter:
    """Тесты для ColoredFormatter."""

    def test_format_basic_record(self) -> None:
        result = ColoredFormatter().format(make_record())

        assert "[INFO]" in result
        assert "Test message" in result
        assert "\033[" in result

    def test_format_with_caller_info(self) -> None:
        record = make_record(logging.DEBUG)
        record.extra_data = {
            "caller_function": "accept_ride",
            "caller_module": "ridehail.core.rides.orchestrator",
            "caller_file": "orchestrator.py",
            "caller_line": 42,
        }

        result = ColoredFormatter().format(record)

        assert "ridehail.core.rides.orchestrator.accept_ride()" in result
        assert "orchestrator.py:42" in result


class TestGetLogger:
    """Тесты для get_logger."""

    def test_cached(self) -> None:
        assert get_logger("ridehail.test_cache") is get_logger("ridehail.test_cache")

    def test_no_propagation(self) -> None:
        logger = get_logger("ridehail.test_propagate")

        assert logger.propagate is False
        assert logger.handlers


class TestCallerInfo:
    """Тесты для _get_caller_info."""

    def test_reports_calling_function(self) -> None:
        def wrapper() -> dict:
            return _get_caller_info()

        info = wrapper()

        assert info["caller_function"] == "test_reports_calling_function"
        assert info["caller_file"] == "test_logger.py"


class TestLogFunctions:
    """Тесты асинхронных функций логирования."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("type_msg,method", [
        (TypeMsg.DEBUG, "debug"),
        (TypeMsg.INFO, "info"),
        (TypeMsg.WARNING, "warning"),
        (TypeMsg.ERROR, "error"),
        (TypeMsg.CRITICAL, "critical"),
    ])
    async def test_log_info_levels(self, type_msg: TypeMsg, method: str) -> None:
        """log_info выбирает уровень по type_msg."""
        mock_logger = MagicMock()
        with patch("ridehail.common.logger.get_logger", return_value=mock_logger):
            await log_info("message", type_msg=type_msg, extra={"ride_id": "r-1"})

        getattr(mock_logger, method).assert_called_once()
        extra = getattr(mock_logger, method).call_args.kwargs["extra"]["extra_data"]
        assert extra["ride_id"] == "r-1"

    @pytest.mark.asyncio
    async def test_log_debug_and_warning(self) -> None:
        mock_logger = MagicMock()
        with patch("ridehail.common.logger.get_logger", return_value=mock_logger):
            await log_debug("debug message")
            await log_warning("warning message", extra={"code": "not_found"})

        mock_logger.debug.assert_called_once()
        mock_logger.warning.assert_called_once()
        extra = mock_logger.warning.call_args.kwargs["extra"]["extra_data"]
        assert extra["caller_function"] == "test_log_debug_and_warning"

    @pytest.mark.asyncio
    async def test_log_error_exc_info(self) -> None:
        mock_logger = MagicMock()
        with patch("ridehail.common.logger.get_logger", return_value=mock_logger):
            await log_error("boom", extra={"worker": "request_expiry"}, exc_info=True)

        kwargs = mock_logger.error.call_args.kwargs
        assert kwargs["exc_info"] is True
        assert kwargs["extra"]["extra_data"]["worker"] == "request_expiry"
