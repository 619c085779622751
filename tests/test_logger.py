"""Tests for logger module."""

import logging
from unittest.mock import patch

from modledger.util import logger as logger_module
from modledger.util.logger import (
    DATE_FORMAT,
    LOG_FORMAT,
    ColorFormatter,
    PromptToolkitHandler,
    get_logger,
    handle_exception,
    resolve_log_level,
    setup_logger,
    should_use_color,
)


def make_log_record(level, msg):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
        func="test_func",
    )


class TestShouldUseColor:
    """Tests for should_use_color function."""

    @patch('sys.stderr.isatty')
    def test_should_use_color_tty(self, mock_isatty):
        """Test color is enabled for TTY."""
        mock_isatty.return_value = True
        assert should_use_color() is True

    @patch('sys.stderr.isatty')
    def test_should_use_color_no_tty(self, mock_isatty):
        """Test color is disabled for non-TTY."""
        mock_isatty.return_value = False
        assert should_use_color() is False

    @patch('sys.stderr.isatty')
    def test_should_use_color_exception(self, mock_isatty):
        """Test color returns False on exception."""
        mock_isatty.side_effect = Exception("Error")
        assert should_use_color() is False


class TestColorFormatter:
    """Tests for ColorFormatter class."""

    def test_debug_is_cyan(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        formatted = formatter.format(make_log_record(logging.DEBUG, "Debug message"))

        assert formatted.startswith("\033[36m")
        assert formatted.endswith("\033[0m")
        assert "Debug message" in formatted

    def test_error_is_red(self):
        formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)
        formatted = formatter.format(make_log_record(logging.ERROR, "Error message"))

        assert formatted.startswith("\033[31m")

    def test_unknown_level_is_left_plain(self):
        formatter = ColorFormatter("%(message)s")
        formatted = formatter.format(make_log_record(25, "Custom level"))

        assert formatted == "Custom level"


class TestResolveLogLevel:
    """Tests for the MODLEDGER_LOG_LEVEL lookup."""

    def test_defaults_to_debug(self, monkeypatch):
        monkeypatch.delenv("MODLEDGER_LOG_LEVEL", raising=False)
        assert resolve_log_level() == logging.DEBUG

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("MODLEDGER_LOG_LEVEL", "warning")
        assert resolve_log_level() == logging.WARNING

    def test_unknown_name_falls_back_to_debug(self, monkeypatch):
        monkeypatch.setenv("MODLEDGER_LOG_LEVEL", "chatty")
        assert resolve_log_level() == logging.DEBUG


class TestSetupLogger:
    """Tests for setup_logger function."""

    def test_setup_logger_creates_logger(self):
        """Test setup_logger creates a logger."""
        logger = setup_logger("test_logger_unique_1")

        assert logger.name == "test_logger_unique_1"
        assert logger.level == logging.DEBUG
        assert logger.propagate is False

    def test_setup_logger_returns_existing(self):
        """Test setup_logger does not stack handlers on repeat calls."""
        logger1 = setup_logger("test_logger_unique_2")
        handler_count = len(logger1.handlers)
        logger2 = setup_logger("test_logger_unique_2")

        assert logger1 is logger2
        assert len(logger2.handlers) == handler_count

    def test_setup_logger_has_console_and_file_handlers(self):
        """Test setup_logger adds the prompt_toolkit and rotating file handlers."""
        logger = setup_logger("test_logger_unique_3")
        kinds = {type(h).__name__ for h in logger.handlers}

        assert kinds == {"PromptToolkitHandler", "RotatingFileHandler"}

    def test_session_shares_one_log_file(self):
        """Test every logger writes to the same session file."""
        first = logger_module.get_log_filepath()
        second = logger_module.get_log_filepath()

        assert first == second
        assert first.parent == logger_module.LOGS_DIR


class TestPromptToolkitHandler:
    """Tests for the console handler."""

    def test_emit_prints_formatted_text(self):
        handler = PromptToolkitHandler(formatter=logging.Formatter("%(message)s"))

        with patch.object(logger_module, "print_formatted_text") as mock_print:
            handler.emit(make_log_record(logging.INFO, "[PROCESSOR] issued"))

        mock_print.assert_called_once()

    def test_emit_failure_goes_to_handle_error(self):
        handler = PromptToolkitHandler()

        with patch.object(logger_module, "print_formatted_text", side_effect=OSError("closed")), \
                patch.object(handler, "handleError") as mock_handle_error:
            handler.emit(make_log_record(logging.INFO, "lost"))

        mock_handle_error.assert_called_once()


class TestHandleException:
    """Tests for the global exception hook."""

    def test_keyboard_interrupt_uses_default_hook(self):
        with patch("sys.__excepthook__") as default_hook:
            handle_exception(KeyboardInterrupt, KeyboardInterrupt(), None)

        default_hook.assert_called_once()

    def test_other_exceptions_are_logged(self):
        uncaught = get_logger("uncaught")

        with patch.object(uncaught, "error") as mock_error:
            handle_exception(ValueError, ValueError("boom"), None)

        mock_error.assert_called_once()


class TestLoggerIntegration:
    """Integration tests for logger functionality."""

    def test_logger_with_exception(self):
        """Test logging with exception info."""
        logger = get_logger("test_integration_5")

        try:
            raise ValueError("Test exception")
        except ValueError:
            # Should not raise exception
            logger.exception("Exception occurred")

    def test_noisy_libraries_are_quieted(self):
        """Test third-party loggers are raised to WARNING."""
        assert logging.getLogger("aiosqlite").level == logging.WARNING
