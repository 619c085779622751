"""
Logging for the ledger.

Every module asks for ``get_logger(<component>)``. Loggers write to the
console through prompt_toolkit (so a staff console keeps its input line)
and to one rotating file per process session under ``logs/``.
Messages carry a bracketed tag naming the subsystem, e.g. ``[PROCESSOR]``.
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from prompt_toolkit import print_formatted_text
from prompt_toolkit.formatted_text import ANSI

LOGS_DIR: Path = Path(os.getenv("MODLEDGER_LOG_DIR") or Path(__file__).parents[3] / "logs").resolve()
LOGS_DIR.mkdir(parents=True, exist_ok=True)

LOG_FORMAT: str = "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT: str = "%Y-%m-%d %H-%M-%S"

LOG_MAX_BYTES: int = 10 * 1024 * 1024
LOG_BACKUP_COUNT: int = 5
# A log from today touched this recently belongs to the same session (quick restart)
SESSION_REUSE_SECONDS: int = 60

LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[38;5;88m",
}
RESET_COLOR = "\033[0m"

_session_log: Optional[Path] = None


class ColorFormatter(logging.Formatter):
    """Formatter that paints a whole line in the colour of its level; unknown levels stay plain."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = LEVEL_COLORS.get(record.levelname)
        if not color:
            return text
        return f"{color}{text}{RESET_COLOR}"


class PromptToolkitHandler(logging.Handler):
    """
    Console handler that prints via ``print_formatted_text``.

    Args:
        formatter: Applied to every record when given.
    """

    def __init__(self, formatter: Optional[logging.Formatter] = None):
        super().__init__()
        if formatter is not None:
            self.setFormatter(formatter)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            print_formatted_text(ANSI(self.format(record)))
        except Exception:
            self.handleError(record)


def should_use_color() -> bool:
    try:
        return sys.stderr.isatty()
    except Exception:
        return False


plain_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
console_formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT) if should_use_color() else plain_formatter


def resolve_log_level() -> int:
    """Console level from ``MODLEDGER_LOG_LEVEL``; DEBUG when unset or unrecognised."""
    level = logging.getLevelName(os.getenv("MODLEDGER_LOG_LEVEL", "DEBUG").upper())
    return level if isinstance(level, int) else logging.DEBUG


def get_log_filepath() -> Path:
    """
    The file every logger of this process writes to.

    Chosen once: the newest log from today is reused when it was written in
    the last ``SESSION_REUSE_SECONDS``, otherwise a new timestamped file is
    started.
    """
    global _session_log

    if _session_log is not None:
        return _session_log

    now = datetime.now()
    todays_logs = sorted(
        LOGS_DIR.glob(f"{now:%Y-%m-%d}*.log"),
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )
    if todays_logs and now.timestamp() - todays_logs[0].stat().st_mtime < SESSION_REUSE_SECONDS:
        _session_log = todays_logs[0]
    else:
        _session_log = LOGS_DIR / f"{now.strftime(DATE_FORMAT)}.log"
    return _session_log


def setup_logger(logger_name: str) -> logging.Logger:
    """Attach the console and session-file handlers to ``logger_name`` once and return it."""
    logger = logging.getLogger(logger_name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = PromptToolkitHandler(formatter=console_formatter)
    console.setLevel(resolve_log_level())

    session_file = RotatingFileHandler(
        get_log_filepath(),
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    session_file.setLevel(logging.DEBUG)
    session_file.setFormatter(plain_formatter)

    logger.addHandler(console)
    logger.addHandler(session_file)
    return logger


def get_logger(logger_name: str) -> logging.Logger:
    return setup_logger(logger_name)


def handle_exception(exception_type, exception_instance, exception_traceback) -> None:
    """``sys.excepthook`` replacement: log uncaught errors, let Ctrl+C through untouched."""
    if issubclass(exception_type, KeyboardInterrupt):
        sys.__excepthook__(exception_type, exception_instance, exception_traceback)
        return
    get_logger("uncaught").error(
        "Uncaught exception", exc_info=(exception_type, exception_instance, exception_traceback)
    )


for _library in ("aiosqlite", "asyncio"):
    logging.getLogger(_library).setLevel(logging.WARNING)

sys.excepthook = handle_exception
