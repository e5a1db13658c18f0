"""Process-wide logging setup for the calendar bot.

configure_logging() is called once from main(): it installs a stderr
handler, an optional size-rotated file handler, and turns down the
chatter of the HTTP, Telegram and scheduler libraries. LOG_LEVEL and
LOG_FILE come from the environment unless passed explicitly.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_LEVEL = "INFO"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3

_QUIET_LOGGERS = ("telegram", "telegram.ext", "apscheduler")
# Every long-poll request is logged at INFO by these.
_SILENCED_LOGGERS = ("httpx", "httpcore")


def _level_from_env() -> int:
    raw = os.environ.get("LOG_LEVEL", _DEFAULT_LEVEL).strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def _log_file_from_env() -> str | None:
    return os.environ.get("LOG_FILE", "").strip() or None


def _file_handler(log_file: str, level: int, formatter: logging.Formatter) -> logging.Handler | None:
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_file,
            maxBytes=_MAX_BYTES,
            backupCount=_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as exc:
        logging.getLogger(__name__).warning(
            "Could not open log file: path=%s error=%s; logging to stderr only", log_file, exc
        )
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def configure_logging(*, level: int | None = None, log_file: str | None = None) -> None:
    """Configure the root logger.

    Args:
        level: Log level; read from LOG_LEVEL when None.
        log_file: Rotating log file path; read from LOG_FILE when None,
            an empty string disables file logging.
    """
    if level is None:
        level = _level_from_env()
    if log_file is None:
        log_file = _log_file_from_env()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        file_handler = _file_handler(log_file, level, formatter)
        if file_handler is not None:
            root.addHandler(file_handler)

    for name in _QUIET_LOGGERS + _SILENCED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name in _SILENCED_LOGGERS:
        logging.getLogger(name).disabled = True
        logging.getLogger(name).propagate = False
