#!/usr/bin/env python3
# -*-coding: utf-8-*-
"""
Logging setup for modpatcher.

The agent's stdout is reserved for the JSON response, so the console
handler is usually pointed at stderr. In JSON mode every record becomes one
object per line, carrying the pipeline stage and any structured error
attached via ``extra``.
"""

import logging
import logging.handlers
import os
import sys
import time
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, TextIO
from functools import lru_cache

DEFAULT_LOG_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3
SLOW_STAGE_SECONDS = 60.0
JSON_ENV_VAR = "MODPATCHER_LOG_JSON"

_ANSI_RESET = "\033[0m"
_LEVEL_COLOURS = {
    logging.ERROR: "\033[31m",
    logging.WARNING: "\033[33m",
    logging.DEBUG: "\033[90m",
}

# =====================================================================================================
# Formatters
# =====================================================================================================

class FastFormatter(logging.Formatter):
    """Console formatter: terse INFO lines, logger names on everything else."""

    _FORMATS = {
        logging.DEBUG: "{asctime} D {name}:{lineno} {message}",
        logging.INFO: "{asctime} {message}",
        logging.WARNING: "{asctime} W [{name}] {message}",
        logging.ERROR: "{asctime} E [{name}] {message}",
    }

    def __init__(self, enable_colors: bool = False):
        super().__init__()
        self._colours = _LEVEL_COLOURS if enable_colors else {}
        self._by_level = {
            level: logging.Formatter(fmt, style='{', datefmt='%H:%M:%S')
            for level, fmt in self._FORMATS.items()
        }

    def format(self, record):
        level = min(record.levelno, logging.ERROR) if record.levelno >= logging.DEBUG else logging.DEBUG
        formatter = self._by_level.get(level, self._by_level[logging.INFO])
        text = formatter.format(record)
        colour = self._colours.get(level)
        return f"{colour}{text}{_ANSI_RESET}" if colour else text


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        stage = getattr(record, "stage", None)
        if stage:
            entry["stage"] = stage
        error = getattr(record, "error", None)
        if isinstance(error, dict):
            entry["error"] = error
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)

# =====================================================================================================
# Setup
# =====================================================================================================

def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _rotating_handler(path: Path, level: int, max_bytes: int, backup_count: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        str(path), maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = False,
    structured_json: Optional[bool] = None,
    stream: Optional[TextIO] = None,
    max_log_bytes: int = DEFAULT_LOG_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> Dict[str, Any]:
    """Configure the root logger.

    Args:
        log_level: Name of the minimum level to emit
        log_dir: Directory for log files (only used with file logging)
        enable_file_logging: Write ``modpatcher.log`` and ``errors.log``
        structured_json: Emit JSON lines; defaults to ``MODPATCHER_LOG_JSON``
        stream: Console stream, stdout by default

    Returns:
        Dict with the configured handlers and the log directory
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    console_stream = stream if stream is not None else sys.stdout
    use_json = structured_json if structured_json is not None else _env_bool(JSON_ENV_VAR)

    root = logging.getLogger()
    root.setLevel(level)
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()

    colours = (getattr(console_stream, 'isatty', lambda: False)()
               and os.environ.get('TERM') != 'dumb'
               and not use_json)
    console = logging.StreamHandler(console_stream)
    console.setLevel(level)
    console.setFormatter(JsonFormatter() if use_json else FastFormatter(enable_colors=colours))
    handlers: Dict[str, logging.Handler] = {'console': console}

    log_path = Path(log_dir) if log_dir else Path("logs")
    if enable_file_logging:
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = JsonFormatter() if use_json else FastFormatter()
        handlers['main_file'] = _rotating_handler(
            log_path / "modpatcher.log", level, max_log_bytes, backup_count, file_formatter
        )
        # errors.log keeps failures around after the main log has rotated them out
        handlers['error_file'] = _rotating_handler(
            log_path / "errors.log", logging.WARNING, max_log_bytes // 2, backup_count, file_formatter
        )

    for handler in handlers.values():
        root.addHandler(handler)

    get_logger('main').debug(
        "Logging initialised (level=%s, file=%s, json=%s)", log_level, enable_file_logging, use_json
    )
    return {'handlers': handlers, 'log_dir': log_path}

# =====================================================================================================
# Helpers
# =====================================================================================================

@lru_cache(maxsize=32)
def get_logger(name: str) -> logging.Logger:
    """``modpatcher.<name>`` logger."""
    return logging.getLogger(f"modpatcher.{name}")


class LoggingTimer:
    """Context manager that logs how long a pipeline stage took.

    Stages slower than ``SLOW_STAGE_SECONDS`` (large diffs, slow installs)
    are logged as warnings so they show up in ``errors.log``.
    """

    def __init__(self, stage: str, logger: Optional[logging.Logger] = None):
        self.stage = stage
        self.logger = logger or get_logger('timing')
        self._started: Optional[float] = None
        self.duration = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._started is None:
            return
        self.duration = time.perf_counter() - self._started
        outcome = "failed after" if exc_type is not None else "took"
        level = logging.WARNING if self.duration > SLOW_STAGE_SECONDS else logging.DEBUG
        self.logger.log(level, "Stage %s %s %.2fs", self.stage, outcome, self.duration,
                        extra={"stage": self.stage})
