"""Logging setup with size- and age-based file rotation."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from esa.paths import expand_home_path, setup_cache_dir

DEFAULT_LEVEL = "info"
DEFAULT_FORMAT = "text"
DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MAX_SIZE_MB = 50

_LEVELS = {
    "debug": logging.DEBUG,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}

_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}

_installed: list[logging.Handler] = []


@dataclass
class LoggingConfig:
    """Where and how log records are written."""

    level: str = ""
    format: str = ""
    file: str = ""
    to_stdout: bool = False
    to_file: bool = False
    max_age_days: int = 0
    max_size_mb: int = 0
    max_backups: int = 0


def _parse_level(level: str) -> int:
    return _LEVELS.get(level.lower(), logging.INFO)


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds")


def _extras(record: logging.LogRecord) -> list[tuple[str, Any]]:
    return [(key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS]


def _quote(value: Any) -> str:
    text = str(value)
    if text and all(ch.isprintable() and ch not in ' ="' for ch in text):
        return text
    return json.dumps(text, ensure_ascii=False)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [
            f"time={_timestamp(record)}",
            f"level={_LEVEL_NAMES.get(record.levelno, record.levelname)}",
            f"msg={_quote(record.getMessage())}",
        ]
        parts.extend(f"{key}={_quote(value)}" for key, value in _extras(record))
        return " ".join(parts)


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "time": _timestamp(record),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "msg": record.getMessage(),
        }
        data.update(_extras(record))
        return json.dumps(data, default=str, ensure_ascii=False)


_FORMATTERS = {"text": _TextFormatter, "json": _JSONFormatter}


class _RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Rotates to timestamped backups and prunes them by count and age."""

    def __init__(self, filename: str, max_bytes: int, max_backups: int, max_age_days: int) -> None:
        super().__init__(filename, maxBytes=max_bytes, backupCount=0, encoding="utf-8")
        self.max_backups = max_backups
        self.max_age_days = max_age_days

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        base, ext = os.path.splitext(self.baseFilename)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%f")[:-3]
        if os.path.exists(self.baseFilename):
            os.replace(self.baseFilename, f"{base}-{stamp}{ext}")
        self._prune(base, ext)
        self.stream = self._open()

    def _prune(self, base: str, ext: str) -> None:
        directory = os.path.dirname(base) or "."
        prefix = os.path.basename(base) + "-"
        with os.scandir(directory) as entries:
            backups = sorted(
                (
                    (entry.stat().st_mtime, entry.path)
                    for entry in entries
                    if entry.is_file()
                    and entry.name.startswith(prefix)
                    and entry.name.endswith(ext)
                    and entry.path != self.baseFilename
                ),
                reverse=True,
            )
        cutoff = time.time() - self.max_age_days * 86400
        for position, (mtime, path) in enumerate(backups):
            too_many = self.max_backups > 0 and position >= self.max_backups
            if too_many or mtime < cutoff:
                try:
                    os.remove(path)
                except OSError:
                    pass


def _resolve_log_path(path: str) -> str:
    path = path.strip()
    if not path:
        return os.path.join(setup_cache_dir(), "esa.log")
    path = expand_home_path(path)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, mode=0o755, exist_ok=True)
    return path


def _build_handlers(cfg: LoggingConfig) -> tuple[list[logging.Handler], logging.Handler | None]:
    to_file = cfg.to_file or not cfg.to_stdout
    handlers: list[logging.Handler] = []
    file_handler: logging.Handler | None = None
    if to_file:
        max_age = cfg.max_age_days if cfg.max_age_days > 0 else DEFAULT_MAX_AGE_DAYS
        max_size = cfg.max_size_mb if cfg.max_size_mb > 0 else DEFAULT_MAX_SIZE_MB
        file_handler = _RotatingFileHandler(
            _resolve_log_path(cfg.file),
            max_bytes=max_size * 1024 * 1024,
            max_backups=cfg.max_backups,
            max_age_days=max_age,
        )
        handlers.append(file_handler)
    if cfg.to_stdout:
        handlers.append(logging.StreamHandler(sys.stderr))
    return handlers, file_handler


def setup_logging(cfg: LoggingConfig) -> tuple[logging.Logger, logging.Handler | None]:
    """Route all logging to the configured outputs.

    Returns the application logger and the file handler, which the caller
    closes when done (None when nothing is written to a file).
    """
    level = cfg.level.strip() or DEFAULT_LEVEL
    fmt = cfg.format.strip() or DEFAULT_FORMAT

    handlers, file_handler = _build_handlers(cfg)
    formatter_cls = _FORMATTERS.get(fmt.lower())
    if formatter_cls is None:
        for handler in handlers:
            handler.close()
        raise ValueError("unsupported log format")

    root = logging.getLogger()
    for old in _installed:
        root.removeHandler(old)
        old.close()
    _installed.clear()

    formatter = formatter_cls()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
        _installed.append(handler)

    numeric = _parse_level(level)
    root.setLevel(numeric)
    logger = logging.getLogger("esa")
    logger.setLevel(numeric)
    return logger, file_handler