"""Runtime logging configuration with bounded retention."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from quest_archiver.config import LoggingSettings, load_logging_settings

_CONFIGURED_PATH: Path | None = None


def _level(name: str, default: int) -> int:
    value = getattr(logging, name.strip().upper(), None)
    return value if isinstance(value, int) else default


def configure_runtime_logging(settings: LoggingSettings | None = None) -> Path:
    """Attach console and rotating file handlers to the root logger once per process.

    Returns the log file path so callers can report where a run was recorded.
    """
    global _CONFIGURED_PATH
    if _CONFIGURED_PATH is not None:
        return _CONFIGURED_PATH

    settings = settings or load_logging_settings()
    settings.log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    rotating = RotatingFileHandler(
        filename=settings.log_path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    rotating.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(_level(settings.level, logging.INFO))
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(rotating)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(_level(settings.http_level, logging.WARNING))

    _CONFIGURED_PATH = settings.log_path
    return settings.log_path
