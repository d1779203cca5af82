"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from quest_archiver.core.retry import RetryPolicy

DEFAULT_BASE_URL = "https://fiction.live"
DEFAULT_USER_AGENT = "quest_archiver/0.1 (personal archival use)"
DEFAULT_LOG_PATH = "logs/quest_archiver.log"


def _int_env(name: str, default: int, *, minimum: int, maximum: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _str_env(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


@dataclass(frozen=True)
class ArchiverSettings:
    """Tunables shared by the archive and view workflows."""

    base_url: str = DEFAULT_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    retry_count: int = 3
    retry_delay_seconds: float = 0.6
    timeout_seconds: float = 30.0
    request_delay_seconds: float = 0.25
    page_char_limit: int = 250_000
    author_marker: str = "@"

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(retries=self.retry_count, base_delay_seconds=self.retry_delay_seconds)


def load_settings() -> ArchiverSettings:
    """Read `QUEST_ARCHIVER_*` variables, clamping numbers to sane ranges."""
    return ArchiverSettings(
        base_url=_str_env("QUEST_ARCHIVER_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        user_agent=_str_env("QUEST_ARCHIVER_USER_AGENT", DEFAULT_USER_AGENT),
        retry_count=_int_env("QUEST_ARCHIVER_RETRY_COUNT", 3, minimum=0, maximum=10),
        retry_delay_seconds=_int_env(
            "QUEST_ARCHIVER_RETRY_DELAY_MS", 600, minimum=0, maximum=60_000
        )
        / 1000,
        timeout_seconds=float(
            _int_env("QUEST_ARCHIVER_TIMEOUT_SECONDS", 30, minimum=1, maximum=300)
        ),
        request_delay_seconds=_int_env(
            "QUEST_ARCHIVER_REQUEST_DELAY_MS", 250, minimum=0, maximum=60_000
        )
        / 1000,
        page_char_limit=_int_env(
            "QUEST_ARCHIVER_PAGE_CHAR_LIMIT", 250_000, minimum=10_000, maximum=10_000_000
        ),
        author_marker=os.environ.get("QUEST_ARCHIVER_AUTHOR_MARKER", "@").strip() or "@",
    )


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    http_level: str = "WARNING"
    log_path: Path = Path(DEFAULT_LOG_PATH)
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 10


def load_logging_settings() -> LoggingSettings:
    return LoggingSettings(
        level=_str_env("QUEST_ARCHIVER_LOG_LEVEL", "INFO"),
        http_level=_str_env("QUEST_ARCHIVER_HTTP_LOG_LEVEL", "WARNING"),
        log_path=Path(_str_env("QUEST_ARCHIVER_LOG_PATH", DEFAULT_LOG_PATH)),
        max_bytes=_int_env(
            "QUEST_ARCHIVER_LOG_MAX_BYTES",
            5 * 1024 * 1024,
            minimum=64 * 1024,
            maximum=100 * 1024 * 1024,
        ),
        backup_count=_int_env("QUEST_ARCHIVER_LOG_BACKUP_COUNT", 10, minimum=1, maximum=120),
    )
