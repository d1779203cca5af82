"""Stored platform credentials."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_PATH = Path("credentials.json")


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


def load_credentials(path: Path = DEFAULT_CREDENTIALS_PATH) -> Credentials | None:
    """Load credentials from `path`, falling back to environment variables.

    A file that is not valid JSON or lacks either value is logged and ignored.
    """
    if path.exists():
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error("credentials.invalid_json path=%s", path)
            payload = None
        if isinstance(payload, dict):
            username = payload.get("username")
            password = payload.get("password")
            if isinstance(username, str) and username and isinstance(password, str) and password:
                return Credentials(username=username, password=password)
            logger.error("credentials.incomplete path=%s", path)
    username = os.environ.get("QUEST_ARCHIVER_USERNAME", "").strip()
    password = os.environ.get("QUEST_ARCHIVER_PASSWORD", "")
    if username and password:
        return Credentials(username=username, password=password)
    return None


def save_credentials(credentials: Credentials, path: Path = DEFAULT_CREDENTIALS_PATH) -> None:
    payload = {"username": credentials.username, "password": credentials.password}
    path.write_text(json.dumps(payload, indent="\t") + "\n", encoding="utf-8")
