"""Recognize story archive folders on disk."""

from __future__ import annotations

import os
from pathlib import Path

from quest_archiver.core.archive_schema import CHAPTERS_FILENAME, CHAT_FILENAME, METADATA_FILENAME

_REQUIRED_FILES = (METADATA_FILENAME, CHAPTERS_FILENAME, CHAT_FILENAME)


def is_archive(path: Path) -> bool:
    """Return True when `path` holds the metadata, chapter and chat stores of an archive."""
    if not path.is_dir():
        return False
    return all((path / name).is_file() for name in _REQUIRED_FILES)


def discover_archives(root: Path) -> list[Path]:
    """List archives at or below `root` in sorted order.

    Directories recognized as archives are not searched further.
    """
    if is_archive(root):
        return [root]
    if not root.is_dir():
        return []
    found: list[Path] = []
    for current, dirnames, _ in os.walk(root):
        dirnames.sort()
        kept: list[str] = []
        for name in dirnames:
            candidate = Path(current) / name
            if is_archive(candidate):
                found.append(candidate)
            elif not name.startswith("."):
                kept.append(name)
        dirnames[:] = kept
    return sorted(found)
