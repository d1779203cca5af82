"""Plain-text skip and target list files."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def read_identifier_list(path: Path) -> list[str]:
    """Read one identifier per line.

    Blank lines and `#` comments are ignored and duplicates are dropped in
    order. Lines with inner whitespace are reported and skipped.
    """
    identifiers: list[str] = []
    seen: set[str] = set()
    for line_number, raw in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        value = raw.split("#", 1)[0].strip()
        if not value:
            continue
        if any(char.isspace() for char in value):
            logger.warning("list.malformed path=%s line=%s value=%r", path, line_number, value)
            continue
        if value in seen:
            continue
        seen.add(value)
        identifiers.append(value)
    return identifiers
