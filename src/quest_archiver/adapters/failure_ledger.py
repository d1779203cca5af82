"""Append-only record of stories that failed to archive."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict
from pathlib import Path
from typing import Final

from quest_archiver.core.archive_schema import utc_now_iso
from quest_archiver.domain.models import FatQuestRecord

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_FILENAME: Final = "fat_quests.jsonl"


class FailureLedger:
    """JSON-lines ledger of fat quests, one record per failure.

    Records are only ever appended. Readers deduplicate if they need to.
    """

    def __init__(self, path: Path, *, clock: Callable[[], str] = utc_now_iso) -> None:
        self._path = path
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, story_id: str, reason: str) -> FatQuestRecord:
        entry = FatQuestRecord(story_id=story_id, reason=reason, recorded_at=self._clock())
        line = json.dumps(asdict(entry), ensure_ascii=False, sort_keys=True) + "\n"
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line)
        logger.info("ledger.recorded story_id=%s path=%s", story_id, self._path)
        return entry

    def list(self) -> list[FatQuestRecord]:
        if not self._path.exists():
            return []
        records: list[FatQuestRecord] = []
        for line_number, line in enumerate(
            self._path.read_text(encoding="utf-8").splitlines(), start=1
        ):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
                records.append(
                    FatQuestRecord(
                        story_id=str(payload["story_id"]),
                        reason=str(payload.get("reason", "")),
                        recorded_at=str(payload.get("recorded_at", "")),
                    )
                )
            except (json.JSONDecodeError, KeyError, TypeError):
                logger.warning("ledger.unreadable path=%s line=%s", self._path, line_number)
        return records
