"""Typed result objects returned by workflow pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ViewRenderResult:
    """Filesystem outputs produced by rendering one archive."""

    archive_path: Path
    output_dir: Path
    index_path: Path
    page_paths: tuple[Path, ...]
    chapter_count: int
    reply_count: int


@dataclass
class ArchiveRunResult:
    """Counters for one scrape or targeted run."""

    attempted: int = 0
    succeeded: int = 0
    failed_story_ids: list[str] = field(default_factory=list)
    new_chapters: int = 0
    new_replies: int = 0

    @property
    def failed(self) -> int:
        return len(self.failed_story_ids)


@dataclass
class ViewBatchResult:
    """Outcome of rendering several archives."""

    rendered: list[ViewRenderResult] = field(default_factory=list)
    failed: dict[Path, str] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
