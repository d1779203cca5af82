"""Typed results returned by archive and view workflows."""

from quest_archiver.pipelines.results import (
    ArchiveRunResult,
    ViewBatchResult,
    ViewRenderResult,
)

__all__ = ["ArchiveRunResult", "ViewBatchResult", "ViewRenderResult"]
