"""Batch orchestration for scrape, targeted and view runs.

A single story or archive failing never stops a batch. Only resource-level
faults such as an unwritable output directory propagate.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Set
from pathlib import Path

from quest_archiver.adapters.failure_ledger import FailureLedger
from quest_archiver.core.errors import ArchiveIntegrityError
from quest_archiver.core.listing_crawler import crawl_listing
from quest_archiver.core.retry import RetryPolicy
from quest_archiver.core.story_archiver import StoryArchiver
from quest_archiver.core.target_resolver import TargetResolver
from quest_archiver.core.view_renderer import DEFAULT_PAGE_CHAR_LIMIT, render_view
from quest_archiver.domain.models import SortMode, TargetDescriptor
from quest_archiver.domain.ports import PlatformClient
from quest_archiver.pipelines.results import ArchiveRunResult, ViewBatchResult

logger = logging.getLogger(__name__)


def archive_targets(
    targets: Iterable[TargetDescriptor],
    archiver: StoryArchiver,
    ledger: FailureLedger,
    *,
    download_images: bool = True,
) -> ArchiveRunResult:
    """Archive each target in turn, recording failures as fat quests."""
    result = ArchiveRunResult()
    for target in targets:
        result.attempted += 1
        logger.info("batch.archive story_id=%s index=%s", target.story_id, result.attempted)
        outcome = archiver.archive(target, download_images=download_images)
        result.new_chapters += outcome.new_chapters
        result.new_replies += outcome.new_replies
        if outcome.ok:
            result.succeeded += 1
            continue
        ledger.record(target.story_id, outcome.error or "unknown failure")
        result.failed_story_ids.append(target.story_id)
    logger.info(
        "batch.done attempted=%s succeeded=%s failed=%s",
        result.attempted,
        result.succeeded,
        result.failed,
    )
    return result


def run_scrape(
    client: PlatformClient,
    archiver: StoryArchiver,
    ledger: FailureLedger,
    *,
    sort_mode: SortMode,
    start_page: int,
    end_page: int,
    skip_set: Set[str] = frozenset(),
    skip_chat: bool = False,
    download_images: bool = True,
    retry_policy: RetryPolicy | None = None,
) -> ArchiveRunResult:
    """Crawl the sorted listing and archive every story not in `skip_set`."""
    targets = crawl_listing(
        client,
        sort_mode,
        start_page,
        end_page,
        skip_set,
        retry_policy=retry_policy,
        skip_chat=skip_chat,
    )
    return archive_targets(targets, archiver, ledger, download_images=download_images)


def run_targeted(
    resolver: TargetResolver,
    archiver: StoryArchiver,
    ledger: FailureLedger,
    *,
    identifiers: Iterable[str],
    skip_chat: bool = False,
    download_images: bool = True,
) -> ArchiveRunResult:
    """Resolve explicit identifiers and archive the resulting stories."""
    targets = resolver.resolve(identifiers, skip_chat)
    return archive_targets(targets, archiver, ledger, download_images=download_images)


def build_views(
    archive_paths: Iterable[Path],
    output_path: Path | None = None,
    *,
    page_char_limit: int = DEFAULT_PAGE_CHAR_LIMIT,
) -> ViewBatchResult:
    """Render every archive independently; integrity failures are reported per archive."""
    started = time.monotonic()
    result = ViewBatchResult()
    for archive_path in archive_paths:
        try:
            rendered = render_view(archive_path, output_path, page_char_limit=page_char_limit)
        except ArchiveIntegrityError as exc:
            logger.error("view.failed archive=%s error=%s", archive_path, exc)
            result.failed[archive_path] = str(exc)
            continue
        result.rendered.append(rendered)
    result.elapsed_seconds = time.monotonic() - started
    logger.info(
        "view.batch_done rendered=%s failed=%s elapsed=%.2fs",
        len(result.rendered),
        len(result.failed),
        result.elapsed_seconds,
    )
    return result
