"""Lazy crawl of the platform's sorted story index."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Set

from quest_archiver.core.errors import ListingCrawlError, PlatformError
from quest_archiver.core.retry import RetryPolicy, call_with_retry
from quest_archiver.domain.models import SortMode, StorySummary, TargetDescriptor
from quest_archiver.domain.ports import PlatformClient

logger = logging.getLogger(__name__)


def _fetch_page(
    client: PlatformClient, sort_mode: SortMode, page: int, policy: RetryPolicy
) -> list[StorySummary]:
    try:
        return call_with_retry(
            lambda: client.list_stories(sort_mode, page),
            policy=policy,
            description=f"listing sort={sort_mode.value} page={page}",
        )
    except PlatformError as exc:
        raise ListingCrawlError(
            f"Listing page {page} (sort={sort_mode.value}) could not be fetched: {exc}"
        ) from exc


def crawl_listing(
    client: PlatformClient,
    sort_mode: SortMode,
    start_page: int,
    end_page: int,
    skip_set: Set[str] = frozenset(),
    *,
    retry_policy: RetryPolicy | None = None,
    skip_chat: bool = False,
) -> Iterator[TargetDescriptor]:
    """Yield one descriptor per listed story between `start_page` and `end_page`.

    Pages are fetched only when the consumer asks for more descriptors. The
    crawl ends at the first empty page. A page that cannot be fetched after
    retries raises `ListingCrawlError` instead of being skipped.
    """
    policy = retry_policy or RetryPolicy()
    for page in range(max(1, start_page), end_page + 1):
        entries = _fetch_page(client, sort_mode, page, policy)
        if not entries:
            logger.info("listing.end sort=%s page=%s", sort_mode.value, page)
            return
        skipped = 0
        for entry in entries:
            if entry.story_id in skip_set:
                skipped += 1
                continue
            yield TargetDescriptor(story_id=entry.story_id, skip_chat=skip_chat)
        logger.info(
            "listing.page sort=%s page=%s entries=%s skipped=%s",
            sort_mode.value,
            page,
            len(entries),
            skipped,
        )
