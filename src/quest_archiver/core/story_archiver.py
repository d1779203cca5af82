"""Incremental, resumable archiving of a single story.

The archiver walks an explicit state machine::

    NOT_STARTED -> FETCHING_METADATA -> FETCHING_CHAPTERS
        -> FETCHING_CHAT (unless skip_chat)
        -> FETCHING_IMAGES (when images are enabled)
        -> PERSISTED

Any step may end in FAILED. Metadata and chapters are content-critical; chat
pages and images are best effort. The manifest high-water mark is advanced
after every durably written chapter and chat page, so an interrupted run
resumes where it stopped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from quest_archiver.adapters.archive_store import StoryArchiveStore
from quest_archiver.core.archive_schema import (
    ArchiveManifest,
    ChapterRecord,
    ChatReply,
    utc_now_iso,
)
from quest_archiver.core.errors import ArchiveIntegrityError, PlatformError
from quest_archiver.core.media_refs import collect_image_refs
from quest_archiver.core.retry import RetryPolicy, call_with_retry
from quest_archiver.domain.models import TargetDescriptor
from quest_archiver.domain.ports import PlatformClient

logger = logging.getLogger(__name__)


class ArchiveState(StrEnum):
    NOT_STARTED = "not_started"
    FETCHING_METADATA = "fetching_metadata"
    FETCHING_CHAPTERS = "fetching_chapters"
    FETCHING_CHAT = "fetching_chat"
    FETCHING_IMAGES = "fetching_images"
    PERSISTED = "persisted"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ArchiveState.PERSISTED, ArchiveState.FAILED})


@dataclass(frozen=True)
class ArchiveOutcome:
    """Result of archiving one target."""

    story_id: str
    state: ArchiveState
    new_chapters: int = 0
    new_replies: int = 0
    images_downloaded: int = 0
    images_failed: int = 0
    chat_complete: bool = True
    failed_state: ArchiveState | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is ArchiveState.PERSISTED


@dataclass
class _ArchiveRun:
    target: TargetDescriptor
    download_images: bool
    store: StoryArchiveStore
    manifest: ArchiveManifest
    manifest_on_disk: bool = False
    new_chapters: list[ChapterRecord] = field(default_factory=list)
    new_replies: list[ChatReply] = field(default_factory=list)
    images_downloaded: int = 0
    images_failed: int = 0
    chat_complete: bool = True


class StoryArchiver:
    """Fetch a story's metadata, chapters, chat and images into `output_dir/<story_id>`."""

    def __init__(
        self,
        client: PlatformClient,
        output_dir: Path,
        *,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], str] = utc_now_iso,
    ) -> None:
        self._client = client
        self._output_dir = output_dir
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock
        self._transitions: dict[ArchiveState, Callable[[_ArchiveRun], ArchiveState]] = {
            ArchiveState.NOT_STARTED: self._load_manifest,
            ArchiveState.FETCHING_METADATA: self._fetch_metadata,
            ArchiveState.FETCHING_CHAPTERS: self._fetch_chapters,
            ArchiveState.FETCHING_CHAT: self._fetch_chat,
            ArchiveState.FETCHING_IMAGES: self._fetch_images,
        }

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def story_dir(self, story_id: str) -> Path:
        return self._output_dir / story_id

    def archive(self, target: TargetDescriptor, download_images: bool = True) -> ArchiveOutcome:
        run = _ArchiveRun(
            target=target,
            download_images=download_images,
            store=StoryArchiveStore(self.story_dir(target.story_id)),
            manifest=ArchiveManifest(story_id=target.story_id, user=target.user),
        )
        state = ArchiveState.NOT_STARTED
        while state not in TERMINAL_STATES:
            try:
                state = self._transitions[state](run)
            except (PlatformError, ArchiveIntegrityError) as exc:
                logger.error(
                    "archive.failed story_id=%s state=%s error=%s",
                    target.story_id,
                    state.value,
                    exc,
                )
                return self._outcome(run, ArchiveState.FAILED, failed_state=state, error=str(exc))
        logger.info(
            "archive.persisted story_id=%s new_chapters=%s new_replies=%s images=%s",
            target.story_id,
            len(run.new_chapters),
            len(run.new_replies),
            run.images_downloaded,
        )
        return self._outcome(run, state)

    def _outcome(
        self,
        run: _ArchiveRun,
        state: ArchiveState,
        *,
        failed_state: ArchiveState | None = None,
        error: str | None = None,
    ) -> ArchiveOutcome:
        return ArchiveOutcome(
            story_id=run.target.story_id,
            state=state,
            new_chapters=len(run.new_chapters),
            new_replies=len(run.new_replies),
            images_downloaded=run.images_downloaded,
            images_failed=run.images_failed,
            chat_complete=run.chat_complete,
            failed_state=failed_state,
            error=error,
        )

    def _save_manifest(self, run: _ArchiveRun, **changes: object) -> None:
        updated = run.manifest.model_copy(update={**changes, "last_updated_at": self._clock()})
        run.store.save_manifest(updated)
        run.manifest = updated
        run.manifest_on_disk = True

    def _load_manifest(self, run: _ArchiveRun) -> ArchiveState:
        existing = run.store.load_manifest()
        if existing is None:
            logger.info("archive.new story_id=%s", run.target.story_id)
            return ArchiveState.FETCHING_METADATA
        if existing.story_id != run.target.story_id:
            raise ArchiveIntegrityError(
                f"Manifest in {run.store.root} belongs to story {existing.story_id}"
            )
        dropped_chapters, dropped_replies = run.store.reconcile(existing)
        if dropped_chapters or dropped_replies:
            logger.warning(
                "archive.reconciled story_id=%s dropped_chapters=%s dropped_replies=%s",
                run.target.story_id,
                dropped_chapters,
                dropped_replies,
            )
        run.manifest = existing
        run.manifest_on_disk = True
        return ArchiveState.FETCHING_METADATA

    def _fetch_metadata(self, run: _ArchiveRun) -> ArchiveState:
        story_id = run.target.story_id
        metadata = call_with_retry(
            lambda: self._client.fetch_metadata(story_id),
            policy=self._retry_policy,
            description=f"metadata story_id={story_id}",
        )
        if metadata.story_id != story_id:
            metadata = metadata.model_copy(update={"story_id": story_id})
        run.store.ensure_layout()
        run.store.save_metadata(metadata)
        if not run.manifest_on_disk:
            self._save_manifest(run)
        elif run.target.user and run.manifest.user != run.target.user:
            self._save_manifest(run, user=run.target.user)
        return ArchiveState.FETCHING_CHAPTERS

    def _fetch_chapters(self, run: _ArchiveRun) -> ArchiveState:
        story_id = run.target.story_id
        after = run.manifest.last_chapter_position
        fetched = call_with_retry(
            lambda: self._client.fetch_chapters(story_id, after),
            policy=self._retry_policy,
            description=f"chapters story_id={story_id} after={after}",
        )
        for chapter in sorted(fetched, key=lambda item: item.position):
            last = run.manifest.last_chapter_position
            if chapter.position <= last:
                continue
            if chapter.position != last + 1:
                raise ArchiveIntegrityError(
                    f"Chapter gap in story {story_id}: expected position {last + 1}, "
                    f"got {chapter.position}"
                )
            run.store.append_chapter(chapter)
            self._save_manifest(run, last_chapter_position=chapter.position)
            run.new_chapters.append(chapter)
        if not run.target.skip_chat:
            return ArchiveState.FETCHING_CHAT
        return ArchiveState.FETCHING_IMAGES if run.download_images else ArchiveState.PERSISTED

    def _fetch_chat(self, run: _ArchiveRun) -> ArchiveState:
        story_id = run.target.story_id
        known = {reply.reply_id for reply in run.store.read_chat()}
        cursor = run.manifest.chat_cursor
        while True:
            after = cursor
            try:
                page = call_with_retry(
                    lambda: self._client.fetch_chat(story_id, after),
                    policy=self._retry_policy,
                    description=f"chat story_id={story_id} cursor={after}",
                )
            except PlatformError as exc:
                logger.warning("archive.chat_incomplete story_id=%s error=%s", story_id, exc)
                run.chat_complete = False
                break
            if not page.replies:
                break
            fresh = sorted(
                (reply for reply in page.replies if reply.reply_id not in known),
                key=lambda reply: (reply.created_at, reply.reply_id),
            )
            run.store.append_chat(fresh)
            known.update(reply.reply_id for reply in fresh)
            run.new_replies.extend(fresh)
            next_cursor = page.next_cursor if page.next_cursor is not None else cursor
            if fresh or next_cursor != cursor:
                self._save_manifest(
                    run,
                    chat_cursor=next_cursor,
                    chat_reply_count=run.manifest.chat_reply_count + len(fresh),
                )
            if next_cursor == cursor:
                break
            cursor = next_cursor
        return ArchiveState.FETCHING_IMAGES if run.download_images else ArchiveState.PERSISTED

    def _fetch_images(self, run: _ArchiveRun) -> ArchiveState:
        # Whole archive, so images left behind by a failed or image-less run are caught up.
        refs = collect_image_refs(run.store.read_chapters(), run.store.read_chat())
        for ref in refs:
            if run.store.has_media(ref):
                continue
            try:
                payload = call_with_retry(
                    lambda: self._client.fetch_image(ref),
                    policy=self._retry_policy,
                    description=f"image ref={ref}",
                )
            except PlatformError as exc:
                logger.warning(
                    "archive.image_skipped story_id=%s ref=%s error=%s",
                    run.target.story_id,
                    ref,
                    exc,
                )
                run.images_failed += 1
                continue
            run.store.save_media(ref, payload)
            run.images_downloaded += 1
        return ArchiveState.PERSISTED
