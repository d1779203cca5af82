"""Capability port for the remote fiction platform."""

from __future__ import annotations

from typing import Protocol

from quest_archiver.core.archive_schema import ChapterRecord, StoryMetadata
from quest_archiver.domain.models import ChatPage, PlatformSession, SortMode, StorySummary


class PlatformClient(Protocol):
    """Authenticated accessor for listings, stories, chapters, chat and images.

    Implementations raise `TransientFetchError` for retryable failures and
    `StoryNotFoundError` for unknown ids or handles.
    """

    def login(self, username: str, password: str) -> PlatformSession:
        ...

    def list_stories(self, sort_mode: SortMode, page: int) -> list[StorySummary]:
        ...

    def list_stories_by_author(self, handle: str) -> list[StorySummary]:
        ...

    def fetch_metadata(self, story_id: str) -> StoryMetadata:
        ...

    def fetch_chapters(self, story_id: str, after_position: int) -> list[ChapterRecord]:
        ...

    def fetch_chat(self, story_id: str, after_cursor: str | None) -> ChatPage:
        ...

    def fetch_image(self, ref: str) -> bytes:
        ...
