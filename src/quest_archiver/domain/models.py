"""Core archiving domain values."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from quest_archiver.core.archive_schema import ChatReply


class SortMode(StrEnum):
    """Orderings offered by the platform's story index."""

    NEW = "new"
    ACTIVE = "active"
    CHAPTER = "chapter"
    REPLIES = "replies"
    LIKE = "like"
    TOP = "top"


@dataclass(frozen=True)
class TargetDescriptor:
    """One resolved unit of archiving work."""

    story_id: str
    skip_chat: bool = False
    user: str | None = None


@dataclass(frozen=True)
class StorySummary:
    """A story entry as it appears in a listing page."""

    story_id: str
    title: str = ""
    author: str | None = None


@dataclass(frozen=True)
class PlatformSession:
    """Authenticated platform session."""

    username: str
    user_id: str | None = None


@dataclass(frozen=True)
class ChatPage:
    """One page of chat replies.

    `next_cursor` is the resume point after this page; it is `None` only when
    the page carries no replies.
    """

    replies: list[ChatReply] = field(default_factory=list)
    next_cursor: str | None = None


@dataclass(frozen=True)
class FatQuestRecord:
    """A story that permanently failed to archive during one run."""

    story_id: str
    reason: str
    recorded_at: str
