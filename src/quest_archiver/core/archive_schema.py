"""On-disk record formats for story archives.

Each archived story lives in its own directory::

    <story_id>/
      metadata.json    StoryMetadata
      chapters.jsonl   one ChapterRecord per line, ordered by position
      chat.jsonl       one ChatReply per line, ordered by timestamp
      manifest.json    ArchiveManifest (incremental fetch bookkeeping)
      media/           downloaded image assets

Records are strict pydantic models so that a damaged archive fails loudly when
it is read back for resumption or rendering.
"""

from __future__ import annotations

import posixpath
from datetime import UTC, datetime
from hashlib import sha256
from typing import Final, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field

ARCHIVE_SCHEMA_VERSION: Final[Literal["quest_archive.v1"]] = "quest_archive.v1"

METADATA_FILENAME: Final = "metadata.json"
CHAPTERS_FILENAME: Final = "chapters.jsonl"
CHAT_FILENAME: Final = "chat.jsonl"
MANIFEST_FILENAME: Final = "manifest.json"
MEDIA_DIRNAME: Final = "media"

_IMAGE_EXTENSIONS: Final[set[str]] = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".bmp", ".svg"}


def utc_now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 form."""
    return datetime.now(UTC).isoformat()


def media_filename(ref: str) -> str:
    """Map a remote image reference to its stable file name inside `media/`."""
    digest = sha256(ref.encode("utf-8")).hexdigest()[:24]
    extension = posixpath.splitext(urlsplit(ref).path)[1].lower()
    if extension not in _IMAGE_EXTENSIONS:
        extension = ".img"
    return f"{digest}{extension}"


class ArchiveModel(BaseModel):
    """Strict model configuration for archive records."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class StoryMetadata(ArchiveModel):
    """Story-level metadata, rewritten on every archive run."""

    story_id: str = Field(min_length=1)
    title: str = ""
    author: str | None = None
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: int | None = None
    updated_at: int | None = None
    chapter_count: int = Field(default=0, ge=0)
    reply_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)


class ChapterRecord(ArchiveModel):
    """One ordered content update. `body` is platform HTML."""

    chapter_id: str = Field(min_length=1)
    position: int = Field(ge=1)
    title: str = ""
    body: str = ""
    created_at: int | None = None


class ChatReply(ArchiveModel):
    """One reader discussion message."""

    reply_id: str = Field(min_length=1)
    author: str | None = None
    body: str = ""
    created_at: int = 0
    chapter_id: str | None = None
    image: str | None = None


class ArchiveManifest(ArchiveModel):
    """High-water marks used to resume an archive incrementally."""

    schema_version: Literal["quest_archive.v1"] = ARCHIVE_SCHEMA_VERSION
    story_id: str = Field(min_length=1)
    user: str | None = None
    last_chapter_position: int = Field(default=0, ge=0)
    chat_cursor: str | None = None
    chat_reply_count: int = Field(default=0, ge=0)
    last_updated_at: str | None = None
