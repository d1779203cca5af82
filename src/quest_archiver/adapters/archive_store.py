"""Filesystem persistence for one story archive directory."""

from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from quest_archiver.core.archive_schema import (
    CHAPTERS_FILENAME,
    CHAT_FILENAME,
    MANIFEST_FILENAME,
    MEDIA_DIRNAME,
    METADATA_FILENAME,
    ArchiveManifest,
    ChapterRecord,
    ChatReply,
    StoryMetadata,
    media_filename,
)
from quest_archiver.core.errors import ArchiveIntegrityError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _dump_document(model: BaseModel) -> str:
    return json.dumps(model.model_dump(mode="json"), ensure_ascii=False, indent=2, sort_keys=True) + "\n"


def _dump_line(model: BaseModel) -> str:
    return json.dumps(model.model_dump(mode="json"), ensure_ascii=False, sort_keys=True) + "\n"


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Replace `path` with `payload` so readers never observe a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ArchiveIntegrityError(f"Missing archive file: {path}") from exc
    except UnicodeDecodeError as exc:
        raise ArchiveIntegrityError(f"Archive file {path} is not valid UTF-8: {exc}") from exc
    except OSError as exc:
        raise ArchiveIntegrityError(f"Unreadable archive file {path}: {exc}") from exc


def _read_document(path: Path, model: type[ModelT]) -> ModelT:
    text = _read_text(path)
    try:
        return model.model_validate_json(text)
    except ValidationError as exc:
        raise ArchiveIntegrityError(f"Malformed archive file {path}: {exc}") from exc


def _read_lines(path: Path, model: type[ModelT]) -> list[ModelT]:
    if not path.exists():
        return []
    records: list[ModelT] = []
    for line_number, line in enumerate(_read_text(path).split("\n"), start=1):
        if not line.strip():
            continue
        try:
            records.append(model.model_validate_json(line))
        except ValidationError as exc:
            raise ArchiveIntegrityError(
                f"Malformed record at {path}:{line_number}: {exc}"
            ) from exc
    return records


class StoryArchiveStore:
    """Read and extend the files of a single story archive."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    @property
    def metadata_path(self) -> Path:
        return self._root / METADATA_FILENAME

    @property
    def chapters_path(self) -> Path:
        return self._root / CHAPTERS_FILENAME

    @property
    def chat_path(self) -> Path:
        return self._root / CHAT_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self._root / MANIFEST_FILENAME

    @property
    def media_dir(self) -> Path:
        return self._root / MEDIA_DIRNAME

    def ensure_layout(self) -> None:
        """Create the directory skeleton; existing files are left untouched."""
        self.media_dir.mkdir(parents=True, exist_ok=True)
        self.chapters_path.touch(exist_ok=True)
        self.chat_path.touch(exist_ok=True)

    def load_manifest(self) -> ArchiveManifest | None:
        if not self.manifest_path.exists():
            return None
        return _read_document(self.manifest_path, ArchiveManifest)

    def save_manifest(self, manifest: ArchiveManifest) -> None:
        atomic_write_text(self.manifest_path, _dump_document(manifest))

    def load_metadata(self) -> StoryMetadata:
        return _read_document(self.metadata_path, StoryMetadata)

    def save_metadata(self, metadata: StoryMetadata) -> None:
        atomic_write_text(self.metadata_path, _dump_document(metadata))

    def read_chapters(self) -> list[ChapterRecord]:
        return _read_lines(self.chapters_path, ChapterRecord)

    def read_chat(self) -> list[ChatReply]:
        return _read_lines(self.chat_path, ChatReply)

    def append_chapter(self, chapter: ChapterRecord) -> None:
        self._append_lines(self.chapters_path, [chapter])

    def append_chat(self, replies: Iterable[ChatReply]) -> None:
        self._append_lines(self.chat_path, replies)

    def _append_lines(self, path: Path, records: Iterable[BaseModel]) -> None:
        payload = "".join(_dump_line(record) for record in records)
        if not payload:
            return
        with path.open("a", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())

    def reconcile(self, manifest: ArchiveManifest) -> tuple[int, int]:
        """Drop records persisted after the last manifest update.

        Returns how many chapter and chat records were discarded.
        """
        chapters = self.read_chapters()
        kept_chapters = [c for c in chapters if c.position <= manifest.last_chapter_position]
        if len(kept_chapters) != len(chapters):
            atomic_write_text(self.chapters_path, "".join(_dump_line(c) for c in kept_chapters))
        replies = self.read_chat()
        kept_replies = replies[: manifest.chat_reply_count]
        if len(kept_replies) != len(replies):
            atomic_write_text(self.chat_path, "".join(_dump_line(r) for r in kept_replies))
        return len(chapters) - len(kept_chapters), len(replies) - len(kept_replies)

    def media_path(self, ref: str) -> Path:
        return self.media_dir / media_filename(ref)

    def has_media(self, ref: str) -> bool:
        return self.media_path(ref).exists()

    def save_media(self, ref: str, payload: bytes) -> Path:
        path = self.media_path(ref)
        atomic_write_bytes(path, payload)
        return path
