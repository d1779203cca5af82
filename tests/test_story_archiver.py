from __future__ import annotations

import json
from pathlib import Path

import pytest
from fake_platform import NO_WAIT, FakePlatform, chapter, reply

from quest_archiver.adapters.archive_store import StoryArchiveStore
from quest_archiver.core.archive_schema import ArchiveManifest, media_filename
from quest_archiver.core.story_archiver import ArchiveState, StoryArchiver
from quest_archiver.domain.models import TargetDescriptor

FIXED_CLOCK = "2024-05-01T00:00:00+00:00"


def _archiver(platform: FakePlatform, tmp_path: Path) -> StoryArchiver:
    return StoryArchiver(platform, tmp_path, retry_policy=NO_WAIT, clock=lambda: FIXED_CLOCK)


def _snapshot(root: Path) -> dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def _manifest(root: Path) -> dict[str, object]:
    return json.loads((root / "manifest.json").read_text(encoding="utf-8"))


def test_archive_new_story_writes_full_layout(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=3, replies=5)

    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))

    assert outcome.ok
    assert outcome.state is ArchiveState.PERSISTED
    assert (outcome.new_chapters, outcome.new_replies) == (3, 5)
    store = StoryArchiveStore(tmp_path / "q1")
    assert [item.position for item in store.read_chapters()] == [1, 2, 3]
    stamps = [item.created_at for item in store.read_chat()]
    assert stamps == sorted(stamps)
    assert store.load_metadata().title == "Quest q1"
    manifest = _manifest(tmp_path / "q1")
    assert manifest["last_chapter_position"] == 3
    assert manifest["chat_reply_count"] == 5
    assert manifest["chat_cursor"] == "5"
    assert manifest["last_updated_at"] == FIXED_CLOCK
    assert (tmp_path / "q1" / "media").is_dir()


def test_archive_resumes_after_manifest_high_water_mark(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=8)
    store = StoryArchiveStore(tmp_path / "q1")
    store.ensure_layout()
    for position in range(1, 6):
        store.append_chapter(chapter(position))
    store.save_manifest(ArchiveManifest(story_id="q1", last_chapter_position=5))

    outcome = _archiver(platform, tmp_path).archive(
        TargetDescriptor(story_id="q1", skip_chat=True), download_images=False
    )

    assert outcome.ok
    assert outcome.new_chapters == 3
    assert [item.position for item in store.read_chapters()] == list(range(1, 9))
    assert _manifest(tmp_path / "q1")["last_chapter_position"] == 8


def test_second_run_without_remote_changes_is_byte_identical(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=4, replies=3)
    archiver = StoryArchiver(platform, tmp_path, retry_policy=NO_WAIT)
    assert archiver.archive(TargetDescriptor(story_id="q1")).ok
    before = _snapshot(tmp_path)

    writes: list[str] = []
    original_chapter = StoryArchiveStore.append_chapter
    original_chat = StoryArchiveStore.append_chat

    def spy_chapter(self: StoryArchiveStore, record: object) -> None:
        writes.append("chapter")
        original_chapter(self, record)  # type: ignore[arg-type]

    def spy_chat(self: StoryArchiveStore, records: object) -> None:
        records = list(records)  # type: ignore[call-overload]
        if records:
            writes.append("chat")
        original_chat(self, records)

    monkeypatch.setattr(StoryArchiveStore, "append_chapter", spy_chapter)
    monkeypatch.setattr(StoryArchiveStore, "append_chat", spy_chat)

    outcome = archiver.archive(TargetDescriptor(story_id="q1"))

    assert outcome.ok
    assert (outcome.new_chapters, outcome.new_replies) == (0, 0)
    assert writes == []
    assert _snapshot(tmp_path) == before


def test_interrupted_run_resumes_with_remaining_chapters(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=6)
    archiver = _archiver(platform, tmp_path)
    original = StoryArchiveStore.append_chapter
    appended: list[int] = []

    def interrupting_append(self: StoryArchiveStore, record: object) -> None:
        if len(appended) == 2:
            raise KeyboardInterrupt
        original(self, record)  # type: ignore[arg-type]
        appended.append(record.position)  # type: ignore[attr-defined]

    monkeypatch.setattr(StoryArchiveStore, "append_chapter", interrupting_append)
    with pytest.raises(KeyboardInterrupt):
        archiver.archive(TargetDescriptor(story_id="q1", skip_chat=True))
    assert _manifest(tmp_path / "q1")["last_chapter_position"] == 2

    monkeypatch.setattr(StoryArchiveStore, "append_chapter", original)
    fetched_after: list[int] = []
    original_fetch = platform.fetch_chapters

    def recording_fetch(story_id: str, after_position: int) -> list:
        fetched_after.append(after_position)
        return original_fetch(story_id, after_position)

    monkeypatch.setattr(platform, "fetch_chapters", recording_fetch)
    outcome = archiver.archive(TargetDescriptor(story_id="q1", skip_chat=True))

    assert outcome.ok
    assert fetched_after == [2]
    assert outcome.new_chapters == 4
    positions = [item.position for item in StoryArchiveStore(tmp_path / "q1").read_chapters()]
    assert positions == [1, 2, 3, 4, 5, 6]


def test_records_written_after_last_manifest_update_are_dropped(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=3)
    store = StoryArchiveStore(tmp_path / "q1")
    store.ensure_layout()
    store.append_chapter(chapter(1))
    store.append_chapter(chapter(2, body="<p>half written</p>"))
    store.save_manifest(ArchiveManifest(story_id="q1", last_chapter_position=1))

    outcome = _archiver(platform, tmp_path).archive(
        TargetDescriptor(story_id="q1", skip_chat=True), download_images=False
    )

    assert outcome.ok
    chapters = store.read_chapters()
    assert [item.position for item in chapters] == [1, 2, 3]
    assert "half written" not in chapters[1].body


def test_images_disabled_leaves_media_folder_empty(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1")
    platform.chapters["q1"] = [chapter(1, body='<p><img src="https://cdn.test/a.png"></p>')]
    platform.images["https://cdn.test/a.png"] = b"png"

    outcome = _archiver(platform, tmp_path).archive(
        TargetDescriptor(story_id="q1"), download_images=False
    )

    assert outcome.ok
    assert list((tmp_path / "q1" / "media").iterdir()) == []
    assert platform.count("fetch_image") == 0


def test_image_failures_are_skipped_without_failing_story(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1")
    platform.chapters["q1"] = [
        chapter(
            1,
            body='<img src="https://cdn.test/a.png"><img src="https://cdn.test/missing.jpg">',
        )
    ]
    platform.chat["q1"] = [reply(1, image="https://cdn.test/chat.gif")]
    platform.images["https://cdn.test/a.png"] = b"png-bytes"
    platform.images["https://cdn.test/chat.gif"] = b"gif-bytes"

    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))

    assert outcome.ok
    assert (outcome.images_downloaded, outcome.images_failed) == (2, 1)
    media = tmp_path / "q1" / "media"
    assert (media / media_filename("https://cdn.test/a.png")).read_bytes() == b"png-bytes"
    assert (media / media_filename("https://cdn.test/chat.gif")).read_bytes() == b"gif-bytes"
    assert not (media / media_filename("https://cdn.test/missing.jpg")).exists()


def test_chapter_failure_after_retries_fails_story(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=2)
    platform.fail_always.add(("fetch_chapters", "q1"))

    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))

    assert not outcome.ok
    assert outcome.state is ArchiveState.FAILED
    assert outcome.failed_state is ArchiveState.FETCHING_CHAPTERS
    assert platform.count("fetch_chapters") == 4
    assert outcome.error is not None and "failed after 4 attempts" in outcome.error
    assert (tmp_path / "q1" / "metadata.json").exists()


def test_metadata_failure_fails_before_anything_is_written(tmp_path: Path) -> None:
    platform = FakePlatform()

    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="missing"))

    assert outcome.failed_state is ArchiveState.FETCHING_METADATA
    assert not (tmp_path / "missing").exists()


def test_chapter_gap_fails_story_and_keeps_contiguous_prefix(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1")
    platform.chapters["q1"] = [chapter(1), chapter(2), chapter(4)]

    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))

    assert outcome.failed_state is ArchiveState.FETCHING_CHAPTERS
    assert "expected position 3" in (outcome.error or "")
    assert _manifest(tmp_path / "q1")["last_chapter_position"] == 2


def test_chat_page_failure_is_best_effort(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=1, replies=4)
    original = platform.fetch_chat
    pages: list[str | None] = []

    def flaky_chat(story_id: str, after_cursor: str | None):  # type: ignore[no-untyped-def]
        pages.append(after_cursor)
        if after_cursor == "2":
            platform.fail_always.add(("fetch_chat", "q1"))
        return original(story_id, after_cursor)

    platform.fetch_chat = flaky_chat  # type: ignore[method-assign]
    outcome = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))

    assert outcome.ok
    assert not outcome.chat_complete
    assert outcome.new_replies == 2
    manifest = _manifest(tmp_path / "q1")
    assert manifest["chat_cursor"] == "2"
    assert manifest["chat_reply_count"] == 2

    platform.fail_always.clear()
    platform.fetch_chat = original  # type: ignore[method-assign]
    second = _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1"))
    assert second.new_replies == 2
    replies = StoryArchiveStore(tmp_path / "q1").read_chat()
    assert [item.reply_id for item in replies] == ["r1", "r2", "r3", "r4"]


def test_skip_chat_never_touches_chat(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=1, replies=3)

    outcome = _archiver(platform, tmp_path).archive(
        TargetDescriptor(story_id="q1", skip_chat=True)
    )

    assert outcome.ok
    assert platform.count("fetch_chat") == 0
    assert (tmp_path / "q1" / "chat.jsonl").read_text(encoding="utf-8") == ""


def test_new_chat_is_appended_on_later_runs(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=1, replies=3)
    archiver = _archiver(platform, tmp_path)
    archiver.archive(TargetDescriptor(story_id="q1"))

    platform.chat["q1"].append(reply(4))
    outcome = archiver.archive(TargetDescriptor(story_id="q1"))

    assert outcome.new_replies == 1
    assert _manifest(tmp_path / "q1")["chat_reply_count"] == 4


def test_author_provenance_is_recorded_in_manifest(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1", chapters=1)

    _archiver(platform, tmp_path).archive(TargetDescriptor(story_id="q1", user="penname"))

    assert _manifest(tmp_path / "q1")["user"] == "penname"


def test_images_of_chapters_kept_by_a_failed_run_are_downloaded_later(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1")
    platform.chapters["q1"] = [
        chapter(1, body='<img src="https://cdn.test/a.png">'),
        chapter(3),
    ]
    platform.images["https://cdn.test/a.png"] = b"png-bytes"
    archiver = _archiver(platform, tmp_path)

    first = archiver.archive(TargetDescriptor(story_id="q1"))
    assert first.failed_state is ArchiveState.FETCHING_CHAPTERS

    platform.chapters["q1"].insert(1, chapter(2))
    second = archiver.archive(TargetDescriptor(story_id="q1"))

    assert second.ok
    assert second.images_downloaded == 1
    media = tmp_path / "q1" / "media" / media_filename("https://cdn.test/a.png")
    assert media.read_bytes() == b"png-bytes"


def test_images_skipped_by_an_image_less_run_are_fetched_when_enabled(tmp_path: Path) -> None:
    platform = FakePlatform()
    platform.add_story("q1")
    platform.chapters["q1"] = [chapter(1, body='<img src="https://cdn.test/a.png">')]
    platform.images["https://cdn.test/a.png"] = b"png-bytes"
    archiver = _archiver(platform, tmp_path)
    archiver.archive(TargetDescriptor(story_id="q1", skip_chat=True), download_images=False)

    outcome = archiver.archive(TargetDescriptor(story_id="q1", skip_chat=True))
    again = archiver.archive(TargetDescriptor(story_id="q1", skip_chat=True))

    assert outcome.images_downloaded == 1
    assert again.images_downloaded == 0
    assert platform.count("fetch_image") == 1
