"""Image reference discovery in chapter and chat content."""

from __future__ import annotations

from collections.abc import Iterable

from bs4 import BeautifulSoup
from bs4.element import Tag

from quest_archiver.core.archive_schema import ChapterRecord, ChatReply

_REMOTE_SCHEMES = ("http://", "https://", "//")


def _is_remote(ref: str) -> bool:
    return ref.startswith(_REMOTE_SCHEMES)


def normalize_ref(ref: str) -> str:
    stripped = ref.strip()
    if stripped.startswith("//"):
        return f"https:{stripped}"
    return stripped


def image_refs_in_html(html: str) -> list[str]:
    """Return remote `<img src>` references in document order, deduplicated."""
    if "<img" not in html.lower():
        return []
    soup = BeautifulSoup(html, "html.parser")
    refs: list[str] = []
    for image in soup.find_all("img"):
        if not isinstance(image, Tag):
            continue
        src = image.get("src")
        if isinstance(src, str) and _is_remote(src.strip()):
            refs.append(normalize_ref(src))
    return list(dict.fromkeys(refs))


def collect_image_refs(
    chapters: Iterable[ChapterRecord], replies: Iterable[ChatReply]
) -> list[str]:
    """Collect image references from chapters then chat replies, first occurrence wins."""
    refs: list[str] = []
    for chapter in chapters:
        refs.extend(image_refs_in_html(chapter.body))
    for reply in replies:
        if reply.image and _is_remote(reply.image.strip()):
            refs.append(normalize_ref(reply.image))
        refs.extend(image_refs_in_html(reply.body))
    return list(dict.fromkeys(refs))
