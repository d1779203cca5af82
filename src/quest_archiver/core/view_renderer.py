"""Static, paginated HTML views built from a story archive."""

from __future__ import annotations

import logging
import shutil
from bisect import bisect_right
from dataclasses import dataclass
from datetime import UTC, datetime
from html import escape
from pathlib import Path
from typing import Final

from bs4 import BeautifulSoup
from bs4.element import Tag

from quest_archiver.adapters.archive_inspector import is_archive
from quest_archiver.adapters.archive_store import StoryArchiveStore, atomic_write_text
from quest_archiver.core.archive_schema import (
    MEDIA_DIRNAME,
    ChapterRecord,
    ChatReply,
    StoryMetadata,
    media_filename,
)
from quest_archiver.core.errors import ArchiveIntegrityError
from quest_archiver.core.media_refs import image_refs_in_html, normalize_ref
from quest_archiver.pipelines.results import ViewRenderResult

logger = logging.getLogger(__name__)

DEFAULT_PAGE_CHAR_LIMIT: Final = 250_000
INDEX_FILENAME: Final = "index.html"
_DROPPED_TAGS: Final = ("script", "iframe", "object", "embed")


@dataclass(frozen=True)
class _Entry:
    anchor: str
    html: str
    chapter: ChapterRecord | None = None


def page_filename(number: int) -> str:
    return f"page-{number:04d}.html"


def format_timestamp(epoch_ms: int | None) -> str:
    if not epoch_ms:
        return ""
    return datetime.fromtimestamp(epoch_ms / 1000, UTC).strftime("%Y-%m-%d %H:%M UTC")


def interleave(
    chapters: list[ChapterRecord], replies: list[ChatReply]
) -> list[ChapterRecord | ChatReply]:
    """Order chapters by position and slot each reply after the chapter it follows.

    A reply follows its explicit `chapter_id` when that chapter is archived,
    otherwise the latest chapter not newer than the reply. Replies older than
    every chapter lead the sequence.
    """
    ordered_chapters = sorted(chapters, key=lambda chapter: chapter.position)
    index_by_id = {chapter.chapter_id: index for index, chapter in enumerate(ordered_chapters)}
    stamps: list[int] = []
    running = 0
    for chapter in ordered_chapters:
        running = max(running, chapter.created_at or running)
        stamps.append(running)

    prelude: list[ChatReply] = []
    buckets: list[list[ChatReply]] = [[] for _ in ordered_chapters]
    for reply in sorted(replies, key=lambda item: (item.created_at, item.reply_id)):
        if reply.chapter_id is not None and reply.chapter_id in index_by_id:
            slot = index_by_id[reply.chapter_id]
        else:
            slot = bisect_right(stamps, reply.created_at) - 1
        if slot < 0:
            prelude.append(reply)
        else:
            buckets[slot].append(reply)

    sequence: list[ChapterRecord | ChatReply] = list(prelude)
    for chapter, bucket in zip(ordered_chapters, buckets, strict=True):
        sequence.append(chapter)
        sequence.extend(bucket)
    return sequence


def rewrite_fragment(html: str, available_media: set[str]) -> str:
    """Drop active content and point downloaded images at `media/`."""
    if not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for name in _DROPPED_TAGS:
        for node in soup.find_all(name):
            node.decompose()
    for image in soup.find_all("img"):
        if not isinstance(image, Tag):
            continue
        src = image.get("src")
        if not isinstance(src, str):
            continue
        ref = normalize_ref(src)
        if ref in available_media:
            image["src"] = f"{MEDIA_DIRNAME}/{media_filename(ref)}"
    return str(soup)


def _chapter_html(chapter: ChapterRecord, available_media: set[str]) -> str:
    title = chapter.title or f"Chapter {chapter.position}"
    stamp = format_timestamp(chapter.created_at)
    return (
        f'<section class="chapter" id="chapter-{escape(chapter.chapter_id, quote=True)}">\n'
        f"<h2>{escape(title)}</h2>\n"
        f'<p class="stamp">{escape(stamp)}</p>\n'
        f'<div class="body">{rewrite_fragment(chapter.body, available_media)}</div>\n'
        "</section>"
    )


def _reply_html(reply: ChatReply, available_media: set[str]) -> str:
    author = reply.author or "Anonymous"
    image_html = ""
    if reply.image:
        ref = normalize_ref(reply.image)
        src = f"{MEDIA_DIRNAME}/{media_filename(ref)}" if ref in available_media else ref
        image_html = f'<img src="{escape(src, quote=True)}" alt="" />'
    return (
        f'<div class="reply" id="reply-{escape(reply.reply_id, quote=True)}">'
        f'<span class="author">{escape(author)}</span> '
        f'<span class="stamp">{escape(format_timestamp(reply.created_at))}</span>'
        f'<div class="body">{rewrite_fragment(reply.body, available_media)}{image_html}</div>'
        "</div>"
    )


def paginate(entries: list[_Entry], page_char_limit: int) -> list[list[_Entry]]:
    """Split entries into pages, breaking before an entry that would pass the limit."""
    pages: list[list[_Entry]] = []
    current: list[_Entry] = []
    current_size = 0
    for entry in entries:
        size = len(entry.html)
        if current and current_size + size > page_char_limit:
            pages.append(current)
            current = []
            current_size = 0
        current.append(entry)
        current_size += size
    if current or not pages:
        pages.append(current)
    return pages


def _nav_html(number: int, total: int) -> str:
    links: list[str] = []
    if number > 1:
        links.append(f'<a href="{page_filename(number - 1)}">&larr; Previous</a>')
    links.append(f'<a href="{INDEX_FILENAME}">Contents</a>')
    if number < total:
        links.append(f'<a href="{page_filename(number + 1)}">Next &rarr;</a>')
    links.append(f"<span>Page {number} of {total}</span>")
    return '<nav class="pager">' + " | ".join(links) + "</nav>"


def build_page(title: str, body_html: str) -> str:
    """Wrap archive HTML in a single self-contained page template."""
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{escape(title)}</title>
  <style>
    :root {{
      color-scheme: light;
      --paper: #f8f5ef;
      --ink: #1c1a17;
      --accent: #9d4f2c;
      --frame: #d9ccb8;
    }}
    * {{ box-sizing: border-box; }}
    body {{
      margin: 0;
      font-family: Georgia, "Times New Roman", serif;
      background: linear-gradient(180deg, #f2e8d8 0%, #ede1cd 100%);
      color: var(--ink);
    }}
    .shell {{
      max-width: 880px;
      margin: 2rem auto;
      background: var(--paper);
      border: 1px solid var(--frame);
      border-radius: 10px;
      box-shadow: 0 12px 32px rgba(40, 28, 16, 0.12);
      overflow: hidden;
    }}
    .titlebar {{
      padding: 1rem 1.4rem;
      background: linear-gradient(90deg, #2f251f, #59453b);
      color: #f8efe2;
      letter-spacing: 0.03em;
      font-size: 0.95rem;
    }}
    .content {{
      padding: 1.6rem;
      line-height: 1.7;
      font-size: 1.05rem;
    }}
    .pager {{ padding: 0.6rem 1.4rem; border-bottom: 1px solid var(--frame); }}
    .pager a {{ color: var(--accent); }}
    .chapter {{ margin: 1.6rem 0; }}
    .chapter h2 {{ border-bottom: 2px solid var(--frame); padding-bottom: 0.3rem; }}
    .stamp {{ color: #7a6a5c; font-size: 0.85rem; }}
    .reply {{
      margin: 0.4rem 0 0.4rem 1.2rem;
      padding: 0.4rem 0.8rem;
      border-left: 3px solid var(--frame);
      font-size: 0.95rem;
    }}
    .reply .author {{ font-weight: bold; }}
    img {{ max-width: 100%; }}
  </style>
</head>
<body>
  <main class="shell">
    <div class="titlebar">{escape(title)}</div>
{body_html}
  </main>
</body>
</html>
"""


def _index_html(metadata: StoryMetadata, pages: list[list[_Entry]]) -> str:
    lines = [f"<h1>{escape(metadata.title or metadata.story_id)}</h1>"]
    if metadata.author:
        lines.append(f'<p class="author">by {escape(metadata.author)}</p>')
    if metadata.description:
        lines.append(f'<div class="description">{escape(metadata.description)}</div>')
    if metadata.tags:
        lines.append(f'<p class="tags">{escape(", ".join(metadata.tags))}</p>')
    lines.append("<ol>")
    for number, page in enumerate(pages, start=1):
        for entry in page:
            if entry.chapter is None:
                continue
            title = entry.chapter.title or f"Chapter {entry.chapter.position}"
            lines.append(
                f'<li><a href="{page_filename(number)}#{entry.anchor}">{escape(title)}</a></li>'
            )
    lines.append("</ol>")
    body = "\n".join(lines)
    return f'    <article class="content">\n{body}\n    </article>'


def _load_archive(
    archive_path: Path,
) -> tuple[StoryArchiveStore, StoryMetadata, list[ChapterRecord], list[ChatReply]]:
    if not is_archive(archive_path):
        raise ArchiveIntegrityError(f"Not a story archive: {archive_path}")
    store = StoryArchiveStore(archive_path)
    metadata = store.load_metadata()
    chapters = store.read_chapters()
    positions = [chapter.position for chapter in chapters]
    if len(set(positions)) != len(positions):
        raise ArchiveIntegrityError(f"Duplicate chapter positions in {archive_path}")
    return store, metadata, chapters, store.read_chat()


def _clear_stale_pages(output_dir: Path, keep: int) -> None:
    for path in output_dir.glob("page-*.html"):
        suffix = path.stem.removeprefix("page-")
        if suffix.isdigit() and int(suffix) > keep:
            path.unlink()


def _copy_media(store: StoryArchiveStore, refs: set[str], output_dir: Path) -> None:
    target_dir = output_dir / MEDIA_DIRNAME
    for ref in sorted(refs):
        source = store.media_path(ref)
        target = target_dir / source.name
        if target.exists() and target.read_bytes() == source.read_bytes():
            continue
        target_dir.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)


def render_view(
    archive_path: Path,
    output_path: Path | None = None,
    *,
    page_char_limit: int = DEFAULT_PAGE_CHAR_LIMIT,
) -> ViewRenderResult:
    """Render one archive into `index.html` plus numbered pages.

    With no `output_path` the pages are written into the archive folder;
    otherwise into `output_path/<story_id>/` together with the media they use.
    Output depends only on archive contents.
    """
    store, metadata, chapters, replies = _load_archive(archive_path)
    output_dir = archive_path if output_path is None else output_path / metadata.story_id

    referenced: set[str] = set()
    for chapter in chapters:
        referenced.update(image_refs_in_html(chapter.body))
    for reply in replies:
        referenced.update(image_refs_in_html(reply.body))
        if reply.image:
            referenced.add(normalize_ref(reply.image))
    available_media = {ref for ref in referenced if store.has_media(ref)}

    entries: list[_Entry] = []
    for item in interleave(chapters, replies):
        if isinstance(item, ChapterRecord):
            entries.append(
                _Entry(
                    anchor=f"chapter-{item.chapter_id}",
                    html=_chapter_html(item, available_media),
                    chapter=item,
                )
            )
        else:
            entries.append(
                _Entry(anchor=f"reply-{item.reply_id}", html=_reply_html(item, available_media))
            )
    pages = paginate(entries, max(1, page_char_limit))

    title = metadata.title or metadata.story_id
    output_dir.mkdir(parents=True, exist_ok=True)
    page_paths: list[Path] = []
    for number, page in enumerate(pages, start=1):
        nav = _nav_html(number, len(pages))
        body = "\n".join(entry.html for entry in page)
        content = f"    {nav}\n    <article class=\"content\">\n{body}\n    </article>\n    {nav}"
        path = output_dir / page_filename(number)
        atomic_write_text(path, build_page(f"{title} | Page {number}", content))
        page_paths.append(path)
    _clear_stale_pages(output_dir, keep=len(pages))

    index_path = output_dir / INDEX_FILENAME
    atomic_write_text(index_path, build_page(title, _index_html(metadata, pages)))
    if output_path is not None:
        _copy_media(store, available_media, output_dir)

    logger.info(
        "view.rendered story_id=%s pages=%s chapters=%s replies=%s output=%s",
        metadata.story_id,
        len(pages),
        len(chapters),
        len(replies),
        output_dir,
    )
    return ViewRenderResult(
        archive_path=archive_path,
        output_dir=output_dir,
        index_path=index_path,
        page_paths=tuple(page_paths),
        chapter_count=len(chapters),
        reply_count=len(replies),
    )
