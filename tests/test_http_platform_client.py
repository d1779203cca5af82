from __future__ import annotations

import json

import httpx
import pytest

from quest_archiver.adapters.http_platform_client import HttpPlatformClient
from quest_archiver.core.errors import (
    AuthenticationError,
    PlatformError,
    StoryNotFoundError,
    TransientFetchError,
)
from quest_archiver.domain.models import SortMode


def _client(handler) -> HttpPlatformClient:  # type: ignore[no-untyped-def]
    return HttpPlatformClient("https://quests.test", transport=httpx.MockTransport(handler))


def test_listing_parses_summaries_and_skips_bad_items() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(
            200,
            json={
                "stories": [
                    {"story_id": "a1", "title": "First", "author": "writer"},
                    {"title": "no id"},
                    {"story_id": "a2"},
                ]
            },
        )

    with _client(handler) as client:
        stories = client.list_stories(SortMode.ACTIVE, 3)

    assert seen == ["/api/stories/sorted/active/3"]
    assert [story.story_id for story in stories] == ["a1", "a2"]
    assert stories[0].author == "writer"
    assert stories[1].author is None


@pytest.mark.parametrize(
    ("status", "error_type"),
    [
        (429, TransientFetchError),
        (503, TransientFetchError),
        (404, StoryNotFoundError),
        (403, PlatformError),
    ],
)
def test_status_codes_map_to_error_types(status: int, error_type: type[Exception]) -> None:
    with _client(lambda request: httpx.Response(status)) as client:
        with pytest.raises(error_type):
            client.fetch_metadata("q1")


def test_transport_error_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _client(handler) as client:
        with pytest.raises(TransientFetchError):
            client.fetch_chapters("q1", 0)


def test_malformed_metadata_is_platform_error() -> None:
    with _client(lambda request: httpx.Response(200, json={"title": "no id"})) as client:
        with pytest.raises(PlatformError, match="malformed story metadata"):
            client.fetch_metadata("q1")


def test_fetch_chapters_sends_high_water_mark() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {"chapter_id": "c3", "position": 3, "title": "Three", "body": "<p>3</p>"},
            ],
        )

    with _client(handler) as client:
        chapters = client.fetch_chapters("q1", 2)

    assert seen[0].url.params["after"] == "2"
    assert [chapter.position for chapter in chapters] == [3]


def test_fetch_chat_returns_cursor_only_with_replies() -> None:
    payloads = [
        {"replies": [{"reply_id": "r1", "body": "hi", "created_at": 10}], "next_cursor": 10},
        {"replies": [], "next_cursor": 10},
    ]
    cursors: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        cursors.append(request.url.params.get("after"))
        return httpx.Response(200, json=payloads[len(cursors) - 1])

    with _client(handler) as client:
        first = client.fetch_chat("q1", None)
        second = client.fetch_chat("q1", first.next_cursor)

    assert cursors == [None, "10"]
    assert first.next_cursor == "10"
    assert [item.reply_id for item in first.replies] == ["r1"]
    assert second.next_cursor is None


def test_login_posts_credentials_and_reads_session() -> None:
    bodies: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"_id": "u7", "username": "Reader"})

    with _client(handler) as client:
        session = client.login("reader", "secret")

    assert bodies == [{"username": "reader", "password": "secret"}]
    assert session.username == "Reader"
    assert session.user_id == "u7"


def test_login_rejection_is_authentication_error() -> None:
    with _client(lambda request: httpx.Response(401)) as client:
        with pytest.raises(AuthenticationError):
            client.login("reader", "wrong")


def test_fetch_image_uses_absolute_url_and_user_agent() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"\x89PNG")

    with _client(handler) as client:
        data = client.fetch_image("https://cdn.test/a.png")

    assert data == b"\x89PNG"
    assert str(seen[0].url) == "https://cdn.test/a.png"
    assert seen[0].headers["User-Agent"].startswith("quest_archiver")
