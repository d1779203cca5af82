"""httpx implementation of the platform capability.

The client talks to a JSON gateway whose payloads mirror the archive records
(`StoryMetadata`, `ChapterRecord`, `ChatReply`). Endpoint paths live in one
table so a deployment can point them at its own gateway.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from types import TracebackType
from typing import Any, Final

import httpx
from pydantic import ValidationError

from quest_archiver.config import DEFAULT_BASE_URL, DEFAULT_USER_AGENT
from quest_archiver.core.archive_schema import ChapterRecord, ChatReply, StoryMetadata
from quest_archiver.core.errors import (
    AuthenticationError,
    PlatformError,
    StoryNotFoundError,
    TransientFetchError,
)
from quest_archiver.domain.models import ChatPage, PlatformSession, SortMode, StorySummary

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS: Final[Mapping[str, str]] = {
    "login": "/api/login",
    "listing": "/api/stories/sorted/{sort}/{page}",
    "author": "/api/users/{handle}/stories",
    "story": "/api/stories/{story_id}",
    "chapters": "/api/stories/{story_id}/chapters",
    "chat": "/api/stories/{story_id}/chat",
}
_TRANSIENT_STATUS: Final = frozenset({408, 425, 429, 500, 502, 503, 504})


class HttpPlatformClient:
    """Synchronous, rate-limited platform client."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        request_delay_seconds: float = 0.0,
        endpoints: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._endpoints = {**DEFAULT_ENDPOINTS, **(endpoints or {})}
        self._request_delay_seconds = max(0.0, request_delay_seconds)
        self._last_request_at: float | None = None
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"User-Agent": user_agent},
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    def __enter__(self) -> HttpPlatformClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _throttle(self) -> None:
        if self._last_request_at is not None and self._request_delay_seconds > 0:
            wait = self._request_delay_seconds - (time.monotonic() - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
        self._last_request_at = time.monotonic()

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        self._throttle()
        try:
            response = self._client.request(method, url, params=params, json=json)
        except httpx.TransportError as exc:
            raise TransientFetchError(f"{method} {url}: {exc}") from exc
        if response.status_code in _TRANSIENT_STATUS:
            raise TransientFetchError(f"{method} {url}: HTTP {response.status_code}")
        if response.status_code == 404:
            raise StoryNotFoundError(f"{method} {url}: not found")
        if response.status_code >= 400:
            raise PlatformError(f"{method} {url}: HTTP {response.status_code}")
        return response

    def _get_json(self, url: str, params: Mapping[str, Any] | None = None) -> Any:
        response = self._request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise PlatformError(f"GET {url}: response was not JSON") from exc

    def _path(self, name: str, **values: object) -> str:
        return self._endpoints[name].format(**values)

    def login(self, username: str, password: str) -> PlatformSession:
        try:
            response = self._request(
                "POST", self._path("login"), json={"username": username, "password": password}
            )
        except PlatformError as exc:
            if isinstance(exc, TransientFetchError):
                raise
            raise AuthenticationError(f"Unable to login as {username}: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthenticationError("Login response was not JSON") from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("Login response was not an object")
        session = PlatformSession(
            username=str(payload.get("username") or username),
            user_id=str(payload["_id"]) if payload.get("_id") else None,
        )
        logger.info("platform.login username=%s", session.username)
        return session

    def _summaries(self, payload: Any, source: str) -> list[StorySummary]:
        if isinstance(payload, dict):
            payload = payload.get("stories", [])
        if not isinstance(payload, list):
            raise PlatformError(f"{source}: expected a list of stories")
        summaries: list[StorySummary] = []
        for item in payload:
            if not isinstance(item, dict) or not item.get("story_id"):
                logger.warning("platform.bad_summary source=%s item=%r", source, item)
                continue
            summaries.append(
                StorySummary(
                    story_id=str(item["story_id"]),
                    title=str(item.get("title") or ""),
                    author=str(item["author"]) if item.get("author") else None,
                )
            )
        return summaries

    def list_stories(self, sort_mode: SortMode, page: int) -> list[StorySummary]:
        url = self._path("listing", sort=sort_mode.value, page=page)
        return self._summaries(self._get_json(url), url)

    def list_stories_by_author(self, handle: str) -> list[StorySummary]:
        url = self._path("author", handle=handle)
        return self._summaries(self._get_json(url), url)

    def fetch_metadata(self, story_id: str) -> StoryMetadata:
        url = self._path("story", story_id=story_id)
        try:
            return StoryMetadata.model_validate(self._get_json(url))
        except ValidationError as exc:
            raise PlatformError(f"GET {url}: malformed story metadata: {exc}") from exc

    def fetch_chapters(self, story_id: str, after_position: int) -> list[ChapterRecord]:
        url = self._path("chapters", story_id=story_id)
        payload = self._get_json(url, params={"after": after_position})
        if isinstance(payload, dict):
            payload = payload.get("chapters", [])
        if not isinstance(payload, list):
            raise PlatformError(f"GET {url}: expected a list of chapters")
        try:
            return [ChapterRecord.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise PlatformError(f"GET {url}: malformed chapter: {exc}") from exc

    def fetch_chat(self, story_id: str, after_cursor: str | None) -> ChatPage:
        url = self._path("chat", story_id=story_id)
        params = {"after": after_cursor} if after_cursor is not None else None
        payload = self._get_json(url, params=params)
        if not isinstance(payload, dict):
            raise PlatformError(f"GET {url}: expected a chat page object")
        try:
            replies = [ChatReply.model_validate(item) for item in payload.get("replies", [])]
        except ValidationError as exc:
            raise PlatformError(f"GET {url}: malformed chat reply: {exc}") from exc
        next_cursor = payload.get("next_cursor")
        return ChatPage(
            replies=replies,
            next_cursor=str(next_cursor) if next_cursor is not None and replies else None,
        )

    def fetch_image(self, ref: str) -> bytes:
        return self._request("GET", ref).content
