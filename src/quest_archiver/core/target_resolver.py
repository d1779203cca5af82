"""Expand raw story ids and author handles into target descriptors."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from quest_archiver.core.errors import PlatformError
from quest_archiver.core.retry import RetryPolicy, call_with_retry
from quest_archiver.domain.models import TargetDescriptor
from quest_archiver.domain.ports import PlatformClient

logger = logging.getLogger(__name__)

_STORY_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_USER_URL = re.compile(r"^https?://[^/]+/user/(?P<handle>[^/?#]+)")
_STORY_URL = re.compile(r"^https?://[^/]+/stories/[^/?#]+/(?P<story_id>[A-Za-z0-9_-]+)")

IdentifierKind = Literal["story", "author"]


@dataclass(frozen=True)
class ClassifiedIdentifier:
    kind: IdentifierKind
    value: str


@dataclass(frozen=True)
class ResolutionIssue:
    """A raw identifier that produced no targets."""

    identifier: str
    reason: str


@dataclass(frozen=True)
class IdentifierClassifier:
    """Decide whether a raw identifier names a story or an author.

    Identifiers starting with `author_marker` are author handles. Platform URLs
    are recognized by their `/user/<handle>` and `/stories/<slug>/<id>` paths.
    Everything else must look like a story id.
    """

    author_marker: str = "@"

    def classify(self, raw: str) -> ClassifiedIdentifier | None:
        value = raw.strip()
        if not value:
            return None
        user_match = _USER_URL.match(value)
        if user_match:
            return ClassifiedIdentifier(kind="author", value=user_match.group("handle"))
        story_match = _STORY_URL.match(value)
        if story_match:
            return ClassifiedIdentifier(kind="story", value=story_match.group("story_id"))
        if self.author_marker and value.startswith(self.author_marker):
            handle = value[len(self.author_marker) :].strip()
            return ClassifiedIdentifier(kind="author", value=handle) if handle else None
        if _STORY_ID.match(value):
            return ClassifiedIdentifier(kind="story", value=value)
        return None


class TargetResolver:
    """Turn a list of raw identifiers into archiving targets.

    Failures are collected per identifier in `issues` and never stop the
    remaining identifiers from resolving.
    """

    def __init__(
        self,
        client: PlatformClient,
        classifier: IdentifierClassifier | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._client = client
        self._classifier = classifier or IdentifierClassifier()
        self._retry_policy = retry_policy or RetryPolicy()
        self.issues: list[ResolutionIssue] = []

    def _report(self, identifier: str, reason: str) -> None:
        logger.warning("resolve.failed identifier=%s reason=%s", identifier, reason)
        self.issues.append(ResolutionIssue(identifier=identifier, reason=reason))

    def _expand_author(self, handle: str, skip_chat: bool) -> list[TargetDescriptor]:
        stories = call_with_retry(
            lambda: self._client.list_stories_by_author(handle),
            policy=self._retry_policy,
            description=f"author listing handle={handle}",
        )
        return [
            TargetDescriptor(story_id=story.story_id, skip_chat=skip_chat, user=handle)
            for story in stories
        ]

    def resolve(self, raw_identifiers: Iterable[str], skip_chat: bool) -> list[TargetDescriptor]:
        self.issues = []
        targets: list[TargetDescriptor] = []
        seen: set[str] = set()
        for raw in raw_identifiers:
            classified = self._classifier.classify(raw)
            if classified is None:
                self._report(raw, "unrecognized identifier")
                continue
            if classified.kind == "story":
                expanded = [TargetDescriptor(story_id=classified.value, skip_chat=skip_chat)]
            else:
                try:
                    expanded = self._expand_author(classified.value, skip_chat)
                except PlatformError as exc:
                    self._report(raw, str(exc))
                    continue
                if not expanded:
                    self._report(raw, "author has no stories")
                    continue
                logger.info("resolve.author handle=%s stories=%s", classified.value, len(expanded))
            for target in expanded:
                if target.story_id in seen:
                    continue
                seen.add(target.story_id)
                targets.append(target)
        return targets
