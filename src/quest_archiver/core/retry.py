"""Bounded retry with linear backoff for transient platform failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from quest_archiver.core.errors import RetryExhaustedError, TransientFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently a transient failure is retried.

    A call is attempted `retries + 1` times. The wait before retry `n` is
    `min(max_delay_seconds, base_delay_seconds * n)`.
    """

    retries: int = 3
    base_delay_seconds: float = 0.6
    max_delay_seconds: float = 8.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * attempt)


def call_with_retry(operation: Callable[[], T], *, policy: RetryPolicy, description: str) -> T:
    """Run `operation`, retrying only `TransientFetchError`.

    Any other exception propagates immediately.
    """
    attempts = max(0, policy.retries) + 1
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientFetchError as exc:
            if attempt >= attempts:
                raise RetryExhaustedError(description, attempts, exc) from exc
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry description=%s attempt=%s/%s delay=%.2fs error=%s",
                description,
                attempt,
                attempts,
                delay,
                exc,
            )
            policy.sleep(delay)
    raise AssertionError("unreachable")
