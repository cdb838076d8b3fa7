from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    stop_after_attempt,
    stop_never,
    wait_random_exponential,
)
from tenacity.retry import retry_base
from tenacity.stop import stop_base
from tenacity.wait import wait_base


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries.

    ``attempts`` counts the first try, so ``attempts=4`` means three retries.
    ``None`` retries until the retry predicate stops matching.
    """

    attempts: int | None
    min_seconds: float
    max_seconds: float
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")


DEFAULT_RETRY_POLICY = RetryBackoffPolicy(
    attempts=4,
    min_seconds=1.0,
    max_seconds=30.0,
    multiplier=2.0,
)


def build_interruptible_sleep(
    stop_event: asyncio.Event,
) -> Callable[[float], Awaitable[None]]:
    """Build an async sleep that exits early when shutdown is requested."""

    async def _interruptible_sleep(delay: float) -> None:
        if stop_event.is_set():
            return

        bounded_delay = max(delay, 0.0)
        with suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=bounded_delay)

    return _interruptible_sleep


def _stop_and_wait(policy: RetryBackoffPolicy) -> tuple[stop_base, wait_base]:
    stop = (
        stop_never if policy.attempts is None else stop_after_attempt(policy.attempts)
    )
    # Full jitter: each delay is uniform in [0, min_seconds * multiplier**n],
    # capped at max_seconds.
    wait = wait_random_exponential(
        multiplier=policy.min_seconds,
        max=policy.max_seconds,
        exp_base=policy.multiplier,
    )
    return stop, wait


def build_exponential_jitter_retrying(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff."""
    stop, wait = _stop_and_wait(policy)
    options: dict[str, object] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(
        retry=retry,
        wait=wait,
        stop=stop,
        reraise=reraise,
        **options,  # type: ignore[arg-type]
    )


def build_exponential_jitter_retrying_sync(
    *,
    retry: retry_base,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], None] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> Retrying:
    """Build a blocking ``Retrying`` with exponential jitter backoff."""
    stop, wait = _stop_and_wait(policy)
    options: dict[str, object] = {}
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return Retrying(
        retry=retry,
        wait=wait,
        stop=stop,
        reraise=reraise,
        **options,  # type: ignore[arg-type]
    )
