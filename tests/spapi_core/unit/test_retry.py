from __future__ import annotations

import asyncio
import random
import warnings

import pytest
from tenacity import AsyncRetrying, RetryCallState, RetryError, Retrying
from tenacity.retry import retry_if_exception_type

from spapi_core.retry import (
    DEFAULT_RETRY_POLICY,
    RetryBackoffPolicy,
    build_exponential_jitter_retrying,
    build_exponential_jitter_retrying_sync,
    build_interruptible_sleep,
)


@pytest.mark.parametrize(
    ("attempts", "min_seconds", "max_seconds", "multiplier", "message"),
    [
        (0, 0.0, 1.0, 2.0, "attempts must be >= 1"),
        (1, -0.1, 1.0, 2.0, "min_seconds must be >= 0"),
        (1, 0.1, -0.1, 2.0, "max_seconds must be >= 0"),
        (1, 2.0, 1.0, 2.0, "max_seconds must be >= min_seconds"),
        (1, 0.0, 1.0, 0.5, "multiplier must be >= 1"),
    ],
)
def test_retry_backoff_policy_validation(
    attempts: int,
    min_seconds: float,
    max_seconds: float,
    multiplier: float,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        RetryBackoffPolicy(
            attempts=attempts,
            min_seconds=min_seconds,
            max_seconds=max_seconds,
            multiplier=multiplier,
        )


def test_default_retry_policy_matches_sdk_defaults() -> None:
    assert DEFAULT_RETRY_POLICY == RetryBackoffPolicy(
        attempts=4,
        min_seconds=1.0,
        max_seconds=30.0,
        multiplier=2.0,
    )


@pytest.mark.asyncio
async def test_interruptible_sleep_returns_immediately_when_stop_event_is_set() -> (
    None
):
    stop_event = asyncio.Event()
    stop_event.set()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(30.0), timeout=0.1)


@pytest.mark.asyncio
async def test_interruptible_sleep_waits_for_delay_when_not_interrupted() -> None:
    stop_event = asyncio.Event()
    sleep = build_interruptible_sleep(stop_event)

    await asyncio.wait_for(sleep(0.01), timeout=0.2)


def test_build_retrying_without_optional_hooks() -> None:
    retrying = build_exponential_jitter_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=2, min_seconds=0.0, max_seconds=0.0),
    )

    assert isinstance(retrying, AsyncRetrying)


@pytest.mark.asyncio
async def test_build_retrying_with_before_sleep_only() -> None:
    before_sleep_calls: list[int] = []

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep_calls.append(state.attempt_number)

    retrying = build_exponential_jitter_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=3, min_seconds=0.0, max_seconds=0.0),
        before_sleep=_before_sleep,
    )

    attempts = 0
    with pytest.raises(ValueError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ValueError("boom")

    assert attempts == 3
    assert before_sleep_calls == [1, 2]


@pytest.mark.asyncio
async def test_build_retrying_with_sleep_and_reraise_disabled() -> None:
    sleep_calls: list[float] = []

    async def _sleep(delay: float) -> None:
        sleep_calls.append(delay)

    retrying = build_exponential_jitter_retrying(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=2, min_seconds=0.0, max_seconds=0.0),
        sleep=_sleep,
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ValueError("boom")

    assert len(sleep_calls) == 1


def test_build_sync_retrying_stops_when_exception_not_retryable() -> None:
    sleep_calls: list[float] = []
    retrying = build_exponential_jitter_retrying_sync(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(attempts=5, min_seconds=0.0, max_seconds=0.0),
        sleep=sleep_calls.append,
    )

    assert isinstance(retrying, Retrying)

    attempts = 0
    with pytest.raises(KeyError):
        for attempt in retrying:
            with attempt:
                attempts += 1
                if attempts < 3:
                    raise ValueError("retry")
                raise KeyError("stop")

    assert attempts == 3
    assert len(sleep_calls) == 2


def test_build_sync_retrying_backoff_is_capped() -> None:
    sleep_calls: list[float] = []
    retrying = build_exponential_jitter_retrying_sync(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(
            attempts=None,
            min_seconds=1.0,
            max_seconds=3.0,
            multiplier=2.0,
        ),
        sleep=sleep_calls.append,
    )

    attempts = 0
    for attempt in retrying:
        with attempt:
            attempts += 1
            if attempts < 6:
                raise ValueError("retry")

    assert attempts == 6
    assert len(sleep_calls) == 5
    assert all(0.0 <= delay <= 3.0 for delay in sleep_calls)


def test_build_sync_retrying_window_grows_by_multiplier(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(random, "uniform", lambda low, high: high)
    sleep_calls: list[float] = []
    retrying = build_exponential_jitter_retrying_sync(
        retry=retry_if_exception_type(ValueError),
        policy=RetryBackoffPolicy(
            attempts=6,
            min_seconds=0.5,
            max_seconds=5.0,
            multiplier=3.0,
        ),
        sleep=sleep_calls.append,
    )

    with pytest.raises(ValueError):
        for attempt in retrying:
            with attempt:
                raise ValueError("retry")

    assert sleep_calls == [0.5, 1.5, 4.5, 5.0, 5.0]


def test_builders_emit_no_deprecation_warnings() -> None:
    policy = RetryBackoffPolicy(
        attempts=3,
        min_seconds=2.0,
        max_seconds=10.0,
        multiplier=1.5,
    )

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        build_exponential_jitter_retrying(
            retry=retry_if_exception_type(ValueError),
            policy=policy,
        )
        build_exponential_jitter_retrying_sync(
            retry=retry_if_exception_type(ValueError),
            policy=policy,
        )
