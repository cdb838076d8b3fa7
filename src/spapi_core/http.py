"""httpx transports that route every request through a circuit breaker.

A response whose status is in ``RETRY_STATUSES`` counts as a breaker failure
and is retried when a ``RetryBackoffPolicy`` is given. Once retries are
exhausted the last response is handed back unchanged so SDK callers still see
the real HTTP outcome. Network errors (``httpx.TransportError``) count as
failures too and are re-raised after the final attempt. ``CircuitOpenError`` is
never retried. Before a retrying send the request body is read into memory so
every attempt replays the same bytes, streamed bodies included.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx
from tenacity import RetryCallState, retry_if_exception_type

from spapi_core.circuit_breaker import CircuitBreaker
from spapi_core.errors import TransientError
from spapi_core.logging import get_logger, log_warning
from spapi_core.retry import (
    RetryBackoffPolicy,
    build_exponential_jitter_retrying,
    build_exponential_jitter_retrying_sync,
)

RETRY_STATUSES = frozenset({429, *range(500, 600)})
_RETRY_FOR: tuple[type[BaseException], ...] = (TransientError, httpx.TransportError)
_logger = get_logger(__name__)


class RetryableStatusError(TransientError):
    """Raised inside the breaker for a response with a retryable status.

    The response body is already read, so ``response`` stays usable after the
    underlying stream is released.
    """

    def __init__(
        self,
        response: httpx.Response,
        request: httpx.Request | None = None,
    ) -> None:
        """Initialize with the offending response.

        Args:
            response: Fully read response whose status is retryable.
            request: Request that produced ``response``. Defaults to
                ``response.request``; inner transports may not have bound it yet.
        """
        self.response = response
        if request is None:
            request = response.request
        self.request = request
        super().__init__(
            f"HTTP {response.status_code} from {request.method} {request.url}"
        )


def _log_before_sleep(state: RetryCallState) -> None:
    outcome = state.outcome
    exc = None if outcome is None else outcome.exception()
    next_action = state.next_action
    fields: dict[str, object] = {
        "attempt": state.attempt_number,
        "sleep_seconds": 0.0 if next_action is None else next_action.sleep,
        "error_type": None if exc is None else exc.__class__.__name__,
    }
    if isinstance(exc, RetryableStatusError):
        fields["http_status"] = exc.response.status_code
    log_warning(_logger, "http.request_retrying", **fields)


class BreakerTransport(httpx.BaseTransport):
    """Blocking transport guarded by a ``CircuitBreaker``."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        transport: httpx.BaseTransport | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
        retry_statuses: frozenset[int] = RETRY_STATUSES,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        """Wrap ``transport`` with breaker protection.

        Args:
            breaker: Breaker shared by every request sent through this
                transport.
            transport: Inner transport. Defaults to ``httpx.HTTPTransport()``.
            retry_policy: Optional retry policy; ``None`` sends each request
                once.
            retry_statuses: HTTP statuses treated as transient failures.
            sleep: Optional sleep override for retry backoff.
        """
        self._breaker = breaker
        self._transport = httpx.HTTPTransport() if transport is None else transport
        self._retry_policy = retry_policy
        self._retry_statuses = retry_statuses
        self._sleep = sleep

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        try:
            if self._retry_policy is None:
                return self._breaker.call(self._send_checked, request)

            request.read()
            retrying = build_exponential_jitter_retrying_sync(
                retry=retry_if_exception_type(_RETRY_FOR),
                policy=self._retry_policy,
                sleep=self._sleep,
                before_sleep=_log_before_sleep,
                reraise=True,
            )
            for attempt in retrying:
                with attempt:
                    return self._breaker.call(self._send_checked, request)
        except RetryableStatusError as exc:
            return exc.response

        raise RuntimeError("Request retry loop exited unexpectedly.")

    def _send_checked(self, request: httpx.Request) -> httpx.Response:
        response = self._transport.handle_request(request)
        if response.status_code in self._retry_statuses:
            try:
                response.read()
            finally:
                response.close()
            raise RetryableStatusError(response, request)
        return response

    def close(self) -> None:
        self._transport.close()


class AsyncBreakerTransport(httpx.AsyncBaseTransport):
    """Async transport guarded by a ``CircuitBreaker``."""

    def __init__(
        self,
        breaker: CircuitBreaker,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
        retry_statuses: frozenset[int] = RETRY_STATUSES,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Wrap ``transport`` with breaker protection.

        Args:
            breaker: Breaker shared by every request sent through this
                transport.
            transport: Inner transport. Defaults to
                ``httpx.AsyncHTTPTransport()``.
            retry_policy: Optional retry policy; ``None`` sends each request
                once.
            retry_statuses: HTTP statuses treated as transient failures.
            sleep: Optional async sleep override for retry backoff, for example
                ``build_interruptible_sleep(stop_event)``.
        """
        self._breaker = breaker
        self._transport = (
            httpx.AsyncHTTPTransport() if transport is None else transport
        )
        self._retry_policy = retry_policy
        self._retry_statuses = retry_statuses
        self._sleep = sleep

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        try:
            if self._retry_policy is None:
                return await self._breaker.call_async(self._send_checked, request)

            await request.aread()
            retrying = build_exponential_jitter_retrying(
                retry=retry_if_exception_type(_RETRY_FOR),
                policy=self._retry_policy,
                sleep=self._sleep,
                before_sleep=_log_before_sleep,
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    return await self._breaker.call_async(
                        self._send_checked, request
                    )
        except RetryableStatusError as exc:
            return exc.response

        raise RuntimeError("Request retry loop exited unexpectedly.")

    async def _send_checked(self, request: httpx.Request) -> httpx.Response:
        response = await self._transport.handle_async_request(request)
        if response.status_code in self._retry_statuses:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise RetryableStatusError(response, request)
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_client(
    breaker: CircuitBreaker,
    *,
    retry_policy: RetryBackoffPolicy | None = None,
    transport: httpx.BaseTransport | None = None,
    **client_kwargs: object,
) -> httpx.Client:
    """Build an ``httpx.Client`` whose requests all pass through ``breaker``."""
    guarded = BreakerTransport(
        breaker,
        transport=transport,
        retry_policy=retry_policy,
    )
    return httpx.Client(transport=guarded, **client_kwargs)  # type: ignore[arg-type]


def build_async_client(
    breaker: CircuitBreaker,
    *,
    retry_policy: RetryBackoffPolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: object,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` whose requests all pass through ``breaker``."""
    guarded = AsyncBreakerTransport(
        breaker,
        transport=transport,
        retry_policy=retry_policy,
    )
    return httpx.AsyncClient(transport=guarded, **client_kwargs)  # type: ignore[arg-type]
