"""Core circuit breaker implementation."""

import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from concurrent import futures
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import ParamSpec, TypeVar

from spapi_core.circuit_breaker.exceptions import CIRCUIT_OPEN
from spapi_core.circuit_breaker.listeners import BreakerListener
from spapi_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from spapi_core.logging import get_logger, log_exception, log_warning

T = TypeVar("T")
P = ParamSpec("P")

StateChangeCallback = Callable[[CircuitState, CircuitState], None]
_Transition = tuple[CircuitState, CircuitState]

DEFAULT_MAX_FAILURES = 5
DEFAULT_TIMEOUT_SECONDS = 60.0

_logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _monotonic() -> float:
    return time.monotonic()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Unset or non-positive ``max_failures`` and ``timeout`` fall back to their
    defaults; construction never fails.

    Attributes:
        max_failures: Consecutive failures while ``CLOSED`` before opening.
        timeout: Seconds (or a ``timedelta``) the breaker stays ``OPEN`` after
            the last failure before admitting probes.
        on_state_change: Optional ``(old, new)`` hook, run asynchronously.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions forwarded without being recorded.
        single_probe: Admit at most one in-flight ``HALF_OPEN`` probe and
            reject other callers until it resolves.
    """

    max_failures: int = DEFAULT_MAX_FAILURES
    timeout: float | timedelta = DEFAULT_TIMEOUT_SECONDS
    on_state_change: StateChangeCallback | None = None
    expected_exceptions: tuple[type[BaseException], ...] = (Exception,)
    excluded_exceptions: tuple[type[BaseException], ...] = ()
    single_probe: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.timeout, timedelta):
            self.timeout = self.timeout.total_seconds()
        if not self.max_failures or self.max_failures < 1:
            self.max_failures = DEFAULT_MAX_FAILURES
        if not self.timeout or self.timeout <= 0:
            self.timeout = DEFAULT_TIMEOUT_SECONDS

    @property
    def timeout_seconds(self) -> float:
        """Return the open-state timeout as float seconds."""
        timeout = self.timeout
        if isinstance(timeout, timedelta):
            return timeout.total_seconds()
        return float(timeout)


class _Notifier:
    """Run breaker notifications on an executor, off the triggering thread."""

    def __init__(self, name: str, executor: futures.Executor | None) -> None:
        self._name = name
        self._executor = executor
        self._owns_executor = executor is None
        self._lock = threading.Lock()
        self._pending: set[futures.Future[None]] = set()
        self._closed = False

    def submit(self, func: Callable[..., object], *args: object) -> None:
        with self._lock:
            if self._closed:
                executor = None
            else:
                if self._executor is None:
                    self._executor = futures.ThreadPoolExecutor(
                        max_workers=1,
                        thread_name_prefix=f"circuit_breaker:{self._name}",
                    )
                executor = self._executor

        if executor is None:
            log_warning(
                _logger,
                "circuit_breaker.notification_dropped",
                breaker=self._name,
                callback=_callable_name(func),
            )
            return

        try:
            future = executor.submit(self._run, func, *args)
        except RuntimeError:
            log_warning(
                _logger,
                "circuit_breaker.notification_dropped",
                breaker=self._name,
                callback=_callable_name(func),
            )
            return

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)

    def _run(self, func: Callable[..., object], *args: object) -> None:
        try:
            func(*args)
        except Exception:
            log_exception(
                _logger,
                "circuit_breaker.listener_failed",
                breaker=self._name,
                callback=_callable_name(func),
            )

    def _discard(self, future: futures.Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            futures.wait(pending, timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            executor = self._executor if self._owns_executor else None
        self.drain()
        if executor is not None:
            executor.shutdown(wait=True)


def _callable_name(func: object) -> str:
    name = getattr(func, "__qualname__", None)
    if name is None:
        name = func.__class__.__qualname__
    return str(name)


class CircuitBreaker:
    """Stateful guard around a dangerous operation.

    One instance protects one downstream dependency and is shared by every
    caller of that dependency. All bookkeeping happens under a single lock; the
    lock is released while the protected operation runs, so admission and
    result recording are two independent critical sections.

    Half-open admission is permissive by default: every caller arriving after
    the open timeout is admitted as a probe. Set
    ``CircuitBreakerConfig.single_probe`` to allow exactly one.
    """

    def __init__(
        self,
        name: str = "circuit_breaker",
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        executor: futures.Executor | None = None,
    ) -> None:
        """Build a circuit breaker in the ``CLOSED`` state.

        Args:
            name: Breaker name used in logs and listener events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
            executor: Executor running notifications. Defaults to a single
                worker thread owned (and shut down by ``close``) by the breaker.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._notifier = _Notifier(name, executor)
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_monotonic: float | None = None
        self._last_failure_at: datetime | None = None
        self._probe_owner: object | None = None

    @property
    def state(self) -> CircuitState:
        """Return the current state. A best-effort snapshot under concurrency."""
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        """Return the current consecutive-failure count."""
        with self._lock:
            return self._failure_count

    def snapshot(self) -> BreakerSnapshot:
        """Return state, failure count and last failure time read atomically."""
        with self._lock:
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                last_failure_at=self._last_failure_at,
            )

    def reset(self) -> None:
        """Force the breaker to ``CLOSED`` with a zero failure count.

        Listeners and ``on_state_change`` are notified only when the state
        actually changed.
        """
        with self._lock:
            old = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._probe_owner = None
        if old != CircuitState.CLOSED:
            self._emit_state_change(old, CircuitState.CLOSED)

    def call(
        self,
        func: Callable[P, T],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke a callable under circuit breaker protection.

        Args:
            func: Dangerous callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when admitted and successful.

        Raises:
            CircuitOpenError: ``CIRCUIT_OPEN`` when the call is rejected; ``func``
                is not invoked.
            BaseException: Whatever ``func`` raised, unchanged.
        """
        probe_token = self._admit()
        start = _monotonic()
        try:
            result = func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            self._on_failure(exc, _monotonic() - start)
            raise
        else:
            self._on_success(_monotonic() - start)
            return result
        finally:
            self._release_probe(probe_token)

    async def call_async(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Await an async callable under circuit breaker protection.

        Same contract as ``call``. The breaker lock is never held across the
        ``await``; cancellation of the awaiting task is not recorded as a
        failure.
        """
        probe_token = self._admit()
        start = _monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            self._on_failure(exc, _monotonic() - start)
            raise
        else:
            self._on_success(_monotonic() - start)
            return result
        finally:
            self._release_probe(probe_token)

    def close(self) -> None:
        """Wait for queued notifications and release the owned executor."""
        self._notifier.close()

    def __enter__(self) -> "CircuitBreaker":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _admit(self) -> object | None:
        """Run the admission check, raising ``CIRCUIT_OPEN`` on rejection.

        Returns the probe token held by this call in single-probe mode.
        """
        transition: _Transition | None = None
        probe_token: object | None = None
        admitted = True

        with self._lock:
            if self._state == CircuitState.OPEN:
                if self._open_timeout_elapsed():
                    transition = (CircuitState.OPEN, CircuitState.HALF_OPEN)
                    self._state = CircuitState.HALF_OPEN
                    probe_token = self._claim_probe()
                else:
                    admitted = False
            elif self._state == CircuitState.HALF_OPEN and self.config.single_probe:
                if self._probe_owner is None:
                    probe_token = self._claim_probe()
                else:
                    admitted = False

        if transition is not None:
            self._emit_state_change(*transition)
        if not admitted:
            self._emit_call_rejected()
            CIRCUIT_OPEN.__context__ = None
            raise CIRCUIT_OPEN.with_traceback(None) from None
        return probe_token

    def _claim_probe(self) -> object | None:
        if not self.config.single_probe:
            return None
        token = object()
        self._probe_owner = token
        return token

    def _release_probe(self, token: object | None) -> None:
        if token is None:
            return
        with self._lock:
            if self._probe_owner is token:
                self._probe_owner = None

    def _open_timeout_elapsed(self) -> bool:
        if self._last_failure_monotonic is None:
            return True
        elapsed = _monotonic() - self._last_failure_monotonic
        return elapsed > self.config.timeout_seconds

    def _on_failure(self, exc: BaseException, elapsed: float) -> None:
        transition: _Transition | None = None
        with self._lock:
            self._failure_count += 1
            self._last_failure_monotonic = _monotonic()
            self._last_failure_at = _utcnow()
            if self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.max_failures:
                    transition = (CircuitState.CLOSED, CircuitState.OPEN)
                    self._state = CircuitState.OPEN
            elif self._state == CircuitState.HALF_OPEN:
                transition = (CircuitState.HALF_OPEN, CircuitState.OPEN)
                self._state = CircuitState.OPEN

        self._emit_call_failed(exc, max(elapsed, 0.0))
        if transition is not None:
            self._emit_state_change(*transition)

    def _on_success(self, elapsed: float) -> None:
        transition: _Transition | None = None
        with self._lock:
            if self._state == CircuitState.CLOSED:
                self._failure_count = 0
            elif self._state == CircuitState.HALF_OPEN:
                self._failure_count = 0
                transition = (CircuitState.HALF_OPEN, CircuitState.CLOSED)
                self._state = CircuitState.CLOSED

        if transition is not None:
            self._emit_state_change(*transition)
        self._emit_call_succeeded(max(elapsed, 0.0))

    def _emit_state_change(self, old: CircuitState, new: CircuitState) -> None:
        callback = self.config.on_state_change
        if callback is not None:
            self._notifier.submit(callback, old, new)
        for listener in self._listeners:
            self._notifier.submit(listener.on_state_change, self.name, old, new)

    def _emit_call_rejected(self) -> None:
        for listener in self._listeners:
            self._notifier.submit(listener.on_call_rejected, self.name)

    def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            self._notifier.submit(listener.on_call_succeeded, self.name, elapsed)

    def _emit_call_failed(self, exc: BaseException, elapsed: float) -> None:
        for listener in self._listeners:
            self._notifier.submit(listener.on_call_failed, self.name, exc, elapsed)
