from __future__ import annotations

from collections.abc import Callable
from concurrent import futures
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from spapi_core.circuit_breaker import CircuitState


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.events.append(event)
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def exception(self, event: str, **kwargs: object) -> None:
        self._record("exception", event, **kwargs)


class FakeClock:
    """Manually advanced monotonic + wall clock pair."""

    def __init__(self, start: datetime | None = None) -> None:
        self._wall = datetime(2020, 1, 1, tzinfo=UTC) if start is None else start
        self._monotonic = 1_000.0

    def monotonic(self) -> float:
        return self._monotonic

    def now(self) -> datetime:
        return self._wall

    def advance(self, seconds: float) -> None:
        self._monotonic += seconds
        self._wall = self._wall + timedelta(seconds=seconds)


class InlineExecutor(futures.Executor):
    """Run submitted callables immediately on the submitting thread."""

    def __init__(self) -> None:
        self.submitted = 0

    def submit(
        self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any
    ) -> futures.Future[Any]:
        self.submitted += 1
        future: futures.Future[Any] = futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


@dataclass(slots=True)
class RecordingListener:
    events: list[tuple[str, object]] = field(default_factory=list)

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        self.events.append(("state", (name, old, new)))

    def on_call_rejected(self, name: str) -> None:
        self.events.append(("rejected", name))

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        self.events.append(("succeeded", name))

    def on_call_failed(self, name: str, exc: BaseException, elapsed: float) -> None:
        self.events.append(("failed", (name, exc.__class__.__name__)))

    def of_kind(self, kind: str) -> list[object]:
        return [payload for event_kind, payload in self.events if event_kind == kind]


@dataclass(slots=True)
class ExplodingListener:
    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        raise RuntimeError("boom")

    def on_call_rejected(self, name: str) -> None:
        raise RuntimeError("boom")

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        raise RuntimeError("boom")

    def on_call_failed(self, name: str, exc: BaseException, elapsed: float) -> None:
        raise RuntimeError("boom")
