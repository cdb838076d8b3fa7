from __future__ import annotations

import pytest

import spapi_core.circuit_breaker.breaker as breaker_mod
from tests.spapi_core.support.fakes import FakeClock, FakeLogger, InlineExecutor


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Drive the breaker's monotonic and wall clocks manually."""
    clock = FakeClock()
    monkeypatch.setattr(breaker_mod, "_monotonic", clock.monotonic)
    monkeypatch.setattr(breaker_mod, "_utcnow", clock.now)
    return clock


@pytest.fixture
def inline_executor() -> InlineExecutor:
    """Run breaker notifications synchronously for deterministic assertions."""
    return InlineExecutor()
