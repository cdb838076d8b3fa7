"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


ALLOWED_TRANSITIONS: frozenset[tuple[CircuitState, CircuitState]] = frozenset(
    {
        (CircuitState.CLOSED, CircuitState.OPEN),
        (CircuitState.OPEN, CircuitState.HALF_OPEN),
        (CircuitState.HALF_OPEN, CircuitState.CLOSED),
        (CircuitState.HALF_OPEN, CircuitState.OPEN),
    }
)


def is_allowed_transition(old: CircuitState, new: CircuitState) -> bool:
    """Return whether ``old -> new`` is a state-machine edge.

    ``CircuitBreaker.reset`` may also move ``OPEN`` straight to ``CLOSED``; that
    is a manual override and deliberately not listed here.
    """
    return (old, new) in ALLOWED_TRANSITIONS


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for metrics/logging.

    Attributes:
        name: Breaker name.
        state: Breaker state when the snapshot was taken.
        failure_count: Consecutive failures while ``CLOSED`` or ``HALF_OPEN``.
        last_failure_at: UTC timestamp of the last recorded failure, if any.
    """

    name: str
    state: CircuitState
    failure_count: int
    last_failure_at: datetime | None
