"""Thread-safe circuit breaker for SP-API dependencies.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - ``CLOSED -> OPEN`` after ``max_failures`` consecutive failures;
    ``OPEN -> HALF_OPEN`` once strictly more than ``timeout`` seconds have
    passed since the last failure; one probe success closes the circuit and
    one probe failure re-opens it.
  - Rejected calls raise the shared ``CIRCUIT_OPEN`` instance and never invoke
    the protected operation.
  - State-change callbacks and listeners run on an executor, never on the
    calling thread and never under the breaker lock.
  - If an excluded exception is raised, the call is treated as if it never
    happened: no counters change and no transition occurs.
"""

from spapi_core.circuit_breaker.breaker import (
    DEFAULT_MAX_FAILURES,
    DEFAULT_TIMEOUT_SECONDS,
    CircuitBreaker,
    CircuitBreakerConfig,
    StateChangeCallback,
)
from spapi_core.circuit_breaker.exceptions import (
    CIRCUIT_OPEN,
    CircuitBreakerError,
    CircuitOpenError,
)
from spapi_core.circuit_breaker.listeners import (
    BreakerListener,
    LoggingBreakerListener,
)
from spapi_core.circuit_breaker.state import (
    ALLOWED_TRANSITIONS,
    BreakerSnapshot,
    CircuitState,
    is_allowed_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CIRCUIT_OPEN",
    "DEFAULT_MAX_FAILURES",
    "DEFAULT_TIMEOUT_SECONDS",
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "LoggingBreakerListener",
    "StateChangeCallback",
    "is_allowed_transition",
]
