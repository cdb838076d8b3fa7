"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open (``CircuitOpenError``),
    meaning the operation was never attempted.
  - The operation itself failing, which is re-raised unchanged.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    The breaker only ever raises the shared ``CIRCUIT_OPEN`` instance, so
    callers may test either ``isinstance(exc, CircuitOpenError)`` or
    ``exc is CIRCUIT_OPEN``.
    """

    def __init__(self) -> None:
        super().__init__("circuit breaker is open")


CIRCUIT_OPEN = CircuitOpenError()
