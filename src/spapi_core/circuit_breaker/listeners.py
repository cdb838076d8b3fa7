"""Observability hooks for circuit breakers."""

from typing import Protocol

from spapi_core.circuit_breaker.state import CircuitState
from spapi_core.logging import (
    StructuredLogger,
    get_logger,
    log_info,
    log_warning,
)


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Hooks run on the breaker's notification executor, never on the thread
        that triggered the event and never while the breaker lock is held. A
        hook may therefore call back into the breaker.
    """

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Handle circuit state transitions."""

    def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    def on_call_failed(self, name: str, exc: BaseException, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener(BreakerListener):
    """Emit structured log events for breaker transitions and failures."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger = get_logger(__name__) if logger is None else logger

    def on_state_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        """Log a transition; trips to ``OPEN`` are warnings."""
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_breaker.opened",
                breaker=name,
                from_state=str(old),
                to_state=str(new),
            )
            return
        log_info(
            self._logger,
            "circuit_breaker.state_changed",
            breaker=name,
            from_state=str(old),
            to_state=str(new),
        )

    def on_call_rejected(self, name: str) -> None:
        """Log a rejected call."""
        log_info(self._logger, "circuit_breaker.call_rejected", breaker=name)

    def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (name, elapsed)

    def on_call_failed(self, name: str, exc: BaseException, elapsed: float) -> None:
        """Log a recorded failure with its exception type."""
        log_warning(
            self._logger,
            "circuit_breaker.call_failed",
            breaker=name,
            error_type=exc.__class__.__name__,
            elapsed_seconds=round(elapsed, 6),
        )
