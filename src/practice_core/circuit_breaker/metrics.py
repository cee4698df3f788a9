"""Observability hooks for circuit breakers."""

from typing import Protocol

from practice_core.circuit_breaker.state import CircuitState
from practice_core.logging import AnyLogger, get_logger, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Events are delivered after the breaker has released its internal lock,
        so a listener observes the state that was current when the event was
        produced, not necessarily the state at delivery time.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str, retry_after: float) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener(BreakerListener):
    """Listener that writes breaker transitions and rejections to the log."""

    def __init__(self, logger: AnyLogger | None = None) -> None:
        self._logger = (
            get_logger("practice_core.circuit_breaker") if logger is None else logger
        )

    async def on_state_change(
        self,
        name: str,
        old: CircuitState,
        new: CircuitState,
    ) -> None:
        """Log every state transition as a warning."""
        log_warning(
            self._logger,
            "circuit_breaker.state_changed",
            circuit_breaker=name,
            from_state=str(old),
            to_state=str(new),
        )

    async def on_call_rejected(self, name: str, retry_after: float) -> None:
        """Log fail-fast rejections as warnings."""
        log_warning(
            self._logger,
            "circuit_breaker.call_rejected",
            circuit_breaker=name,
            retry_after=round(retry_after, 3),
        )

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """No-op for this listener."""
        _ = (name, elapsed)

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Log protected call failures."""
        log_info(
            self._logger,
            "circuit_breaker.call_failed",
            circuit_breaker=name,
            error_type=exc.__class__.__name__,
            error=str(exc),
            elapsed_ms=round(elapsed * 1000, 3),
        )
