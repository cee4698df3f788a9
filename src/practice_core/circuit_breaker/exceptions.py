"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A call that was attempted but exceeded the breaker's ``call_timeout``.
"""

from practice_core.circuit_breaker.state import CircuitState


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""

    code = "CIRCUIT_BREAKER_ERROR"


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        circuit_name: Name of the breaker rejecting the call.
        state: Breaker state at rejection time.
        retry_after: Seconds until a half-open probe may be attempted.
        code: Always ``"CIRCUIT_OPEN"``.
    """

    code = "CIRCUIT_OPEN"

    def __init__(
        self,
        circuit_name: str,
        *,
        retry_after: float,
        state: CircuitState = CircuitState.OPEN,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            circuit_name: Breaker rejecting the call.
            retry_after: Seconds until the next probe window opens.
            state: Breaker state reported to the caller.
        """
        self.circuit_name = circuit_name
        self.state = state
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker is {state}: {circuit_name} retry_after={retry_after:g}s"
        )


class CallTimeoutError(CircuitBreakerError, TimeoutError):
    """Raised when a protected call does not settle within ``call_timeout``."""

    code = "TIMEOUT"

    def __init__(self, circuit_name: str, timeout: float) -> None:
        self.circuit_name = circuit_name
        self.timeout = timeout
        super().__init__(f"Operation timeout: {circuit_name} after {timeout:g}s")
