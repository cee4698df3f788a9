"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True, slots=True)
class RequestRecord:
    """One attempted call observed inside the monitoring window."""

    timestamp: datetime
    succeeded: bool
    duration_ms: float


@dataclass(frozen=True, slots=True)
class StateTransition:
    """One entry of the bounded state-change history."""

    from_state: CircuitState
    to_state: CircuitState
    timestamp: datetime

    def as_dict(self) -> dict[str, str]:
        return {
            "from": str(self.from_state),
            "to": str(self.to_state),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class BreakerStats:
    """Cumulative counters since construction or the last ``reset()``.

    Attributes:
        total_requests: Calls that were admitted and attempted.
        total_successes: Attempted calls that returned a value.
        total_failures: Attempted calls that raised or timed out.
        total_timeouts: Subset of failures caused by ``call_timeout``.
        total_rejections: Calls refused while ``OPEN``.
        last_success_at: Timestamp of the most recent success, if any.
        last_failure_at: Timestamp of the most recent failure, if any.
    """

    total_requests: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_timeouts: int = 0
    total_rejections: int = 0
    last_success_at: datetime | None = None
    last_failure_at: datetime | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "total_requests": self.total_requests,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_timeouts": self.total_timeouts,
            "total_rejections": self.total_rejections,
            "last_success_at": _isoformat(self.last_success_at),
            "last_failure_at": _isoformat(self.last_failure_at),
        }


@dataclass(frozen=True)
class BreakerStatus:
    """Point-in-time view of breaker internals useful for dashboards/logging.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        consecutive_failures: Failures since the last success or transition.
        consecutive_successes: Successes since the last failure or transition.
        next_attempt_at: When a half-open probe becomes allowed, only while
            ``OPEN``.
        recent_request_count: Attempts inside the monitoring window.
        recent_failure_count: Failed attempts inside the monitoring window.
        failure_rate_percent: In-window failure rate, rounded to 2 decimals.
        stats: Cumulative counters.
        recent_transitions: Up to the last 10 state transitions, oldest first.
    """

    name: str
    state: CircuitState
    consecutive_failures: int
    consecutive_successes: int
    next_attempt_at: datetime | None
    recent_request_count: int
    recent_failure_count: int
    failure_rate_percent: float
    stats: BreakerStats
    recent_transitions: tuple[StateTransition, ...]

    def as_dict(self) -> dict[str, object]:
        """Return a JSON-friendly mapping of this status."""
        return {
            "name": self.name,
            "state": str(self.state),
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "next_attempt_at": _isoformat(self.next_attempt_at),
            "recent_request_count": self.recent_request_count,
            "recent_failure_count": self.recent_failure_count,
            "failure_rate_percent": self.failure_rate_percent,
            "stats": self.stats.as_dict(),
            "recent_transitions": [
                transition.as_dict() for transition in self.recent_transitions
            ],
        }


def _isoformat(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()
