from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from practice_core.circuit_breaker import BreakerRegistry, BreakerStatus, CircuitState

REASON_READY = "ready"
REASON_CIRCUIT_OPEN = "circuit_open"


@dataclass(frozen=True)
class CircuitReadiness:
    """Readiness view of one breaker."""

    name: str
    state: CircuitState
    failure_rate_percent: float
    next_attempt_at: datetime | None

    @classmethod
    def from_status(cls, status: BreakerStatus) -> CircuitReadiness:
        return cls(
            name=status.name,
            state=status.state,
            failure_rate_percent=status.failure_rate_percent,
            next_attempt_at=status.next_attempt_at,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "state": str(self.state),
            "failure_rate_percent": self.failure_rate_percent,
            "next_attempt_at": (
                None
                if self.next_attempt_at is None
                else self.next_attempt_at.isoformat()
            ),
        }


@dataclass(frozen=True)
class ReadinessSnapshot:
    """Immutable readiness verdict over a set of breakers.

    ``HALF_OPEN`` breakers are listed but do not make the process unready;
    only ``OPEN`` ones do.
    """

    ready: bool
    reason: str
    detail: str
    checked_at: float
    circuits: tuple[CircuitReadiness, ...]

    @property
    def status(self) -> str:
        return "ok" if self.ready else "degraded"

    @property
    def open_circuits(self) -> tuple[str, ...]:
        return self._names_in(CircuitState.OPEN)

    @property
    def half_open_circuits(self) -> tuple[str, ...]:
        return self._names_in(CircuitState.HALF_OPEN)

    def _names_in(self, state: CircuitState) -> tuple[str, ...]:
        return tuple(
            circuit.name for circuit in self.circuits if circuit.state == state
        )

    def as_dict(self) -> dict[str, object]:
        """Render the snapshot for a health endpoint body."""
        return {
            "status": self.status,
            "ready": self.ready,
            "reason": self.reason,
            "detail": self.detail,
            "checked_at": self.checked_at,
            "circuits": [circuit.as_dict() for circuit in self.circuits],
        }


def evaluate_circuit_readiness(
    registry: BreakerRegistry,
    *,
    names: Iterable[str] | None = None,
    now_fn: Callable[[], float] = time.time,
) -> ReadinessSnapshot:
    """Build a readiness snapshot from the registry's breakers.

    Args:
        registry: Registry holding the breakers to inspect.
        names: Breaker names to inspect. Defaults to every registered breaker.
            Names not yet registered are skipped, which reads as closed.
        now_fn: Clock for ``checked_at``.
    """
    statuses = registry.status_of_all()
    if names is not None:
        statuses = {key: statuses[key] for key in names if key in statuses}

    circuits = tuple(
        CircuitReadiness.from_status(status) for status in statuses.values()
    )
    open_names = [
        circuit.name for circuit in circuits if circuit.state == CircuitState.OPEN
    ]
    if open_names:
        return ReadinessSnapshot(
            ready=False,
            reason=REASON_CIRCUIT_OPEN,
            detail=f"open={','.join(open_names)}",
            checked_at=now_fn(),
            circuits=circuits,
        )
    return ReadinessSnapshot(
        ready=True,
        reason=REASON_READY,
        detail="",
        checked_at=now_fn(),
        circuits=circuits,
    )
