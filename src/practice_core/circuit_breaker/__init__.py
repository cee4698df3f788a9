"""Framework-agnostic async circuit breaker and breaker registry.

This package isolates the practice backend from unreliable dependencies
(datastore, external APIs, email, payment gateway, file storage, search).

Key behavior notes:
  - ``CLOSED`` opens on the failure *rate* inside a sliding monitoring window,
    and only once the window holds at least ``volume_threshold`` attempts.
  - Calls rejected while ``OPEN`` never reach the dependency and are not
    window observations, so an open circuit cannot feed its own failure rate.
  - ``HALF_OPEN`` admits calls; any failure reopens, ``success_threshold``
    consecutive successes close and clear the window.
  - A fallback, when supplied, receives the triggering error, or ``None`` for
    an open-circuit rejection, and its result is returned instead of raising.
  - State lives in process memory only. Each process has independent breakers.
"""

from practice_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from practice_core.circuit_breaker.exceptions import (
    CallTimeoutError,
    CircuitBreakerError,
    CircuitOpenError,
)
from practice_core.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
)
from practice_core.circuit_breaker.profiles import (
    DEPENDENCY_PROFILES,
    DependencyProfile,
    profile_config,
)
from practice_core.circuit_breaker.registry import BreakerRegistry
from practice_core.circuit_breaker.state import (
    BreakerStats,
    BreakerStatus,
    CircuitState,
    RequestRecord,
    StateTransition,
)

__all__ = [
    "DEPENDENCY_PROFILES",
    "BreakerListener",
    "BreakerRegistry",
    "BreakerStats",
    "BreakerStatus",
    "CallTimeoutError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "DependencyProfile",
    "LoggingBreakerListener",
    "RequestRecord",
    "StateTransition",
    "profile_config",
]
