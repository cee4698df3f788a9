"""Process-wide, name-keyed collection of circuit breakers.

The registry is an ordinary object: build one at startup and hand it to the
datastore layer, API clients and other collaborators that need protection.
"""

import functools
import threading
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import ParamSpec, TypeVar

from practice_core.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Fallback,
    Operation,
)
from practice_core.circuit_breaker.metrics import (
    BreakerListener,
    LoggingBreakerListener,
)
from practice_core.circuit_breaker.state import BreakerStatus
from practice_core.logging import AnyLogger, get_logger, log_info, log_warning

T = TypeVar("T")
P = ParamSpec("P")


class BreakerRegistry:
    """Create breakers lazily per name and hand out the same instance after.

    The first configuration supplied for a name wins for the lifetime of the
    process. Breakers are never removed.
    """

    def __init__(
        self,
        *,
        default_config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
        logger: AnyLogger | None = None,
    ) -> None:
        """Build an empty registry.

        Args:
            default_config: Config for breakers created without one. Defaults
                to ``CircuitBreakerConfig()``.
            listeners: Listeners attached to every breaker this registry
                creates. Defaults to a single ``LoggingBreakerListener``; pass
                an empty sequence to disable.
            logger: Logger for registry events.
        """
        self._logger = (
            get_logger("practice_core.circuit_breaker") if logger is None else logger
        )
        self._default_config = (
            CircuitBreakerConfig() if default_config is None else default_config
        )
        if listeners is None:
            self._listeners: tuple[BreakerListener, ...] = (
                LoggingBreakerListener(self._logger),
            )
        else:
            self._listeners = tuple(listeners)
        self._breakers: dict[str, CircuitBreaker] = {}
        self._config_ignored: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def names(self) -> Iterator[str]:
        """Iterate registered breaker names in creation order."""
        return iter(tuple(self._breakers))

    def get(self, name: str) -> CircuitBreaker | None:
        """Return the breaker for ``name`` without creating one."""
        return self._breakers.get(name)

    def get_or_create(
        self, name: str, config: CircuitBreakerConfig | None = None
    ) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first reference.

        A ``config`` passed for an existing breaker is ignored. The first
        mismatch per name is logged.
        """
        report_ignored = False
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config=self._default_config if config is None else config,
                    listeners=self._listeners,
                )
                self._breakers[name] = breaker
                created = True
            else:
                created = False
                if (
                    config is not None
                    and config != breaker.config
                    and name not in self._config_ignored
                ):
                    self._config_ignored.add(name)
                    report_ignored = True

        if created:
            log_info(
                self._logger,
                "circuit_breaker.created",
                circuit_breaker=name,
                failure_threshold_percent=breaker.config.failure_threshold_percent,
                volume_threshold=breaker.config.volume_threshold,
                reset_timeout=breaker.config.reset_timeout,
            )
        elif report_ignored:
            log_warning(
                self._logger,
                "circuit_breaker.config_ignored",
                circuit_breaker=name,
            )
        return breaker

    async def execute(
        self,
        name: str,
        operation: Operation[T],
        *,
        fallback: Fallback[T] | None = None,
        config: CircuitBreakerConfig | None = None,
    ) -> T:
        """Resolve (or create) breaker ``name`` and execute ``operation``."""
        breaker = self.get_or_create(name, config)
        return await breaker.execute(operation, fallback)

    def protect(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        fallback: Fallback[T] | None = None,
    ) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
        """Wrap async functions so every call goes through breaker ``name``.

        Example:
            >>> charge = registry.protect("payment.charge")(gateway.charge)
            >>> await charge(invoice_id, amount)
        """

        def _wrap(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
            @functools.wraps(func)
            async def _protected(*args: P.args, **kwargs: P.kwargs) -> T:
                return await self.execute(
                    name,
                    functools.partial(func, *args, **kwargs),
                    fallback=fallback,
                    config=config,
                )

            return _protected

        return _wrap

    def status_of(self, name: str) -> BreakerStatus | None:
        """Return a status snapshot for ``name``, or ``None`` if unknown."""
        breaker = self._breakers.get(name)
        return None if breaker is None else breaker.status()

    def status_of_all(self) -> dict[str, BreakerStatus]:
        """Return status snapshots for every registered breaker."""
        return {name: breaker.status() for name, breaker in self._snapshot_items()}

    async def reset(self, name: str) -> bool:
        """Reset breaker ``name``. Returns ``False`` when it does not exist."""
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        await breaker.reset()
        return True

    async def reset_all(self) -> None:
        """Reset every registered breaker."""
        for _, breaker in self._snapshot_items():
            await breaker.reset()

    def _snapshot_items(self) -> list[tuple[str, CircuitBreaker]]:
        with self._lock:
            return list(self._breakers.items())
