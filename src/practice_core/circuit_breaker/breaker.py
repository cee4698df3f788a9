"""Core circuit breaker implementation."""

import asyncio
import inspect
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TypeVar, cast

from practice_core.circuit_breaker.exceptions import CallTimeoutError, CircuitOpenError
from practice_core.circuit_breaker.metrics import BreakerListener
from practice_core.circuit_breaker.state import (
    BreakerStats,
    BreakerStatus,
    CircuitState,
    RequestRecord,
    StateTransition,
)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Fallback = Callable[[BaseException | None], T | Awaitable[T]]

MAX_TRANSITION_HISTORY = 10


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _discard_outcome(task: "asyncio.Future[object]") -> None:
    with suppress(asyncio.CancelledError, Exception):
        task.exception()


async def _resolve(value: T | Awaitable[T]) -> T:
    if inspect.isawaitable(value):
        return await cast(Awaitable[T], value)
    return value


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold_percent: In-window failure rate (0-100] that opens
            the circuit while ``CLOSED``.
        success_threshold: Consecutive ``HALF_OPEN`` successes needed to close.
        call_timeout: Seconds a single call may run before it counts as a
            timeout failure.
        reset_timeout: Seconds to stay ``OPEN`` before allowing a probe.
        monitoring_window: Seconds of history used for the failure rate.
        volume_threshold: Minimum in-window attempts before the rate is judged.
        cancel_on_timeout: Cancel the operation when ``call_timeout`` elapses.
            When false the breaker only stops waiting and the operation keeps
            running in the background with its outcome discarded.
        excluded_exceptions: Exceptions that count as neither success nor
            failure and bypass the fallback.
    """

    failure_threshold_percent: float = 50.0
    success_threshold: int = 2
    call_timeout: float = 60.0
    reset_timeout: float = 30.0
    monitoring_window: float = 60.0
    volume_threshold: int = 10
    cancel_on_timeout: bool = True
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if not 0 < self.failure_threshold_percent <= 100:
            raise ValueError("failure_threshold_percent must be > 0 and <= 100")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be > 0")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be >= 0")
        if self.monitoring_window <= 0:
            raise ValueError("monitoring_window must be > 0")
        if self.volume_threshold < 1:
            raise ValueError("volume_threshold must be >= 1")


_Transition = tuple[CircuitState, CircuitState]


class CircuitBreaker:
    """Stateful proxy around one unreliable async dependency call.

    State, counters and the request log are only touched inside short
    synchronous sections guarded by a ``threading.Lock``. Nothing is awaited
    while the lock is held, so the same breaker is safe to share between
    asyncio tasks and between threads running their own event loops.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Unique breaker name used as the registry key and in events.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            listeners: Optional listener hooks for breaker events.
        """
        self._name = name
        self._config = CircuitBreakerConfig() if config is None else config
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._lock = threading.Lock()
        self._window = timedelta(seconds=self._config.monitoring_window)
        self._generation = 0
        self._clear()

    def _clear(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._next_attempt_at: datetime | None = None
        self._requests: deque[RequestRecord] = deque()
        self._window_failures = 0
        self._stats = BreakerStats()
        self._transitions: deque[StateTransition] = deque(
            maxlen=MAX_TRANSITION_HISTORY
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        return self._state

    async def _emit_state_changes(self, transitions: Sequence[_Transition]) -> None:
        for old, new in transitions:
            for listener in self._listeners:
                try:
                    await listener.on_state_change(self._name, old, new)
                except Exception:
                    continue

    async def _emit_call_rejected(self, retry_after: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_rejected(self._name, retry_after)
            except Exception:
                continue

    async def _emit_call_succeeded(self, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_succeeded(self._name, elapsed)
            except Exception:
                continue

    async def _emit_call_failed(self, exc: Exception, elapsed: float) -> None:
        for listener in self._listeners:
            try:
                await listener.on_call_failed(self._name, exc, elapsed)
            except Exception:
                continue

    # Everything below prefixed ``_locked`` must be called with ``self._lock`` held.

    def _locked_transition(self, new: CircuitState, now: datetime) -> _Transition:
        old = self._state
        self._state = new
        self._generation += 1
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        if new == CircuitState.OPEN:
            self._next_attempt_at = now + timedelta(seconds=self._config.reset_timeout)
        else:
            self._next_attempt_at = None
        self._transitions.append(
            StateTransition(from_state=old, to_state=new, timestamp=now)
        )
        return old, new

    def _locked_clear_run_state(self) -> None:
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._requests.clear()
        self._window_failures = 0

    def _locked_prune(self, now: datetime) -> None:
        cutoff = now - self._window
        requests = self._requests
        while requests and requests[0].timestamp <= cutoff:
            if not requests.popleft().succeeded:
                self._window_failures -= 1

    def _locked_should_open(self, now: datetime) -> bool:
        self._locked_prune(now)
        total = len(self._requests)
        if total < self._config.volume_threshold:
            return False
        failure_rate = self._window_failures * 100 / total
        return failure_rate >= self._config.failure_threshold_percent

    def _admit(self) -> tuple[int | None, float, list[_Transition]]:
        """Gate one call on the current state.

        Returns:
            The generation the call was admitted in (``None`` when rejected),
            the retry-after delay for a rejection, and transitions to emit.
        """
        transitions: list[_Transition] = []
        with self._lock:
            now = _utcnow()
            if self._state == CircuitState.OPEN:
                next_attempt_at = self._next_attempt_at
                if next_attempt_at is not None and now < next_attempt_at:
                    self._stats = replace(
                        self._stats,
                        total_rejections=self._stats.total_rejections + 1,
                    )
                    retry_after = (next_attempt_at - now).total_seconds()
                    return None, retry_after, transitions
                transitions.append(
                    self._locked_transition(CircuitState.HALF_OPEN, now)
                )
            self._stats = replace(
                self._stats, total_requests=self._stats.total_requests + 1
            )
            return self._generation, 0.0, transitions

    def _record_outcome(
        self,
        *,
        generation: int,
        succeeded: bool,
        elapsed: float,
        timed_out: bool = False,
    ) -> list[_Transition]:
        transitions: list[_Transition] = []
        with self._lock:
            now = _utcnow()
            self._requests.append(
                RequestRecord(
                    timestamp=now, succeeded=succeeded, duration_ms=elapsed * 1000
                )
            )
            stats = self._stats
            if succeeded:
                self._stats = replace(
                    stats,
                    total_successes=stats.total_successes + 1,
                    last_success_at=now,
                )
            else:
                self._window_failures += 1
                self._stats = replace(
                    stats,
                    total_failures=stats.total_failures + 1,
                    total_timeouts=stats.total_timeouts + (1 if timed_out else 0),
                    last_failure_at=now,
                )

            # Successes of calls admitted before the latest transition do not
            # count toward the current phase. Any failure seen while HALF_OPEN
            # reopens, whenever its call was admitted.
            current = generation == self._generation
            if current:
                if succeeded:
                    self._consecutive_successes += 1
                    self._consecutive_failures = 0
                else:
                    self._consecutive_failures += 1
                    self._consecutive_successes = 0

            if self._state == CircuitState.HALF_OPEN:
                if not succeeded:
                    transitions.append(
                        self._locked_transition(CircuitState.OPEN, now)
                    )
                elif (
                    current
                    and self._consecutive_successes >= self._config.success_threshold
                ):
                    transitions.append(
                        self._locked_transition(CircuitState.CLOSED, now)
                    )
                    self._locked_clear_run_state()
            elif self._state == CircuitState.CLOSED and self._locked_should_open(now):
                transitions.append(self._locked_transition(CircuitState.OPEN, now))
        return transitions

    async def _invoke(self, operation: Operation[T]) -> T:
        timeout = self._config.call_timeout
        if self._config.cancel_on_timeout:
            scope = asyncio.timeout(timeout)
            try:
                async with scope:
                    result = await operation()
            except TimeoutError as exc:
                if scope.expired():
                    raise CallTimeoutError(self._name, timeout) from exc
                raise
            # The operation swallowed the cancellation and returned late.
            if scope.expired():
                raise CallTimeoutError(self._name, timeout)
            return result

        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.add_done_callback(_discard_outcome)
            raise
        if not done:
            task.add_done_callback(_discard_outcome)
            raise CallTimeoutError(self._name, timeout)
        return task.result()

    async def execute(
        self,
        operation: Operation[T],
        fallback: Fallback[T] | None = None,
    ) -> T:
        """Run ``operation`` under circuit breaker protection.

        Args:
            operation: Zero-argument callable returning an awaitable; the
                protected unit of work.
            fallback: Optional substitute called with the triggering error, or
                with ``None`` when the call was rejected because the circuit
                is open. May be sync or async.

        Returns:
            The operation result, or the fallback result when the call was
            rejected or failed and a fallback was supplied.

        Raises:
            CircuitOpenError: When the circuit is open, no fallback is given.
            CallTimeoutError: When the call exceeds ``call_timeout`` and no
                fallback is given.
            Exception: The original exception from ``operation`` when no
                fallback is given.
        """
        generation, retry_after, transitions = self._admit()
        await self._emit_state_changes(transitions)

        if generation is None:
            await self._emit_call_rejected(retry_after)
            if fallback is not None:
                return await _resolve(fallback(None))
            raise CircuitOpenError(self._name, retry_after=retry_after)

        start = time.monotonic()
        try:
            result = await self._invoke(operation)
        except self._config.excluded_exceptions:
            raise
        except Exception as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            transitions = self._record_outcome(
                generation=generation,
                succeeded=False,
                elapsed=elapsed,
                timed_out=isinstance(exc, CallTimeoutError),
            )
            await self._emit_call_failed(exc, elapsed)
            await self._emit_state_changes(transitions)
            if fallback is None:
                raise
            return await _resolve(fallback(exc))

        elapsed = max(time.monotonic() - start, 0.0)
        transitions = self._record_outcome(
            generation=generation, succeeded=True, elapsed=elapsed
        )
        await self._emit_call_succeeded(elapsed)
        await self._emit_state_changes(transitions)
        return result

    async def force_open(self) -> None:
        """Open the circuit now and restart the reset timeout."""
        with self._lock:
            transition = self._locked_transition(CircuitState.OPEN, _utcnow())
        await self._emit_state_changes([transition])

    async def force_close(self) -> None:
        """Close the circuit now and clear run state; statistics are kept."""
        with self._lock:
            transition = self._locked_transition(CircuitState.CLOSED, _utcnow())
            self._locked_clear_run_state()
        await self._emit_state_changes([transition])

    async def reset(self) -> None:
        """Return to a freshly constructed state with the same configuration."""
        with self._lock:
            old = self._state
            self._generation += 1
            self._clear()
        if old != CircuitState.CLOSED:
            await self._emit_state_changes([(old, CircuitState.CLOSED)])

    def status(self) -> BreakerStatus:
        """Return a snapshot of state, counters and the recent window."""
        with self._lock:
            self._locked_prune(_utcnow())
            recent = len(self._requests)
            failures = self._window_failures
            rate = round(failures * 100 / recent, 2) if recent else 0.0
            return BreakerStatus(
                name=self._name,
                state=self._state,
                consecutive_failures=self._consecutive_failures,
                consecutive_successes=self._consecutive_successes,
                next_attempt_at=self._next_attempt_at,
                recent_request_count=recent,
                recent_failure_count=failures,
                failure_rate_percent=rate,
                stats=self._stats,
                recent_transitions=tuple(self._transitions),
            )
