import asyncio

import pytest

from practice_core.circuit_breaker import (
    BreakerRegistry,
    CircuitBreakerConfig,
    CircuitOpenError,
    CircuitState,
    DependencyProfile,
    LoggingBreakerListener,
    profile_config,
)
from tests.practice_core.support.breaker_fakes import (
    FakeClock,
    FakeLogger,
    RecordingListener,
)

pytestmark = pytest.mark.asyncio

_STRICT = CircuitBreakerConfig(
    failure_threshold_percent=50,
    volume_threshold=2,
    success_threshold=1,
    call_timeout=1.0,
    reset_timeout=10.0,
)


async def _ok() -> str:
    return "ok"


async def _fail() -> None:
    raise RuntimeError("nope")


async def test_get_or_create_returns_same_instance(fake_logger: FakeLogger) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    first = registry.get_or_create("datastore.patients")
    second = registry.get_or_create("datastore.patients")

    assert first is second
    assert len(registry) == 1
    assert "datastore.patients" in registry
    assert fake_logger.events == ["circuit_breaker.created"]


async def test_first_config_wins_and_later_config_is_logged(
    fake_logger: FakeLogger,
) -> None:
    registry = BreakerRegistry(logger=fake_logger)
    payment = profile_config(DependencyProfile.PAYMENT)

    breaker = registry.get_or_create("payment.charge", payment)
    again = registry.get_or_create("payment.charge", CircuitBreakerConfig())

    assert again is breaker
    assert again.config is payment
    assert fake_logger.calls[-1] == (
        "warning",
        "circuit_breaker.config_ignored",
        {"circuit_breaker": "payment.charge"},
    )


async def test_same_config_on_lookup_is_not_reported(fake_logger: FakeLogger) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    registry.get_or_create("search", profile_config("search"))
    registry.get_or_create("search", profile_config("search"))

    assert "circuit_breaker.config_ignored" not in fake_logger.events


async def test_default_config_applies_to_unconfigured_breakers(
    fake_logger: FakeLogger,
) -> None:
    registry = BreakerRegistry(default_config=_STRICT, logger=fake_logger)

    assert registry.get_or_create("email").config is _STRICT
    assert registry.get("missing") is None


async def test_concurrent_first_lookups_create_one_breaker(
    fake_logger: FakeLogger,
) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    breakers = await asyncio.gather(
        *(
            asyncio.to_thread(registry.get_or_create, "file_storage")
            for _ in range(16)
        )
    )

    assert len({id(breaker) for breaker in breakers}) == 1
    assert fake_logger.events.count("circuit_breaker.created") == 1


async def test_execute_creates_breaker_and_forwards_fallback(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    result = await registry.execute(
        "external_api.eligibility",
        _fail,
        fallback=lambda error: f"fallback:{error}",
        config=_STRICT,
    )

    assert result == "fallback:nope"
    status = registry.status_of("external_api.eligibility")
    assert status is not None
    assert status.stats.total_failures == 1


async def test_execute_rejects_once_open(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(default_config=_STRICT, logger=fake_logger)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await registry.execute("datastore", _fail)

    with pytest.raises(CircuitOpenError):
        await registry.execute("datastore", _ok)


async def test_protect_wraps_async_function(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    async def lookup_claim(claim_id: str, *, include_lines: bool = False) -> str:
        """Fetch one insurance claim."""
        return f"{claim_id}:{include_lines}"

    protected = registry.protect("external_api.claims", config=_STRICT)(lookup_claim)

    assert await protected("C-1", include_lines=True) == "C-1:True"
    assert protected.__name__ == "lookup_claim"
    assert protected.__doc__ == "Fetch one insurance claim."
    breaker = registry.get("external_api.claims")
    assert breaker is not None
    assert breaker.config is _STRICT
    assert breaker.status().stats.total_successes == 1


async def test_protect_reports_ignored_config_once_per_name(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(logger=fake_logger)
    registry.get_or_create("email.send", profile_config(DependencyProfile.EMAIL))

    async def send_reminder(patient_id: str) -> str:
        return patient_id

    protected = registry.protect("email.send", config=_STRICT)(send_reminder)
    for patient_id in ("P-1", "P-2", "P-3"):
        assert await protected(patient_id) == patient_id
    registry.get_or_create("email.send", CircuitBreakerConfig())

    assert fake_logger.events.count("circuit_breaker.config_ignored") == 1


async def test_protect_with_fallback_absorbs_rejection(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(logger=fake_logger)
    protected = registry.protect(
        "search.patients", config=_STRICT, fallback=lambda error: []
    )(_fail)

    assert await protected() == []
    assert await protected() == []
    assert await protected() == []

    status = registry.status_of("search.patients")
    assert status is not None
    assert status.state == CircuitState.OPEN
    assert status.stats.total_rejections == 1


async def test_status_of_unknown_name_is_none(fake_logger: FakeLogger) -> None:
    registry = BreakerRegistry(logger=fake_logger)

    assert registry.status_of("nope") is None
    assert registry.status_of_all() == {}


async def test_status_of_all_and_reset_all(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(default_config=_STRICT, logger=fake_logger)
    for _ in range(2):
        with pytest.raises(RuntimeError):
            await registry.execute("payment", _fail)
    await registry.execute("email", _ok)

    statuses = registry.status_of_all()
    assert list(statuses) == ["payment", "email"]
    assert statuses["payment"].state == CircuitState.OPEN
    assert statuses["email"].state == CircuitState.CLOSED

    await registry.reset_all()

    for status in registry.status_of_all().values():
        assert status.state == CircuitState.CLOSED
        assert status.stats.total_requests == 0
    assert list(registry.names()) == ["payment", "email"]


async def test_reset_single_breaker(clock: FakeClock, fake_logger: FakeLogger) -> None:
    registry = BreakerRegistry(default_config=_STRICT, logger=fake_logger)
    breaker = registry.get_or_create("datastore")
    await breaker.force_open()

    assert await registry.reset("datastore") is True
    assert await registry.reset("unknown") is False
    assert registry.get_or_create("datastore") is breaker
    assert breaker.state == CircuitState.CLOSED


async def test_registry_attaches_listeners_to_new_breakers(
    clock: FakeClock, fake_logger: FakeLogger, listener: RecordingListener
) -> None:
    registry = BreakerRegistry(
        default_config=_STRICT, listeners=[listener], logger=fake_logger
    )

    await registry.get_or_create("datastore").force_open()

    assert listener.events == [
        ("state", ("datastore", CircuitState.CLOSED, CircuitState.OPEN))
    ]


async def test_default_listener_logs_state_changes_and_rejections(
    clock: FakeClock, fake_logger: FakeLogger
) -> None:
    registry = BreakerRegistry(default_config=_STRICT, logger=fake_logger)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await registry.execute("datastore", _fail)
    with pytest.raises(CircuitOpenError):
        await registry.execute("datastore", _ok)

    warnings = [call for call in fake_logger.calls if call[0] == "warning"]
    assert warnings == [
        (
            "warning",
            "circuit_breaker.state_changed",
            {
                "circuit_breaker": "datastore",
                "from_state": "CLOSED",
                "to_state": "OPEN",
            },
        ),
        (
            "warning",
            "circuit_breaker.call_rejected",
            {"circuit_breaker": "datastore", "retry_after": 10.0},
        ),
    ]
    assert fake_logger.events.count("circuit_breaker.call_failed") == 2


async def test_logging_listener_failure_fields(fake_logger: FakeLogger) -> None:
    listener = LoggingBreakerListener(fake_logger)

    await listener.on_call_failed("email", ValueError("smtp down"), 0.0125)

    assert fake_logger.calls == [
        (
            "info",
            "circuit_breaker.call_failed",
            {
                "circuit_breaker": "email",
                "error_type": "ValueError",
                "error": "smtp down",
                "elapsed_ms": 12.5,
            },
        )
    ]
