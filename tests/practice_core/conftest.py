from __future__ import annotations

import pytest

import practice_core.circuit_breaker.breaker as breaker_mod
from tests.practice_core.support.breaker_fakes import (
    FakeClock,
    FakeLogger,
    RecordingListener,
)


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    """Freeze breaker wall-clock time; advance it explicitly in tests."""
    fake = FakeClock()
    monkeypatch.setattr(breaker_mod, "_utcnow", fake.now)
    return fake


@pytest.fixture
def listener() -> RecordingListener:
    """Provide a fresh recording breaker listener per test."""
    return RecordingListener()
