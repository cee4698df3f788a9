from __future__ import annotations

import structlog
from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from practice_core.circuit_breaker import (
    BreakerListener,
    BreakerRegistry,
    CircuitBreakerConfig,
)
from practice_core.logging import AnyLogger, configure_structlog, get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Process-wide circuit breaker defaults read from ``CIRCUIT_BREAKER_*``."""

    model_config = prefixed_settings_config("CIRCUIT_BREAKER_")

    failure_threshold_percent: float = 50.0
    success_threshold: int = 2
    call_timeout_seconds: float = 60.0
    reset_timeout_seconds: float = 30.0
    monitoring_window_seconds: float = 60.0
    volume_threshold: int = 10
    cancel_on_timeout: bool = True
    log_level: str = "INFO"
    service_name: str | None = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    @field_validator("failure_threshold_percent")
    @classmethod
    def _validate_failure_threshold(cls, value: float) -> float:
        if not 0 < value <= 100:
            raise ValueError("failure_threshold_percent must be > 0 and <= 100")
        return value

    @field_validator("success_threshold", "volume_threshold")
    @classmethod
    def _validate_positive_count(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @field_validator("call_timeout_seconds", "monitoring_window_seconds")
    @classmethod
    def _validate_positive_seconds(cls, value: float, info: ValidationInfo) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("reset_timeout_seconds")
    @classmethod
    def _validate_reset_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("reset_timeout_seconds must be >= 0")
        return value

    def breaker_config(self) -> CircuitBreakerConfig:
        """Build the default breaker configuration from these settings."""
        return CircuitBreakerConfig(
            failure_threshold_percent=self.failure_threshold_percent,
            success_threshold=self.success_threshold,
            call_timeout=self.call_timeout_seconds,
            reset_timeout=self.reset_timeout_seconds,
            monitoring_window=self.monitoring_window_seconds,
            volume_threshold=self.volume_threshold,
            cancel_on_timeout=self.cancel_on_timeout,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Configure process logging from ``log_level`` and ``service_name``."""
        return configure_structlog(log_level=self.log_level, service=self.service_name)

    def build_registry(
        self,
        *,
        listeners: list[BreakerListener] | None = None,
        logger: AnyLogger | None = None,
    ) -> BreakerRegistry:
        """Build a registry whose unconfigured breakers use these defaults."""
        return BreakerRegistry(
            default_config=self.breaker_config(),
            listeners=listeners,
            logger=logger,
        )
