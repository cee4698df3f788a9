"""Recommended breaker configurations per dependency class."""

from collections.abc import Mapping
from dataclasses import replace
from enum import StrEnum
from types import MappingProxyType

from practice_core.circuit_breaker.breaker import CircuitBreakerConfig


class DependencyProfile(StrEnum):
    """Classes of unreliable dependencies called by the practice backend."""

    DATASTORE = "datastore"
    EXTERNAL_API = "external_api"
    EMAIL = "email"
    PAYMENT = "payment"
    FILE_STORAGE = "file_storage"
    SEARCH = "search"


DEPENDENCY_PROFILES: Mapping[DependencyProfile, CircuitBreakerConfig] = (
    MappingProxyType(
        {
            DependencyProfile.DATASTORE: CircuitBreakerConfig(
                failure_threshold_percent=50,
                success_threshold=3,
                call_timeout=5.0,
                reset_timeout=30.0,
                volume_threshold=10,
            ),
            DependencyProfile.EXTERNAL_API: CircuitBreakerConfig(
                failure_threshold_percent=50,
                success_threshold=2,
                call_timeout=10.0,
                reset_timeout=60.0,
                volume_threshold=5,
            ),
            DependencyProfile.EMAIL: CircuitBreakerConfig(
                failure_threshold_percent=60,
                success_threshold=3,
                call_timeout=15.0,
                reset_timeout=120.0,
                volume_threshold=5,
            ),
            # Charges must stop early and recover slowly.
            DependencyProfile.PAYMENT: CircuitBreakerConfig(
                failure_threshold_percent=30,
                success_threshold=5,
                call_timeout=30.0,
                reset_timeout=300.0,
                volume_threshold=3,
            ),
            DependencyProfile.FILE_STORAGE: CircuitBreakerConfig(
                failure_threshold_percent=50,
                success_threshold=2,
                call_timeout=20.0,
                reset_timeout=60.0,
                volume_threshold=5,
            ),
            DependencyProfile.SEARCH: CircuitBreakerConfig(
                failure_threshold_percent=60,
                success_threshold=2,
                call_timeout=5.0,
                reset_timeout=30.0,
                volume_threshold=10,
            ),
        }
    )
)


def profile_config(
    profile: DependencyProfile | str, **overrides: object
) -> CircuitBreakerConfig:
    """Return the recommended config for ``profile`` with field overrides.

    Raises:
        ValueError: If ``profile`` is unknown or an override is out of range.
        TypeError: If an override names a field the config does not have.
    """
    try:
        base = DEPENDENCY_PROFILES[DependencyProfile(profile)]
    except ValueError as error:
        choices = ", ".join(sorted(DependencyProfile))
        raise ValueError(f"profile must be one of: {choices}") from error
    if not overrides:
        return base
    return replace(base, **overrides)  # type: ignore[arg-type]
