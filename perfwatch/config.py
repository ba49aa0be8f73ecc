"""
Client configuration.

All thresholds and intervals are defaults, not correctness guarantees, and
can be overridden per instance or through ``PERFWATCH_*`` environment
variables.

Environment variables (read by ClientConfig.from_env):
    PERFWATCH_BASE_URL: Base URL of the remote service
    PERFWATCH_POLL_INTERVAL: Seconds between metric polls
    PERFWATCH_CACHE_TTL: Seconds a compute result stays cached
    PERFWATCH_CB_FAILURE_THRESHOLD: Failures before a circuit opens
    PERFWATCH_CB_COOLDOWN_SECONDS: Seconds an open circuit refuses calls
    PERFWATCH_RETRY_COUNT: Retries after the first attempt
    PERFWATCH_RETRY_BASE_DELAY: Base retry delay in seconds
    PERFWATCH_HISTORY_CAPACITY: Samples kept per metric
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from perfwatch.alerts import DEFAULT_ALERT_RULES, AlertRule
from perfwatch.exceptions import ConfigurationError
from perfwatch.retry import RetryConfig

DEFAULT_BASE_URL = "http://localhost:3001"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Configuration for per-endpoint circuits.

    Attributes:
        failure_threshold: Consecutive failures before a circuit opens.
        cooldown_seconds: Seconds after the last failure before a probe is allowed.

    Example:
        # Tolerate flakier endpoints
        lenient = CircuitBreakerConfig(failure_threshold=5, cooldown_seconds=10.0)
    """

    failure_threshold: int = 2
    cooldown_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError("CircuitBreakerConfig", "failure_threshold must be at least 1")
        if self.cooldown_seconds <= 0:
            raise ConfigurationError("CircuitBreakerConfig", "cooldown_seconds must be positive")

    def with_overrides(
        self,
        failure_threshold: Optional[int] = None,
        cooldown_seconds: Optional[float] = None,
    ) -> CircuitBreakerConfig:
        """Create a new config with specified overrides."""
        return CircuitBreakerConfig(
            failure_threshold=(
                failure_threshold if failure_threshold is not None else self.failure_threshold
            ),
            cooldown_seconds=(
                cooldown_seconds if cooldown_seconds is not None else self.cooldown_seconds
            ),
        )


@dataclass(frozen=True)
class ClientConfig:
    """Everything a PerformanceClient needs, injected at construction."""

    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = 12.0
    request_timeout: float = 30.0
    benchmark_timeout: float = 120.0
    max_compute_timeout: float = 120.0

    snapshot_ttl: float = 5.0
    system_info_ttl: float = 60.0
    result_cache_ttl: float = 600.0
    result_cache_maxsize: int = 256
    cache_sweep_interval: float = 120.0
    key_precision: int = 10

    history_capacity: int = 100
    alert_history_limit: int = 50
    alert_rules: tuple[AlertRule, ...] = DEFAULT_ALERT_RULES

    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigurationError("ClientConfig", "base_url must not be empty")
        for name in (
            "poll_interval",
            "request_timeout",
            "benchmark_timeout",
            "max_compute_timeout",
            "snapshot_ttl",
            "system_info_ttl",
            "result_cache_ttl",
            "cache_sweep_interval",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError("ClientConfig", f"{name} must be positive")
        if self.history_capacity < 1:
            raise ConfigurationError("ClientConfig", "history_capacity must be at least 1")
        if self.alert_history_limit < 1:
            raise ConfigurationError("ClientConfig", "alert_history_limit must be at least 1")
        if self.result_cache_maxsize < 1:
            raise ConfigurationError("ClientConfig", "result_cache_maxsize must be at least 1")
        if not 0 <= self.key_precision <= 15:
            raise ConfigurationError("ClientConfig", "key_precision must be between 0 and 15")

    def with_overrides(self, **changes: Any) -> ClientConfig:
        """Create a new config with the given fields replaced."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build a config from defaults, ``PERFWATCH_*`` variables, then ``overrides``.

        Unset or unparseable variables are ignored.
        """
        base = cls()
        values: dict[str, Any] = {}

        base_url = os.environ.get("PERFWATCH_BASE_URL")
        if base_url:
            values["base_url"] = base_url.rstrip("/")

        for env_name, attr in (
            ("PERFWATCH_POLL_INTERVAL", "poll_interval"),
            ("PERFWATCH_CACHE_TTL", "result_cache_ttl"),
        ):
            env_value = _get_env_float(env_name)
            if env_value is not None:
                values[attr] = env_value

        capacity = _get_env_int("PERFWATCH_HISTORY_CAPACITY")
        if capacity is not None:
            values["history_capacity"] = capacity

        failure_threshold = _get_env_int("PERFWATCH_CB_FAILURE_THRESHOLD")
        cooldown = _get_env_float("PERFWATCH_CB_COOLDOWN_SECONDS")
        if failure_threshold is not None or cooldown is not None:
            values["circuit_breaker"] = base.circuit_breaker.with_overrides(
                failure_threshold=failure_threshold,
                cooldown_seconds=cooldown,
            )

        retry_count = _get_env_int("PERFWATCH_RETRY_COUNT")
        retry_delay = _get_env_float("PERFWATCH_RETRY_BASE_DELAY")
        retry_changes: dict[str, Any] = {}
        if retry_count is not None:
            retry_changes["max_retries"] = retry_count
        if retry_delay is not None:
            retry_changes["base_delay"] = retry_delay
        if retry_changes:
            values["retry"] = base.retry.with_overrides(**retry_changes)

        values.update(overrides)
        return replace(base, **values)


def _get_env_int(name: str) -> Optional[int]:
    """Get an integer from environment variable, or None if not set/invalid."""
    value = os.environ.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _get_env_float(name: str) -> Optional[float]:
    """Get a float from environment variable, or None if not set/invalid."""
    value = os.environ.get(name)
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


__all__ = [
    "DEFAULT_BASE_URL",
    "CircuitBreakerConfig",
    "ClientConfig",
]
