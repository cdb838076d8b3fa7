from __future__ import annotations

from collections.abc import Mapping

import structlog
from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from spapi_core.circuit_breaker import CircuitBreakerConfig, StateChangeCallback
from spapi_core.logging import configure_structlog, get_log_level_value
from spapi_core.retry import RetryBackoffPolicy


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class ResilienceSettings(BaseSettings):
    """Circuit breaker, retry and logging settings for SP-API clients."""

    model_config = prefixed_settings_config("SPAPI_")

    circuit_max_failures: int = 5
    circuit_timeout_seconds: float = 60.0
    circuit_single_probe: bool = False
    retry_attempts: int = 4
    retry_min_seconds: float = 1.0
    retry_max_seconds: float = 30.0
    retry_multiplier: float = 2.0
    log_level: str = "INFO"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if not isinstance(value, str):
            return value
        normalized = value.strip().upper()
        get_log_level_value(normalized)
        return normalized

    @field_validator(
        "circuit_max_failures",
        "circuit_timeout_seconds",
        "retry_attempts",
        mode="after",
    )
    @classmethod
    def _validate_positive(cls, value: float, info: ValidationInfo) -> float:
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @model_validator(mode="after")
    def _validate_retry_bounds(self) -> ResilienceSettings:
        if self.retry_min_seconds < 0:
            raise ValueError("retry_min_seconds must be >= 0")
        if self.retry_max_seconds < self.retry_min_seconds:
            raise ValueError("retry_max_seconds must be >= retry_min_seconds")
        if self.retry_multiplier < 1:
            raise ValueError("retry_multiplier must be >= 1")
        return self

    def breaker_config(
        self,
        *,
        on_state_change: StateChangeCallback | None = None,
    ) -> CircuitBreakerConfig:
        """Build a ``CircuitBreakerConfig`` from these settings."""
        return CircuitBreakerConfig(
            max_failures=self.circuit_max_failures,
            timeout=self.circuit_timeout_seconds,
            on_state_change=on_state_change,
            single_probe=self.circuit_single_probe,
        )

    def retry_policy(self) -> RetryBackoffPolicy:
        """Build a ``RetryBackoffPolicy`` from these settings."""
        return RetryBackoffPolicy(
            attempts=self.retry_attempts,
            min_seconds=self.retry_min_seconds,
            max_seconds=self.retry_max_seconds,
            multiplier=self.retry_multiplier,
        )

    def configure_logging(
        self,
        *,
        static_fields: Mapping[str, object] | None = None,
    ) -> structlog.stdlib.BoundLogger:
        """Configure structlog at ``log_level`` and return the root logger."""
        return configure_structlog(
            log_level=self.log_level,
            static_fields=static_fields,
        )
