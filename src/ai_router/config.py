"""AI Router — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ai_router.shared.providers.health import FailurePolicy
from ai_router.shared.providers.quota import QuotaPolicy
from ai_router.shared.providers.reserve import ReservePolicy
from ai_router.shared.providers.scorer import ScoringPolicy


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class QuotaBackend(str, enum.Enum):
    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "ai-router"
    app_env: Environment = Environment.DEVELOPMENT
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"

    # ── Quota store ──────────────────────────────────────────
    quota_backend: QuotaBackend = QuotaBackend.REDIS
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50
    redis_key_prefix: str = "ai_router"

    # ── Providers ────────────────────────────────────────────
    ai_provider_config: str = ""
    adapter_timeout_seconds: float = Field(default=60.0, gt=0)

    # ── Rate window ──────────────────────────────────────────
    rate_window_minutes: float = Field(default=1.0, gt=0)
    rate_burst_multiplier: float = Field(default=1.0, gt=0)
    lease_ttl_seconds: float = Field(default=120.0, gt=0)
    daily_reset_hour_utc: int = Field(default=0, ge=0, le=23)

    # ── Scoring ──────────────────────────────────────────────
    priority_higher_wins: bool = True
    error_penalty_weight: float = Field(default=10.0, ge=0)
    remaining_low_threshold: int = Field(default=5, ge=0)
    remaining_tokens_low_threshold: int = Field(default=1000, ge=0)
    remaining_low_penalty: float = Field(default=50.0, ge=0)
    health_window_seconds: float = Field(default=900.0, gt=0)

    # ── Failure handling ─────────────────────────────────────
    rate_limit_cooldown_seconds: float = Field(default=60.0, ge=0)
    provider_error_cooldown_seconds: float = Field(default=30.0, ge=0)
    payment_required_block_seconds: float = Field(default=21_600.0, ge=0)

    # ── Reserve provider ─────────────────────────────────────
    reserve_enabled: bool = False
    reserve_provider: str = ""
    reserve_release_hours_to_reset: float = Field(default=2.0, ge=0)
    reserve_release_primary_remaining_ratio: float = Field(default=0.15, ge=0, le=1)

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("reserve_provider")
    @classmethod
    def _normalise_reserve(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def _require_reserve_identity(self) -> Settings:
        if self.reserve_enabled and not self.reserve_provider:
            raise ValueError("reserve_provider must be set when reserve_enabled is true")
        return self

    def quota_policy(self) -> QuotaPolicy:
        return QuotaPolicy(
            window_minutes=self.rate_window_minutes,
            burst_multiplier=self.rate_burst_multiplier,
            lease_ttl_seconds=self.lease_ttl_seconds,
            health_window_seconds=self.health_window_seconds,
            reset_hour_utc=self.daily_reset_hour_utc,
        )

    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy(
            rate_limit_cooldown_seconds=self.rate_limit_cooldown_seconds,
            provider_error_cooldown_seconds=self.provider_error_cooldown_seconds,
            payment_required_block_seconds=self.payment_required_block_seconds,
        )

    def scoring_policy(self) -> ScoringPolicy:
        return ScoringPolicy(
            priority_higher_wins=self.priority_higher_wins,
            error_penalty_weight=self.error_penalty_weight,
            remaining_low_threshold=self.remaining_low_threshold,
            remaining_tokens_low_threshold=self.remaining_tokens_low_threshold,
            remaining_low_penalty=self.remaining_low_penalty,
        )

    def reserve_policy(self) -> ReservePolicy:
        return ReservePolicy(
            enabled=self.reserve_enabled,
            provider_id=self.reserve_provider,
            release_hours_to_reset=self.reserve_release_hours_to_reset,
            release_primary_remaining_ratio=self.reserve_release_primary_remaining_ratio,
        )


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
