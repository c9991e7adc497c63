"""
Shared configuration management for the Subscription Entitlement Engine.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_EXEMPT_PATHS = [
    "/admin/subscription-selection",
    "/admin/subscription-history",
    "/admin/settings",
    "/admin/payment/callback",
]


class EngineConfig(BaseSettings):
    """Engine configuration, overridable through ENTITLEMENT_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="ENTITLEMENT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Backend subscription API
    api_base_url: str = Field(default="http://localhost:5000/api")
    subscription_path: str = Field(default="/users/my-subscription")
    request_timeout: float = Field(default=10.0, gt=0)

    # Notifier scheduling
    tick_interval_seconds: float = Field(default=60.0, gt=0)
    refresh_interval_seconds: float = Field(default=300.0, gt=0)
    min_refresh_interval_seconds: float = Field(default=60.0, ge=0)

    # Evaluation thresholds
    expiry_warning_days: float = Field(default=7.0, gt=0)
    usage_warning_threshold: float = Field(default=90.0, ge=0)

    # Route guard
    selection_route: str = Field(default="/admin/subscription-selection")
    exempt_paths: List[str] = Field(default_factory=lambda: list(DEFAULT_EXEMPT_PATHS))

    # Resilience
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)
    circuit_failure_threshold: int = Field(default=3, ge=1)
    circuit_recovery_timeout: float = Field(default=30.0, ge=0)


def get_config(**overrides) -> EngineConfig:
    """Get engine configuration, applying explicit overrides over the environment."""
    return EngineConfig(**overrides)
