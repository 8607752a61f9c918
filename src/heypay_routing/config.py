"""Canonical configuration surface for the routing engine."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class RoutingSettings(BaseSettings):
    """Routing engine configuration."""

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"

    # Caps are always expressed in this currency's minor unit
    reference_currency: str = "EUR"

    # Business day: 06:00 -> 06:00 in a fixed zone
    business_day_timezone: str = "Europe/Paris"
    business_day_start_hour: int = 6
    month_window_days: int = 30

    # Read-through caches
    health_cache_ttl_seconds: int = 15 * 60
    fx_cache_ttl_seconds: int = 24 * 60 * 60
    fx_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    fx_timeout_seconds: float = 10.0

    # Failure policy
    max_consecutive_failures: int = 2
    breaker_history_limit: int = 10
    default_max_retries: int = 2

    # Checkouts
    checkout_ttl_minutes: int = 30
    # Reference currency minor units; None disables the limit
    max_checkout_amount: Optional[int] = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        env_prefix = "HEYPAY_ROUTING_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("reference_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3:
            raise ValueError(f"reference_currency must be an ISO 4217 code, got {v!r}")
        return v

    @field_validator("business_day_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone {v!r}") from e
        return v

    @field_validator("business_day_start_hour")
    @classmethod
    def validate_start_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError("business_day_start_hour must be between 0 and 23")
        return v

    @field_validator("max_checkout_amount")
    @classmethod
    def validate_max_checkout_amount(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("max_checkout_amount must be positive")
        return v

    @field_validator("max_consecutive_failures", "breaker_history_limit", "month_window_days")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v


@lru_cache
def load_settings(env_file: str | None = None) -> RoutingSettings:
    """Load RoutingSettings once per process to keep engine instances consistent."""
    env_path = Path(env_file) if env_file else None
    return RoutingSettings(_env_file=env_path)
