"""
Centralized configuration with environment variable overrides.

Store location, gateway endpoint and timeouts, and the business time zone
are all configurable here. Nothing is hardcoded in store, resolver or
coordinator logic.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("file", "memory")
MAX_GATEWAY_TIMEOUT_SEC = 10.0


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class StoreConfig:
    """Where and how tenant records are persisted."""

    backend: str = os.getenv("TENANTBOOK_STORE_BACKEND", "file")
    path: str = os.getenv("TENANTBOOK_STORE_PATH", "data/tenants.json.z")


@dataclass(frozen=True)
class GatewayConfig:
    """External calendar provider endpoint and call limits."""

    base_url: str = os.getenv("GATEWAY_BASE_URL", "https://services.leadconnectorhq.com")
    api_version: str = os.getenv("GATEWAY_API_VERSION", "2021-04-15")
    timeout_sec: float = _safe_float("GATEWAY_TIMEOUT_SEC", "5.0")
    max_retries: int = _safe_int("GATEWAY_MAX_RETRIES", "3")
    retry_delay_sec: float = _safe_float("GATEWAY_RETRY_DELAY_SEC", "0.5")


@dataclass(frozen=True)
class BookingConfig:
    """Business calendar settings shared by the resolver and coordinator."""

    timezone: str = os.getenv("BUSINESS_TIMEZONE", "Asia/Jerusalem")
    duration_minutes: int = _safe_int("APPOINTMENT_DURATION_MINUTES", "60")
    horizon_days: int = _safe_int("AVAILABILITY_HORIZON_DAYS", "14")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    store: StoreConfig = field(default_factory=StoreConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.store.backend not in STORE_BACKENDS:
        raise ValueError(
            f"TENANTBOOK_STORE_BACKEND must be one of {STORE_BACKENDS}, "
            f"got {config.store.backend!r}"
        )
    if not 0.0 < config.gateway.timeout_sec < MAX_GATEWAY_TIMEOUT_SEC:
        raise ValueError(
            f"GATEWAY_TIMEOUT_SEC must be between 0 and {MAX_GATEWAY_TIMEOUT_SEC}, "
            f"got {config.gateway.timeout_sec}"
        )
    if config.gateway.max_retries < 1:
        raise ValueError(
            f"GATEWAY_MAX_RETRIES must be >= 1, got {config.gateway.max_retries}"
        )
    if config.gateway.retry_delay_sec < 0:
        raise ValueError(
            f"GATEWAY_RETRY_DELAY_SEC must be >= 0, got {config.gateway.retry_delay_sec}"
        )
    if config.booking.duration_minutes < 1:
        raise ValueError(
            "APPOINTMENT_DURATION_MINUTES must be >= 1, "
            f"got {config.booking.duration_minutes}"
        )
    if config.booking.horizon_days < 1:
        raise ValueError(
            f"AVAILABILITY_HORIZON_DAYS must be >= 1, got {config.booking.horizon_days}"
        )
    try:
        ZoneInfo(config.booking.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"BUSINESS_TIMEZONE is not a known time zone: {config.booking.timezone!r}"
        ) from None


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info(
        "Configuration loaded (store=%s, timezone=%s)",
        config.store.backend, config.booking.timezone,
    )
    return config


# Singleton instance
settings = load_config()
