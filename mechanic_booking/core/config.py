"""
Centralized configuration with environment variable overrides.

Values are read once at import time (after loading a local ``.env``) and
exposed through the ``settings`` singleton. Components that need a different
configuration in tests accept an ``AppConfig`` instance explicitly.
"""

import logging
import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid integer for {env_var}: {raw!r}") from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float for {env_var}: {raw!r}") from None


def _safe_bool(env_var: str, default: str) -> bool:
    raw = os.getenv(env_var, default).strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class DatabaseConfig:
    """Storage settings."""

    url: str = os.getenv("DATABASE_URL", "sqlite:///./mechanic_booking.db")
    log_slow_queries: bool = _safe_bool("DB_LOG_SLOW_QUERIES", "true")
    slow_query_threshold: float = _safe_float("DB_SLOW_QUERY_THRESHOLD", "1.0")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot grid, hold expiry and booking policy switches."""

    # GMT+7, the shop's civil time
    operating_timezone: str = os.getenv("OPERATING_TIMEZONE", "Asia/Ho_Chi_Minh")
    slot_width_minutes: int = _safe_int("SLOT_WIDTH_MINUTES", "60")
    block_grace_minutes: int = _safe_int("BLOCK_GRACE_MINUTES", "10")
    release_blocks_on_cancel: bool = _safe_bool("RELEASE_BLOCKS_ON_CANCEL", "true")
    recheck_conflicts_on_update: bool = _safe_bool("RECHECK_CONFLICTS_ON_UPDATE", "true")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    cron_secret: str = os.getenv("CRON_SECRET", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.scheduling.slot_width_minutes < 1:
        raise ValueError(
            f"SLOT_WIDTH_MINUTES must be >= 1, got {config.scheduling.slot_width_minutes}"
        )
    if config.scheduling.slot_width_minutes > 24 * 60:
        raise ValueError(
            f"SLOT_WIDTH_MINUTES must be <= 1440, got {config.scheduling.slot_width_minutes}"
        )
    if config.scheduling.block_grace_minutes < 0:
        raise ValueError(
            f"BLOCK_GRACE_MINUTES must be >= 0, got {config.scheduling.block_grace_minutes}"
        )
    if config.database.slow_query_threshold <= 0:
        raise ValueError(
            "DB_SLOW_QUERY_THRESHOLD must be > 0, "
            f"got {config.database.slow_query_threshold}"
        )
    try:
        ZoneInfo(config.scheduling.operating_timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(
            f"Unknown OPERATING_TIMEZONE: {config.scheduling.operating_timezone!r}"
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
        "Configuration loaded (timezone=%s, slot width=%s min)",
        config.scheduling.operating_timezone,
        config.scheduling.slot_width_minutes,
    )
    return config


# Singleton instance
settings = load_config()
