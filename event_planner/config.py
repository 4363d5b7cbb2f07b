"""Configuration management for the event planner."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

ENV_PREFIX = "EVENT_PLANNER_"

DEFAULT_CONFLICT_WINDOW_DAYS = 31
DEFAULT_TIMEZONE = "UTC"
DEFAULT_LOG_LEVEL = "INFO"


@dataclass(frozen=True)
class Settings:
    """Engine settings."""

    # Maximum number of days expanded when comparing open-ended recurrences
    conflict_window_days: int = DEFAULT_CONFLICT_WINDOW_DAYS
    default_timezone: str = DEFAULT_TIMEZONE
    log_level: str = DEFAULT_LOG_LEVEL


def _env(name: str) -> str | None:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def load_settings() -> Settings:
    """Load settings from ``EVENT_PLANNER_*`` environment variables.

    Invalid values are logged and replaced by their defaults.
    """
    window_days = DEFAULT_CONFLICT_WINDOW_DAYS
    raw_window = _env("CONFLICT_WINDOW_DAYS")
    if raw_window is not None:
        try:
            window_days = int(raw_window)
        except ValueError:
            logger.warning(f"Ignoring non-numeric CONFLICT_WINDOW_DAYS: {raw_window!r}")
        else:
            if window_days < 1:
                logger.warning(f"Ignoring CONFLICT_WINDOW_DAYS < 1: {window_days}")
                window_days = DEFAULT_CONFLICT_WINDOW_DAYS

    tz_name = _env("DEFAULT_TIMEZONE") or DEFAULT_TIMEZONE
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown DEFAULT_TIMEZONE {tz_name!r}, using {DEFAULT_TIMEZONE}")
        tz_name = DEFAULT_TIMEZONE

    log_level = (_env("LOG_LEVEL") or DEFAULT_LOG_LEVEL).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        logger.warning(f"Unknown LOG_LEVEL {log_level!r}, using {DEFAULT_LOG_LEVEL}")
        log_level = DEFAULT_LOG_LEVEL

    return Settings(
        conflict_window_days=window_days,
        default_timezone=tz_name,
        log_level=log_level,
    )


def configure_logging(settings: Settings) -> None:
    """Set up root logging at the configured level."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
