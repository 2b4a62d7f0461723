# backend/agenda/services/slots/config.py
"""
Booking configuration for slots calculation.
"""

from dataclasses import dataclass, replace
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ...config import settings

ALLOWED_SLOT_STEPS = (5, 10, 15, 20, 30, 60)


@dataclass(frozen=True)
class BookingConfig:
    """
    Configuration for booking/slots system.

    Attributes:
        horizon_days: How many days ahead slots can be booked
        min_advance_hours: Minimum hours before a slot can be booked
        slot_step_minutes: Grid step between candidate starts
        timezone: IANA zone in which day templates are interpreted
        cache_ttl_seconds: Redis cache TTL for computed day candidates
    """
    horizon_days: int = 60
    min_advance_hours: int = 0
    slot_step_minutes: int = 30
    timezone: str = "Europe/Paris"
    cache_ttl_seconds: int = 300

    def __post_init__(self):
        """Validate configuration."""
        if self.slot_step_minutes not in ALLOWED_SLOT_STEPS:
            raise ValueError(
                f"slot_step_minutes must be one of {ALLOWED_SLOT_STEPS}, got {self.slot_step_minutes}"
            )
        if self.horizon_days < 1:
            raise ValueError(f"horizon_days must be >= 1, got {self.horizon_days}")
        if self.min_advance_hours < 0:
            raise ValueError(f"min_advance_hours must be >= 0, got {self.min_advance_hours}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone!r}") from None

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def for_provider(self, provider) -> "BookingConfig":
        """Overlay a provider's own settings (NULL columns keep the default)."""
        overrides = {}
        if provider.slot_interval:
            overrides["slot_step_minutes"] = provider.slot_interval
        if provider.timezone:
            overrides["timezone"] = provider.timezone
        if provider.min_booking_notice is not None:
            overrides["min_advance_hours"] = provider.min_booking_notice
        if provider.max_booking_advance:
            overrides["horizon_days"] = provider.max_booking_advance
        return replace(self, **overrides) if overrides else self


@lru_cache
def get_booking_config() -> BookingConfig:
    """Get booking configuration (singleton) built from settings."""
    return BookingConfig(
        horizon_days=settings.horizon_days,
        min_advance_hours=settings.min_advance_hours,
        slot_step_minutes=settings.slot_interval_minutes,
        timezone=settings.timezone,
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )


def time_str_to_minutes(value: str) -> int:
    """"HH:MM" -> minutes since midnight."""
    try:
        hour_str, minute_str = value.split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return hour * 60 + minute


def minutes_to_time_str(minutes: int) -> str:
    """Minutes since midnight -> "HH:MM" (24:00 allowed for an end of day)."""
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
