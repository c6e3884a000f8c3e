"""
Centralized timezone handling for the booking engine.

Rules:
- Schedules are expressed in the professional's local civil time
- All storage: UTC
- All comparisons: UTC
- Local to UTC conversion uses the zone rules valid on the target date
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

import pytz

from ..core.config import settings


class TimezoneService:
    """Handles all timezone conversions consistently."""

    DEFAULT_TIMEZONE = settings.default_timezone

    @staticmethod
    def get_timezone(tz_str: Optional[str]) -> pytz.BaseTzInfo:
        """Get timezone object, with fallback to default."""
        try:
            return pytz.timezone(tz_str or TimezoneService.DEFAULT_TIMEZONE)
        except pytz.UnknownTimeZoneError:
            return pytz.timezone(TimezoneService.DEFAULT_TIMEZONE)

    @staticmethod
    def local_to_utc(local_date: date, local_time: time, timezone_str: str) -> datetime:
        """
        Convert local date/time to UTC.

        Uses the timezone rules valid on ``local_date`` (not today), so DST
        transitions are honoured. Ambiguous times (fall back) resolve to the
        first occurrence.

        Raises:
            ValueError: If the time doesn't exist (DST spring-forward gap)
        """
        tz = TimezoneService.get_timezone(timezone_str)
        naive_dt = datetime.combine(local_date, local_time)  # naive on purpose for localize()

        try:
            local_dt = tz.localize(naive_dt, is_dst=None)
        except pytz.exceptions.AmbiguousTimeError:
            local_dt = tz.localize(naive_dt, is_dst=True)
        except pytz.exceptions.NonExistentTimeError:
            raise ValueError(
                f"The time {local_time.strftime('%H:%M')} does not exist on "
                f"{local_date} in {timezone_str} due to Daylight Saving Time."
            )

        return local_dt.astimezone(timezone.utc)

    @staticmethod
    def local_minute_to_utc(local_date: date, minute_of_day: int, timezone_str: str) -> datetime:
        """``local_to_utc`` for a minute offset; 1440 means the following midnight."""
        day_offset, minute = divmod(minute_of_day, 24 * 60)
        target_date = local_date + timedelta(days=day_offset)
        return TimezoneService.local_to_utc(
            target_date, time(minute // 60, minute % 60), timezone_str
        )

    @staticmethod
    def utc_to_local(utc_dt: datetime, timezone_str: str) -> datetime:
        """Convert UTC datetime to local timezone."""
        if utc_dt.tzinfo is None:
            utc_dt = utc_dt.replace(tzinfo=timezone.utc)

        tz = TimezoneService.get_timezone(timezone_str)
        return utc_dt.astimezone(tz)

    @staticmethod
    def format_for_display(
        utc_dt: datetime, timezone_str: str, include_tz_abbrev: bool = True
    ) -> str:
        """
        Format a UTC datetime for display in a specific timezone.

        Returns: e.g., "Mar 02, 2026 at 09:00 AM +06"
        """
        local_dt = TimezoneService.utc_to_local(utc_dt, timezone_str)

        if include_tz_abbrev:
            return local_dt.strftime("%b %d, %Y at %I:%M %p %Z")
        return local_dt.strftime("%b %d, %Y at %I:%M %p")
