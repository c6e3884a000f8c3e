# backend/consultbook/schemas/schedule.py
"""
Recurring weekly availability.

Professionals submit their schedule as::

    {"Monday": {"enabled": true, "slots": [{"start": "09:00", "end": "12:00"}]}}

It is parsed into ``WeeklySchedule``: day buckets of enabled flags and
``(start_minute, end_minute)`` windows. Overlapping windows are kept; the
slot generator collapses the duplicates they produce.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DAY_NAMES: Tuple[str, ...] = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
_DAY_LOOKUP = {name.lower(): name for name in DAY_NAMES}

MINUTES_PER_DAY = 24 * 60
_HHMM = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_clock(value: Any, *, allow_end_of_day: bool = False) -> int:
    """Convert ``"HH:MM"`` (or a minute count) into minutes past midnight."""
    if isinstance(value, bool):
        raise ValueError("time must be 'HH:MM'")
    if isinstance(value, int):
        minutes = value
    elif isinstance(value, time):
        minutes = value.hour * 60 + value.minute
    elif isinstance(value, str):
        match = _HHMM.match(value.strip())
        if not match:
            raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
        hours, mins = int(match.group(1)), int(match.group(2))
        if mins >= 60:
            raise ValueError(f"Invalid time: {value}")
        minutes = hours * 60 + mins
    else:
        raise ValueError("time must be 'HH:MM'")

    upper = MINUTES_PER_DAY if allow_end_of_day else MINUTES_PER_DAY - 1
    if minutes < 0 or minutes > upper:
        raise ValueError(f"time out of range: {value}")
    return minutes


def format_clock(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class ScheduleWindow(BaseModel):
    """Half-open window ``[start_minute, end_minute)`` within one local day."""

    model_config = ConfigDict(frozen=True)

    start_minute: int = Field(..., ge=0, lt=MINUTES_PER_DAY)
    end_minute: int = Field(..., gt=0, le=MINUTES_PER_DAY)

    @model_validator(mode="before")
    @classmethod
    def _accept_clock_strings(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "start" in data and "end" in data:
            return {
                "start_minute": parse_clock(data["start"]),
                "end_minute": parse_clock(data["end"], allow_end_of_day=True),
            }
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return {
                "start_minute": parse_clock(data[0]),
                "end_minute": parse_clock(data[1], allow_end_of_day=True),
            }
        return data

    @model_validator(mode="after")
    def _ordered(self) -> "ScheduleWindow":
        if self.start_minute >= self.end_minute:
            raise ValueError(
                f"window start {format_clock(self.start_minute)} must be before "
                f"end {format_clock(self.end_minute)}"
            )
        return self

    def contains(self, start_minute: int, end_minute: int) -> bool:
        return self.start_minute <= start_minute and end_minute <= self.end_minute

    def to_wire(self) -> Dict[str, str]:
        return {"start": format_clock(self.start_minute), "end": format_clock(self.end_minute)}


class DaySchedule(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    windows: Tuple[ScheduleWindow, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _accept_slots_alias(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "windows" not in data and "slots" in data:
            data = dict(data)
            data["windows"] = data.pop("slots") or ()
        return data

    @property
    def is_bookable(self) -> bool:
        return self.enabled and bool(self.windows)


class WeeklySchedule(BaseModel):
    """Day name -> ``DaySchedule``; days that are absent are unavailable."""

    model_config = ConfigDict(frozen=True)

    days: Dict[str, DaySchedule] = Field(default_factory=dict)

    @field_validator("days", mode="before")
    @classmethod
    def _normalise_day_names(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        normalised: Dict[str, Any] = {}
        for key, day in value.items():
            canonical = _DAY_LOOKUP.get(str(key).strip().lower())
            if canonical is None:
                raise ValueError(f"Unknown day name: {key}")
            normalised[canonical] = day
        return normalised

    @classmethod
    def parse(cls, raw: Optional[Mapping[str, Any]]) -> Optional["WeeklySchedule"]:
        """Parse the stored JSON document; ``None`` means no schedule was set."""
        if raw is None:
            return None
        return cls.model_validate({"days": raw})

    def for_weekday(self, weekday: int) -> Optional[DaySchedule]:
        """Day bucket for ``date.weekday()`` (Monday == 0)."""
        return self.days.get(DAY_NAMES[weekday])

    def windows_for(self, weekday: int) -> List[ScheduleWindow]:
        day = self.for_weekday(weekday)
        if day is None or not day.is_bookable:
            return []
        return list(day.windows)

    def covers(self, local_start: datetime, local_end: datetime) -> bool:
        """
        Whether a local-time range fits inside one enabled window.

        The range must start and end on the same local day, except that it may
        end exactly at the following midnight.
        """
        start_minute = local_start.hour * 60 + local_start.minute
        if local_end.date() == local_start.date():
            end_minute = local_end.hour * 60 + local_end.minute
        elif local_end.date() == local_start.date() + timedelta(days=1) and (
            local_end.hour,
            local_end.minute,
        ) == (0, 0):
            end_minute = MINUTES_PER_DAY
        else:
            return False
        if local_end.second or local_end.microsecond:
            end_minute += 1
        return any(
            window.contains(start_minute, end_minute)
            for window in self.windows_for(local_start.weekday())
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            name: {
                "enabled": day.enabled,
                "slots": [window.to_wire() for window in day.windows],
            }
            for name, day in self.days.items()
        }
