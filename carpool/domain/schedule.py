"""
Time rules for the ride lifecycle.

Expiry
------
An AVAILABLE ride is expired once ``now > departure_time + grace``.

Auto-completion
---------------
Drivers type the ETA as clock text (``"6:00 PM"``) when starting a trip.
The target arrival instant is that clock time on the departure's local
calendar day.  Text mentioning ``estimated`` / ``hour`` (an old fallback
format) or text that does not parse resolves to one hour after departure.
A clock time earlier than the departure is taken to be past midnight.

All instants are timezone-aware UTC; local time only matters for parsing
ETAs and for "rides on this day" filters.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

_CLOCK_RE = re.compile(r"(\d{1,2}):(\d{2})\s*(AM|PM)", re.IGNORECASE)

FALLBACK_TRIP_DURATION = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def expiry_cutoff(now: datetime, grace: timedelta) -> datetime:
    """Rides departing before this instant are past their grace window."""
    return as_utc(now) - grace


def is_expired(departure_time: datetime, now: datetime, grace: timedelta) -> bool:
    return as_utc(now) > as_utc(departure_time) + grace


def local_day_bounds(day: date, tz_name: str) -> tuple[datetime, datetime]:
    """UTC ``[start, end)`` of *day* in the given timezone."""
    tz = ZoneInfo(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def format_clock_time(instant: datetime, tz_name: str) -> str:
    """Render an instant as ``"6:05 PM"`` in local time."""
    local = as_utc(instant).astimezone(ZoneInfo(tz_name))
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def resolve_arrival_time(
    departure_time: datetime,
    estimated_arrival_time: Optional[str],
    tz_name: str,
) -> Optional[datetime]:
    """Turn the driver's ETA text into a UTC instant, or None without an ETA."""
    if not estimated_arrival_time or not estimated_arrival_time.strip():
        return None

    departure = as_utc(departure_time)
    text = estimated_arrival_time.strip()
    lowered = text.lower()
    if "estimated" in lowered or "hour" in lowered:
        return departure + FALLBACK_TRIP_DURATION

    match = _CLOCK_RE.search(text)
    if not match:
        return departure + FALLBACK_TRIP_DURATION

    hours, minutes, meridiem = int(match[1]), int(match[2]), match[3].upper()
    if hours > 12 or minutes > 59:
        return departure + FALLBACK_TRIP_DURATION
    if meridiem == "PM" and hours != 12:
        hours += 12
    if meridiem == "AM" and hours == 12:
        hours = 0

    tz = ZoneInfo(tz_name)
    local_departure = departure.astimezone(tz)
    arrival = datetime.combine(
        local_departure.date(), time(hours, minutes), tzinfo=tz
    )
    # Anchored to the departure date.  A clock time earlier than departure
    # means the trip crosses midnight, so it belongs to the next day.
    if arrival < local_departure:
        arrival += timedelta(days=1)
    return arrival.astimezone(timezone.utc)


def should_auto_complete(
    departure_time: datetime,
    estimated_arrival_time: Optional[str],
    now: datetime,
    tz_name: str,
) -> bool:
    arrival = resolve_arrival_time(departure_time, estimated_arrival_time, tz_name)
    return arrival is not None and as_utc(now) >= arrival
