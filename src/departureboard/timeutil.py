"""Time helpers shared by the schedule index and the reconciler."""

from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

SECONDS_PER_DAY = 24 * 60 * 60
MINUTES_PER_DAY = 24 * 60


def int64_from_words(value: Any) -> Optional[int]:
    """
    Decode a 64-bit integer that may be delivered as two 32-bit halves.

    Some protobuf runtimes hand out uint64 fields as ``{low, high}`` pairs.
    When a low word is present it is used directly, otherwise the whole
    value is coerced to an int.

    Returns:
        The integer, or None for missing/zero/unparseable values.
    """
    if value is None:
        return None

    if isinstance(value, dict):
        low = value.get("low")
    else:
        low = getattr(value, "low", None)

    try:
        number = int(low) if low is not None else int(value)
    except (TypeError, ValueError):
        return None

    return number or None


def parse_hms(value: Optional[str]) -> Optional[int]:
    """Convert a GTFS ``HH:MM:SS`` time-of-day into seconds since midnight."""
    if not value:
        return None
    parts = value.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (int(p) for p in parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def local_datetime(epoch_seconds: float, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).astimezone(tz)


def local_hms(epoch_seconds: float, tz: tzinfo) -> str:
    return local_datetime(epoch_seconds, tz).strftime("%H:%M:%S")


def local_seconds_of_day(epoch_seconds: float, tz: tzinfo) -> int:
    local = local_datetime(epoch_seconds, tz)
    return local.hour * 3600 + local.minute * 60 + local.second


def minutes_apart(seconds_a: int, seconds_b: int) -> int:
    """
    Distance between the minute-of-day of two times, ignoring the date.

    Seconds are dropped before comparing, so 08:40:45 is 30 minutes from
    08:10:00.
    """
    delta = abs(seconds_a // 60 - seconds_b // 60) % MINUTES_PER_DAY
    return min(delta, MINUTES_PER_DAY - delta)


def iso_utc(epoch_seconds: float) -> str:
    """Format a Unix timestamp like ``2024-01-01T08:07:30.000Z``."""
    moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
