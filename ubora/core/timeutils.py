"""
Clock, identifier and timestamp helpers shared by the session services.

Stored documents carry timestamps in several shapes (datetime objects, ISO
strings, epoch numbers, provider timestamp wrappers). Everything is funnelled
through to_instant() so the services only ever see tz-aware UTC datetimes.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from ubora.core.errors import ValidationError

Clock = Callable[[], datetime]
IdFactory = Callable[[str], str]

DAY = timedelta(days=1)


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def _from_epoch(seconds: float) -> datetime:
    try:
        return datetime.fromtimestamp(seconds, timezone.utc)
    except (OverflowError, OSError, ValueError):
        raise ValidationError(f"Timestamp out of range: {seconds!r}") from None


def to_instant(value: Any) -> datetime:
    """Normalize a stored timestamp into an aware UTC datetime.

    Accepts datetimes (naive ones are treated as UTC), ISO-8601 strings,
    epoch seconds, ``{"_seconds": n}`` mappings and objects exposing
    ``to_datetime()``. Anything else raises ValidationError rather than
    silently defaulting to now.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise ValidationError(f"Unrecognized timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_instant(datetime.fromisoformat(text))
        except ValueError:
            raise ValidationError(f"Unrecognized timestamp string: {value!r}") from None
    if isinstance(value, dict) and "_seconds" in value:
        seconds = value["_seconds"] + value.get("_nanoseconds", 0) / 1e9
        return _from_epoch(seconds)
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return to_instant(to_datetime())
    raise ValidationError(f"Unrecognized timestamp value: {value!r}")


def days_remaining(end: datetime, now: datetime) -> int:
    """Whole days left until ``end``, rounded up and floored at 0."""
    seconds = (to_instant(end) - to_instant(now)).total_seconds()
    return max(0, math.ceil(seconds / DAY.total_seconds()))
