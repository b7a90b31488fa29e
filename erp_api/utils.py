import math
import re
from datetime import datetime, timedelta, timezone

_DURATION_RE = re.compile(r"^(\d+)([dhms])$")
_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds"}


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every datetime column is stored in"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_duration(value: str) -> timedelta:
    """Parse "30m", "7d", "24h" or "86400s"; anything else means 24 hours"""
    match = _DURATION_RE.match(value.strip()) if value else None
    if not match:
        return timedelta(hours=24)
    amount, unit = match.groups()
    return timedelta(**{_UNITS[unit]: int(amount)})


def minutes_until(moment: datetime, now: datetime | None = None) -> int:
    remaining = (moment - (now or utcnow())).total_seconds()
    return max(0, math.ceil(remaining / 60))
