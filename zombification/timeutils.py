"""Time helpers. Stored timestamps are integer Unix seconds."""

import datetime
from typing import Optional
from zoneinfo import ZoneInfo
from .config import TIMEZONE


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(ZoneInfo(TIMEZONE))


def now_ts() -> int:
    """Get the current Unix timestamp."""
    return int(now().timestamp())


def resolve_ts(at: Optional[int]) -> int:
    """Use the given timestamp, or now when none is given."""
    return now_ts() if at is None else int(at)


def hours_to_seconds(hours: float) -> int:
    return int(hours * 3600)


def hours_until(timestamp: int, at: Optional[int] = None) -> float:
    """Get hours until the given timestamp (never negative)."""
    delta = timestamp - resolve_ts(at)
    return max(0.0, delta / 3600)


def format_clock(timestamp: int) -> str:
    """Render a timestamp as a wall-clock time in the game timezone."""
    moment = datetime.datetime.fromtimestamp(timestamp, ZoneInfo(TIMEZONE))
    return moment.strftime("%I:%M %p %Z").lstrip("0")


def parse_iso(value: str) -> int:
    """Parse an ISO-8601 timestamp (as sent by Neynar) to Unix seconds."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    moment = datetime.datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=datetime.timezone.utc)
    return int(moment.timestamp())
