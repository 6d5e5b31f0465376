"""
metrocard/utils/time_utils.py
-----------------------------
Clock abstraction plus the day/month keys the ledger resets on.
"""

from __future__ import annotations
from datetime import datetime, tzinfo
from typing import Optional, Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, timezone-aware. Uses the host's local zone unless one is given."""

    def __init__(self, tz: Optional[tzinfo] = None) -> None:
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)


def clock_from_config(cfg: dict) -> SystemClock:
    name = (cfg.get("TIMEZONE") or "").strip()
    return SystemClock(ZoneInfo(name) if name else None)


def day_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d")


def month_key(dt: datetime) -> str:
    return dt.strftime("%Y-%m")


def to_iso(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")


def parse_ts(value: Optional[str], default_tz: Optional[tzinfo] = None) -> Optional[datetime]:
    """Parse a stored ISO timestamp. Naive values are read in ``default_tz``."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None and default_tz is not None:
        dt = dt.replace(tzinfo=default_tz)
    return dt


def minutes_since(value: Optional[str], now: datetime) -> Optional[float]:
    started = parse_ts(value, now.tzinfo)
    if started is None:
        return None
    if (started.tzinfo is None) != (now.tzinfo is None):
        return None
    return (now - started).total_seconds() / 60


def humanize_minutes(minutes: float) -> str:
    minutes = int(minutes)
    if minutes < 60: return f"{minutes}m"
    hours, rest = divmod(minutes, 60)
    if hours < 24: return f"{hours}h {rest}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"
