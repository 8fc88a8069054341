"""Day-of-week and time-of-day gating for rules."""

from __future__ import annotations

import re
from datetime import datetime

from ..exceptions import ConfigError

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _as_list(spec: str | list[str]) -> list[str]:
    return list(spec) if isinstance(spec, (list, tuple)) else [spec]


def current_day(now: datetime | None = None) -> int:
    """Day of week in [1, 7] where 1 is Sunday."""
    now = now or datetime.now()
    return now.isoweekday() % 7 + 1


def parse_day_range(item: str) -> tuple[int, int | None]:
    parts = str(item).strip().split("-")
    if len(parts) > 2:
        raise ConfigError(f"invalid day range '{item}'")
    try:
        bounds = [int(p) for p in parts if p.strip() != ""]
    except ValueError:
        raise ConfigError(f"invalid day range '{item}'") from None
    if not bounds or any(b < 1 or b > 7 for b in bounds):
        raise ConfigError(f"day range '{item}' must use days 1-7")
    return bounds[0], bounds[1] if len(bounds) > 1 else None


def parse_time_range(item: str) -> tuple[str, str | None]:
    parts = [p.strip() for p in str(item).split("-")]
    if len(parts) > 2 or not all(_TIME_RE.match(p) for p in parts if p):
        raise ConfigError(f"invalid time range '{item}', expected HH:mm-HH:mm")
    if not parts[0]:
        raise ConfigError(f"invalid time range '{item}', expected HH:mm-HH:mm")
    return parts[0], parts[1] if len(parts) > 1 and parts[1] else None


def is_valid_day(spec: str | list[str], now: datetime | None = None) -> bool:
    """True when today falls inside any of the day ranges."""
    day = current_day(now)
    for item in _as_list(spec):
        low, high = parse_day_range(item)
        if day < low:
            continue
        if high is not None and day > high:
            continue
        return True
    return False


def is_valid_time(spec: str | list[str], now: datetime | None = None) -> bool:
    """True when the wall-clock HH:mm falls inside any of the time ranges.

    Comparison is lexicographic, which matches chronological order for
    zero-padded 24-hour times.
    """
    clock = (now or datetime.now()).strftime("%H:%M")
    for item in _as_list(spec):
        low, high = parse_time_range(item)
        if clock < low:
            continue
        if high is not None and clock > high:
            continue
        return True
    return False
