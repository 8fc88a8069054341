"""Counters for ticks, queries, alerts and failures."""

from __future__ import annotations

from collections import Counter
from datetime import datetime


class StatsTracker:
    """Track what the scheduler has done since start."""

    def __init__(self) -> None:
        self._start_time = datetime.now()
        self._ticks = 0
        self._skipped_ticks = 0
        self._queries = 0
        self._alerts = 0
        self._errors = 0
        self._outcomes: Counter[str] = Counter()
        self.last_tick_at: datetime | None = None

    def record_tick(self) -> None:
        self._ticks += 1
        self.last_tick_at = datetime.now()

    def record_skipped_tick(self) -> None:
        self._skipped_ticks += 1

    def record_query(self) -> None:
        self._queries += 1

    def record_alert(self) -> None:
        self._alerts += 1

    def record_error(self) -> None:
        self._errors += 1

    def record_outcome(self, state: str) -> None:
        self._outcomes[state] += 1

    def summary(self) -> dict:
        uptime = (datetime.now() - self._start_time).total_seconds()
        return {
            "ticks": self._ticks,
            "skipped_ticks": self._skipped_ticks,
            "queries": self._queries,
            "alerts": self._alerts,
            "errors": self._errors,
            "outcomes": dict(self._outcomes),
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "uptime_seconds": round(uptime, 1),
        }
