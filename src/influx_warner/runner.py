"""Run one rule against one store connection for a single tick."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from .config import RuleEntry
from .events import ERROR, WARN, EventBus
from .exceptions import ConfigError, EvaluationError, QueryError, WarnerError
from .rules.models import AlertEvent
from .rules.query import build_query
from .rules.window import is_valid_day, is_valid_time
from .stats import StatsTracker
from .store.base import StoreClient

logger = logging.getLogger("influx-warner")


class RunState(str, Enum):
    GATED = "gated"
    SKIPPED = "skipped"
    QUERYING = "querying"
    SCANNING = "scanning"
    DONE = "done"
    FAILED = "failed"


class RuleRunner:
    """Gate, query, scan and alert for one rule.

    ``run()`` always ends in DONE, SKIPPED or FAILED and never raises:
    failures are published on the ``error`` topic with the query text.
    """

    def __init__(
        self,
        entry: RuleEntry,
        client: StoreClient,
        bus: EventBus,
        stats: StatsTracker | None = None,
        now: datetime | None = None,
    ) -> None:
        self.entry = entry
        self._client = client
        self._bus = bus
        self._stats = stats
        self._now = now
        self.state = RunState.GATED
        self.ql = ""
        self.alerts = 0

    def in_window(self) -> bool:
        rule = self.entry.rule
        if rule.time and not is_valid_time(rule.time, self._now):
            return False
        if rule.day and not is_valid_day(rule.day, self._now):
            return False
        return True

    async def run(self) -> RunState:
        rule = self.entry.rule
        measurement = self.entry.measurement

        if rule.skip or not self.in_window():
            self.state = RunState.SKIPPED
            return self._finish()

        try:
            query = build_query(self._client, measurement, rule)
            self.ql = query.to_select()
        except (ConfigError, ValueError) as e:
            return await self._fail(e if isinstance(e, ConfigError) else ConfigError(str(e)))

        self.state = RunState.QUERYING
        if self._stats:
            self._stats.record_query()
        try:
            data = await query.execute()
        except QueryError as e:
            return await self._fail(e)
        except Exception as e:
            return await self._fail(QueryError(f"{type(e).__name__}: {e}", self.ql))

        self.state = RunState.SCANNING
        try:
            for row in data.get(measurement, []):
                index = rule.checks.first_match(row)
                if index is not None:
                    await self._emit(row, index)
        except EvaluationError as e:
            return await self._fail(e)

        self.state = RunState.DONE
        return self._finish()

    async def _emit(self, row: dict, index: int) -> None:
        rule = self.entry.rule
        alert = AlertEvent(
            database=self.entry.database,
            measurement=self.entry.measurement,
            ql=self.ql,
            text=rule.text_for(index),
            row=None if rule.value else dict(row),
            value=row.get(rule.value) if rule.value else None,
        )
        self.alerts += 1
        if self._stats:
            self._stats.record_alert()
        logger.info(f"ALERT [{self.entry.location}]: {alert.text}")
        await self._bus.publish(WARN, alert.to_payload())

    async def _fail(self, error: WarnerError) -> RunState:
        self.state = RunState.FAILED
        if not getattr(error, "ql", ""):
            error.ql = self.ql
        if self._stats:
            self._stats.record_error()
        await publish_error(self._bus, error, self.entry)
        return self._finish()

    def _finish(self) -> RunState:
        if self._stats:
            self._stats.record_outcome(self.state.value)
        logger.debug(f"[{self.entry.location}] {self.state.value}")
        return self.state


async def publish_error(bus: EventBus, error: Exception, entry: RuleEntry | None = None) -> None:
    """Publish on ``error``; log instead when nobody is listening."""
    payload = {
        "error": error,
        "ql": getattr(error, "ql", ""),
        "database": entry.database if entry else None,
        "measurement": entry.measurement if entry else None,
    }
    delivered = await bus.publish(ERROR, payload)
    if not delivered:
        where = f" [{entry.location}]" if entry else ""
        logger.warning(f"Unhandled error{where}: {error}")
