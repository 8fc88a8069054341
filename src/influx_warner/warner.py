"""Warner — the public facade: config, event subscription, start/stop."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .config import get_url, load_config
from .events import EventBus, EventHandler
from .scheduler import DEFAULT_CONCURRENCY, BeforeCheck, ClientFactory, Scheduler
from .runner import RunState
from .stats import StatsTracker
from .store.base import StoreClient
from .store.influx import InfluxClient

logger = logging.getLogger("influx-warner")


class Warner:
    """Periodically query InfluxDB and raise alerts from declarative rules.

    Usage::

        warner = Warner(Path("config.yml"))
        warner.on("warn", lambda alert: print(alert["text"]))
        warner.on("error", lambda err: print(err["error"], err["ql"]))
        warner.start(60)          # inside a running event loop
        ...
        warner.stop()

    Rules that fail validation are left out and listed in
    ``config_errors``; they are published once on ``error`` at the
    first tick.
    """

    def __init__(
        self,
        config_data: Mapping[str, Any] | str | Path,
        *,
        client_factory: ClientFactory | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout: float | None = None,
    ) -> None:
        self.config = load_config(config_data)
        self.rules, self.config_errors = self.config.compile_rules()
        self.timeout = timeout
        self.events = EventBus()
        self.stats = StatsTracker()
        for error in self.config_errors:
            logger.warning(f"Rule disabled: {error}")
        self._scheduler = Scheduler(
            self.rules,
            client_factory or self._influx_client,
            self.events,
            stats=self.stats,
            concurrency=concurrency,
            startup_errors=self.config_errors,
        )
        logger.info(
            f"Loaded {len(self.rules)} rules across {len(self.config.databases)} databases"
        )

    def on(self, topic: str, handler: EventHandler) -> int:
        """Subscribe to ``warn`` or ``error``. Returns a subscription id."""
        return self.events.subscribe(topic, handler)

    def off(self, sub_id: int) -> bool:
        return self.events.unsubscribe(sub_id)

    def set_timeout(self, seconds: float | None) -> None:
        """Per-query timeout, applied from the next tick on."""
        self.timeout = seconds

    def _influx_client(self, database: str) -> StoreClient:
        url = get_url(database, self.config.databases[database])
        return InfluxClient(url, timeout=self.timeout)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self, interval: float, before_check: BeforeCheck | None = None) -> Scheduler:
        """Check now and then every ``interval`` seconds.

        ``before_check`` is awaited before every tick; if it raises, that
        tick is skipped. The returned handle's ``cancel()`` stops the timer.
        """
        return self._scheduler.start(interval, before_check)

    def stop(self) -> None:
        self._scheduler.cancel()

    async def check_once(self) -> list[RunState]:
        """Run a single tick immediately, without the timer."""
        return await self._scheduler.tick()

    async def wait_idle(self) -> None:
        await self._scheduler.wait_idle()
