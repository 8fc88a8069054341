"""Timer loop and per-tick fan-out of rule runners.

One tick builds a store client per database, then dispatches a
RuleRunner per rule in config order. At most ``concurrency`` runners
are in flight at once; the rest wait on a semaphore. Ticks are started
on a fixed interval whether or not the previous one has finished.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any

from .config import RuleEntry
from .events import EventBus
from .exceptions import ConfigError, SchedulingError
from .runner import RuleRunner, RunState, publish_error
from .stats import StatsTracker
from .store.base import StoreClient

logger = logging.getLogger("influx-warner")

DEFAULT_CONCURRENCY = 10

BeforeCheck = Callable[[], Awaitable[Any] | Any]
ClientFactory = Callable[[str], StoreClient]


async def _pass_check() -> None:
    return None


class Scheduler:
    """Owns the recurring timer. ``start()`` returns the scheduler as a handle."""

    def __init__(
        self,
        entries: list[RuleEntry],
        client_factory: ClientFactory,
        bus: EventBus,
        stats: StatsTracker | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        startup_errors: Iterable[ConfigError] = (),
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._entries = list(entries)
        self._client_factory = client_factory
        self._bus = bus
        self._stats = stats or StatsTracker()
        self.concurrency = concurrency
        self._startup_errors = list(startup_errors)
        self._timer: asyncio.Task | None = None
        self._ticks: set[asyncio.Task] = set()
        self.interval: float | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self, interval: float, before_check: BeforeCheck | None = None) -> "Scheduler":
        """Tick now, then every ``interval`` seconds. Needs a running event loop."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self.running:
            raise RuntimeError("scheduler already started")
        self.interval = interval
        self._timer = asyncio.create_task(self._loop(interval, before_check or _pass_check))
        logger.info(f"Scheduler started: {len(self._entries)} rules every {interval}s")
        return self

    def cancel(self) -> None:
        """Stop scheduling new ticks. Ticks already running are left to finish."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Scheduler stopped")

    stop = cancel

    async def wait_idle(self) -> None:
        """Wait for every in-flight tick to complete."""
        while self._ticks:
            await asyncio.gather(*list(self._ticks), return_exceptions=True)

    async def _loop(self, interval: float, before_check: BeforeCheck) -> None:
        while True:
            task = asyncio.create_task(self._gated_tick(before_check))
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(interval)

    async def _gated_tick(self, before_check: BeforeCheck) -> None:
        try:
            result = before_check()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            error = SchedulingError(f"before_check failed: {e}")
            self._stats.record_skipped_tick()
            logger.info(f"This time the check will be skipped ({error})")
            return
        await self.tick()

    async def tick(self) -> list[RunState]:
        """Run every rule once. Never raises for rule-level failures."""
        while self._startup_errors:
            await publish_error(self._bus, self._startup_errors.pop(0))

        self._stats.record_tick()
        now = datetime.now()
        semaphore = asyncio.Semaphore(self.concurrency)
        clients: dict[str, StoreClient] = {}
        runners: list[RuleRunner] = []

        for entry in self._entries:
            client = clients.get(entry.database)
            if client is None:
                try:
                    client = self._client_factory(entry.database)
                except Exception as e:
                    logger.error(f"Cannot create client for '{entry.database}': {e}")
                    await publish_error(self._bus, e, entry)
                    continue
                clients[entry.database] = client
            runners.append(RuleRunner(entry, client, self._bus, self._stats, now=now))

        async def _bounded(runner: RuleRunner) -> RunState:
            async with semaphore:
                return await runner.run()

        logger.info(f"Tick: dispatching {len(runners)} rules")
        try:
            results = await asyncio.gather(
                *(_bounded(r) for r in runners), return_exceptions=True
            )
        finally:
            for client in clients.values():
                try:
                    await client.close()
                except Exception as e:
                    logger.debug(f"Client close failed: {e}")

        states = []
        for runner, result in zip(runners, results):
            if isinstance(result, BaseException):
                logger.error(f"[{runner.entry.location}] runner crashed: {result!r}")
                states.append(RunState.FAILED)
            else:
                states.append(result)
        return states
