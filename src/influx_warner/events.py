"""Delivery of rule outcomes to subscribers.

Two topics carry everything the engine reports:

``warn``
    one AlertEvent payload per matching row: database, measurement,
    ql, text, and the row (or the designated value).
``error``
    ``{"error", "ql", "database", "measurement"}`` for a rule that failed
    to build, query or evaluate, and once per invalid rule at startup.

``publish`` reports how many handlers received an event, so callers can
log errors that nobody is listening for instead of losing them.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger("influx-warner")

WARN = "warn"
ERROR = "error"

EventHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class EventBus:
    """Subscribe/unsubscribe handlers per topic and publish to all of them.

    Handlers may be plain functions or coroutines. A handler that raises
    is logged and skipped; it never reaches the publisher.
    """

    def __init__(self) -> None:
        self._subs: dict[str, dict[int, EventHandler]] = {}
        self._id_to_topic: dict[int, str] = {}
        self._id_gen = itertools.count(1)

    def subscribe(self, topic: str, handler: EventHandler) -> int:
        """Subscribe handler to a topic. Returns subscription id."""
        sub_id = next(self._id_gen)
        self._subs.setdefault(topic, {})[sub_id] = handler
        self._id_to_topic[sub_id] = topic
        return sub_id

    def unsubscribe(self, sub_id: int) -> bool:
        """Remove subscription by id. Returns True if removed."""
        topic = self._id_to_topic.pop(sub_id, "")
        topic_subs = self._subs.get(topic)
        if not topic_subs:
            return False
        removed = topic_subs.pop(sub_id, None) is not None
        if not topic_subs:
            self._subs.pop(topic, None)
        return removed

    def subscriber_count(self, topic: str) -> int:
        return len(self._subs.get(topic, {}))

    async def publish(self, topic: str, event: dict[str, Any]) -> int:
        """Deliver event to every current subscriber. Returns how many got it."""
        handlers = list(self._subs.get(topic, {}).values())
        if not handlers:
            return 0

        async def _run(handler: EventHandler) -> None:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Event handler failed for topic '{topic}'")

        await asyncio.gather(*(_run(h) for h in handlers))
        return len(handlers)
