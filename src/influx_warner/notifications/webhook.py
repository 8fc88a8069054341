"""Generic webhook delivery for alert events.

POSTs a JSON document to a URL whenever a rule matches. Subscribe it to
a Warner to forward alerts to chat bridges, incident tools or custom
servers::

    notifier = WebhookNotifier("https://hooks.example.com/influx")
    warner.on("warn", notifier.notify)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import aiohttp

logger = logging.getLogger("influx-warner")


class WebhookNotifier:
    """POST structured JSON to a URL for every alert payload."""

    def __init__(self, default_url: str = "", timeout: float = 15):
        self._default_url = default_url
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    def _build_payload(self, alert: dict[str, Any]) -> dict:
        payload: dict = {
            "event": "influx_rule_triggered",
            "database": alert.get("database"),
            "measurement": alert.get("measurement"),
            "text": alert.get("text", ""),
            "ql": alert.get("ql", ""),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if "row" in alert:
            payload["row"] = alert["row"]
        if "value" in alert:
            payload["value"] = alert["value"]
        return payload

    async def notify(self, alert: dict[str, Any], url: str = "") -> bool:
        """POST the alert to the webhook URL. Returns True on success."""
        target_url = url or self._default_url
        if not target_url:
            return False

        session = self._get_session()
        payload = self._build_payload(alert)

        try:
            async with session.post(target_url, json=payload) as resp:
                ok = resp.status < 400

            if ok:
                logger.info(f"Webhook alert sent: {payload['text']} → {target_url}")
            else:
                logger.warning(f"Webhook failed: HTTP {resp.status} → {target_url}")
            return ok

        except Exception as e:
            logger.warning(f"Webhook error: {e}")
            return False

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session:
            await self._session.close()
            self._session = None
