"""Alert delivery channels."""

from __future__ import annotations

__all__ = ["WebhookNotifier"]

from .webhook import WebhookNotifier
