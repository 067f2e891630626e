"""scalper.notify

Alert delivery.
"""

from __future__ import annotations

from scalper.notify.alerts import FanoutNotifier, LogNotifier, Notification, Notifier, WebhookNotifier

__all__ = ["FanoutNotifier", "LogNotifier", "Notification", "Notifier", "WebhookNotifier"]
