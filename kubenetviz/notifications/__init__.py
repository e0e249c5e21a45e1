"""Notification system for kubenetviz.

Dispatches AnomalyEvent instances to notification channels with built-in
deduplication.

Exports:
    NotificationChannel    -- Abstract base for all channel implementations.
    NotificationDispatcher -- Sends an event to all registered channels
                              without blocking the detection loop.
    AlertDeduplicator      -- Cooldown per (anomaly_type, source, target).
    WebhookNotificationChannel -- Generic JSON POST webhook channel.
    build_notification_dispatcher -- Factory used by the application bootstrap.
"""

from __future__ import annotations

import os
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from kubenetviz.notifications.manager import (
    AlertDeduplicator,
    NotificationChannel,
    NotificationDispatcher,
)
from kubenetviz.notifications.webhook import WebhookNotificationChannel

if TYPE_CHECKING:
    from kubenetviz.models.config import NotificationConfig

_log = structlog.get_logger(component="notifications")

__all__ = [
    "AlertDeduplicator",
    "NotificationChannel",
    "NotificationDispatcher",
    "WebhookNotificationChannel",
    "build_notification_dispatcher",
]


def build_notification_dispatcher(
    config: NotificationConfig,
    cooldown: timedelta | None = None,
) -> NotificationDispatcher:
    """Build a NotificationDispatcher from environment-resolved secrets.

    ``config.webhook_secret_ref`` is the *name* of an environment variable
    whose value is the webhook URL.  The channel is enabled only when that
    variable resolves to a non-empty string.
    """
    channels: list[NotificationChannel] = []

    webhook_ref = config.webhook_secret_ref
    if webhook_ref:
        webhook_url = os.environ.get(webhook_ref, "")
        if webhook_url:
            try:
                channels.append(WebhookNotificationChannel(url=webhook_url))
                _log.info("webhook_channel_enabled")
            except ValueError as exc:
                _log.warning("webhook_channel_disabled", reason=str(exc))
        else:
            _log.debug("webhook_channel_skipped", reason="secret ref env var is empty")

    if not channels:
        _log.info("no_notification_channels_configured")

    deduplicator = AlertDeduplicator(cooldown) if cooldown is not None else AlertDeduplicator()
    return NotificationDispatcher(channels=channels, deduplicator=deduplicator)
