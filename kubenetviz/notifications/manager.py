"""Notification dispatcher and deduplication for kubenetviz.

NotificationChannel    -- ABC every channel must implement.
NotificationDispatcher -- Fans out anomaly events to all registered channels;
                          failures in one channel never block others or
                          the detection loop.
AlertDeduplicator      -- Enforces a cooldown per
                          (anomaly_type, source_id, target_id).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

import structlog

from kubenetviz.models.alerts import AnomalyEvent
from kubenetviz.observability.metrics import notifications_total

_log = structlog.get_logger(component="notifications.manager")

_DEDUP_COOLDOWN = timedelta(minutes=15)

_DedupKey = tuple[str, str, str]


class NotificationChannel(ABC):
    """Abstract base class for all notification channels.

    Every concrete channel must implement ``send``, which should be
    idempotent and not raise; return ``False`` instead of raising.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Human-readable channel identifier used in metrics and logs."""

    @abstractmethod
    async def send(self, event: AnomalyEvent) -> bool:
        """Deliver *event* via this channel.

        Returns:
            True  -- message accepted by the remote endpoint.
            False -- delivery failed (already logged inside implementation).
        """


class AlertDeduplicator:
    """Suppresses repeated notifications for the same anomaly within a cooldown.

    The deduplication key is ``(anomaly_type, source_id, target_id)``.
    State is held in-process; a restart resets all cooldowns.
    """

    def __init__(self, cooldown: timedelta = _DEDUP_COOLDOWN) -> None:
        self._cooldown = cooldown
        # key -> last_sent timestamp (UTC)
        self._last_sent: dict[_DedupKey, datetime] = {}

    @property
    def cooldown(self) -> timedelta:
        return self._cooldown

    @staticmethod
    def key_for(event: AnomalyEvent) -> _DedupKey:
        return (event.anomaly_type.value, event.source_id, event.target_id or "")

    def should_send(self, event: AnomalyEvent, now: datetime | None = None) -> bool:
        """Return True if this event should be dispatched.

        A False return means a matching event was sent within the cooldown
        window and should be suppressed.
        """
        key = self.key_for(event)
        now = now or datetime.now(tz=UTC)
        last = self._last_sent.get(key)
        if last is not None and (now - last) < self._cooldown:
            _log.debug(
                "alert_suppressed_by_deduplicator",
                anomaly_type=key[0],
                source=key[1],
                target=key[2],
                seconds_remaining=int((self._cooldown - (now - last)).total_seconds()),
            )
            return False
        self._last_sent[key] = now
        return True

    def reset(self, anomaly_type: str, source_id: str, target_id: str = "") -> None:
        """Remove a cooldown entry so the next matching event is dispatched."""
        self._last_sent.pop((anomaly_type, source_id, target_id), None)


class NotificationDispatcher:
    """Fan-out dispatcher that sends an event to every registered channel.

    * Never raises; exceptions from individual channels are caught and logged.
    * Never blocks the caller; ``dispatch`` schedules the fan-out as a
      background asyncio task.
    * Applies AlertDeduplicator before any I/O.

    The dispatcher is itself a detector subscriber: ``AnomalyDetector.subscribe(
    dispatcher)`` forwards every tick's events through ``__call__``.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        deduplicator: AlertDeduplicator | None = None,
    ) -> None:
        self._channels = channels
        self._deduplicator = deduplicator or AlertDeduplicator()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def __call__(self, events: list[AnomalyEvent]) -> None:
        for event in events:
            self.dispatch(event)

    def dispatch(self, event: AnomalyEvent) -> None:
        """Schedule fan-out delivery of *event* as a background task.

        Deduplication is checked synchronously before scheduling.  Must be
        called from a running event loop.
        """
        if not self._channels:
            return
        if not self._deduplicator.should_send(event):
            return
        task = asyncio.ensure_future(self._fan_out(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _fan_out(self, event: AnomalyEvent) -> None:
        """Deliver *event* to every channel concurrently."""
        tasks = [self._send_one(channel, event) for channel in self._channels]
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _send_one(self, channel: NotificationChannel, event: AnomalyEvent) -> None:
        """Deliver to a single channel, recording metrics regardless of outcome."""
        try:
            success = await channel.send(event)
        except Exception as exc:  # noqa: BLE001
            _log.error(
                "notification_channel_unexpected_error",
                channel=channel.channel_name,
                event_id=event.event_id,
                error=str(exc),
            )
            success = False

        label = "true" if success else "false"
        notifications_total.labels(channel=channel.channel_name, success=label).inc()

        if success:
            _log.info(
                "notification_sent",
                channel=channel.channel_name,
                event_id=event.event_id,
                severity=event.severity.value,
                anomaly_type=event.anomaly_type.value,
                source=event.source_id,
            )
        else:
            _log.warning(
                "notification_failed",
                channel=channel.channel_name,
                event_id=event.event_id,
            )
