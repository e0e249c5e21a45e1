"""Tests for notification dedup, fan-out and the JSON webhook channel."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Evidence, Severity
from kubenetviz.models.config import NotificationConfig
from kubenetviz.notifications import build_notification_dispatcher
from kubenetviz.notifications.manager import AlertDeduplicator, NotificationChannel, NotificationDispatcher
from kubenetviz.notifications.webhook import WebhookNotificationChannel

_TS = datetime(2026, 3, 1, 9, 30, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Helper factories
# ---------------------------------------------------------------------------


def _make_event(
    anomaly_type: AnomalyType = AnomalyType.TRAFFIC_SPIKE,
    source: str = "pod/shop/web-1",
    target: str | None = "pod/shop/db-0",
) -> AnomalyEvent:
    return AnomalyEvent(
        anomaly_type=anomaly_type,
        severity=Severity.HIGH,
        title="Traffic Spike Detected",
        description="Traffic is 4.0x higher than baseline",
        source_id=source,
        target_id=target,
        evidence=Evidence(current_value=400.0, baseline_value=100.0, threshold=300.0),
        detected_at=_TS,
    )


class _RecordingChannel(NotificationChannel):
    def __init__(self, result: bool = True, explode: bool = False) -> None:
        self.sent: list[AnomalyEvent] = []
        self._result = result
        self._explode = explode

    @property
    def channel_name(self) -> str:
        return "recording"

    async def send(self, event: AnomalyEvent) -> bool:
        if self._explode:
            raise RuntimeError("channel crashed")
        self.sent.append(event)
        return self._result


class TestAlertDeduplicator:
    def test_suppresses_within_cooldown(self) -> None:
        dedup = AlertDeduplicator(timedelta(minutes=15))
        event = _make_event()
        assert dedup.should_send(event, now=_TS) is True
        assert dedup.should_send(event, now=_TS + timedelta(minutes=14)) is False
        assert dedup.should_send(event, now=_TS + timedelta(minutes=16)) is True

    def test_key_is_type_source_target(self) -> None:
        dedup = AlertDeduplicator()
        assert dedup.should_send(_make_event(), now=_TS)
        assert dedup.should_send(_make_event(target="pod/shop/cache-0"), now=_TS)
        assert dedup.should_send(_make_event(anomaly_type=AnomalyType.HIGH_ERROR_RATE), now=_TS)
        assert dedup.should_send(_make_event(source="pod/shop/web-2"), now=_TS)
        assert not dedup.should_send(_make_event(), now=_TS)

    def test_reset_reopens_key(self) -> None:
        dedup = AlertDeduplicator()
        dedup.should_send(_make_event(), now=_TS)
        dedup.reset("traffic_spike", "pod/shop/web-1", "pod/shop/db-0")
        assert dedup.should_send(_make_event(), now=_TS) is True

    def test_default_cooldown_is_fifteen_minutes(self) -> None:
        assert AlertDeduplicator().cooldown == timedelta(minutes=15)


class TestNotificationDispatcher:
    async def test_fans_out_to_every_channel(self) -> None:
        first, second = _RecordingChannel(), _RecordingChannel()
        dispatcher = NotificationDispatcher([first, second])
        dispatcher.dispatch(_make_event())
        await dispatcher.drain()
        assert len(first.sent) == 1
        assert len(second.sent) == 1

    async def test_duplicates_are_suppressed(self) -> None:
        channel = _RecordingChannel()
        dispatcher = NotificationDispatcher([channel])
        dispatcher([_make_event(), _make_event()])
        await dispatcher.drain()
        assert len(channel.sent) == 1

    async def test_crashing_channel_does_not_block_others(self) -> None:
        healthy = _RecordingChannel()
        dispatcher = NotificationDispatcher([_RecordingChannel(explode=True), healthy])
        dispatcher.dispatch(_make_event())
        await dispatcher.drain()
        assert len(healthy.sent) == 1

    async def test_no_channels_is_a_no_op(self) -> None:
        dispatcher = NotificationDispatcher([])
        dispatcher.dispatch(_make_event())
        await dispatcher.drain()


class TestWebhookChannel:
    async def test_posts_event_json(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(204)

        channel = WebhookNotificationChannel(
            "https://hooks.example.test/anomalies",
            headers={"Authorization": "Bearer t"},
            transport=httpx.MockTransport(handler),
        )
        assert await channel.send(_make_event()) is True
        body = json.loads(captured[0].content)
        assert body["kind"] == "anomaly"
        assert body["type"] == "traffic_spike"
        assert body["source"] == "pod/shop/web-1"
        assert captured[0].headers["Authorization"] == "Bearer t"

    async def test_non_2xx_returns_false(self) -> None:
        channel = WebhookNotificationChannel(
            "https://hooks.example.test/anomalies",
            transport=httpx.MockTransport(lambda _r: httpx.Response(500, text="down")),
        )
        assert await channel.send(_make_event()) is False

    async def test_transport_error_returns_false(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        channel = WebhookNotificationChannel(
            "https://hooks.example.test/anomalies",
            transport=httpx.MockTransport(handler),
        )
        assert await channel.send(_make_event()) is False

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            WebhookNotificationChannel("")


class TestBuildDispatcher:
    def test_webhook_enabled_from_secret_ref(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NETVIZ_HOOK_URL", "https://hooks.example.test/x")
        dispatcher = build_notification_dispatcher(
            NotificationConfig(webhook_secret_ref="NETVIZ_HOOK_URL"),
            cooldown=timedelta(minutes=1),
        )
        assert [c.channel_name for c in dispatcher.channels] == ["webhook"]

    def test_no_channels_when_ref_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NETVIZ_HOOK_URL", raising=False)
        dispatcher = build_notification_dispatcher(NotificationConfig(webhook_secret_ref="NETVIZ_HOOK_URL"))
        assert dispatcher.channels == []
