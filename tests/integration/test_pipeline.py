"""End-to-end pipeline: resource records + flows -> store -> detector -> subscribers."""

from __future__ import annotations

from datetime import timedelta

import pytest

from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.graph.store import TopologyStore
from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Severity
from kubenetviz.models.topology import FlowDirection, Health
from kubenetviz.notifications.manager import NotificationChannel, NotificationDispatcher
from kubenetviz.scout.detector import AnomalyDetector

from conftest import DB, NOW, WEB, feed_steady_traffic, make_flow

pytestmark = pytest.mark.integration


class _CollectingChannel(NotificationChannel):
    def __init__(self) -> None:
        self.sent: list[AnomalyEvent] = []

    @property
    def channel_name(self) -> str:
        return "collect"

    async def send(self, event: AnomalyEvent) -> bool:
        self.sent.append(event)
        return True


class TestTopologyWithFlows:
    def test_snapshot_reflects_resources_and_traffic(
        self,
        shop_topology: TopologyStore,
        aggregator: FlowAggregator,
    ) -> None:
        aggregator.record_flow(make_flow())
        snap = shop_topology.snapshot()
        ids = {n.id for n in snap.nodes}
        assert {"namespace/shop", "node/worker-1", WEB, DB, "service/shop/web"} <= ids
        edges = {e.id: e for e in snap.edges}
        assert edges[f"{WEB}->{DB}"].flow is not None
        assert edges[f"{WEB}->{DB}"].health is Health.HEALTHY
        assert f"service/shop/web->{WEB}#service" in edges

    def test_flow_to_unknown_external_is_dangling(
        self,
        shop_topology: TopologyStore,
        aggregator: FlowAggregator,
    ) -> None:
        aggregator.record_flow(make_flow(target="external/203.0.113.7"))
        edges = {e.id: e for e in shop_topology.snapshot().edges}
        assert edges[f"{WEB}->external/203.0.113.7"].health is Health.UNKNOWN

    def test_errors_degrade_then_fail_edge(self, store: TopologyStore, aggregator: FlowAggregator) -> None:
        aggregator.record_flow(make_flow(at=NOW))
        for i in range(1, 4):
            aggregator.record_flow(make_flow(at=NOW + timedelta(seconds=i), error=True))
        edge = store.get_edge(f"{WEB}->{DB}")
        assert edge is not None
        assert edge.health is Health.FAILED


class TestDetectionPipeline:
    def test_warm_up_then_spike(self, aggregator: FlowAggregator, detector: AnomalyDetector) -> None:
        last = feed_steady_traffic(aggregator, detector, ticks=12, nbytes=1000)
        assert detector.events() == []

        # Instantaneous 50 000 B/s pulls the EWMA to 0.3 * 50000 + 0.7 * 1000 = 15 700.
        at = last + timedelta(seconds=1)
        aggregator.record_flow(make_flow(nbytes=50_000, at=at))
        events = detector.detect_anomalies(now=at)
        assert [e.anomaly_type for e in events] == [AnomalyType.TRAFFIC_SPIKE]
        assert events[0].edge_id == f"{WEB}->{DB}"

    def test_sweep_removes_edge_from_detection(self, aggregator: FlowAggregator, detector: AnomalyDetector) -> None:
        last = feed_steady_traffic(aggregator, detector, ticks=12)
        later = last + timedelta(minutes=5)
        assert aggregator.sweep(now=later) == 1
        assert aggregator.active_flows() == []
        assert detector.detect_anomalies(now=later) == []

    def test_exfiltration_needs_sustained_egress(self, aggregator: FlowAggregator) -> None:
        detector = AnomalyDetector(aggregator, min_samples=2)
        target = "external/203.0.113.7"
        big = 40 * 1024 * 1024
        fired: list[list[AnomalyEvent]] = []
        for i in range(6):
            at = NOW + timedelta(seconds=i)
            aggregator.record_flow(
                make_flow(target=target, nbytes=big, at=at, dest_port=443, direction=FlowDirection.EGRESS)
            )
            fired.append([e for e in detector.detect_anomalies(now=at) if e.anomaly_type is AnomalyType.DATA_EXFILTRATION])
        # Gated for two ticks, then three consecutive ticks over the threshold.
        assert [len(f) for f in fired] == [0, 0, 0, 0, 1, 1]

    def test_port_scan_from_one_source(self, aggregator: FlowAggregator, detector: AnomalyDetector) -> None:
        for port in range(20, 45):
            aggregator.record_flow(make_flow(source="pod/shop/intruder", dest_port=port, at=NOW))
        events = detector.detect_anomalies(now=NOW + timedelta(seconds=1))
        assert [e.anomaly_type for e in events] == [AnomalyType.PORT_SCAN]

    def test_port_scan_reported_once_across_ticks(
        self, aggregator: FlowAggregator, detector: AnomalyDetector
    ) -> None:
        for port in range(1000, 1025):
            aggregator.record_flow(make_flow(source="pod/shop/intruder", dest_port=port, at=NOW))
        # Default five-second ticks while the records stay inside the 60 s window.
        for k in range(12):
            detector.detect_anomalies(now=NOW + timedelta(seconds=1 + 5 * k))
        assert len(detector.events(anomaly_type=AnomalyType.PORT_SCAN)) == 1

    def test_new_destination_after_first_tick(
        self, aggregator: FlowAggregator, detector: AnomalyDetector
    ) -> None:
        aggregator.record_flow(make_flow(at=NOW))
        assert detector.detect_anomalies(now=NOW) == []
        at = NOW + timedelta(seconds=2)
        aggregator.record_flow(make_flow(target="service/shop/web", at=at))
        events = detector.detect_anomalies(now=at)
        assert [e.anomaly_type for e in events] == [AnomalyType.UNEXPECTED_CONNECTION]
        assert events[0].target_id == "service/shop/web"
        assert events[0].severity is Severity.LOW


class TestNotificationsFromDetector:
    async def test_dispatcher_receives_deduplicated_events(
        self,
        aggregator: FlowAggregator,
        detector: AnomalyDetector,
    ) -> None:
        channel = _CollectingChannel()
        dispatcher = NotificationDispatcher([channel])
        detector.subscribe(dispatcher)

        # Two scans a full window apart: the detector reports both.
        for scan in range(2):
            at = NOW + timedelta(seconds=61 * scan)
            for port in range(1000, 1025):
                aggregator.record_flow(make_flow(source="pod/shop/intruder", dest_port=port, at=at))
            detector.detect_anomalies(now=at + timedelta(seconds=1))

        await dispatcher.drain()
        assert len(detector.events(anomaly_type=AnomalyType.PORT_SCAN)) == 2
        assert len(channel.sent) == 1
