"""Shared fixtures for kubenetviz integration tests.

Provides a store, aggregator and detector wired together, plus a seeded
two-tier shop topology built from Kubernetes-shaped dicts, so tests can
exercise full pipelines without a cluster.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.graph.builders import cluster_node, namespace_node, pod_node, service_endpoints, service_node
from kubenetviz.graph.store import TopologyStore
from kubenetviz.models.flows import FlowRecord
from kubenetviz.models.topology import FlowDirection
from kubenetviz.scout.detector import AnomalyDetector

# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)

WEB = "pod/shop/web-1"
DB = "pod/shop/db-0"


# ---------------------------------------------------------------------------
# Record factory helpers
# ---------------------------------------------------------------------------


def make_flow(
    source: str = WEB,
    target: str = DB,
    nbytes: int = 1000,
    at: datetime = NOW,
    error: bool = False,
    dest_port: int | None = 5432,
    protocol: str = "TCP",
    direction: FlowDirection = FlowDirection.BIDIRECTIONAL,
) -> FlowRecord:
    """Create a FlowRecord with sensible defaults for testing."""
    return FlowRecord(
        source_id=source,
        target_id=target,
        bytes=nbytes,
        packets=max(nbytes // 100, 1),
        protocol=protocol,
        timestamp=at,
        error=error,
        dest_port=dest_port,
        direction=direction,
    )


def feed_steady_traffic(
    aggregator: FlowAggregator,
    detector: AnomalyDetector,
    ticks: int,
    nbytes: int = 1000,
    start: datetime = NOW,
) -> datetime:
    """One record per second and one detection tick per record; returns the last tick time."""
    at = start
    for i in range(ticks):
        at = start + timedelta(seconds=i)
        aggregator.record_flow(make_flow(nbytes=nbytes, at=at))
        detector.detect_anomalies(now=at)
    return at


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> TopologyStore:
    return TopologyStore()


@pytest.fixture
def aggregator(store: TopologyStore) -> FlowAggregator:
    return FlowAggregator(store, capacity=1_000, window=timedelta(seconds=60))


@pytest.fixture
def detector(aggregator: FlowAggregator) -> AnomalyDetector:
    return AnomalyDetector(aggregator)


@pytest.fixture
def shop_topology(store: TopologyStore) -> TopologyStore:
    """Namespace, worker node, two pods and a service bound to the web pod."""
    store.upsert_node(namespace_node({"metadata": {"name": "shop"}}))
    store.upsert_node(
        cluster_node(
            {"metadata": {"name": "worker-1"}, "status": {"conditions": [{"type": "Ready", "status": "True"}]}}
        )
    )
    for name, ip in (("web-1", "10.0.0.4"), ("db-0", "10.0.0.9")):
        store.upsert_node(
            pod_node(
                {
                    "metadata": {"name": name, "namespace": "shop"},
                    "spec": {"nodeName": "worker-1"},
                    "status": {"phase": "Running", "podIP": ip},
                }
            )
        )
    store.upsert_node(service_node({"metadata": {"name": "web", "namespace": "shop"}, "spec": {"clusterIP": "10.96.0.5"}}))
    store.bind_service(
        "service/shop/web",
        service_endpoints(
            {
                "metadata": {"name": "web", "namespace": "shop"},
                "subsets": [{"addresses": [{"ip": "10.0.0.4", "targetRef": {"kind": "Pod", "name": "web-1"}}]}],
            }
        ),
    )
    return store
