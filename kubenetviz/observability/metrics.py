"""Prometheus metrics for kubenetviz.

All collectors live on the default registry so ``GET /api/v1/metrics`` can
render them with ``generate_latest()``.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

flows_recorded_total = Counter(
    "kubenetviz_flows_recorded_total",
    "Flow records folded into edge metrics.",
)

records_rejected_total = Counter(
    "kubenetviz_records_rejected_total",
    "Malformed node, edge or flow records rejected at the boundary.",
    ["record_type"],
)

flow_buffer_evictions_total = Counter(
    "kubenetviz_flow_buffer_evictions_total",
    "Flow records dropped from the recent-flows ring on overflow.",
)

ingest_queue_drops_total = Counter(
    "kubenetviz_ingest_queue_drops_total",
    "Queued flow records discarded because the ingest queue was full.",
)

flows_swept_total = Counter(
    "kubenetviz_flows_swept_total",
    "Edges marked inactive by the inactivity sweep.",
)

anomalies_total = Counter(
    "kubenetviz_anomalies_total",
    "Anomaly events emitted by the detector.",
    ["type", "severity"],
)

notifications_total = Counter(
    "kubenetviz_notifications_total",
    "Anomaly notifications attempted, by channel and outcome.",
    ["channel", "success"],
)

topology_nodes = Gauge(
    "kubenetviz_topology_nodes",
    "Nodes currently held by the topology store.",
)

topology_edges = Gauge(
    "kubenetviz_topology_edges",
    "Edges currently held by the topology store.",
)

detection_duration_seconds = Histogram(
    "kubenetviz_detection_duration_seconds",
    "Wall-clock time of one anomaly detection tick.",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)
