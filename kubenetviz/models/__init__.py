"""Core data structures for kubenetviz."""

from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Evidence, Severity
from kubenetviz.models.config import KubeNetVizConfig
from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.flows import FlowRecord
from kubenetviz.models.topology import (
    Edge,
    EdgeKind,
    FlowDirection,
    FlowMetrics,
    Health,
    HealthSource,
    Node,
    NodeKind,
    Topology,
    edge_id,
    node_id,
)

__all__ = [
    "AnomalyEvent",
    "AnomalyType",
    "Edge",
    "EdgeKind",
    "Evidence",
    "FlowDirection",
    "FlowMetrics",
    "FlowRecord",
    "Health",
    "HealthSource",
    "InvalidRecordError",
    "KubeNetVizConfig",
    "Node",
    "NodeKind",
    "Severity",
    "Topology",
    "edge_id",
    "node_id",
]
