"""Topology data structures: nodes, edges and per-edge flow metrics."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum


class NodeKind(StrEnum):
    """Kinds of entity that appear as topology nodes."""

    POD = "pod"
    SERVICE = "service"
    NODE = "node"  # cluster (worker/control-plane) node
    NAMESPACE = "namespace"
    EXTERNAL = "external"
    POLICY = "policy"


class EdgeKind(StrEnum):
    """Logical type of a directed relationship."""

    CONNECTION = "connection"
    SERVICE = "service"
    POLICY = "policy"


class Health(StrEnum):
    """Operational status of a node or edge."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    FAILED = "failed"
    UNKNOWN = "unknown"


class HealthSource(StrEnum):
    """Where the current health value came from."""

    DERIVED = "derived"
    OVERRIDE = "override"


class FlowDirection(StrEnum):
    """Direction of traffic on an edge."""

    BIDIRECTIONAL = "bidirectional"
    INGRESS = "ingress"
    EGRESS = "egress"


# Kinds whose identity is scoped to a namespace.
_NAMESPACED_KINDS = frozenset({NodeKind.POD, NodeKind.SERVICE, NodeKind.POLICY})


def node_id(kind: NodeKind, name: str, namespace: str | None = None) -> str:
    """Return the canonical identity for a node.

    Namespaced kinds produce ``kind/namespace/name``; cluster-scoped kinds
    produce ``kind/name``.
    """
    kind = NodeKind(kind)
    if kind in _NAMESPACED_KINDS:
        return f"{kind.value}/{namespace or 'default'}/{name}"
    return f"{kind.value}/{name}"


def edge_id(source: str, target: str, kind: EdgeKind = EdgeKind.CONNECTION) -> str:
    """Return the canonical identity for an edge.

    Connection edges (the probe and flow path) use the bare
    ``source->target`` form.  Other kinds carry a ``#kind`` suffix so one
    edge exists per ordered pair per logical type.
    """
    kind = EdgeKind(kind)
    base = f"{source}->{target}"
    if kind is EdgeKind.CONNECTION:
        return base
    return f"{base}#{kind.value}"


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ts.astimezone(UTC).isoformat()


@dataclass(frozen=True)
class FlowMetrics:
    """Aggregated traffic on a single edge.

    Always rebuilt in full by the aggregator; never merged field by field.
    """

    bytes_per_sec: float = 0.0
    packets_per_sec: float = 0.0
    connection_count: int = 0
    error_rate: float = 0.0
    protocol: str = ""
    last_seen: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    is_active: bool = True
    direction: FlowDirection = FlowDirection.BIDIRECTIONAL

    def to_dict(self) -> dict[str, object]:
        return {
            "bytes_per_sec": self.bytes_per_sec,
            "packets_per_sec": self.packets_per_sec,
            "connection_count": self.connection_count,
            "error_rate": self.error_rate,
            "protocol": self.protocol,
            "last_seen": _iso(self.last_seen),
            "is_active": self.is_active,
            "direction": self.direction.value,
        }


@dataclass
class Node:
    """A cluster entity in the topology.

    ``phase`` and ``ready`` are the kind-specific inputs to health
    derivation (pod phase and the cluster-node Ready condition).  The
    store owns ``health``; whatever value a producer puts there is replaced
    on upsert.
    """

    id: str
    kind: NodeKind
    name: str
    namespace: str | None = None
    labels: dict[str, str] = field(default_factory=dict)
    properties: dict[str, str] = field(default_factory=dict)
    health: Health = Health.UNKNOWN
    health_source: HealthSource = HealthSource.DERIVED
    pod_ip: str | None = None
    node_name: str | None = None
    phase: str | None = None
    ready: bool | None = None

    def copy(self) -> Node:
        """Return an independent copy (mappings included)."""
        return replace(self, labels=dict(self.labels), properties=dict(self.properties))

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "type": self.kind.value,
            "health": self.health.value,
            "health_source": self.health_source.value,
        }
        if self.namespace:
            data["namespace"] = self.namespace
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.properties:
            data["properties"] = dict(self.properties)
        if self.pod_ip:
            data["pod_ip"] = self.pod_ip
        if self.node_name:
            data["node_name"] = self.node_name
        return data


@dataclass
class Edge:
    """A directed relationship between two topology nodes."""

    id: str
    source: str
    target: str
    kind: EdgeKind = EdgeKind.CONNECTION
    properties: dict[str, str] = field(default_factory=dict)
    health: Health = Health.HEALTHY
    health_source: HealthSource = HealthSource.DERIVED
    latency_ms: int = 0
    packet_loss: float = 0.0
    flow: FlowMetrics | None = None

    @classmethod
    def between(
        cls,
        source: str,
        target: str,
        kind: EdgeKind = EdgeKind.CONNECTION,
        **kwargs: object,
    ) -> Edge:
        """Build an edge whose id is derived from its endpoints and kind."""
        return cls(id=edge_id(source, target, kind), source=source, target=target, kind=kind, **kwargs)  # type: ignore[arg-type]

    def copy(self) -> Edge:
        # FlowMetrics is frozen and safe to share.
        return replace(self, properties=dict(self.properties))

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.kind.value,
            "health": self.health.value,
            "health_source": self.health_source.value,
        }
        if self.properties:
            data["properties"] = dict(self.properties)
        if self.latency_ms:
            data["latency_ms"] = self.latency_ms
        if self.packet_loss:
            data["packet_loss"] = self.packet_loss
        if self.flow is not None:
            data["flow_data"] = self.flow.to_dict()
        return data


@dataclass
class Topology:
    """Point-in-time, fully materialized copy of the store."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "timestamp": _iso(self.timestamp),
        }
