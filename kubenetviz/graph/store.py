"""Concurrent topology store.

TopologyStore is the single source of truth for nodes and edges.  It is an
explicit instance (construct one per process, or one per test), guarded by
a reader/writer lock:

* every mutation takes the write side for its duration only;
* every read, snapshot included, takes the read side and returns copies,
  so callers can never mutate shared state;
* nothing that performs I/O or calls back into user code runs under the
  lock.

Writes replace whole map entries.  The one exception is the flow-metrics
path, which assigns fields of the stored edge in place under the write
lock; FlowMetrics itself is immutable and rebuilt in full each time.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import NoReturn

import structlog

from kubenetviz.graph.health import DEFAULT_STRATEGIES, HealthStrategy, derive_node_health, flow_health, probe_health
from kubenetviz.graph.locking import ReadWriteLock
from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.topology import (
    Edge,
    EdgeKind,
    FlowMetrics,
    Health,
    HealthSource,
    Node,
    NodeKind,
    Topology,
    edge_id,
)
from kubenetviz.observability.metrics import records_rejected_total, topology_edges, topology_nodes

_log = structlog.get_logger(component="graph.store")


class TopologyStore:
    """Thread-safe registry of topology nodes and edges.

    Args:
        strategies: Health strategies by node kind, layered over the
                    default table for this store only.
    """

    def __init__(self, strategies: Mapping[NodeKind, HealthStrategy] | None = None) -> None:
        self._lock = ReadWriteLock()
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._strategies = {**DEFAULT_STRATEGIES, **(strategies or {})}
        self._generation = 0

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def upsert_node(self, node: Node) -> Node:
        """Insert or replace a node, deriving its health.

        The stored node is a copy of *node* with ``health`` recomputed from
        its kind-specific state; any override on the previous version is
        discarded.

        Raises:
            InvalidRecordError: if the node lacks an id, a name or a known kind.
        """
        _validate_node(node)
        stored = replace(
            node.copy(),
            kind=NodeKind(node.kind),
            health=derive_node_health(node, self._strategies),
            health_source=HealthSource.DERIVED,
        )
        with self._lock.write():
            self._nodes[stored.id] = stored
            count = len(self._nodes)
        topology_nodes.set(count)
        return stored.copy()

    def get_node(self, node_id: str) -> Node | None:
        with self._lock.read():
            node = self._nodes.get(node_id)
            return node.copy() if node is not None else None

    def set_node_health(self, node_id: str, health: Health) -> bool:
        """Override a node's health until its next upsert.

        Used by connectivity probing and simulations.  Returns False when
        the node does not exist.
        """
        with self._lock.write():
            node = self._nodes.get(node_id)
            if node is None:
                return False
            self._nodes[node_id] = replace(node, health=Health(health), health_source=HealthSource.OVERRIDE)
        _log.debug("node_health_overridden", node_id=node_id, health=str(health))
        return True

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def upsert_edge(self, edge: Edge) -> Edge:
        """Insert or replace an edge.

        An existing edge keeps its flow metrics when the incoming edge
        carries none, so resource updates do not wipe live telemetry.

        Raises:
            InvalidRecordError: if endpoints are missing or the id does not
                match the one derived from source, target and kind.
        """
        _validate_edge(edge)
        incoming = replace(edge.copy(), kind=EdgeKind(edge.kind), health_source=HealthSource.DERIVED)
        with self._lock.write():
            existing = self._edges.get(incoming.id)
            if existing is not None and incoming.flow is None:
                incoming.flow = existing.flow
            self._edges[incoming.id] = incoming
            count = len(self._edges)
        topology_edges.set(count)
        return incoming.copy()

    def ensure_edge(self, source: str, target: str, kind: EdgeKind = EdgeKind.CONNECTION) -> Edge:
        """Return the edge for (source, target, kind), creating it if needed.

        Idempotent: repeated calls never duplicate the edge and never
        modify an existing one.
        """
        if not source or not target:
            _reject("edge", "source and target are required")
        eid = edge_id(source, target, kind)
        with self._lock.write():
            edge = self._edges.get(eid)
            if edge is None:
                edge = Edge(id=eid, source=source, target=target, kind=EdgeKind(kind))
                self._edges[eid] = edge
            count = len(self._edges)
            result = edge.copy()
        topology_edges.set(count)
        return result

    def get_edge(self, edge_id_: str) -> Edge | None:
        with self._lock.read():
            edge = self._edges.get(edge_id_)
            return edge.copy() if edge is not None else None

    def get_edges_from(self, node_id: str) -> list[Edge]:
        with self._lock.read():
            return [e.copy() for e in self._edges.values() if e.source == node_id]

    def get_edges_to(self, node_id: str) -> list[Edge]:
        with self._lock.read():
            return [e.copy() for e in self._edges.values() if e.target == node_id]

    def set_edge_health(self, edge_id_: str, health: Health, latency_ms: int = 0) -> bool:
        """Override an edge's health and latency until its next organic update.

        Returns False when the edge does not exist.
        """
        with self._lock.write():
            edge = self._edges.get(edge_id_)
            if edge is None:
                return False
            self._edges[edge_id_] = replace(
                edge,
                health=Health(health),
                health_source=HealthSource.OVERRIDE,
                latency_ms=latency_ms,
            )
        _log.debug("edge_health_overridden", edge_id=edge_id_, health=str(health), latency_ms=latency_ms)
        return True

    def record_probe(self, source: str, target: str, latency_ms: int, success: bool) -> Edge:
        """Fold a connectivity probe result into the connection edge."""
        if not source or not target:
            _reject("probe", "source and target are required")
        eid = edge_id(source, target)
        health = probe_health(latency_ms, success)
        with self._lock.write():
            existing = self._edges.get(eid)
            if existing is None:
                edge = Edge(id=eid, source=source, target=target, health=health, latency_ms=latency_ms)
            else:
                edge = replace(existing, health=health, health_source=HealthSource.DERIVED, latency_ms=latency_ms)
            self._edges[eid] = edge
            count = len(self._edges)
            result = edge.copy()
        topology_edges.set(count)
        return result

    def bind_service(self, service_id: str, endpoints: Mapping[str, str]) -> list[Edge]:
        """Create or refresh service-binding edges to every endpoint pod.

        *endpoints* maps pod node ids to their endpoint address.  All edges
        are written under one lock acquisition.
        """
        if not service_id:
            _reject("edge", "service_id is required")
        created: list[Edge] = []
        with self._lock.write():
            for pod_id, address in endpoints.items():
                eid = edge_id(service_id, pod_id, EdgeKind.SERVICE)
                existing = self._edges.get(eid)
                edge = Edge(
                    id=eid,
                    source=service_id,
                    target=pod_id,
                    kind=EdgeKind.SERVICE,
                    properties={"ip": address} if address else {},
                    flow=existing.flow if existing is not None else None,
                )
                self._edges[eid] = edge
                created.append(edge.copy())
            count = len(self._edges)
        topology_edges.set(count)
        return created

    def update_edge_flow(self, source: str, target: str, metrics: FlowMetrics, create: bool = True) -> Edge | None:
        """Attach *metrics* to the connection edge and recompute its health.

        Creates the edge when it does not exist yet, unless *create* is
        False, in which case nothing is written and None is returned.
        """
        eid = edge_id(source, target)
        with self._lock.write():
            edge = self._edges.get(eid)
            if edge is None:
                if not create:
                    return None
                edge = Edge(id=eid, source=source, target=target)
                self._edges[eid] = edge
            edge.flow = metrics
            edge.health = flow_health(metrics, edge.health)
            edge.health_source = HealthSource.DERIVED
            count = len(self._edges)
            result = edge.copy()
        topology_edges.set(count)
        return result

    def active_flows(self) -> list[Edge]:
        """Return copies of every edge whose flow is currently active."""
        with self._lock.read():
            return [e.copy() for e in self._edges.values() if e.flow is not None and e.flow.is_active]

    def flow_edges(self) -> list[Edge]:
        """Return copies of every edge that carries flow metrics."""
        with self._lock.read():
            return [e.copy() for e in self._edges.values() if e.flow is not None]

    # ------------------------------------------------------------------
    # Whole-store operations
    # ------------------------------------------------------------------

    def snapshot(self) -> Topology:
        """Return a point-in-time copy of the whole topology.

        Edges whose endpoints are not (or no longer) in the store are
        rendered with unknown health.
        """
        with self._lock.read():
            nodes = [n.copy() for n in self._nodes.values()]
            edges = []
            for edge in self._edges.values():
                copy = edge.copy()
                if edge.source not in self._nodes or edge.target not in self._nodes:
                    copy.health = Health.UNKNOWN
                edges.append(copy)
        return Topology(nodes=nodes, edges=edges, timestamp=datetime.now(tz=UTC))

    def reset(self) -> None:
        """Atomically drop every node and edge."""
        with self._lock.write():
            self._nodes = {}
            self._edges = {}
            self._generation += 1
        topology_nodes.set(0)
        topology_edges.set(0)
        _log.info("topology_reset")

    @property
    def generation(self) -> int:
        """Number of resets so far; lets holders of derived state notice one."""
        with self._lock.read():
            return self._generation

    @property
    def node_count(self) -> int:
        with self._lock.read():
            return len(self._nodes)

    @property
    def edge_count(self) -> int:
        with self._lock.read():
            return len(self._edges)

    def stats(self) -> dict[str, object]:
        with self._lock.read():
            nodes_by_kind = Counter(n.kind.value for n in self._nodes.values())
            edges_by_kind = Counter(e.kind.value for e in self._edges.values())
            edges_by_health = Counter(e.health.value for e in self._edges.values())
            active = sum(1 for e in self._edges.values() if e.flow is not None and e.flow.is_active)
            return {
                "nodes": len(self._nodes),
                "edges": len(self._edges),
                "active_flows": active,
                "nodes_by_kind": dict(nodes_by_kind),
                "edges_by_kind": dict(edges_by_kind),
                "edges_by_health": dict(edges_by_health),
            }


def _reject(record_type: str, reason: str) -> NoReturn:
    records_rejected_total.labels(record_type=record_type).inc()
    _log.warning("record_rejected", record_type=record_type, reason=reason)
    raise InvalidRecordError(record_type, reason)


def _validate_node(node: Node) -> None:
    if not node.id:
        _reject("node", "id is required")
    if not node.name:
        _reject("node", f"name is required (id={node.id!r})")
    try:
        NodeKind(node.kind)
    except ValueError:
        _reject("node", f"unknown kind {node.kind!r}")


def _validate_edge(edge: Edge) -> None:
    if not edge.source or not edge.target:
        _reject("edge", "source and target are required")
    try:
        kind = EdgeKind(edge.kind)
    except ValueError:
        _reject("edge", f"unknown kind {edge.kind!r}")
    expected = edge_id(edge.source, edge.target, kind)
    if edge.id != expected:
        _reject("edge", f"id {edge.id!r} does not match {expected!r}")
