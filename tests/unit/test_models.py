"""Tests for identities, FlowRecord validation and serialisation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Evidence, Severity
from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.flows import FlowRecord
from kubenetviz.models.topology import (
    Edge,
    EdgeKind,
    FlowDirection,
    FlowMetrics,
    Node,
    NodeKind,
    Topology,
    edge_id,
    node_id,
)

_TS = datetime(2026, 3, 1, 9, 30, 0, tzinfo=UTC)


class TestNodeId:
    def test_namespaced_kinds_include_namespace(self) -> None:
        assert node_id(NodeKind.POD, "web-1", "shop") == "pod/shop/web-1"
        assert node_id(NodeKind.SERVICE, "web", "shop") == "service/shop/web"
        assert node_id(NodeKind.POLICY, "deny-all", "shop") == "policy/shop/deny-all"

    def test_namespaced_kind_defaults_to_default_namespace(self) -> None:
        assert node_id(NodeKind.POD, "web-1") == "pod/default/web-1"

    def test_cluster_scoped_kinds_ignore_namespace(self) -> None:
        assert node_id(NodeKind.NODE, "worker-1", "shop") == "node/worker-1"
        assert node_id(NodeKind.NAMESPACE, "shop") == "namespace/shop"
        assert node_id(NodeKind.EXTERNAL, "8.8.8.8") == "external/8.8.8.8"

    def test_accepts_plain_string_kind(self) -> None:
        assert node_id("pod", "a", "b") == "pod/b/a"  # type: ignore[arg-type]


class TestEdgeId:
    def test_connection_edge_has_no_suffix(self) -> None:
        assert edge_id("pod/a/x", "pod/a/y") == "pod/a/x->pod/a/y"

    def test_other_kinds_are_suffixed(self) -> None:
        assert edge_id("service/a/s", "pod/a/y", EdgeKind.SERVICE) == "service/a/s->pod/a/y#service"
        assert edge_id("policy/a/p", "pod/a/y", EdgeKind.POLICY) == "policy/a/p->pod/a/y#policy"

    def test_kinds_between_same_pair_are_distinct(self) -> None:
        ids = {edge_id("a", "b", kind) for kind in EdgeKind}
        assert len(ids) == len(EdgeKind)

    def test_between_derives_id(self) -> None:
        edge = Edge.between("a", "b", EdgeKind.SERVICE)
        assert edge.id == "a->b#service"
        assert edge.kind is EdgeKind.SERVICE


class TestFlowRecordValidation:
    def test_valid_record_passes(self) -> None:
        FlowRecord(source_id="a", target_id="b", bytes=10, dest_port=443, timestamp=_TS).validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"source_id": ""},
            {"target_id": ""},
            {"bytes": -1},
            {"packets": -5},
            {"dest_port": 70000},
            {"dest_port": -1},
            {"timestamp": datetime(2026, 3, 1, 9, 30, 0)},
        ],
    )
    def test_malformed_records_are_rejected(self, kwargs: dict) -> None:
        base = {"source_id": "a", "target_id": "b", "timestamp": _TS}
        record = FlowRecord(**{**base, **kwargs})
        with pytest.raises(InvalidRecordError) as exc_info:
            record.validate()
        assert exc_info.value.record_type == "flow"

    def test_invalid_record_error_is_value_error(self) -> None:
        assert issubclass(InvalidRecordError, ValueError)
        err = InvalidRecordError("node", "id is required")
        assert str(err) == "invalid node record: id is required"
        assert err.reason == "id is required"

    def test_records_get_unique_ids(self) -> None:
        assert FlowRecord("a", "b").flow_id != FlowRecord("a", "b").flow_id


class TestSerialisation:
    def test_node_to_dict_uses_wire_values(self) -> None:
        node = Node(id="pod/shop/web-1", kind=NodeKind.POD, name="web-1", namespace="shop", pod_ip="10.0.0.4")
        data = node.to_dict()
        assert data["type"] == "pod"
        assert data["health"] == "unknown"
        assert data["health_source"] == "derived"
        assert data["namespace"] == "shop"
        assert data["pod_ip"] == "10.0.0.4"

    def test_edge_to_dict_includes_flow_data(self) -> None:
        edge = Edge.between("a", "b", flow=FlowMetrics(bytes_per_sec=12.5, protocol="TCP", last_seen=_TS))
        data = edge.to_dict()
        assert data["flow_data"]["bytes_per_sec"] == 12.5  # type: ignore[index]
        assert data["flow_data"]["last_seen"] == "2026-03-01T09:30:00+00:00"  # type: ignore[index]
        assert data["type"] == "connection"

    def test_edge_without_flow_omits_flow_data(self) -> None:
        assert "flow_data" not in Edge.between("a", "b").to_dict()

    def test_topology_to_dict(self) -> None:
        topo = Topology(nodes=[Node(id="node/w", kind=NodeKind.NODE, name="w")], edges=[], timestamp=_TS)
        data = topo.to_dict()
        assert data["timestamp"] == "2026-03-01T09:30:00+00:00"
        assert len(data["nodes"]) == 1  # type: ignore[arg-type]

    def test_flow_record_to_dict(self) -> None:
        record = FlowRecord("a", "b", bytes=5, dest_port=53, protocol="UDP", timestamp=_TS)
        data = record.to_dict()
        assert data["source"] == "a"
        assert data["dest_port"] == 53
        assert data["direction"] == FlowDirection.BIDIRECTIONAL.value

    def test_anomaly_event_to_dict(self) -> None:
        event = AnomalyEvent(
            anomaly_type=AnomalyType.PORT_SCAN,
            severity=Severity.HIGH,
            title="Potential Port Scan Detected",
            description="x",
            source_id="pod/a/x",
            evidence=Evidence(current_value=25.0, threshold=20.0),
            detected_at=_TS,
        )
        data = event.to_dict()
        assert data["type"] == "port_scan"
        assert data["severity"] == "high"
        assert data["target"] is None
        assert data["evidence"]["current_value"] == 25.0  # type: ignore[index]


class TestSeverityRank:
    def test_rank_is_ordered(self) -> None:
        ranks = [s.rank for s in (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)]
        assert ranks == sorted(ranks)
        assert len(set(ranks)) == 4
