"""Builders that turn Kubernetes API objects into topology records.

The resource discovery layer (watchers, informers) is an external
producer; it hands raw API objects to these builders as plain dicts in
the usual ``metadata`` / ``spec`` / ``status`` shape.  A missing
``metadata.name`` is malformed input and raises InvalidRecordError before
anything reaches the store.

NetworkPolicy objects are recorded as ``policy`` nodes for labeling only;
their selectors are kept as properties and never evaluated.
"""

from __future__ import annotations

from typing import Any

from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.topology import Node, NodeKind, node_id


def _metadata(raw: dict[str, Any], record_type: str) -> tuple[str, str, dict[str, str]]:
    metadata = raw.get("metadata") if isinstance(raw, dict) else None
    if not isinstance(metadata, dict):
        raise InvalidRecordError(record_type, "metadata is required")
    name = str(metadata.get("name") or "")
    if not name:
        raise InvalidRecordError(record_type, "metadata.name is required")
    namespace = str(metadata.get("namespace") or "")
    labels = {str(k): str(v) for k, v in (metadata.get("labels") or {}).items()}
    return name, namespace, labels


def pod_node(raw: dict[str, Any]) -> Node:
    name, namespace, labels = _metadata(raw, "pod")
    namespace = namespace or "default"
    spec = raw.get("spec") or {}
    status = raw.get("status") or {}
    phase = str(status.get("phase") or "")
    return Node(
        id=node_id(NodeKind.POD, name, namespace),
        kind=NodeKind.POD,
        name=name,
        namespace=namespace,
        labels=labels,
        properties={"status": phase} if phase else {},
        pod_ip=status.get("podIP") or None,
        node_name=spec.get("nodeName") or None,
        phase=phase or None,
    )


def service_node(raw: dict[str, Any]) -> Node:
    name, namespace, labels = _metadata(raw, "service")
    namespace = namespace or "default"
    spec = raw.get("spec") or {}
    properties = {
        "type": str(spec.get("type") or "ClusterIP"),
        "cluster_ip": str(spec.get("clusterIP") or ""),
    }
    return Node(
        id=node_id(NodeKind.SERVICE, name, namespace),
        kind=NodeKind.SERVICE,
        name=name,
        namespace=namespace,
        labels=labels,
        properties=properties,
    )


def cluster_node(raw: dict[str, Any]) -> Node:
    """Build a node for a cluster (worker) node from its Ready condition."""
    name, _, labels = _metadata(raw, "node")
    spec = raw.get("spec") or {}
    status = raw.get("status") or {}
    ready: bool | None = None
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Ready":
            ready = str(condition.get("status")) == "True"
    properties = {"provider_id": str(spec.get("providerID") or "")}
    return Node(
        id=node_id(NodeKind.NODE, name),
        kind=NodeKind.NODE,
        name=name,
        labels=labels,
        properties=properties,
        ready=ready,
    )


def namespace_node(raw: dict[str, Any]) -> Node:
    name, _, labels = _metadata(raw, "namespace")
    return Node(id=node_id(NodeKind.NAMESPACE, name), kind=NodeKind.NAMESPACE, name=name, labels=labels)


def policy_node(raw: dict[str, Any]) -> Node:
    name, namespace, labels = _metadata(raw, "policy")
    namespace = namespace or "default"
    spec = raw.get("spec") or {}
    selector = (spec.get("podSelector") or {}).get("matchLabels") or {}
    properties = {
        "type": "NetworkPolicy",
        "policy_types": ",".join(str(t) for t in spec.get("policyTypes") or []),
        "pod_selector": ",".join(f"{k}={v}" for k, v in sorted(selector.items())),
    }
    return Node(
        id=node_id(NodeKind.POLICY, name, namespace),
        kind=NodeKind.POLICY,
        name=name,
        namespace=namespace,
        labels=labels,
        properties=properties,
    )


def external_node(address: str) -> Node:
    """Build a node for an address outside the cluster."""
    if not address:
        raise InvalidRecordError("external", "address is required")
    return Node(id=node_id(NodeKind.EXTERNAL, address), kind=NodeKind.EXTERNAL, name=address)


def service_endpoints(endpoints_raw: dict[str, Any]) -> dict[str, str]:
    """Map pod node ids to addresses from a v1.Endpoints object.

    Only addresses whose targetRef is a Pod produce bindings.
    """
    _, default_namespace, _ = _metadata(endpoints_raw, "endpoints")
    bindings: dict[str, str] = {}
    for subset in endpoints_raw.get("subsets") or []:
        for address in subset.get("addresses") or []:
            ref = address.get("targetRef") or {}
            if ref.get("kind") != "Pod" or not ref.get("name"):
                continue
            pod = node_id(NodeKind.POD, str(ref["name"]), str(ref.get("namespace") or default_namespace or "default"))
            bindings[pod] = str(address.get("ip") or "")
    return bindings
