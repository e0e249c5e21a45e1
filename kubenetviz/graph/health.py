"""Health derivation for topology entities.

Each node kind maps to a small pure function over the node's observed
state.  A store takes extra or replacement entries through
``TopologyStore(strategies=...)``; the store never branches on kind itself.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType

from kubenetviz.models.topology import FlowMetrics, Health, Node, NodeKind

HealthStrategy = Callable[[Node], Health]

# Edge health thresholds on the flow error rate.
FAILED_ERROR_RATE = 0.10
DEGRADED_ERROR_RATE = 0.05

# Probe latency above this is reported as degraded.
DEGRADED_LATENCY_MS = 100

_POD_PHASE_HEALTH = {
    "Running": Health.HEALTHY,
    "Pending": Health.DEGRADED,
    "Failed": Health.FAILED,
}


def pod_health(node: Node) -> Health:
    return _POD_PHASE_HEALTH.get(node.phase or "", Health.UNKNOWN)


def cluster_node_health(node: Node) -> Health:
    # A missing Ready condition is not evidence of failure.
    if node.ready is False:
        return Health.FAILED
    return Health.HEALTHY


def always_healthy(_node: Node) -> Health:
    return Health.HEALTHY


def always_unknown(_node: Node) -> Health:
    return Health.UNKNOWN


# Read-only default table; a store layers its own strategies over a copy.
DEFAULT_STRATEGIES: Mapping[NodeKind, HealthStrategy] = MappingProxyType(
    {
        NodeKind.POD: pod_health,
        NodeKind.NODE: cluster_node_health,
        NodeKind.SERVICE: always_healthy,
        NodeKind.NAMESPACE: always_healthy,
        NodeKind.POLICY: always_healthy,
        NodeKind.EXTERNAL: always_unknown,
    }
)


def derive_node_health(node: Node, strategies: Mapping[NodeKind, HealthStrategy] | None = None) -> Health:
    """Return the health implied by *node*'s current observed state.

    *strategies* defaults to ``DEFAULT_STRATEGIES``; kinds missing from it
    are unknown.
    """
    table = DEFAULT_STRATEGIES if strategies is None else strategies
    strategy = table.get(node.kind, always_unknown)
    return strategy(node)


def flow_health(metrics: FlowMetrics, prior: Health) -> Health:
    """Return an edge's health after a flow-metrics update.

    Error-rate buckets win; otherwise an active flow is healthy and an
    inactive one keeps whatever health the edge had.
    """
    if metrics.error_rate > FAILED_ERROR_RATE:
        return Health.FAILED
    if metrics.error_rate > DEGRADED_ERROR_RATE:
        return Health.DEGRADED
    if metrics.is_active:
        return Health.HEALTHY
    return prior


def probe_health(latency_ms: int, success: bool) -> Health:
    """Return a connection edge's health from a connectivity probe."""
    if not success:
        return Health.FAILED
    if latency_ms > DEGRADED_LATENCY_MS:
        return Health.DEGRADED
    return Health.HEALTHY
