"""Live topology graph of cluster entities and their relationships.

Provides the concurrent TopologyStore, per-kind health derivation and the
builders that convert Kubernetes API objects into topology nodes.
"""

from kubenetviz.graph.health import DEFAULT_STRATEGIES, HealthStrategy, derive_node_health, flow_health
from kubenetviz.graph.store import TopologyStore

__all__ = [
    "DEFAULT_STRATEGIES",
    "HealthStrategy",
    "TopologyStore",
    "derive_node_health",
    "flow_health",
]
