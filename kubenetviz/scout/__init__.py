"""Scout package: baselines and rule-based anomaly detection over flow edges."""

from kubenetviz.scout.baseline import Baseline, BaselineState, MetricKind
from kubenetviz.scout.detector import AnomalyDetector
from kubenetviz.scout.rules import (
    AnomalyRule,
    DataExfiltrationRule,
    DetectionContext,
    HighErrorRateRule,
    PortScanRule,
    TrafficDropRule,
    TrafficSpikeRule,
    UnexpectedConnectionRule,
    UnusualProtocolRule,
    default_rules,
)

__all__ = [
    "AnomalyDetector",
    "AnomalyRule",
    "Baseline",
    "BaselineState",
    "DataExfiltrationRule",
    "DetectionContext",
    "HighErrorRateRule",
    "MetricKind",
    "PortScanRule",
    "TrafficDropRule",
    "TrafficSpikeRule",
    "UnexpectedConnectionRule",
    "UnusualProtocolRule",
    "default_rules",
]
