"""Anomaly event data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import uuid4


class Severity(StrEnum):
    """Anomaly severity, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class AnomalyType(StrEnum):
    """Classes of traffic anomaly the detector can emit."""

    TRAFFIC_SPIKE = "traffic_spike"
    TRAFFIC_DROP = "traffic_drop"
    HIGH_ERROR_RATE = "high_error_rate"
    PORT_SCAN = "port_scan"
    DATA_EXFILTRATION = "data_exfiltration"
    UNUSUAL_PROTOCOL = "unusual_protocol"
    UNEXPECTED_CONNECTION = "unexpected_connection"


@dataclass(frozen=True)
class Evidence:
    """Metric values that caused an anomaly to fire."""

    current_value: float
    baseline_value: float | None = None
    threshold: float | None = None
    details: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "current_value": self.current_value,
            "baseline_value": self.baseline_value,
            "threshold": self.threshold,
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class AnomalyEvent:
    """Emitted by the anomaly detector, consumed by alerting and the REST API.

    Never mutated after creation.
    """

    anomaly_type: AnomalyType
    severity: Severity
    title: str
    description: str
    source_id: str
    evidence: Evidence
    target_id: str | None = None
    edge_id: str | None = None
    score: float = 0.0
    detected_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    event_id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.event_id,
            "type": self.anomaly_type.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "source": self.source_id,
            "target": self.target_id,
            "edge_id": self.edge_id,
            "evidence": self.evidence.to_dict(),
            "score": self.score,
            "detected_at": self.detected_at.astimezone(UTC).isoformat(),
        }
