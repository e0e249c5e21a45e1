"""Flow telemetry record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import uuid4

from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.topology import FlowDirection


@dataclass(frozen=True)
class FlowRecord:
    """A single observed flow between two topology nodes.

    Produced by the telemetry producer, consumed by the FlowAggregator.
    Immutable: the aggregator folds it into metrics and keeps it only in
    the bounded recent-flows ring.
    """

    source_id: str
    target_id: str
    bytes: int = 0
    packets: int = 1
    protocol: str = "TCP"
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    error: bool = False
    dest_port: int | None = None
    direction: FlowDirection = FlowDirection.BIDIRECTIONAL
    flow_id: str = field(default_factory=lambda: str(uuid4()))

    def validate(self) -> None:
        """Raise InvalidRecordError if the record cannot be aggregated."""
        if not self.source_id:
            raise InvalidRecordError("flow", "source_id is required")
        if not self.target_id:
            raise InvalidRecordError("flow", "target_id is required")
        if self.bytes < 0 or self.packets < 0:
            raise InvalidRecordError("flow", "byte and packet counts must be non-negative")
        if self.dest_port is not None and not 0 <= self.dest_port <= 65535:
            raise InvalidRecordError("flow", f"dest_port out of range: {self.dest_port}")
        if self.timestamp.tzinfo is None:
            raise InvalidRecordError("flow", "timestamp must be timezone-aware")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.flow_id,
            "source": self.source_id,
            "target": self.target_id,
            "bytes": self.bytes,
            "packets": self.packets,
            "protocol": self.protocol,
            "timestamp": self.timestamp.astimezone(UTC).isoformat(),
            "error": self.error,
            "dest_port": self.dest_port,
            "direction": self.direction.value,
        }
