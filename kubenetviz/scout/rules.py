"""Anomaly detection rules.

Each rule is an independent predicate plus a severity function.  The
detector evaluates its ordered rule list once per tick and keeps every
event any rule produces; rules never see each other's output.

Edge rules only look at edges whose baseline for the metric they read is
trusted, so nothing fires while an edge is warming up.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Evidence, Severity
from kubenetviz.models.flows import FlowRecord
from kubenetviz.models.topology import Edge, FlowDirection, FlowMetrics, edge_id
from kubenetviz.scout.baseline import Baseline, MetricKind

DEFAULT_SPIKE_THRESHOLD = 3.0
DEFAULT_ERROR_RATE_THRESHOLD = 0.05
DEFAULT_PORT_SCAN_THRESHOLD = 20
DEFAULT_EXFIL_THRESHOLD = 10 * 1024 * 1024  # bytes/sec
DEFAULT_EXFIL_SUSTAIN_TICKS = 3

_MIB = 1024 * 1024


@dataclass(frozen=True)
class DetectionContext:
    """Everything a rule may read during one tick."""

    now: datetime
    window: timedelta
    edges: list[Edge]
    flows: list[FlowRecord]
    baseline: Callable[[str, MetricKind], Baseline | None]


class AnomalyRule(ABC):
    """Base class for every detection rule."""

    anomaly_type: AnomalyType

    @abstractmethod
    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        """Return the anomalies this rule finds in *ctx* (possibly none)."""

    def reset(self) -> None:
        """Forget any state carried between ticks."""


class EdgeRule(AnomalyRule):
    """A rule checked once per active flow edge with a trusted baseline."""

    metric: MetricKind

    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        events: list[AnomalyEvent] = []
        for edge in ctx.edges:
            if edge.flow is None:
                continue
            baseline = ctx.baseline(edge.id, self.metric)
            if baseline is None or not baseline.is_trusted:
                continue
            event = self.check(edge, edge.flow, baseline, ctx)
            if event is not None:
                events.append(event)
        return events

    @abstractmethod
    def check(
        self,
        edge: Edge,
        flow: FlowMetrics,
        baseline: Baseline,
        ctx: DetectionContext,
    ) -> AnomalyEvent | None:
        """Return an event if *edge* is anomalous, else None."""


def spike_severity(score: float) -> Severity:
    """Severity for a relative increase ``(current - mean) / mean``."""
    if score >= 5.0:
        return Severity.CRITICAL
    if score >= 3.0:
        return Severity.HIGH
    if score >= 1.5:
        return Severity.MEDIUM
    return Severity.LOW


def error_rate_severity(error_rate: float) -> Severity:
    if error_rate > 0.25:
        return Severity.CRITICAL
    if error_rate > 0.10:
        return Severity.HIGH
    return Severity.MEDIUM


def multiple_severity(value: float, threshold: float) -> Severity:
    """HIGH at the threshold, CRITICAL from twice the threshold."""
    if value >= 2 * threshold:
        return Severity.CRITICAL
    return Severity.HIGH


class TrafficSpikeRule(EdgeRule):
    """Bytes/sec above ``threshold`` times the learned mean."""

    anomaly_type = AnomalyType.TRAFFIC_SPIKE
    metric = MetricKind.BYTES_PER_SEC

    def __init__(self, threshold: float = DEFAULT_SPIKE_THRESHOLD) -> None:
        self.threshold = threshold

    def check(self, edge: Edge, flow: FlowMetrics, baseline: Baseline, ctx: DetectionContext) -> AnomalyEvent | None:
        if baseline.mean <= 0:
            return None
        limit = self.threshold * baseline.mean
        if flow.bytes_per_sec <= limit:
            return None
        score = (flow.bytes_per_sec - baseline.mean) / baseline.mean
        multiplier = flow.bytes_per_sec / baseline.mean
        return AnomalyEvent(
            anomaly_type=self.anomaly_type,
            severity=spike_severity(score),
            title="Traffic Spike Detected",
            description=f"Traffic from {edge.source} to {edge.target} is {multiplier:.1f}x higher than baseline",
            source_id=edge.source,
            target_id=edge.target,
            edge_id=edge.id,
            evidence=Evidence(
                current_value=flow.bytes_per_sec,
                baseline_value=baseline.mean,
                threshold=limit,
                details={
                    "baseline_stddev": f"{baseline.std_dev:.2f}",
                    "multiplier": f"{multiplier:.1f}x",
                },
            ),
            score=min(score / 10, 1.0),
            detected_at=ctx.now,
        )


class TrafficDropRule(EdgeRule):
    """A busy edge whose traffic fell below a fraction of its mean."""

    anomaly_type = AnomalyType.TRAFFIC_DROP
    metric = MetricKind.BYTES_PER_SEC

    def __init__(self, min_baseline: float = 1000.0, ratio: float = 0.2) -> None:
        self.min_baseline = min_baseline
        self.ratio = ratio

    def check(self, edge: Edge, flow: FlowMetrics, baseline: Baseline, ctx: DetectionContext) -> AnomalyEvent | None:
        if baseline.mean <= self.min_baseline:
            return None
        limit = baseline.mean * self.ratio
        if flow.bytes_per_sec >= limit:
            return None
        drop = (1 - flow.bytes_per_sec / baseline.mean) * 100
        return AnomalyEvent(
            anomaly_type=self.anomaly_type,
            severity=Severity.MEDIUM,
            title="Traffic Drop Detected",
            description=f"Traffic from {edge.source} to {edge.target} has dropped significantly",
            source_id=edge.source,
            target_id=edge.target,
            edge_id=edge.id,
            evidence=Evidence(
                current_value=flow.bytes_per_sec,
                baseline_value=baseline.mean,
                threshold=limit,
                details={"drop_percentage": f"{drop:.1f}%"},
            ),
            score=0.6,
            detected_at=ctx.now,
        )


class HighErrorRateRule(EdgeRule):
    """Error rate above an absolute threshold."""

    anomaly_type = AnomalyType.HIGH_ERROR_RATE
    metric = MetricKind.ERROR_RATE

    def __init__(self, threshold: float = DEFAULT_ERROR_RATE_THRESHOLD) -> None:
        self.threshold = threshold

    def check(self, edge: Edge, flow: FlowMetrics, baseline: Baseline, ctx: DetectionContext) -> AnomalyEvent | None:
        if flow.error_rate <= self.threshold:
            return None
        return AnomalyEvent(
            anomaly_type=self.anomaly_type,
            severity=error_rate_severity(flow.error_rate),
            title="High Error Rate Detected",
            description=f"Connection from {edge.source} to {edge.target} has {flow.error_rate * 100:.1f}% error rate",
            source_id=edge.source,
            target_id=edge.target,
            edge_id=edge.id,
            evidence=Evidence(
                current_value=flow.error_rate,
                baseline_value=baseline.mean,
                threshold=self.threshold,
                details={"error_percentage": f"{flow.error_rate * 100:.1f}%"},
            ),
            score=min(flow.error_rate, 1.0),
            detected_at=ctx.now,
        )


class DataExfiltrationRule(EdgeRule):
    """Egress bytes/sec above the threshold for several consecutive ticks."""

    anomaly_type = AnomalyType.DATA_EXFILTRATION
    metric = MetricKind.BYTES_PER_SEC

    def __init__(
        self,
        threshold: float = DEFAULT_EXFIL_THRESHOLD,
        sustain_ticks: int = DEFAULT_EXFIL_SUSTAIN_TICKS,
    ) -> None:
        self.threshold = threshold
        self.sustain_ticks = max(1, sustain_ticks)
        self._streaks: dict[str, int] = {}

    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        # Streaks only survive on edges that are still carrying traffic.
        live = {e.id for e in ctx.edges}
        for stale in [k for k in self._streaks if k not in live]:
            del self._streaks[stale]
        return super().evaluate(ctx)

    def check(self, edge: Edge, flow: FlowMetrics, baseline: Baseline, ctx: DetectionContext) -> AnomalyEvent | None:
        if flow.direction is not FlowDirection.EGRESS or flow.bytes_per_sec <= self.threshold:
            self._streaks.pop(edge.id, None)
            return None
        streak = self._streaks.get(edge.id, 0) + 1
        self._streaks[edge.id] = streak
        if streak < self.sustain_ticks:
            return None
        mbps = flow.bytes_per_sec / _MIB
        return AnomalyEvent(
            anomaly_type=self.anomaly_type,
            severity=multiple_severity(flow.bytes_per_sec, self.threshold),
            title="Potential Data Exfiltration",
            description=f"Very high outbound traffic from {edge.source} to {edge.target}: {mbps:.2f} MB/s",
            source_id=edge.source,
            target_id=edge.target,
            edge_id=edge.id,
            evidence=Evidence(
                current_value=flow.bytes_per_sec,
                baseline_value=baseline.mean,
                threshold=self.threshold,
                details={"bandwidth_mbps": f"{mbps:.2f}", "sustained_ticks": str(streak)},
            ),
            score=0.9,
            detected_at=ctx.now,
        )

    def reset(self) -> None:
        self._streaks.clear()


class PortScanRule(AnomalyRule):
    """One source reaching many distinct destination ports inside the window.

    A source is reported at most once per window: ticks overlap, so the
    same records stay visible until the window has moved past them.
    """

    anomaly_type = AnomalyType.PORT_SCAN

    def __init__(self, threshold: int = DEFAULT_PORT_SCAN_THRESHOLD) -> None:
        self.threshold = threshold
        self._reported: dict[str, datetime] = {}

    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        for source in [s for s, at in self._reported.items() if ctx.now - at >= ctx.window]:
            del self._reported[source]

        ports_by_source: dict[str, set[int]] = defaultdict(set)
        for record in ctx.flows:
            if record.dest_port is not None:
                ports_by_source[record.source_id].add(record.dest_port)

        window_seconds = int(ctx.window.total_seconds())
        events: list[AnomalyEvent] = []
        for source, ports in sorted(ports_by_source.items()):
            if len(ports) < self.threshold or source in self._reported:
                continue
            self._reported[source] = ctx.now
            events.append(
                AnomalyEvent(
                    anomaly_type=self.anomaly_type,
                    severity=multiple_severity(len(ports), self.threshold),
                    title="Potential Port Scan Detected",
                    description=f"{source} connected to {len(ports)} unique ports in {window_seconds}s",
                    source_id=source,
                    evidence=Evidence(
                        current_value=float(len(ports)),
                        threshold=float(self.threshold),
                        details={
                            "unique_ports": str(len(ports)),
                            "time_window": f"{window_seconds}s",
                        },
                    ),
                    score=0.8,
                    detected_at=ctx.now,
                )
            )
        return events

    def reset(self) -> None:
        self._reported.clear()


class UnusualProtocolRule(AnomalyRule):
    """A source using a protocol it was not seen using in earlier ticks.

    The first tick a source appears in only records its protocols.
    """

    anomaly_type = AnomalyType.UNUSUAL_PROTOCOL

    def __init__(self) -> None:
        self._known: dict[str, set[str]] = {}

    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        seen: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for record in ctx.flows:
            seen[record.source_id][record.protocol] += 1

        events: list[AnomalyEvent] = []
        for source, protocols in sorted(seen.items()):
            known = self._known.get(source)
            if known is None:
                self._known[source] = set(protocols)
                continue
            for protocol in sorted(set(protocols) - known):
                events.append(
                    AnomalyEvent(
                        anomaly_type=self.anomaly_type,
                        severity=Severity.MEDIUM,
                        title="Unusual Protocol Detected",
                        description=f"{source} is using protocol {protocol} which is not in its baseline",
                        source_id=source,
                        evidence=Evidence(
                            current_value=float(protocols[protocol]),
                            details={"protocol": protocol, "count": str(protocols[protocol])},
                        ),
                        score=0.5,
                        detected_at=ctx.now,
                    )
                )
                known.add(protocol)
        return events

    def reset(self) -> None:
        self._known.clear()


class UnexpectedConnectionRule(AnomalyRule):
    """A source reaching a destination it never talked to in earlier ticks.

    Like protocols, a source's destinations are learned on the first tick
    it appears in.
    """

    anomaly_type = AnomalyType.UNEXPECTED_CONNECTION

    def __init__(self) -> None:
        self._known: dict[str, set[str]] = {}

    def evaluate(self, ctx: DetectionContext) -> list[AnomalyEvent]:
        seen: dict[str, set[str]] = defaultdict(set)
        for record in ctx.flows:
            seen[record.source_id].add(record.target_id)

        events: list[AnomalyEvent] = []
        for source, targets in sorted(seen.items()):
            known = self._known.get(source)
            if known is None:
                self._known[source] = set(targets)
                continue
            for target in sorted(targets - known):
                events.append(
                    AnomalyEvent(
                        anomaly_type=self.anomaly_type,
                        severity=Severity.LOW,
                        title="Unexpected Connection",
                        description=f"{source} connected to unexpected destination {target}",
                        source_id=source,
                        target_id=target,
                        edge_id=edge_id(source, target),
                        evidence=Evidence(details={"new_destination": target}),
                        score=0.4,
                        detected_at=ctx.now,
                    )
                )
                known.add(target)
        return events

    def reset(self) -> None:
        self._known.clear()


def default_rules(
    spike_threshold: float = DEFAULT_SPIKE_THRESHOLD,
    error_rate_threshold: float = DEFAULT_ERROR_RATE_THRESHOLD,
    port_scan_threshold: int = DEFAULT_PORT_SCAN_THRESHOLD,
    exfil_threshold: float = DEFAULT_EXFIL_THRESHOLD,
    exfil_sustain_ticks: int = DEFAULT_EXFIL_SUSTAIN_TICKS,
) -> list[AnomalyRule]:
    """Return the standard rule list in evaluation order."""
    return [
        TrafficSpikeRule(spike_threshold),
        TrafficDropRule(),
        HighErrorRateRule(error_rate_threshold),
        PortScanRule(port_scan_threshold),
        DataExfiltrationRule(exfil_threshold, exfil_sustain_ticks),
        UnusualProtocolRule(),
        UnexpectedConnectionRule(),
    ]
