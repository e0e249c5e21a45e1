"""Anomaly detector: baselines per edge and an ordered rule list.

One ``detect_anomalies()`` call is one tick:

1. read the active flow edges and the records of the current window;
2. evaluate every rule (all firing rules contribute);
3. fold the current metrics into the edge baselines;
4. append the new events to the bounded log and notify subscribers.

Baselines are updated after the rules run so a sample is never compared
against a mean that already contains it.
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.models.alerts import AnomalyEvent, AnomalyType, Severity
from kubenetviz.models.config import ScoutConfig
from kubenetviz.models.topology import FlowMetrics
from kubenetviz.observability.metrics import anomalies_total, detection_duration_seconds
from kubenetviz.scout.baseline import (
    DEFAULT_ALPHA,
    DEFAULT_MIN_SAMPLES,
    Baseline,
    BaselineState,
    MetricKind,
)
from kubenetviz.scout.rules import AnomalyRule, DetectionContext, default_rules

_log = structlog.get_logger(component="scout.detector")

DEFAULT_MAX_EVENTS = 1_000

Subscriber = Callable[[list[AnomalyEvent]], None]

_METRIC_READERS: dict[MetricKind, Callable[[FlowMetrics], float]] = {
    MetricKind.BYTES_PER_SEC: lambda m: m.bytes_per_sec,
    MetricKind.PACKETS_PER_SEC: lambda m: m.packets_per_sec,
    MetricKind.ERROR_RATE: lambda m: m.error_rate,
}


class AnomalyDetector:
    """Runs the rule list against the aggregator's view once per tick.

    Args:
        aggregator:  Source of active flow edges and windowed records.
        rules:       Ordered rules; defaults to ``default_rules()``.
        min_samples: Samples a baseline needs before edge rules trust it.
        alpha:       EWMA weight used by the baselines.
        max_events:  Bound on the event log; the oldest events are dropped.
    """

    def __init__(
        self,
        aggregator: FlowAggregator,
        rules: list[AnomalyRule] | None = None,
        min_samples: int = DEFAULT_MIN_SAMPLES,
        alpha: float = DEFAULT_ALPHA,
        max_events: int = DEFAULT_MAX_EVENTS,
    ) -> None:
        if min_samples < 1:
            raise ValueError(f"min_samples must be positive, got {min_samples}")
        if max_events < 1:
            raise ValueError(f"max_events must be positive, got {max_events}")
        self._aggregator = aggregator
        self._rules = rules if rules is not None else default_rules()
        self._min_samples = min_samples
        self._alpha = alpha
        self._lock = threading.Lock()
        self._baselines: dict[tuple[str, MetricKind], Baseline] = {}
        self._events: deque[AnomalyEvent] = deque(maxlen=max_events)
        self._subscribers: list[Subscriber] = []
        self._ticks = 0
        self._emitted = 0

    @classmethod
    def from_config(cls, aggregator: FlowAggregator, config: ScoutConfig) -> AnomalyDetector:
        rules = default_rules(
            spike_threshold=config.spike_threshold,
            error_rate_threshold=config.error_rate_threshold,
            port_scan_threshold=config.port_scan_threshold,
            exfil_threshold=config.exfil_threshold_bytes,
            exfil_sustain_ticks=config.exfil_sustain_ticks,
        )
        return cls(
            aggregator,
            rules=rules,
            min_samples=config.min_baseline_samples,
            alpha=config.baseline_alpha,
            max_events=config.max_events,
        )

    @property
    def rules(self) -> list[AnomalyRule]:
        return list(self._rules)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect_anomalies(self, now: datetime | None = None) -> list[AnomalyEvent]:
        """Run one detection tick and return the events it produced."""
        now = now or datetime.now(tz=UTC)
        started = time.monotonic()

        edges = [e for e in self._aggregator.active_flows() if e.flow is not None]
        flows = self._aggregator.flows_since(now - self._aggregator.window)

        with self._lock:
            ctx = DetectionContext(
                now=now,
                window=self._aggregator.window,
                edges=edges,
                flows=flows,
                baseline=self._baselines.get,
            )
            new_events: list[AnomalyEvent] = []
            for rule in self._rules:
                try:
                    new_events.extend(rule.evaluate(ctx))
                except Exception as exc:  # noqa: BLE001
                    _log.error(
                        "rule_evaluation_failed",
                        rule=type(rule).__name__,
                        error=str(exc),
                    )

            for edge in edges:
                if edge.flow is not None:
                    self._fold_baselines(edge.id, edge.flow, now)

            self._events.extend(new_events)
            self._ticks += 1
            self._emitted += len(new_events)
            subscribers = list(self._subscribers)

        detection_duration_seconds.observe(time.monotonic() - started)
        for event in new_events:
            anomalies_total.labels(type=event.anomaly_type.value, severity=event.severity.value).inc()
            _log.info(
                "anomaly_detected",
                anomaly_type=event.anomaly_type.value,
                severity=event.severity.value,
                source=event.source_id,
                target=event.target_id,
                event_id=event.event_id,
            )

        if new_events:
            self._notify(subscribers, new_events)
        return new_events

    def _fold_baselines(self, edge_id: str, flow: FlowMetrics, now: datetime) -> None:
        for metric, read in _METRIC_READERS.items():
            key = (edge_id, metric)
            baseline = self._baselines.get(key)
            if baseline is None:
                baseline = Baseline(alpha=self._alpha, min_samples=self._min_samples)
                self._baselines[key] = baseline
            before = baseline.state
            baseline.update(read(flow), at=now)
            if before is not baseline.state:
                _log.debug("baseline_established", edge_id=edge_id, metric=metric.value)

    def _notify(self, subscribers: list[Subscriber], events: list[AnomalyEvent]) -> None:
        # Called without the lock held; a failing subscriber never affects the others.
        for callback in subscribers:
            try:
                callback(list(events))
            except Exception as exc:  # noqa: BLE001
                _log.error("anomaly_subscriber_failed", subscriber=repr(callback), error=str(exc))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> None:
        """Register *callback* to receive each tick's non-empty event list."""
        with self._lock:
            self._subscribers.append(callback)

    def events(
        self,
        limit: int | None = None,
        severity: Severity | None = None,
        anomaly_type: AnomalyType | None = None,
    ) -> list[AnomalyEvent]:
        """Return logged events, newest first, optionally filtered."""
        with self._lock:
            selected = [
                e
                for e in reversed(self._events)
                if (severity is None or e.severity is severity)
                and (anomaly_type is None or e.anomaly_type is anomaly_type)
            ]
        if limit is not None and limit > 0:
            return selected[:limit]
        return selected

    def events_by_severity(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(e.severity.value for e in self._events)
        return {s.value: counts.get(s.value, 0) for s in Severity}

    def events_by_type(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(e.anomaly_type.value for e in self._events)
        return {t.value: counts.get(t.value, 0) for t in AnomalyType}

    def baseline(self, edge_id: str, metric: MetricKind = MetricKind.BYTES_PER_SEC) -> Baseline | None:
        """Return a copy of the baseline for *edge_id* and *metric*, if any."""
        with self._lock:
            current = self._baselines.get((edge_id, metric))
            if current is None:
                return None
            return Baseline(
                alpha=current.alpha,
                min_samples=current.min_samples,
                mean=current.mean,
                variance=current.variance,
                sample_count=current.sample_count,
                last_updated=current.last_updated,
            )

    def baseline_state(self, edge_id: str, metric: MetricKind = MetricKind.BYTES_PER_SEC) -> BaselineState:
        """Return the state of one baseline; unknown edges are warming up."""
        found = self.baseline(edge_id, metric)
        return found.state if found is not None else BaselineState.WARMING_UP

    def stats(self) -> dict[str, object]:
        with self._lock:
            baselined = sum(1 for b in self._baselines.values() if b.is_trusted)
            return {
                "ticks": self._ticks,
                "events_logged": len(self._events),
                "events_emitted_total": self._emitted,
                "max_events": self._events.maxlen,
                "baselines": len(self._baselines),
                "baselines_trusted": baselined,
                "rules": [type(r).__name__ for r in self._rules],
            }

    def reset(self) -> None:
        """Forget every baseline, logged event and rule state."""
        with self._lock:
            self._baselines.clear()
            self._events.clear()
            self._ticks = 0
            self._emitted = 0
            for rule in self._rules:
                rule.reset()
