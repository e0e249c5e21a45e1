"""Flow aggregator: folds flow records into per-edge metrics.

Rate model
----------
For every connection edge the aggregator keeps a small accumulator.  A
record's instantaneous byte rate is ``bytes / max(elapsed, 1s)``, where
``elapsed`` is the gap since the previous record on the same edge (1 s for
the first record).  The published rate is an exponentially weighted moving
average of those samples with weight ``alpha`` on the newest, seeded by the
first sample.  Packets work the same way; the error rate is the EWMA of the
records' error indicator.  ``connection_count`` counts the records seen in
the edge's current aggregation window.

Memory
------
Recent records live in a ``deque(maxlen=capacity)``: on overflow the oldest
record is dropped silently.  This is the backpressure policy; ingestion
never blocks and never fails because the ring is full.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from itertools import islice

import structlog

from kubenetviz.graph.store import TopologyStore
from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.flows import FlowRecord
from kubenetviz.models.topology import Edge, FlowDirection, FlowMetrics, edge_id
from kubenetviz.observability.metrics import (
    flow_buffer_evictions_total,
    flows_recorded_total,
    flows_swept_total,
    records_rejected_total,
)

_log = structlog.get_logger(component="flows.aggregator")

DEFAULT_CAPACITY = 10_000
DEFAULT_WINDOW = timedelta(seconds=60)
DEFAULT_ALPHA = 0.3

_MIN_INTERVAL_SECONDS = 1.0


@dataclass
class _EdgeAccumulator:
    """Running state behind one edge's FlowMetrics."""

    source: str
    target: str
    bytes_rate: float
    packets_rate: float
    error_rate: float
    last_seen: datetime
    window_start: datetime
    window_count: int
    protocol: str
    direction: FlowDirection
    active: bool = True

    def to_metrics(self) -> FlowMetrics:
        return FlowMetrics(
            bytes_per_sec=self.bytes_rate,
            packets_per_sec=self.packets_rate,
            connection_count=self.window_count,
            error_rate=self.error_rate,
            protocol=self.protocol,
            last_seen=self.last_seen,
            is_active=self.active,
            direction=self.direction,
        )


class FlowAggregator:
    """Ingests FlowRecords, maintains edge metrics and a bounded history.

    Args:
        store:    TopologyStore receiving the per-edge FlowMetrics.
        capacity: Maximum number of records kept for ``recent_flows``.
        window:   Aggregation window; edges idle longer than this are
                  marked inactive by ``sweep``.
        alpha:    EWMA weight of the newest rate sample (0 < alpha <= 1).
    """

    def __init__(
        self,
        store: TopologyStore,
        capacity: int = DEFAULT_CAPACITY,
        window: timedelta = DEFAULT_WINDOW,
        alpha: float = DEFAULT_ALPHA,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self._store = store
        self._window = window
        self._alpha = alpha
        self._lock = threading.Lock()
        self._buffer: deque[FlowRecord] = deque(maxlen=capacity)
        self._accumulators: dict[str, _EdgeAccumulator] = {}
        self._store_generation = store.generation
        self._recorded = 0
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen or 0

    @property
    def window(self) -> timedelta:
        return self._window

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record_flow(self, record: FlowRecord) -> FlowMetrics:
        """Fold *record* into its edge's metrics and the recent-flows ring.

        Records for the same edge are applied in the order this method is
        called.  The store update happens under the aggregator lock to keep
        that order; the lock order is always aggregator, then store.

        Raises:
            InvalidRecordError: if the record is malformed.  Nothing is
                recorded in that case.
        """
        try:
            record.validate()
        except InvalidRecordError as exc:
            records_rejected_total.labels(record_type="flow").inc()
            _log.warning("flow_rejected", reason=exc.reason, flow_id=record.flow_id)
            raise

        key = edge_id(record.source_id, record.target_id)
        with self._lock:
            self._follow_store_reset()
            acc = self._accumulators.get(key)
            if acc is None:
                acc = self._new_accumulator(record)
                self._accumulators[key] = acc
            else:
                self._fold(acc, record)
            metrics = acc.to_metrics()
            self._store.update_edge_flow(record.source_id, record.target_id, metrics)

            if len(self._buffer) == self._buffer.maxlen:
                self._evicted += 1
                flow_buffer_evictions_total.inc()
            self._buffer.append(record)
            self._recorded += 1

        flows_recorded_total.inc()
        return metrics

    def _new_accumulator(self, record: FlowRecord) -> _EdgeAccumulator:
        return _EdgeAccumulator(
            source=record.source_id,
            target=record.target_id,
            bytes_rate=record.bytes / _MIN_INTERVAL_SECONDS,
            packets_rate=record.packets / _MIN_INTERVAL_SECONDS,
            error_rate=1.0 if record.error else 0.0,
            last_seen=record.timestamp,
            window_start=record.timestamp,
            window_count=1,
            protocol=record.protocol,
            direction=record.direction,
        )

    def _fold(self, acc: _EdgeAccumulator, record: FlowRecord) -> None:
        elapsed = max((record.timestamp - acc.last_seen).total_seconds(), _MIN_INTERVAL_SECONDS)
        a = self._alpha
        acc.bytes_rate = a * (record.bytes / elapsed) + (1 - a) * acc.bytes_rate
        acc.packets_rate = a * (record.packets / elapsed) + (1 - a) * acc.packets_rate
        acc.error_rate = a * (1.0 if record.error else 0.0) + (1 - a) * acc.error_rate
        if record.timestamp - acc.window_start > self._window:
            acc.window_start = record.timestamp
            acc.window_count = 1
        else:
            acc.window_count += 1
        # Out-of-order records still count, but never move last_seen back.
        acc.last_seen = max(acc.last_seen, record.timestamp)
        acc.protocol = record.protocol
        acc.direction = record.direction
        acc.active = True

    # ------------------------------------------------------------------
    # Inactivity sweep
    # ------------------------------------------------------------------

    def sweep(self, now: datetime | None = None) -> int:
        """Mark edges with no record inside the window inactive.

        Returns the number of edges that changed from active to inactive.
        """
        now = now or datetime.now(tz=UTC)
        cutoff = now - self._window
        swept = 0
        with self._lock:
            self._follow_store_reset()
            gone: list[str] = []
            for key, acc in self._accumulators.items():
                if acc.active and acc.last_seen < cutoff:
                    acc.active = False
                    acc.window_count = 0
                    # A sweep only marks edges; it never brings one back.
                    if self._store.update_edge_flow(acc.source, acc.target, acc.to_metrics(), create=False) is None:
                        gone.append(key)
                        continue
                    swept += 1
            for key in gone:
                del self._accumulators[key]
        if swept:
            flows_swept_total.inc(swept)
            _log.debug("flows_swept", count=swept, cutoff=cutoff.isoformat())
        return swept

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def active_flows(self) -> list[Edge]:
        """Return edges whose flow was observed within the window."""
        return self._store.active_flows()

    def recent_flows(self, limit: int | None = None) -> list[FlowRecord]:
        """Return up to *limit* of the most recent records, newest first."""
        with self._lock:
            if limit is None or limit <= 0:
                limit = len(self._buffer)
            return list(islice(reversed(self._buffer), limit))

    def flows_since(self, cutoff: datetime) -> list[FlowRecord]:
        """Return buffered records with a timestamp after *cutoff*, oldest first."""
        with self._lock:
            return [r for r in self._buffer if r.timestamp > cutoff]

    def metrics_for(self, source: str, target: str) -> FlowMetrics | None:
        with self._lock:
            acc = self._accumulators.get(edge_id(source, target))
            return acc.to_metrics() if acc is not None else None

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "buffered_flows": len(self._buffer),
                "buffer_capacity": self._buffer.maxlen,
                "tracked_edges": len(self._accumulators),
                "active_edges": sum(1 for a in self._accumulators.values() if a.active),
                "recorded_total": self._recorded,
                "evicted_total": self._evicted,
                "window_seconds": self._window.total_seconds(),
            }

    def reset(self) -> None:
        """Drop every buffered record and accumulator, and reset the store.

        Both happen under the aggregator lock, so no record lands between
        the two.
        """
        with self._lock:
            self._buffer.clear()
            self._accumulators.clear()
            self._store.reset()
            self._store_generation = self._store.generation

    def _follow_store_reset(self) -> None:
        # Called with the lock held.  Rates learned before a store reset
        # belong to edges that no longer exist.
        generation = self._store.generation
        if generation != self._store_generation:
            self._accumulators.clear()
            self._store_generation = generation
            _log.info("flow_accumulators_cleared", reason="store_reset")
