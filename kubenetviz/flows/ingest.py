"""Non-blocking hand-off between a flow telemetry producer and the aggregator.

The producer calls ``offer()`` (or ``offer_threadsafe()`` from a foreign
thread); the ingestor's ``run()`` loop drains the queue into the
FlowAggregator.  The queue is bounded and drops its oldest entry when full,
so a slow consumer never stalls the producer.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable

import structlog

from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.models.errors import InvalidRecordError
from kubenetviz.models.flows import FlowRecord
from kubenetviz.observability.metrics import ingest_queue_drops_total

_log = structlog.get_logger(component="flows.ingest")

_DEFAULT_QUEUE_SIZE = 5_000


class FlowIngestor:
    """Drains FlowRecords from a bounded queue into a FlowAggregator.

    Args:
        aggregator: Destination for every accepted record.
        maxsize:    Queue bound; the oldest queued record is discarded when
                    a new one arrives on a full queue.
    """

    def __init__(self, aggregator: FlowAggregator, maxsize: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._aggregator = aggregator
        self._queue: asyncio.Queue[FlowRecord] = asyncio.Queue(maxsize=maxsize)
        self._stop = asyncio.Event()
        self._loop: asyncio.AbstractEventLoop | None = None
        self.accepted = 0
        self.rejected = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, record: FlowRecord) -> None:
        """Queue *record* without blocking, evicting the oldest on overflow.

        Must be called from the event loop thread.
        """
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
            except asyncio.QueueEmpty:
                pass
            else:
                self.dropped += 1
                ingest_queue_drops_total.inc()
        self._queue.put_nowait(record)

    def offer_threadsafe(self, record: FlowRecord) -> None:
        """Queue *record* from a thread other than the event loop's."""
        if self._loop is None:
            raise RuntimeError("ingestor is not running")
        self._loop.call_soon_threadsafe(self.offer, record)

    async def consume(self, source: AsyncIterable[FlowRecord]) -> None:
        """Forward every record from an async producer stream into the queue."""
        async for record in source:
            if self._stop.is_set():
                break
            self.offer(record)

    async def run(self) -> None:
        """Drain the queue until ``stop()`` is called.

        Malformed records are logged by the aggregator and skipped; they
        never end the loop.
        """
        self._loop = asyncio.get_running_loop()
        _log.info("flow_ingestor_started", maxsize=self._queue.maxsize)
        getter: asyncio.Task[FlowRecord] | None = None
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            while not self._stop.is_set():
                getter = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({getter, stopper}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    break
                self._ingest(getter.result())
                getter = None
                self._queue.task_done()
            # Records already queued when the stop arrived are still applied.
            while not self._queue.empty():
                self._ingest(self._queue.get_nowait())
                self._queue.task_done()
        finally:
            if getter is not None and not getter.done():
                getter.cancel()
            if not stopper.done():
                stopper.cancel()
            _log.info("flow_ingestor_stopped", accepted=self.accepted, rejected=self.rejected, dropped=self.dropped)

    def _ingest(self, record: FlowRecord) -> None:
        try:
            self._aggregator.record_flow(record)
        except InvalidRecordError:
            self.rejected += 1
        else:
            self.accepted += 1

    def stop(self) -> None:
        """Signal ``run()`` to finish after the queued records."""
        self._stop.set()
