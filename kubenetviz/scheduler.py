"""Periodic background work: detection ticks and inactivity sweeps."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

_log = structlog.get_logger(component="scheduler")


class PeriodicTask:
    """Runs a synchronous callable every *interval* seconds on the event loop.

    A failing iteration is logged and the loop keeps going.  ``stop()`` sets
    a stop event; the sleep is interrupted and the loop exits without
    starting another iteration.
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.name = name
        self._interval = interval
        self._fn = fn
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.iterations = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._stop.clear()
            self._task = asyncio.create_task(self._run(), name=self.name)
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run(self) -> None:
        _log.info("periodic_task_started", task=self.name, interval=self._interval)
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
                break
            except TimeoutError:
                pass
            try:
                self._fn()
            except Exception as exc:  # noqa: BLE001
                self.failures += 1
                _log.error("periodic_task_failed", task=self.name, error=str(exc))
            self.iterations += 1
        _log.info("periodic_task_stopped", task=self.name, iterations=self.iterations)
