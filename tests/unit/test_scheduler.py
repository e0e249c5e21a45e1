"""Tests for PeriodicTask."""

from __future__ import annotations

import asyncio

import pytest

from kubenetviz.scheduler import PeriodicTask


class TestPeriodicTask:
    async def test_runs_repeatedly_and_stops(self) -> None:
        calls: list[int] = []
        task = PeriodicTask("counter", 0.01, lambda: calls.append(1))
        task.start()
        await asyncio.sleep(0.1)
        await asyncio.wait_for(task.stop(), timeout=1)
        assert task.running is False
        count = len(calls)
        assert count >= 2
        await asyncio.sleep(0.05)
        assert len(calls) == count

    async def test_failures_do_not_end_the_loop(self) -> None:
        def explode() -> None:
            raise RuntimeError("tick failed")

        task = PeriodicTask("exploding", 0.01, explode)
        task.start()
        await asyncio.sleep(0.08)
        await task.stop()
        assert task.failures >= 2
        assert task.iterations == task.failures

    async def test_stop_interrupts_long_interval(self) -> None:
        calls: list[int] = []
        task = PeriodicTask("slow", 60, lambda: calls.append(1))
        task.start()
        await asyncio.sleep(0)
        await asyncio.wait_for(task.stop(), timeout=1)
        assert calls == []

    async def test_start_is_idempotent(self) -> None:
        task = PeriodicTask("once", 60, lambda: None)
        first = task.start()
        assert task.start() is first
        await task.stop()

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            PeriodicTask("bad", 0, lambda: None)
