"""
Tests for PeriodicSweeper (src/services/maintenance.py).
"""

from __future__ import annotations

import asyncio

import pytest

from src.services.maintenance import PeriodicSweeper


class CountingSweep:
    def __init__(self, fail_first: bool = False) -> None:
        self.calls = 0
        self.fail_first = fail_first

    def __call__(self) -> int:
        self.calls += 1
        if self.fail_first and self.calls == 1:
            raise RuntimeError("sweep exploded")
        return 1


class TestRunOnce:
    def test_counts_runs(self):
        sweep = CountingSweep()
        sweeper = PeriodicSweeper("test", 60.0, sweep)
        assert sweeper.run_once() == 1
        assert sweeper.runs == 1
        assert sweep.calls == 1

    def test_errors_propagate_from_run_once(self):
        sweeper = PeriodicSweeper("test", 60.0, CountingSweep(fail_first=True))
        with pytest.raises(RuntimeError):
            sweeper.run_once()


class TestBackgroundLoop:
    @pytest.mark.asyncio
    async def test_sweeps_on_interval(self):
        sweep = CountingSweep()
        sweeper = PeriodicSweeper("fast", 0.01, sweep)
        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert not sweeper.running
        assert sweep.calls >= 2

    @pytest.mark.asyncio
    async def test_failed_sweep_does_not_stop_loop(self):
        sweep = CountingSweep(fail_first=True)
        sweeper = PeriodicSweeper("flaky", 0.01, sweep)
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()
        assert sweep.calls >= 2

    @pytest.mark.asyncio
    async def test_stop_does_not_wait_for_interval(self):
        sweep = CountingSweep()
        sweeper = PeriodicSweeper("slow", 3600.0, sweep)
        await sweeper.start()
        await asyncio.wait_for(sweeper.stop(), timeout=1.0)
        assert sweep.calls == 0

    @pytest.mark.asyncio
    async def test_start_twice_and_stop_twice(self):
        sweeper = PeriodicSweeper("idempotent", 3600.0, CountingSweep())
        await sweeper.start()
        await sweeper.start()
        await sweeper.stop()
        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_restart(self):
        sweep = CountingSweep()
        sweeper = PeriodicSweeper("restart", 0.01, sweep)
        await sweeper.start()
        await sweeper.stop()
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert sweep.calls >= 1
