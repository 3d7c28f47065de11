"""
Background maintenance sweeps.

Runs the rate limiter and abuse detector sweeps on their own intervals,
independently of request handling. Each sweep only takes short per-entry lock
acquisitions, so request-path analysis is never held up for a full pass.

Usage:
    sweeper = PeriodicSweeper("rate_limiter", 60.0, limiter.sweep)
    await sweeper.start()
    ...
    await sweeper.stop()
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

logger = structlog.get_logger(__name__)


class PeriodicSweeper:
    """
    Calls ``sweep_fn`` every ``interval_seconds`` on a background task.

    A failing sweep is logged and the loop keeps going; ``stop()`` wakes the
    loop through an event instead of waiting out the interval.
    """

    def __init__(self, name: str, interval_seconds: float, sweep_fn: Callable[[], int]) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._sweep_fn = sweep_fn
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        """Run one sweep now. Returns the number of evicted entries."""
        removed = self._sweep_fn()
        self.runs += 1
        return removed

    async def start(self) -> None:
        if self._task is not None:
            logger.debug("sweeper_already_running", sweeper=self.name)
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"sweeper:{self.name}")
        logger.info("sweeper_started", sweeper=self.name, interval=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except TimeoutError:
            logger.warning("sweeper_stop_timeout", sweeper=self.name)
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("sweeper_stopped", sweeper=self.name, runs=self.runs)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                removed = self.run_once()
            except Exception:
                logger.exception("sweep_failed", sweeper=self.name)
                continue
            if removed:
                logger.debug("sweep_completed", sweeper=self.name, removed=removed)


__all__ = ["PeriodicSweeper"]
