"""
Periodic trigger: interval + jitter + skip-if-busy.

A tick that arrives while the previous invocation is still running is
skipped, not queued. Stopping never cancels an invocation in flight.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import Any

from quote_pipeline.infrastructure.observability import get_pipeline_logger


class PeriodicTrigger:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[Any]],
        jitter_seconds: float = 0.0,
        skip_if_busy: bool = True,
        run_on_start: bool = False,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self.jitter_seconds = jitter_seconds
        self.skip_if_busy = skip_if_busy
        self.run_on_start = run_on_start

        self.fired = 0
        self.skipped = 0
        self._loop_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._stopping = asyncio.Event()
        self.logger = get_pipeline_logger("trigger", trigger=name)

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return any(not t.done() for t in self._inflight)

    def next_delay(self) -> float:
        if self.jitter_seconds <= 0:
            return self.interval_seconds
        return self.interval_seconds + random.uniform(0, self.jitter_seconds)

    def tick(self) -> bool:
        """Fire the action in the background unless busy. Returns True if fired."""
        if self.skip_if_busy and self.busy:
            self.skipped += 1
            self.logger.info("trigger_skipped_busy", skipped=self.skipped)
            return False

        task = asyncio.create_task(self._invoke(), name=f"trigger:{self.name}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        self.fired += 1
        return True

    async def _invoke(self) -> None:
        try:
            await self.action()
        except Exception:
            self.logger.exception("trigger_action_failed")

    async def _run(self) -> None:
        if self.run_on_start:
            self.tick()
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.next_delay())
            except TimeoutError:
                self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"trigger-loop:{self.name}")
        self.logger.info("trigger_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop ticking and wait for any invocation in flight to finish."""
        self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        self.logger.info("trigger_stopped", fired=self.fired, skipped=self.skipped)
