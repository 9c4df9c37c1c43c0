from __future__ import annotations

import asyncio
from collections.abc import Callable
import contextlib
import random
from typing import Any

from loguru import logger


class PollScheduler:
    """Runs a cycle now, then again ``interval + jitter`` after each completion.

    The timer is re-armed only after the previous cycle returns, so cycles
    never overlap. Cycle failures are logged and do not stop the schedule.
    """

    def __init__(
        self,
        run_cycle: Callable[[], Any],
        *,
        interval_seconds: float,
        max_jitter_seconds: float = 5.0,
        rng: random.Random | None = None,
    ) -> None:
        self._run_cycle = run_cycle
        self._interval = interval_seconds
        self._max_jitter = max_jitter_seconds
        self._rng = rng or random.Random()
        self._stop_event: asyncio.Event | None = None
        self._stopped = False
        self._ticks = 0

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def stopped(self) -> bool:
        return self._stopped

    def next_delay(self) -> float:
        return self._interval + self._rng.uniform(0, self._max_jitter)

    def stop(self) -> None:
        """Prevent further cycles; an in-flight cycle is left to finish."""
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        if self._stopped:
            self._stop_event.set()
        logger.bind(interval=self._interval, jitter=self._max_jitter).info(
            "Polling every {}s (+ up to {}s jitter)", self._interval, self._max_jitter
        )

        while not self._stopped:
            await self._tick()
            if self._stopped:
                break
            delay = self.next_delay()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

        logger.info("Polling stopped after {} cycles", self._ticks)

    async def _tick(self) -> None:
        self._ticks += 1
        try:
            await asyncio.to_thread(self._run_cycle)
        except Exception:
            logger.exception("Ingestion cycle failed")
