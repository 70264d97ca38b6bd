"""
Background experiment monitor.

Every `interval_seconds` the monitor asks the SignificanceEngine to
re-evaluate all running experiments (auto-stop at maxDuration, auto-winner).
Ticks never overlap: if a tick is still running when the next one is due,
the new tick is skipped.

Usage:
    monitor = ExperimentMonitor(engine, settings.experiment_tick_seconds)
    monitor.start()
    ...
    await monitor.stop()
"""

import asyncio
import logging
from typing import Optional

from campaign_engine.services.significance import SignificanceEngine

logger = logging.getLogger(__name__)

DEFAULT_TICK_SECONDS: float = 300.0


class ExperimentMonitor:

    def __init__(self, engine: SignificanceEngine, interval_seconds: float = DEFAULT_TICK_SECONDS):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._engine = engine
        self._interval = interval_seconds
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> Optional[int]:
        """
        Run one evaluation pass.

        Returns the number of experiments evaluated, or None when the pass
        was skipped because the previous one is still in progress or failed.
        """
        if self._tick_lock.locked():
            logger.warning("Experiment tick still in progress; skipping")
            return None
        async with self._tick_lock:
            try:
                evaluated = await self._engine.evaluate_running()
            except Exception:
                logger.exception("Experiment tick failed")
                return None
        logger.debug(f"Experiment tick evaluated {evaluated} running experiments")
        return evaluated

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="experiment-monitor")
        logger.info(f"Experiment monitor started (every {self._interval:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Experiment monitor stopped")
