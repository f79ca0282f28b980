# conglomerate/services/scheduler.py
import asyncio
import logging
from typing import Optional

from conglomerate.services.accrual import AccrualEngine

logger = logging.getLogger(__name__)


class AccrualScheduler:
    """Runs accrual ticks on a fixed interval in a background task."""

    def __init__(self, engine: AccrualEngine, interval: float = 60):
        self.engine = engine
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self):
        while True:
            try:
                await asyncio.to_thread(self.engine.run_tick)
            except Exception:
                logger.exception("Accrual tick failed")
            await asyncio.sleep(self.interval)

    def start(self):
        if self.running:
            return
        logger.info("Starting accrual scheduler (every %ss)", self.interval)
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Accrual scheduler stopped")
