from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a blocking callable every ``interval`` seconds on a worker thread.

    The loop is owned by this object: ``start()`` schedules it on the running
    event loop and ``stop()`` cancels it and waits for the cancellation.
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], object]) -> None:
        self.name = name
        self.interval = interval
        self._fn = fn
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info("[TASK] %s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[TASK] %s stopped", self.name)

    async def run_once(self) -> None:
        try:
            await asyncio.to_thread(self._fn)
        except Exception as e:
            # a failed tick must not kill the loop; next tick retries
            logger.error("[TASK] %s failed: %r", self.name, e)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
