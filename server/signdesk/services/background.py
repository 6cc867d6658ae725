from __future__ import annotations

import asyncio
from typing import Any

from signdesk.core.logging import get_logger

logger = get_logger(__name__)


class PeriodicJob:
    """
    Runs ``run_once`` every ``interval_seconds`` on a background asyncio task.

    A failed run is logged and the loop carries on with the next one.
    """

    name = "periodic_job"

    def __init__(self, *, interval_seconds: float):
        self.interval_seconds = interval_seconds
        self._task: asyncio.Task | None = None

    async def run_once(self) -> Any:
        raise NotImplementedError

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(f"{self.name}.failed", error=str(exc), exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name=f"signdesk-{self.name}")
            logger.info(f"{self.name}.started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"{self.name}.stopped")
