# podpublisher/services/scheduler.py
import asyncio
import os
from typing import Optional

import structlog

from podpublisher.infrastructure.database import get_session
from podpublisher.services.dispatcher import DispatchSummary, PublishDispatcher, default_lease

logger = structlog.get_logger(__name__)

PUBLISH_INTERVAL_SECONDS = int(os.getenv("PUBLISH_INTERVAL_SECONDS", "0"))


async def run_dispatch_tick(email_only: bool = False) -> DispatchSummary:
    async with get_session() as session:
        dispatcher = PublishDispatcher(session, lease=default_lease())
        return await dispatcher.run(email_only=email_only)


class PublishTimer:
    """In-process fallback for the cron endpoints. Disabled when the interval is 0."""

    def __init__(self, interval_seconds: int = PUBLISH_INTERVAL_SECONDS, tick=run_dispatch_tick):
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval_seconds <= 0:
            logger.info("publish_timer_disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("publish_timer_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("publish_timer_stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                summary = await self._tick()
            except Exception as e:
                # keep ticking; the next interval retries the whole batch
                logger.exception("publish_timer_tick_failed", error=str(e))
                continue
            if not summary.skipped:
                logger.info("publish_timer_tick", **summary.as_dict())
