"""
Background refresh loops for a mounted SessionEngine.

Independent asyncio tasks, each sleeping its own interval:

- status           every STATUS_POLL_SECONDS
- today's duration every DURATION_POLL_SECONDS
- local screenshot count every LOCAL_COUNT_POLL_SECONDS
- pending time log upload every sync interval (SYNC_INTERVAL_MS by default)

A failed tick is logged and the loop carries on. stop() cancels them all.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

import config

logger = logging.getLogger(__name__)


class StatusPoller:
    """Runs the engine's periodic reads until stopped."""

    def __init__(self, engine,
                 status_interval: float = config.STATUS_POLL_SECONDS,
                 duration_interval: float = config.DURATION_POLL_SECONDS,
                 local_count_interval: float = config.LOCAL_COUNT_POLL_SECONDS,
                 sync_interval: float = config.SYNC_INTERVAL_MS / 1000):
        self.engine = engine
        self.status_interval = status_interval
        self.duration_interval = duration_interval
        self.local_count_interval = local_count_interval
        self.sync_interval = sync_interval
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Spawn the loops. Must be called from a running event loop."""
        if self._tasks:
            return
        loops = [
            ("status", self.status_interval, self.engine.load_status),
            ("duration", self.duration_interval, self.engine.load_today_total_duration),
            ("local-count", self.local_count_interval, self.engine.refresh_local_count),
            ("time-log-sync", self.sync_interval, self.engine.sync_time_logs),
        ]
        self._tasks = [
            asyncio.create_task(self._every(name, interval, tick), name=f"poll-{name}")
            for name, interval, tick in loops
        ]
        logger.debug("Pollers started")

    async def stop(self) -> None:
        """Cancel the loops and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Pollers stopped")

    async def _every(self, name: str, interval: float,
                     tick: Callable[[], Awaitable[object]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await tick()
            except Exception as e:
                logger.warning(f"{name} poll failed: {e}")
