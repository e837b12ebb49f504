"""
Periodic re-polling aligned to round clock boundaries.

With a 30 minute interval ticks land on :00 and :30 UTC regardless of when
the process started, so restarts do not drift the polling grid.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from mirror_indexer.indexer.backfill import BackfillWalker, WalkStats
from mirror_indexer.indexer.config import IndexerConfig

logger = structlog.get_logger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_aligned_wake(now: datetime, interval: timedelta) -> datetime:
    """
    Return the first multiple of `interval` since the UNIX epoch after `now`.

    A `now` exactly on a boundary yields the following boundary, so a tick
    never fires twice for the same slot. Naive datetimes are taken as UTC.
    """
    if interval <= timedelta(0):
        raise ValueError("interval must be positive")
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    elapsed_slots = (now - _EPOCH) // interval
    return _EPOCH + (elapsed_slots + 1) * interval


class Scheduler:
    """
    Re-runs the walker's latest mode for one instance forever.

    Usage:
        scheduler = Scheduler(walker, instance.poll_interval)
        task = asyncio.create_task(scheduler.run())
    """

    def __init__(
        self,
        walker: BackfillWalker,
        interval: timedelta,
        config: IndexerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._walker = walker
        self._interval = interval
        self._config = config or IndexerConfig()
        self._clock = clock or utc_now
        self._sleep = sleep or asyncio.sleep
        self._running = False
        self.ticks = 0

    @property
    def instance_id(self) -> str:
        return self._walker.instance_id

    def is_running(self) -> bool:
        return self._running

    async def tick(self) -> WalkStats | None:
        """Run one latest-mode walk; errors are logged and swallowed."""
        self.ticks += 1
        try:
            return await self._walker.latest()
        except Exception as e:
            logger.error(
                "Scheduled walk failed",
                instance_id=self.instance_id,
                error=str(e),
            )
            return None

    async def run(self) -> None:
        """Tick, then sleep until the next aligned boundary, until stopped."""
        self._running = True
        logger.info(
            "Scheduler started",
            instance_id=self.instance_id,
            interval_seconds=self._interval.total_seconds(),
        )

        try:
            if not self._config.schedule_on_start:
                await self._sleep_until_next_boundary()

            while self._running:
                await self.tick()
                await self._sleep_until_next_boundary()
        except asyncio.CancelledError:
            logger.info("Scheduler cancelled", instance_id=self.instance_id)
            raise
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False

    async def _sleep_until_next_boundary(self) -> None:
        now = self._clock()
        wake_at = next_aligned_wake(now, self._interval)
        logger.info(
            "Next scheduled walk",
            instance_id=self.instance_id,
            wake_at=wake_at.isoformat(),
        )
        await self._sleep((wake_at - now).total_seconds())
