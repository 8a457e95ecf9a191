"""Background scheduler for the daily archive job and the retention sweep.

Runs inside the API process as asyncio tasks. The archive job fires once a
day at a fixed UTC wall-clock time and compacts the previous day; a second
loop purges expired raw activities at a fixed interval. A failed run is
logged and the loop waits for the next trigger.
"""

import asyncio
from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from harmony.models.base import as_utc, utcnow
from harmony.services.activity_service import ActivityService
from harmony.services.archive_service import ArchiveCompactor, CompactionResult

logger = structlog.get_logger()


def next_run_at(now: datetime, hour: int, minute: int) -> datetime:
    """Next occurrence of hour:minute UTC strictly after ``now``."""
    now = as_utc(now)
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


class ArchiveScheduler:
    """Daily compaction plus periodic retention sweep."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hour: int = 0,
        minute: int = 30,
        sweep_interval: float = 3600.0,
    ):
        self.session_factory = session_factory
        self.hour = hour
        self.minute = minute
        self.sweep_interval = sweep_interval
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the archive and sweep loops."""
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._archive_loop(), name="archive_scheduler"),
            asyncio.create_task(self._sweep_loop(), name="retention_sweep"),
        ]
        logger.info(
            "Archive scheduler started",
            schedule=f"{self.hour:02d}:{self.minute:02d} UTC",
            sweep_interval=self.sweep_interval,
        )

    async def stop(self) -> None:
        """Stop both loops."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        logger.info("Archive scheduler stopped")

    async def run_now(self) -> CompactionResult:
        """Run the daily job immediately. Errors propagate to the caller."""
        async with self.session_factory() as db:
            return await ArchiveCompactor(db).compact_yesterday()

    async def sweep_now(self) -> int:
        async with self.session_factory() as db:
            return await ActivityService(db).purge_expired()

    async def _archive_loop(self) -> None:
        while self._running:
            try:
                run_at = next_run_at(utcnow(), self.hour, self.minute)
                await asyncio.sleep((run_at - utcnow()).total_seconds())
                await self._run_daily_job()
            except asyncio.CancelledError:
                break

    async def _run_daily_job(self) -> None:
        try:
            result = await self.run_now()
            logger.info("Daily archive job completed", **result.to_dict())
        except Exception:
            # No retry; the next scheduled run is unaffected
            logger.exception("Daily archive job failed")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep_now()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Retention sweep failed")
            try:
                await asyncio.sleep(self.sweep_interval)
            except asyncio.CancelledError:
                break
