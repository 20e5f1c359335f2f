# pricewatch/services/scheduler.py

"""Background scheduler that fires price-check sweeps at fixed times."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from pricewatch.config.settings import Settings
from pricewatch.models.plan import CheckInterval
from pricewatch.models.run_stats import RunStatistics
from pricewatch.services.sweep_coordinator import (
    PriceCheckCoordinator,
    SweepAlreadyRunningError,
)
from pricewatch.storage.tracker_db import TrackerDB

logger = logging.getLogger("pricewatch.scheduler")


def next_run_after(
    now: datetime,
    weekday: int | None = None,
    hour: int | None = None,
    minute: int | None = None,
) -> datetime:
    """Next fire time strictly after ``now``, in ``now``'s timezone.

    With ``weekday`` set (``datetime.weekday()`` numbering) only that
    day of the week qualifies.
    """
    at_hour = Settings.SCHEDULE_HOUR if hour is None else hour
    at_minute = Settings.SCHEDULE_MINUTE if minute is None else minute
    candidate = now.replace(
        hour=at_hour, minute=at_minute, second=0, microsecond=0,
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    if weekday is not None:
        while candidate.weekday() != weekday:
            candidate += timedelta(days=1)
    return candidate


def seconds_until(fire_at: datetime, now: datetime) -> float:
    """Real seconds between two aware datetimes.

    Subtracting datetimes that share a tzinfo is wall-clock arithmetic
    and ignores DST offset changes, so the gap is taken in UTC.
    """
    return max(fire_at.timestamp() - now.timestamp(), 0.0)


class PriceCheckScheduler:
    """Runs the DAILY and WEEKLY sweeps as background tasks.

    DAILY fires every day at the configured time; WEEKLY fires on the
    anchor weekday at the same time.  Sweeps are serialised, so when
    both fire together the second waits for the first.  The history
    retention trim runs after every sweep.
    """

    def __init__(
        self,
        coordinator: PriceCheckCoordinator,
        store: TrackerDB,
        tz: str | None = None,
        anchor_day: int | None = None,
        keep_count: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self._tz = ZoneInfo(tz or Settings.TIMEZONE)
        self._anchor_day = (
            Settings.WEEKLY_ANCHOR_DAY if anchor_day is None else anchor_day
        )
        self._keep_count = keep_count or Settings.HISTORY_KEEP_COUNT
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._tasks: list[asyncio.Task[None]] = []
        self._sweep_lock = asyncio.Lock()
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is currently running."""
        return self._running

    def start(self) -> None:
        """Start both schedule loops."""
        if self._running:
            logger.warning("Scheduler is already running")
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._run_loop(CheckInterval.DAILY, None),
                name="pricewatch-daily",
            ),
            asyncio.create_task(
                self._run_loop(CheckInterval.WEEKLY, self._anchor_day),
                name="pricewatch-weekly",
            ),
        ]
        logger.info(
            "Scheduler started: DAILY at %02d:%02d, WEEKLY on day %d "
            "(%s)",
            Settings.SCHEDULE_HOUR,
            Settings.SCHEDULE_MINUTE,
            self._anchor_day,
            self._tz.key,
        )

    def stop(self) -> None:
        """Cancel the schedule loops."""
        if not self._running:
            return
        self._running = False
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        logger.info("Scheduler stopped")

    async def _run_loop(
        self, interval: CheckInterval, weekday: int | None,
    ) -> None:
        """Sleep until the next fire time, sweep, repeat."""
        while self._running:
            now = self._clock()
            fire_at = next_run_after(now, weekday)
            logger.info(
                "Next %s sweep at %s",
                interval.value,
                fire_at.isoformat(),
            )
            await asyncio.sleep(seconds_until(fire_at, now))
            await self.run_once(interval)

    async def run_once(
        self, interval: CheckInterval,
    ) -> RunStatistics | None:
        """Run one sweep followed by the history trim.

        Errors are logged, never raised, so the loop keeps going.
        """
        stats: RunStatistics | None = None
        async with self._sweep_lock:
            try:
                stats = await self.coordinator.run_sweep(interval)
            except SweepAlreadyRunningError as exc:
                logger.warning(
                    "Skipping %s sweep: %s", interval.value, exc,
                )
            except Exception as exc:
                logger.error(
                    "%s sweep failed: %s",
                    interval.value,
                    exc,
                    exc_info=True,
                )

            try:
                await asyncio.to_thread(
                    self.store.cleanup_price_history, self._keep_count,
                )
            except Exception as exc:
                logger.error(
                    "Price history cleanup failed: %s",
                    exc,
                    exc_info=True,
                )
        return stats
