"""Recurring trigger for tracking runs."""

from __future__ import annotations

import asyncio
from datetime import datetime
import logging
import signal
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from flatwatch.db.errors import PersistenceUnavailableError


logger = logging.getLogger("scheduler")

JOB_ID = "tracker::run"
STARTUP_JOB_ID = "tracker::startup"


class TrackerScheduler:
    """Run a coroutine on a fixed trigger, never two at once.

    A PersistenceUnavailableError from a run stops the loop with exit code 1;
    any other failure is logged and the next tick proceeds.
    """

    def __init__(
        self,
        run: Callable[[], Awaitable[object]],
        timezone: str = "Asia/Jerusalem",
        interval_min: int = 15,
        cron: str | None = None,
    ) -> None:
        self.run = run
        self.timezone = ZoneInfo(timezone)
        self.interval_min = interval_min
        self.cron = cron
        self.scheduler: AsyncIOScheduler | None = None
        self.in_flight = False
        self.exit_code = 0
        self.runs = 0
        self._stop: asyncio.Event | None = None

    def build_trigger(self):
        if self.cron:
            return CronTrigger.from_crontab(self.cron, timezone=self.timezone)
        return IntervalTrigger(minutes=self.interval_min, timezone=self.timezone)

    async def tick(self) -> None:
        if self.in_flight:
            logger.warning("Previous run still in flight, skipping tick")
            return
        self.in_flight = True
        self.runs += 1
        try:
            logger.info("Running scheduled check: run=%s", self.runs)
            await self.run()
        except PersistenceUnavailableError as exc:
            logger.error("FATAL: stopping scheduler, durable store unavailable: %s", exc)
            self.stop(exit_code=1)
        except Exception:
            logger.exception("Scheduled run failed, waiting for next tick")
        finally:
            self.in_flight = False

    def stop(self, exit_code: int = 0) -> None:
        self.exit_code = max(self.exit_code, exit_code)
        if self._stop is not None:
            self._stop.set()

    async def serve(self) -> int:
        self._stop = asyncio.Event()
        self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        self.scheduler.add_job(
            self.tick,
            trigger=self.build_trigger(),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.tick,
            trigger=DateTrigger(run_date=datetime.now(self.timezone), timezone=self.timezone),
            id=STARTUP_JOB_ID,
            max_instances=1,
            misfire_grace_time=None,
        )
        self._install_signal_handlers()
        self.scheduler.start()
        job = self.scheduler.get_job(JOB_ID)
        logger.info(
            "Scheduler started: trigger=%s timezone=%s next_run=%s",
            job.trigger if job else None,
            self.timezone.key,
            job.next_run_time if job else None,
        )
        try:
            await self._stop.wait()
        finally:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped: exit_code=%s runs=%s", self.exit_code, self.runs)
        return self.exit_code

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("Signal handlers unavailable for %s", sig)
