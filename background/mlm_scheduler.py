# background/mlm_scheduler.py
"""
Daily cycle scheduler - runs expiry, matching and ROI once per day.
Uses APScheduler for task scheduling.
"""
import logging
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import Config
from core.db import get_session
from mlm_system.config.packages import EngineSettings
from mlm_system.errors import RunInProgressError
from mlm_system.services.daily_cycle import DailyCycleService, RunSummary

logger = logging.getLogger(__name__)


class DailyCycleScheduler:
    """
    Background scheduler for the daily cycle.
    One cron job; APScheduler never runs two instances of it at once.
    """

    def __init__(self):
        self.isRunning = False

        self.timezone = Config.get(Config.SCHEDULER_TIMEZONE, "UTC")
        self.hour = int(Config.get(Config.DAILY_RUN_HOUR, 0))
        self.minute = int(Config.get(Config.DAILY_RUN_MINUTE, 0))

        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 3600  # 1 hour grace period
            }
        )

        # Statistics
        self.stats = {
            "runsExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "lastSummary": None
        }

    async def start(self):
        """Start scheduler with the daily cycle job."""
        if self.isRunning:
            logger.warning("Daily cycle scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting daily cycle scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        self.scheduler.add_job(
            func=self._safe_daily_cycle_wrapper,
            trigger=CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id='daily_cycle',
            name=f'Daily Cycle ({self.hour:02d}:{self.minute:02d} {self.timezone})',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Daily Cycle ({self.hour:02d}:{self.minute:02d} {self.timezone})")

        self.scheduler.start()

        logger.info(f"✅ Daily cycle scheduler started, active jobs: {len(self.scheduler.get_jobs())}")

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping daily cycle scheduler...")
        self.isRunning = False

        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ Daily cycle scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPER (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_daily_cycle_wrapper(self):
        """Safe wrapper for the daily cycle."""
        try:
            await self.executeDailyCycle()
        except RunInProgressError as e:
            logger.warning(f"Daily cycle not started: {e}")
        except Exception as e:
            logger.error(f"Error in daily cycle job: {e}", exc_info=True)
            self.stats["errors"] += 1
            self.stats["lastError"] = str(e)

    # ═══════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════

    def today(self) -> date:
        """Calendar day in the scheduler timezone."""
        return datetime.now(ZoneInfo(self.timezone)).date()

    async def executeDailyCycle(self, runDate: Optional[date] = None, roiOnly: bool = False) -> RunSummary:
        """
        Run one daily cycle in a fresh session.

        Args:
            runDate: Day to process (defaults to today in the scheduler timezone)
            roiOnly: Only expiry and ROI accrual

        Returns:
            RunSummary of the run
        """
        runDate = runDate or self.today()
        logger.info(f"Executing daily cycle for {runDate}{' (ROI only)' if roiOnly else ''}")

        session = get_session()
        try:
            service = DailyCycleService(session, EngineSettings.from_config())
            if roiOnly:
                summary = await service.runRoiOnly(runDate)
            else:
                summary = await service.runDailyCycle(runDate)
        finally:
            session.close()

        self.stats["runsExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats["lastSummary"] = summary.to_dict()

        return summary

    async def triggerNow(self, runDate: Optional[date] = None, roiOnly: bool = False) -> RunSummary:
        """Manual trigger, outside the cron schedule."""
        logger.info("Daily cycle triggered manually")
        return await self.executeDailyCycle(runDate, roiOnly)

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        if self.scheduler.running:
            for job in self.scheduler.get_jobs():
                jobs_info.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None
                })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "timezone": self.timezone,
            "today": self.today().isoformat(),
            "stats": self.stats,
            "jobs": jobs_info
        }


# Global scheduler instance (created in engine.py)
scheduler: Optional[DailyCycleScheduler] = None
