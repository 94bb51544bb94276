"""Background scheduler for the daily sweep"""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from deduper.services.reconciler import ReconciliationEngine

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "daily_sweep"


class SweepScheduler:
    """Runs a full sweep every day at UTC midnight.

    The sweep catches up on anything a webhook delivery missed.
    """

    def __init__(self, engine: ReconciliationEngine, run_on_start: bool = True):
        self.engine = engine
        self.run_on_start = run_on_start
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)

    def start(self):
        """Start the scheduler"""
        # Passing next_run_time=None would add the job paused.
        extra = {"next_run_time": datetime.now(timezone.utc)} if self.run_on_start else {}
        self.scheduler.add_job(
            func=self._sweep_job,
            trigger=CronTrigger(hour=0, minute=0, timezone=timezone.utc),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **extra,
        )
        self.scheduler.start()
        logger.info("Sweep scheduler started")

    def stop(self):
        """Stop the scheduler"""
        self.scheduler.shutdown()
        logger.info("Sweep scheduler stopped")

    def _sweep_job(self):
        """Job function for one sweep pass"""
        try:
            logger.info("Running scheduled sweep")
            result = self.engine.run_sweep()
            logger.info(f"Scheduled sweep completed: {result}")
        except Exception as e:
            logger.error(f"Scheduled sweep failed: {e}")
