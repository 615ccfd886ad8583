"""Background scheduler for periodic mirror refresh"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from issuemirror.config import settings
from issuemirror.models.base import SessionLocal
from issuemirror.services.mirror_service import MirrorService

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "mirror_refresh"


class MirrorRefreshScheduler:
    """Scheduler for periodic mirror status refresh"""

    def __init__(self, interval_minutes: int = None, session_factory=SessionLocal):
        self.scheduler = BackgroundScheduler()
        self.interval_minutes = (
            settings.mirror_refresh_interval_minutes if interval_minutes is None else interval_minutes
        )
        self.session_factory = session_factory

    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("Mirror refresh scheduler started")
        self.schedule_refresh(self.interval_minutes)

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Mirror refresh scheduler stopped")

    def schedule_refresh(self, interval_minutes: int):
        """(Re)schedule the refresh job; a non-positive interval disables it"""
        existing = self.scheduler.get_job(REFRESH_JOB_ID)
        if existing is not None:
            self.scheduler.remove_job(REFRESH_JOB_ID)

        if interval_minutes <= 0:
            logger.info("Mirror refresh disabled")
            return

        self.scheduler.add_job(
            func=self._refresh_job,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=REFRESH_JOB_ID,
            replace_existing=True,
        )
        self.interval_minutes = interval_minutes
        logger.info(f"Scheduled mirror refresh every {interval_minutes} minutes")

    def _refresh_job(self):
        """Job function to refresh all published issues"""
        db = self.session_factory()
        try:
            logger.info("Running scheduled mirror refresh")
            result = MirrorService(db).refresh_all()
            logger.info(f"Scheduled mirror refresh completed: {result}")
        except Exception as e:
            logger.error(f"Scheduled mirror refresh failed: {e}")
        finally:
            db.close()


# Global scheduler instance
scheduler = MirrorRefreshScheduler()
