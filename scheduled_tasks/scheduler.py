"""
Scheduled Task Poller
Runs TaskProcessor.process_due_tasks on a fixed interval in a background thread
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Dict, Optional
from config import settings
from .processor import TaskProcessor
import logging

logger = logging.getLogger(__name__)

JOB_ID = "process_due_tasks"


class TaskScheduler:
    """Drives the task processor from an APScheduler interval job"""

    def __init__(self, processor: Optional[TaskProcessor] = None):
        self.processor = processor or TaskProcessor()
        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.is_running = False
        self.last_run: Optional[Dict] = None

    def run_once(self) -> Dict:
        """Process one batch and remember its summary for the health endpoint"""
        start_time = datetime.now()
        summary = self.processor.process_due_tasks()
        duration = (datetime.now() - start_time).total_seconds()

        self.last_run = {
            **summary,
            "started_at": start_time.isoformat(),
            "duration_seconds": duration,
        }
        return summary

    def start(self, interval_seconds: int = settings.POLLING_INTERVAL_SECONDS):
        """
        Start polling every interval_seconds, with a first run right away to
        pick up tasks that came due while the service was down
        """
        if self.is_running:
            logger.warning("[Scheduler] Already running")
            return

        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=JOB_ID,
            name=f"Process due scheduled tasks (every {interval_seconds}s)",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping polls in this process
            coalesce=True,
            next_run_time=datetime.now(self.scheduler.timezone),
        )

        self.scheduler.start()
        self.is_running = True

        logger.info(f"[Scheduler] Started - polling every {interval_seconds} seconds (instance: {self.processor.instance_id})")

    def stop(self):
        if not self.is_running:
            logger.warning("[Scheduler] Not running")
            return

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("[Scheduler] Stopped")

    def get_status(self) -> Dict:
        if not self.is_running:
            return {
                'running': False,
                'message': 'Scheduler is not running',
                'last_run': self.last_run,
            }

        job = self.scheduler.get_job(JOB_ID)
        return {
            'running': True,
            'next_run_time': job.next_run_time.isoformat() if job and job.next_run_time else None,
            'trigger': str(job.trigger) if job else None,
            'last_run': self.last_run,
        }

    def trigger_manual_run(self) -> Dict:
        """Process a batch now, outside the interval"""
        logger.info("[Manual] Triggering immediate task processing")
        return self.run_once()


# Global scheduler instance
task_scheduler = TaskScheduler()
