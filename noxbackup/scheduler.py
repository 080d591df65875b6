"""
APScheduler configuration and cron scheduling for backup configurations.

Each configuration with a schedule gets one cron job whose callback runs the
backup. ``BackupScheduler.schedule`` returns a handle whose ``stop`` removes
the job.
"""

import logging
from typing import Callable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def parse_cron(expression: str, timezone: str = 'UTC') -> CronTrigger:
    """
    Parse a five-field cron expression.

    Raises:
        ValueError: If the expression is malformed
    """
    if not isinstance(expression, str) or len(expression.split()) != 5:
        raise ValueError(f"Cron expression must have five fields: {expression!r}")
    return CronTrigger.from_crontab(expression, timezone=timezone)


class ScheduledJob:
    """Cancellable handle for one scheduled job."""

    def __init__(self, backend, job_id: str, expression: str):
        self._backend = backend
        self.job_id = job_id
        self.expression = expression
        self.stopped = False

    def stop(self):
        if self.stopped:
            return
        try:
            self._backend.remove_job(self.job_id)
        except JobLookupError:
            pass
        self.stopped = True
        logger.info(f"Removed scheduled job: {self.job_id}")


class BackupScheduler:
    """
    Wraps an APScheduler BackgroundScheduler.

    Overlapping runs of the same configuration are rejected by the engine, not
    here; ``max_instances=1`` only keeps a slow tick from stacking up.
    """

    def __init__(self, timezone: str = 'UTC', max_workers: int = 3):
        self.timezone = timezone

        executors = {
            'default': ThreadPoolExecutor(max_workers=max_workers)
        }

        job_defaults = {
            'coalesce': True,  # Combine multiple pending instances into one
            'max_instances': 1,
            'misfire_grace_time': 300  # 5 minutes grace period for misfires
        }

        self._scheduler = BackgroundScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone=timezone
        )

    def schedule(self, job_id: str, expression: str, callback: Callable[[], None],
                 name: Optional[str] = None) -> ScheduledJob:
        """
        Install a cron job, replacing any job with the same id.

        Args:
            job_id: Scheduler job id
            expression: Five-field cron expression
            callback: Zero-argument callable invoked on every tick
            name: Display name

        Returns:
            ScheduledJob handle

        Raises:
            ValueError: If the expression is malformed
        """
        trigger = parse_cron(expression, self.timezone)

        self._scheduler.add_job(
            func=callback,
            trigger=trigger,
            id=job_id,
            name=name or job_id,
            replace_existing=True
        )

        logger.info(f"Scheduled job: {job_id} ({expression})")
        return ScheduledJob(self._scheduler, job_id, expression)

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("APScheduler started")

    def shutdown(self):
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("APScheduler stopped")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def get_jobs(self) -> list:
        """
        Get list of all scheduled jobs.

        Returns:
            List of dicts with job information
        """
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, 'next_run_time', None)
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run': next_run.isoformat() if next_run else None,
                'trigger': str(job.trigger)
            })
        return jobs


def init_scheduler(app) -> BackupScheduler:
    """
    Initialize the process-wide scheduler.

    Args:
        app: Flask app instance
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    scheduler = BackupScheduler(timezone=app.config.get('SCHEDULER_TIMEZONE', 'UTC'))
    return scheduler


def start_scheduler():
    """
    Start the scheduler.

    Raises:
        RuntimeError: If init_scheduler() has not been called
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    scheduler.start()

    jobs = scheduler.get_jobs()
    if jobs:
        logger.info(f"Loaded {len(jobs)} scheduled jobs:")
        for job in jobs:
            logger.info(f"  - {job['id']}: {job['name']} (next run: {job['next_run'] or 'N/A'})")
    else:
        logger.info("No scheduled jobs loaded")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler is not None:
        scheduler.shutdown()


def get_scheduled_jobs() -> list:
    if scheduler is None:
        return []
    return scheduler.get_jobs()
