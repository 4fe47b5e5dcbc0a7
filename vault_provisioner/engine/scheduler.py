"""
Retention Scheduler for the Vault Provisioner.

Runs the retention cleanup on a daily cron and posts a weekly dry-run
report to Slack. Both jobs share one RetentionJob, so a cleanup and a
report never overlap.
"""

import logging
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..config import SchedulerSettings
from ..connectors.slack_connector import SlackNotifier
from ..errors import VaultProvisionerError
from ..models import RetentionSummary
from .retention import RetentionJob

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "retention:cleanup"
REPORT_JOB_ID = "retention:report"


class RetentionScheduler:
    """APScheduler-based cron scheduler for the retention jobs."""

    def __init__(self, job: RetentionJob, settings: Optional[SchedulerSettings] = None,
                 notifier: Optional[SlackNotifier] = None):
        self.job = job
        self.settings = settings or SchedulerSettings()
        self.notifier = notifier
        self.scheduler = BackgroundScheduler(timezone=self.settings.timezone)
        self._registered = False

    def start(self):
        """Register the cron jobs and start the scheduler."""
        if not self._registered:
            self._register(CLEANUP_JOB_ID, "retention cleanup", self.run_cleanup, self.settings.cleanup_cron)
            self._register(REPORT_JOB_ID, "retention report", self.run_report, self.settings.report_cron)
            self._registered = True

        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Retention scheduler started")

    def _register(self, job_id: str, name: str, func, cron_expr: str):
        try:
            trigger = CronTrigger.from_crontab(cron_expr, timezone=self.settings.timezone)
        except ValueError as e:
            logger.error(f"Invalid cron expression for {name}: {cron_expr} ({e})")
            raise

        self.scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        logger.info(f"Scheduled {name} with cron '{cron_expr}' ({self.settings.timezone})")

    def run_cleanup(self) -> RetentionSummary:
        """Cron trigger: delete members the retention policy rejects."""
        logger.info("Cron trigger: running retention cleanup")
        summary = self.job.run()
        if summary.skipped:
            logger.info("Retention cleanup skipped: previous run still in progress")
        return summary

    def run_report(self) -> RetentionSummary:
        """Cron trigger: dry run plus a Slack report of what would be removed."""
        logger.info("Cron trigger: running retention report")
        summary = self.job.run(dry_run=True)
        if summary.skipped:
            logger.info("Retention report skipped: retention run in progress")
            return summary

        if self.notifier:
            try:
                members = self.job.connector.list_members()
            except VaultProvisionerError as e:
                logger.warning(f"Could not fetch members for status breakdown: {e}")
                members = None
            self.notifier.post_retention_report(summary, members)

        return summary

    def run_now(self, job_id: str = CLEANUP_JOB_ID) -> RetentionSummary:
        """Trigger one of the jobs immediately, outside its schedule."""
        if job_id == CLEANUP_JOB_ID:
            return self.run_cleanup()
        if job_id == REPORT_JOB_ID:
            return self.run_report()
        raise ValueError(f"Unknown job: {job_id}")

    def status(self) -> Dict[str, Any]:
        """Scheduler state and next run times."""
        jobs: List[Dict[str, Any]] = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
            })

        last = self.job.last_summary
        return {
            "running": self.scheduler.running,
            "retention_in_progress": self.job.running,
            "jobs": jobs,
            "last_run": last.model_dump(mode="json", exclude={"verdicts"}) if last else None,
        }

    def stop(self):
        """Shut down the scheduler."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Retention scheduler stopped")
