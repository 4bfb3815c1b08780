"""
Placewatch Review Scheduler
===========================

Runs the sync cycle and the admin reports on wall-clock schedules with
APScheduler.

Jobs (all in SCHEDULER_TIMEZONE, default Europe/London):
    - review_sync:   daily at SCHEDULER_SYNC_HOURS (default 9,15,21)
    - heartbeat:     daily at SCHEDULER_HEARTBEAT_HOUR (default 00:00)
    - weekly_summary: SCHEDULER_SUMMARY_DAY at SCHEDULER_SUMMARY_HOUR (default Sunday 21:00)

Each job runs in a scheduler worker thread with ``max_instances=1`` and
``coalesce=True``; the orchestrator's own lock also skips a sync trigger
that arrives while a manual run is in progress.

Usage:
    from placewatch.orchestrator.scheduler import ReviewScheduler

    scheduler = ReviewScheduler(settings.schedule, orchestrator, reporter)
    scheduler.start(blocking=True)
"""

import logging
import signal
from dataclasses import dataclass
from datetime import datetime
from threading import Event
from typing import Optional, Callable, Dict, Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..data.config import ScheduleConfig
from ..data.review_models import utcnow
from .reports import AdminReporter
from .sync_cycle import CycleResult, CycleStatus, SyncOrchestrator

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "review_sync"
HEARTBEAT_JOB_ID = "heartbeat"
SUMMARY_JOB_ID = "weekly_summary"

MAX_CONSECUTIVE_FAILURES = 3


@dataclass
class RunHistory:
    """In-process history of sync cycles since the scheduler started."""
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_duration: Optional[float] = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    total_skipped: int = 0

    def record_run(self, status: CycleStatus, duration: float):
        """Record one cycle."""
        if status == CycleStatus.SKIPPED:
            self.total_skipped += 1
            return

        self.last_run_at = utcnow()
        self.last_run_status = status.value
        self.last_run_duration = duration
        self.total_runs += 1

        if status in (CycleStatus.COMPLETED, CycleStatus.PARTIAL_FAILURE):
            self.total_successes += 1
            self.consecutive_failures = 0
        else:
            self.total_failures += 1
            self.consecutive_failures += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration": self.last_run_duration,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_successes": self.total_successes,
            "total_failures": self.total_failures,
            "total_skipped": self.total_skipped,
        }


class ReviewScheduler:
    """
    Schedules the review sync, heartbeat and weekly summary.

    The scheduler never sees an exception from a cycle: the orchestrator
    turns every failure into a CycleResult.
    """

    def __init__(
        self,
        config: ScheduleConfig,
        orchestrator: SyncOrchestrator,
        reporter: Optional[AdminReporter] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            config: Schedule configuration
            orchestrator: Sync orchestrator run by the sync job
            reporter: Heartbeat / summary sender (jobs omitted if None)
        """
        self.config = config
        self.orchestrator = orchestrator
        self.reporter = reporter
        self._scheduler: Optional[BackgroundScheduler] = None
        self._stop_event = Event()
        self._history = RunHistory()
        self._on_complete_callback: Optional[Callable[[CycleResult], None]] = None

        if self.reporter is not None and self.reporter.next_run_provider is None:
            self.reporter.next_run_provider = self.get_next_sync_time

        logger.info(
            f"ReviewScheduler initialized: "
            f"sync={self.config.get_sync_cron_expression()} {self.config.timezone}"
        )

    @property
    def is_running(self) -> bool:
        """Check if scheduler is currently running."""
        if self._scheduler is None:
            return False
        return self._scheduler.running

    def set_on_complete_callback(self, callback: Callable[[CycleResult], None]):
        """Invoke ``callback`` with each finished CycleResult."""
        self._on_complete_callback = callback

    # =========================================================================
    # APScheduler lifecycle
    # =========================================================================

    def build_scheduler(self) -> BackgroundScheduler:
        """Create the APScheduler instance with all jobs registered."""
        scheduler = BackgroundScheduler(timezone=self.config.timezone)
        tz = self.config.timezone

        scheduler.add_job(
            self._execute_cycle,
            trigger=CronTrigger(
                hour=",".join(str(h) for h in self.config.sync_hours),
                minute=self.config.sync_minute,
                timezone=tz,
            ),
            id=SYNC_JOB_ID,
            name="Review sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_time,
        )

        if self.reporter is not None:
            scheduler.add_job(
                self.reporter.send_heartbeat,
                trigger=CronTrigger(hour=self.config.heartbeat_hour, minute=0, timezone=tz),
                id=HEARTBEAT_JOB_ID,
                name="Admin heartbeat",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self.config.misfire_grace_time,
            )
            scheduler.add_job(
                self.reporter.send_weekly_summary,
                trigger=CronTrigger(
                    day_of_week=self.config.summary_day,
                    hour=self.config.summary_hour,
                    minute=0,
                    timezone=tz,
                ),
                id=SUMMARY_JOB_ID,
                name="Weekly review summary",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self.config.misfire_grace_time,
            )

        scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)
        return scheduler

    def start(self, blocking: bool = False, run_now: bool = False):
        """
        Start the scheduler.

        Args:
            blocking: Block until stopped by SIGINT / SIGTERM
            run_now: Also run one sync cycle immediately
        """
        if self._scheduler is not None and self._scheduler.running:
            logger.warning("Scheduler is already running")
            return

        self._stop_event.clear()
        self._scheduler = self.build_scheduler()
        self._scheduler.start()
        logger.info(f"Scheduler started. Next sync at: {self.get_next_sync_time()}")

        if run_now:
            self.trigger_now()

        if blocking:
            self._run_blocking()

    def stop(self, wait: bool = True):
        """
        Stop the scheduler.

        Args:
            wait: Wait for running jobs to finish
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=wait)
            self._scheduler = None
            logger.info("Scheduler stopped")

        self._stop_event.set()

    def _run_blocking(self):
        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, stopping scheduler...")
            self.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info("Scheduler running in blocking mode. Press Ctrl+C to stop.")
        self._stop_event.wait()

    # =========================================================================
    # Jobs
    # =========================================================================

    def trigger_now(self) -> CycleResult:
        """Run one sync cycle synchronously in the calling thread."""
        logger.info("Triggering immediate review sync")
        return self._execute_cycle()

    def _execute_cycle(self) -> CycleResult:
        result = self.orchestrator.run_cycle()
        self._history.record_run(result.status, result.duration_seconds or 0)

        if self._history.consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            logger.error(
                f"Review sync has failed {self._history.consecutive_failures} "
                f"consecutive times. Manual intervention required."
            )

        if self._on_complete_callback:
            try:
                self._on_complete_callback(result)
            except Exception as e:
                logger.warning(f"Callback failed: {e}")

        return result

    def get_next_sync_time(self) -> Optional[datetime]:
        """Next scheduled sync run, if the scheduler is running."""
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(SYNC_JOB_ID)
        if job is None:
            return None
        return job.next_run_time

    def _on_job_executed(self, event: JobExecutionEvent):
        logger.debug(f"Job {event.job_id} executed", extra={"job_id": event.job_id})

    def _on_job_error(self, event: JobExecutionEvent):
        logger.error(
            f"Job {event.job_id} raised an exception: {event.exception}",
            extra={"job_id": event.job_id},
        )

    def _on_job_missed(self, event: JobExecutionEvent):
        logger.warning(f"Job {event.job_id} missed its scheduled time", extra={"job_id": event.job_id})

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """Scheduler state, schedule and run history."""
        next_sync = self.get_next_sync_time()
        return {
            "is_running": self.is_running,
            "cycle_in_progress": self.orchestrator.is_running,
            "config": {
                "sync": self.config.get_sync_cron_expression(),
                "heartbeat_hour": self.config.heartbeat_hour,
                "summary": f"{self.config.summary_day} {self.config.summary_hour}:00",
                "timezone": self.config.timezone,
            },
            "next_sync": next_sync.isoformat() if next_sync else None,
            "history": self._history.to_dict(),
        }

    def get_run_history(self) -> RunHistory:
        return self._history
