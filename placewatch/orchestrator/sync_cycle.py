"""
Placewatch Sync Cycle Orchestrator
==================================

One cycle is one sequential pass over every active target:

    fetch (review source) -> dedup + insert (store) -> notify -> sync log

Features:
    - Failure isolation: any error for one target is caught at the target
      boundary, logged as an ``error`` outcome, and the next target runs
    - No overlapping cycles: a second trigger while a cycle is running is
      skipped
    - Soft deadline: targets not started before the deadline are recorded
      as errors instead of being fetched
    - Notifications only for reviews confirmed inserted

Usage:
    from placewatch.orchestrator.sync_cycle import create_orchestrator

    orchestrator = create_orchestrator(settings, store)
    result = orchestrator.run_cycle()
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Any

from ..data.config import Settings
from ..data.places_client import ReviewSourceClient, create_review_client
from ..data.review_models import (
    NotificationSettings,
    Review,
    SyncLogEntry,
    SyncStatus,
    Target,
    utcnow,
)
from ..data.review_store import PersistFailedError, ReviewStore
from ..notifications import messages
from ..notifications.telegram_notifier import TelegramNotifier
from .state import RunState

logger = logging.getLogger(__name__)


class CycleStatus(Enum):
    """Sync cycle status."""
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TargetOutcome:
    """Result of syncing one target."""
    target: Target
    status: SyncStatus = SyncStatus.ERROR
    fetched: int = 0
    inserted: List[Review] = field(default_factory=list)
    truncated: bool = False
    message: str = ""
    notified: bool = False

    @property
    def inserted_count(self) -> int:
        return len(self.inserted)

    def to_log_entry(self) -> SyncLogEntry:
        return SyncLogEntry(
            status=self.status,
            target_id=self.target.id,
            fetched_count=self.fetched,
            inserted_count=self.inserted_count,
            message=self.message,
        )


@dataclass
class CycleResult:
    """Complete sync cycle result."""
    run_id: str
    status: CycleStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    outcomes: List[TargetOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate total cycle duration."""
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def inserted_total(self) -> int:
        return sum(o.inserted_count for o in self.outcomes)

    def status_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for outcome in self.outcomes:
            counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
        return counts

    def get_summary(self) -> Dict[str, Any]:
        """Get cycle run summary."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "inserted_total": self.inserted_total,
            "targets": [
                {
                    "target_id": o.target.id,
                    "name": o.target.display_name,
                    "status": o.status.value,
                    "fetched": o.fetched,
                    "inserted": o.inserted_count,
                    "truncated": o.truncated,
                    "message": o.message,
                }
                for o in self.outcomes
            ],
        }


class SyncOrchestrator:
    """
    Review sync orchestrator.

    Targets are processed sequentially. Nothing raised below this class
    reaches the scheduler: target failures become ``error`` sync log rows
    and cycle-level failures a FAILED CycleResult.
    """

    DEFAULT_CYCLE_DEADLINE = 900

    def __init__(
        self,
        client: ReviewSourceClient,
        store: ReviewStore,
        notifier: TelegramNotifier,
        admin_chat_id: Optional[str] = None,
        cycle_deadline_seconds: Optional[float] = None,
        state: Optional[RunState] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Review source client
            store: Deduplicating review store
            notifier: Telegram notifier
            admin_chat_id: Admin chat override (default: looked up in the store)
            cycle_deadline_seconds: Soft deadline for one cycle
            state: Run state persistence (optional)
            clock: Monotonic clock, injectable for tests
        """
        self.client = client
        self.store = store
        self.notifier = notifier
        self.admin_chat_id = admin_chat_id
        self.cycle_deadline_seconds = cycle_deadline_seconds or self.DEFAULT_CYCLE_DEADLINE
        self.state = state
        self._clock = clock
        self._cycle_lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    # =========================================================================
    # MAIN ORCHESTRATION
    # =========================================================================

    def run_cycle(self) -> CycleResult:
        """
        Run one full cycle over all active targets.

        Returns:
            CycleResult; SKIPPED when another cycle is already running
        """
        run_id = str(uuid.uuid4())
        result = CycleResult(run_id=run_id, status=CycleStatus.SKIPPED, started_at=utcnow())

        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Sync cycle already in progress, skipping this trigger")
            result.completed_at = utcnow()
            return result

        try:
            self._run_locked(result)
        finally:
            self._cycle_lock.release()

        return result

    def _run_locked(self, result: CycleResult):
        logger.info(f"=== Starting review sync cycle (run_id={result.run_id}) ===", extra={"run_id": result.run_id})
        if self.state is not None:
            self.state.record_cycle_start(result.run_id)

        deadline = self._clock() + self.cycle_deadline_seconds
        admin_chat = self.admin_chat_id

        try:
            targets = self.store.get_active_targets()
            settings = self.store.get_notification_settings()
            admin_chat = admin_chat or self.store.get_admin_chat_id()
        except PersistFailedError as e:
            logger.error(f"Cannot load targets, cycle aborted: {e}")
            result.status = CycleStatus.FAILED
            result.error = str(e)
            self._finish(result)
            if admin_chat:
                self.notifier.send(admin_chat, f"\U0001f6a8 Review sync aborted: {e}")
            return

        if not targets:
            logger.warning("No active targets configured")

        for target in targets:
            if self._clock() > deadline:
                outcome = TargetOutcome(
                    target=target,
                    message=f"cycle deadline exceeded ({self.cycle_deadline_seconds:.0f}s), target skipped",
                )
                logger.error(f"{target.id}: {outcome.message}")
            else:
                outcome = self.sync_target(target, settings)
                self._notify(outcome, settings, admin_chat)

            self._record_outcome(result.run_id, outcome)
            result.outcomes.append(outcome)

        errors = sum(1 for o in result.outcomes if o.status == SyncStatus.ERROR)
        if errors and errors == len(result.outcomes):
            result.status = CycleStatus.FAILED
        elif errors:
            result.status = CycleStatus.PARTIAL_FAILURE
        else:
            result.status = CycleStatus.COMPLETED

        self._finish(result)

        if admin_chat:
            self.notifier.send(
                admin_chat,
                messages.render_cycle_summary(len(result.outcomes), result.status_counts(), result.inserted_total),
            )

    def _finish(self, result: CycleResult):
        result.completed_at = utcnow()
        if self.state is not None:
            self.state.record_cycle_complete(
                result.run_id,
                result.status.value,
                result.duration_seconds or 0,
                inserted=result.inserted_total,
            )
        logger.info(
            f"=== Sync cycle {result.status.value}: {len(result.outcomes)} target(s), "
            f"{result.inserted_total} inserted, {result.duration_seconds:.1f}s ===",
            extra={"run_id": result.run_id, "status": result.status.value},
        )

    # =========================================================================
    # PER-TARGET STEPS
    # =========================================================================

    def sync_target(self, target: Target, settings: Optional[NotificationSettings] = None) -> TargetOutcome:
        """
        Fetch and store one target's reviews.

        Outcome priority: empty, no-new, success; any exception gives error.
        Never raises.
        """
        outcome = TargetOutcome(target=target)

        try:
            fetched = self.client.fetch_all_reviews(target.place_id)
            outcome.fetched = len(fetched.reviews)
            outcome.truncated = fetched.truncated

            if not fetched.reviews:
                outcome.status = SyncStatus.EMPTY
                outcome.message = "No reviews returned by source"
                return outcome

            outcome.inserted = self.store.filter_and_insert_new(target, fetched.reviews)

        except Exception as e:
            outcome.status = SyncStatus.ERROR
            outcome.inserted = []
            outcome.message = f"{type(e).__name__}: {e}"
            logger.error(f"{target.id}: sync failed: {outcome.message}", exc_info=True)
            return outcome

        if outcome.inserted:
            outcome.status = SyncStatus.SUCCESS
            outcome.message = f"{outcome.inserted_count} new review(s) inserted"
        else:
            outcome.status = SyncStatus.NO_NEW
            outcome.message = "No new reviews"

        if outcome.truncated:
            outcome.message += " (pagination truncated)"
        return outcome

    def _notify(
        self,
        outcome: TargetOutcome,
        settings: Optional[NotificationSettings],
        admin_chat: Optional[str],
    ):
        """Send the message matching the outcome. Never raises."""
        target = outcome.target

        if outcome.status == SyncStatus.ERROR:
            if admin_chat:
                self.notifier.send(admin_chat, messages.render_target_error(target, outcome.message))
            return

        if settings is not None and not settings.is_active:
            logger.debug(f"{target.id}: notifications disabled in settings")
            return

        if outcome.status == SyncStatus.SUCCESS:
            outcome.notified = self.notifier.notify_new_reviews(target, outcome.inserted, settings)
            return

        destination = self.notifier.destination_for(target, settings)
        if outcome.status == SyncStatus.NO_NEW:
            outcome.notified = self.notifier.send(destination, messages.render_no_new_reviews(target))
        elif outcome.status == SyncStatus.EMPTY:
            outcome.notified = self.notifier.send(destination, messages.render_empty_fetch(target))

    def _record_outcome(self, run_id: str, outcome: TargetOutcome):
        """Write the sync log row; a failed write is logged, not raised."""
        log = logger.error if outcome.status == SyncStatus.ERROR else logger.info
        log(
            f"{outcome.target.id}: {outcome.status.value} "
            f"(fetched={outcome.fetched}, inserted={outcome.inserted_count}) {outcome.message}",
            extra={
                "run_id": run_id,
                "target_id": outcome.target.id,
                "status": outcome.status.value,
                "fetched": outcome.fetched,
                "inserted": outcome.inserted_count,
            },
        )

        try:
            self.store.insert_sync_log(outcome.to_log_entry())
        except PersistFailedError as e:
            logger.error(f"{outcome.target.id}: failed to write sync log: {e}")


def create_orchestrator(
    settings: Settings,
    store: ReviewStore,
    client: Optional[ReviewSourceClient] = None,
    notifier: Optional[TelegramNotifier] = None,
) -> SyncOrchestrator:
    """Wire an orchestrator from settings."""
    return SyncOrchestrator(
        client=client or create_review_client(settings.source),
        store=store,
        notifier=notifier or TelegramNotifier.from_config(settings.telegram),
        admin_chat_id=settings.telegram.admin_chat_id,
        cycle_deadline_seconds=settings.schedule.cycle_deadline_seconds,
        state=RunState(settings.state_dir),
    )
