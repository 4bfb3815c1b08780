"""
Placewatch Admin Reports
========================

The two admin-only scheduled messages:

    - Heartbeat: uptime, memory, last successful cycle and next sync run
    - Weekly summary: reviews stored per day over the last 7 days,
      re-aggregated from the reviews table, plus a bar chart link

Both write a ``heartbeat`` / ``summary`` row to the sync log so the
dashboard shows when they last ran. Neither raises.
"""

import logging
import resource
import sys
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from ..data.review_models import SyncLogEntry, SyncStatus, utcnow
from ..data.review_store import PersistFailedError, ReviewStore
from ..notifications import messages
from ..notifications.telegram_notifier import TelegramNotifier
from .state import RunState

logger = logging.getLogger(__name__)

SUMMARY_DAYS = 7


def current_memory_mb() -> Optional[float]:
    """Peak resident set size of this process in MB."""
    try:
        usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except (AttributeError, ValueError):
        return None
    # bytes on macOS, kilobytes elsewhere
    if sys.platform == "darwin":
        return usage / (1024 * 1024)
    return usage / 1024


class AdminReporter:
    """Builds and sends the heartbeat and weekly summary messages."""

    def __init__(
        self,
        store: ReviewStore,
        notifier: TelegramNotifier,
        state: Optional[RunState] = None,
        admin_chat_id: Optional[str] = None,
        timezone_name: str = "UTC",
        next_run_provider: Optional[Callable[[], Optional[datetime]]] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.state = state
        self.admin_chat_id = admin_chat_id
        self.timezone_name = timezone_name
        self.next_run_provider = next_run_provider
        self._started = time.monotonic()

    def _admin_chat(self) -> Optional[str]:
        if self.admin_chat_id:
            return self.admin_chat_id
        try:
            return self.store.get_admin_chat_id()
        except PersistFailedError as e:
            logger.error(f"Cannot look up admin chat: {e}")
            return None

    def _log(self, status: SyncStatus, message: str):
        try:
            self.store.insert_sync_log(SyncLogEntry(status=status, message=message))
        except PersistFailedError as e:
            logger.error(f"Failed to write {status.value} log: {e}")

    def send_heartbeat(self) -> bool:
        """Send the heartbeat to the admin chat."""
        admin_chat = self._admin_chat()
        if not admin_chat:
            logger.warning("No admin chat configured, heartbeat not sent")
            return False

        last_cycle = self.state.last_successful_cycle_at if self.state else None
        next_run = self.next_run_provider() if self.next_run_provider else None

        text = messages.render_heartbeat(
            uptime_seconds=time.monotonic() - self._started,
            memory_mb=current_memory_mb(),
            last_cycle_at=last_cycle.strftime("%Y-%m-%d %H:%M UTC") if last_cycle else None,
            next_cycle_at=next_run.strftime("%Y-%m-%d %H:%M %Z") if next_run else None,
        )
        sent = self.notifier.send(admin_chat, text)
        self._log(SyncStatus.HEARTBEAT, "Heartbeat sent" if sent else "Heartbeat not delivered")
        logger.info(f"Heartbeat {'sent' if sent else 'not delivered'}")
        return sent

    def send_weekly_summary(self, days: int = SUMMARY_DAYS) -> bool:
        """Send the per-day review counts for the last ``days`` days."""
        admin_chat = self._admin_chat()
        if not admin_chat:
            logger.warning("No admin chat configured, weekly summary not sent")
            return False

        try:
            daily_counts = self.store.get_daily_review_counts(days=days, timezone_name=self.timezone_name)
            status_counts: Dict[str, int] = self.store.count_sync_outcomes(utcnow() - timedelta(days=days))
        except PersistFailedError as e:
            logger.error(f"Weekly summary aborted: {e}")
            self._log(SyncStatus.SUMMARY, f"Summary failed: {e}")
            return False

        sent = self.notifier.send(admin_chat, messages.render_weekly_summary(daily_counts, status_counts))
        total = sum(d["count"] for d in daily_counts)
        self._log(SyncStatus.SUMMARY, f"{total} review(s) in {days} days")
        logger.info(f"Weekly summary {'sent' if sent else 'not delivered'}: {total} review(s)")
        return sent
