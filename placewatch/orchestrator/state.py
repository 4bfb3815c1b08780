"""
Placewatch Run State Persistence
================================

Persists sync cycle bookkeeping to disk so the heartbeat can report the
last successful cycle across process restarts.

This file is never a deduplication source: which reviews are new is
decided by the review store alone.

State file format: JSON at PLACEWATCH_STATE_DIR/sync_state.json

Usage:
    from placewatch.orchestrator.state import RunState

    state = RunState(Path("data"))
    state.record_cycle_start("run-123")
    state.record_cycle_complete("run-123", "completed", 12.5)
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "sync_state.json"
SUCCESS_STATUSES = ("completed", "partial_failure")


class RunState:
    """
    Persistent state for the sync scheduler.

    Survives process restarts by writing state to a JSON file.
    """

    def __init__(self, state_dir: Path):
        self._state_dir = Path(state_dir)
        self._state_file = self._state_dir / DEFAULT_STATE_FILE
        self._lock = threading.Lock()
        self._state: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load state from disk."""
        if self._state_file.exists():
            try:
                with open(self._state_file, "r") as f:
                    data = json.load(f)
                    logger.info(f"Loaded sync state from {self._state_file}")
                    return data
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Failed to load state file, starting fresh: {e}")

        return {
            "version": 1,
            "last_successful_cycle": None,
            "last_cycle": None,
            "consecutive_failures": 0,
            "current_cycle": None,
        }

    def save(self):
        """Persist state to disk."""
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            with open(self._state_file, "w") as f:
                json.dump(self._state, f, indent=2, default=str)
        except IOError as e:
            logger.error(f"Failed to save state: {e}")

    # =========================================================================
    # Cycle Lifecycle
    # =========================================================================

    def record_cycle_start(self, run_id: str):
        """Record that a sync cycle has started."""
        with self._lock:
            self._state["current_cycle"] = {
                "run_id": run_id,
                "started_at": datetime.now(timezone.utc).isoformat(),
            }
            self.save()

    def record_cycle_complete(self, run_id: str, status: str, duration_seconds: float, inserted: int = 0):
        """Record that a sync cycle has finished."""
        record = {
            "run_id": run_id,
            "status": status,
            "completed_at": datetime.now(timezone.utc).isoformat(),
            "duration_seconds": round(duration_seconds, 1),
            "inserted": inserted,
        }

        with self._lock:
            self._state["last_cycle"] = record
            self._state["current_cycle"] = None

            if status in SUCCESS_STATUSES:
                self._state["last_successful_cycle"] = record
                self._state["consecutive_failures"] = 0
            else:
                self._state["consecutive_failures"] = self._state.get("consecutive_failures", 0) + 1

            self.save()

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def last_successful_cycle_at(self) -> Optional[datetime]:
        """Completion time of the last successful cycle."""
        cycle = self._state.get("last_successful_cycle")
        if not cycle:
            return None
        try:
            completed = datetime.fromisoformat(cycle["completed_at"])
        except (KeyError, ValueError):
            return None
        if completed.tzinfo is None:
            completed = completed.replace(tzinfo=timezone.utc)
        return completed

    @property
    def consecutive_failures(self) -> int:
        return self._state.get("consecutive_failures", 0)

    @property
    def was_interrupted(self) -> bool:
        """Check if a cycle was in progress when the process stopped."""
        return self._state.get("current_cycle") is not None

    def get_summary(self) -> Dict[str, Any]:
        """Get a human-readable state summary."""
        return {
            "last_successful_cycle": self._state.get("last_successful_cycle"),
            "last_cycle": self._state.get("last_cycle"),
            "consecutive_failures": self.consecutive_failures,
            "was_interrupted": self.was_interrupted,
        }
