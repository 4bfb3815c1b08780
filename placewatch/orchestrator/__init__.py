"""
Placewatch Orchestrator Module
==============================

Components:
    - SyncOrchestrator: One sync cycle over all active targets
    - ReviewScheduler: APScheduler jobs for sync, heartbeat and summary
    - AdminReporter: Heartbeat and weekly summary messages
    - CLI: Command-line interface

Usage:
    from placewatch.orchestrator import create_orchestrator

    result = create_orchestrator(settings, store).run_cycle()
"""

from .sync_cycle import (
    CycleResult,
    CycleStatus,
    SyncOrchestrator,
    TargetOutcome,
    create_orchestrator,
)
from .reports import AdminReporter
from .scheduler import ReviewScheduler, RunHistory
from .state import RunState

__all__ = [
    # Cycle
    "CycleResult",
    "CycleStatus",
    "SyncOrchestrator",
    "TargetOutcome",
    "create_orchestrator",
    # Scheduling
    "AdminReporter",
    "ReviewScheduler",
    "RunHistory",
    "RunState",
]
