"""
Shared API services.

The store and the orchestrator are created once in the app lifespan and
handed to route handlers through FastAPI dependencies, so tests can swap
them with ``app.dependency_overrides``.
"""

import logging
from typing import Optional

from ..data.config import Settings
from ..data.review_store import ReviewStore
from ..orchestrator.sync_cycle import SyncOrchestrator, create_orchestrator

logger = logging.getLogger(__name__)

_store: Optional[ReviewStore] = None
_orchestrator: Optional[SyncOrchestrator] = None


def init_services(settings: Settings):
    """Create the store and the orchestrator."""
    global _store, _orchestrator
    _store = ReviewStore(settings.database)
    _orchestrator = create_orchestrator(settings, _store)
    logger.info("API services initialized")


def close_services():
    global _store, _orchestrator
    if _store is not None:
        _store.close()
    _store = None
    _orchestrator = None


def get_store() -> ReviewStore:
    if _store is None:
        raise RuntimeError("API services not initialized")
    return _store


def get_orchestrator() -> SyncOrchestrator:
    if _orchestrator is None:
        raise RuntimeError("API services not initialized")
    return _orchestrator
