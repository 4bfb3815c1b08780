"""
Settings and Sync API Routes
============================

GET  /api/settings  - Current notification settings
PUT  /api/settings  - Create or update notification settings
POST /api/sync      - Start one sync cycle in the background
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..data.review_models import NotificationSettings
from ..data.review_store import ReviewStore
from ..orchestrator.sync_cycle import SyncOrchestrator
from .models import SettingsModel, SyncTriggerResponse
from .services import get_orchestrator, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Settings"])


def _to_model(settings: NotificationSettings) -> SettingsModel:
    return SettingsModel(
        telegram_chat_id=settings.chat_id,
        place_id=settings.place_id,
        is_active=settings.is_active,
        notify_on_rating=sorted(settings.notify_on_rating),
    )


@router.get("/settings", response_model=SettingsModel)
def get_settings(store: ReviewStore = Depends(get_store)):
    settings = store.get_notification_settings()
    if settings is None:
        raise HTTPException(status_code=404, detail="Notification settings not configured")
    return _to_model(settings)


@router.put("/settings", response_model=SettingsModel)
def update_settings(body: SettingsModel, store: ReviewStore = Depends(get_store)):
    saved = store.save_notification_settings(NotificationSettings(
        chat_id=body.telegram_chat_id,
        place_id=body.place_id,
        is_active=body.is_active,
        notify_on_rating=frozenset(body.notify_on_rating),
    ))
    return _to_model(saved)


@router.post("/sync", response_model=SyncTriggerResponse, status_code=202)
def trigger_sync(
    background_tasks: BackgroundTasks,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """
    Start a sync cycle without waiting for it.

    Returns 409 when a cycle is already running; the orchestrator would
    skip the trigger anyway.
    """
    if orchestrator.is_running:
        raise HTTPException(status_code=409, detail="A sync cycle is already running")

    background_tasks.add_task(orchestrator.run_cycle)
    logger.info("Sync cycle triggered via API")
    return SyncTriggerResponse(status="started", message="Review sync started")
