"""
Review API Routes
=================

GET  /api/reviews    - Stored reviews, filterable by target, rating and text
GET  /api/stats      - Rating aggregates
GET  /api/sync-logs  - Most recent sync log rows
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..data.review_models import compute_rating_stats
from ..data.review_store import ReviewStore
from .models import (
    ReviewListResponse,
    ReviewModel,
    StatsResponse,
    SyncLogListResponse,
    SyncLogModel,
)
from .services import get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Reviews"])


@router.get("/reviews", response_model=ReviewListResponse)
def list_reviews(
    target_id: Optional[str] = Query(None, description="Only this target's reviews"),
    rating: Optional[int] = Query(None, ge=0, le=5, description="Exact rating, 0 for unrated"),
    search: Optional[str] = Query(None, min_length=1, max_length=200),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: ReviewStore = Depends(get_store),
):
    """Reviews, newest first."""
    rows = store.list_reviews(
        target_id=target_id,
        rating=rating,
        search=search,
        limit=limit,
        offset=offset,
    )
    reviews = [ReviewModel(**row) for row in rows]
    return ReviewListResponse(reviews=reviews, count=len(reviews), limit=limit, offset=offset)


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    target_id: Optional[str] = Query(None),
    store: ReviewStore = Depends(get_store),
):
    """Review count, average rating and 1-5 distribution."""
    stats = compute_rating_stats(store.get_ratings(target_id))
    return StatsResponse(**stats.to_dict())


@router.get("/sync-logs", response_model=SyncLogListResponse)
def list_sync_logs(
    limit: int = Query(20, ge=1, le=200),
    store: ReviewStore = Depends(get_store),
):
    logs = [SyncLogModel(**row) for row in store.list_sync_logs(limit)]
    return SyncLogListResponse(logs=logs, count=len(logs))
