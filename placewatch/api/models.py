"""
Placewatch API Models
=====================

Pydantic models for dashboard request/response serialization.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    timestamp: datetime


class ReviewModel(BaseModel):
    """One stored review."""
    target_id: str
    external_id: str
    author_name: str
    author_photo_url: Optional[str] = None
    rating: int
    review_text: str = ""
    review_date: datetime
    fetched_at: datetime


class ReviewListResponse(BaseModel):
    reviews: List[ReviewModel]
    count: int
    limit: int
    offset: int


class StatsResponse(BaseModel):
    """Rating aggregates; unknown ratings are excluded from average and distribution."""
    total_reviews: int
    rated_reviews: int
    average_rating: Optional[float] = None
    distribution: Dict[str, int]


class SyncLogModel(BaseModel):
    target_id: Optional[str] = None
    status: str
    fetched_count: int = 0
    inserted_count: int = 0
    message: Optional[str] = None
    created_at: datetime


class SyncLogListResponse(BaseModel):
    logs: List[SyncLogModel]
    count: int


class SettingsModel(BaseModel):
    """Notification settings as read and written by the dashboard."""
    telegram_chat_id: str = Field(min_length=1)
    place_id: Optional[str] = None
    is_active: bool = True
    notify_on_rating: List[int] = Field(default_factory=lambda: [1, 2, 3])

    @field_validator("notify_on_rating")
    @classmethod
    def ratings_in_range(cls, v: List[int]) -> List[int]:
        for rating in v:
            if rating < 1 or rating > 5:
                raise ValueError(f"rating must be between 1 and 5, got {rating}")
        return sorted(set(v))


class SyncTriggerResponse(BaseModel):
    status: str  # "started" or "already_running"
    message: str
