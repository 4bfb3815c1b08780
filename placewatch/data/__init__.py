"""
Placewatch Data Module
======================

Review source clients, domain models and the PostgreSQL review store.

Quick Start:
    from placewatch.data import load_settings, create_review_client, ReviewStore

    settings = load_settings()
    client = create_review_client(settings.source)
    with ReviewStore(settings.database) as store:
        result = client.fetch_all_reviews(place_id)

Required Environment Variables:
    DATABASE_PASSWORD: PostgreSQL password
    SERPAPI_KEY or GOOGLE_PLACES_API_KEY: Review source key
    TELEGRAM_BOT_TOKEN: Telegram bot token
"""

from .config import ConfigError, Settings, get_settings, load_settings
from .review_models import (
    FetchResult,
    NotificationSettings,
    RatingStats,
    Review,
    ReviewPage,
    SyncLogEntry,
    SyncStatus,
    Target,
    compute_rating_stats,
)
from .places_client import (
    FetchFailedError,
    GooglePlacesReviewClient,
    ReviewSourceClient,
    SerpApiReviewClient,
    create_review_client,
)
from .review_store import PersistFailedError, ReviewStore

__all__ = [
    # Config
    "ConfigError",
    "Settings",
    "get_settings",
    "load_settings",
    # Models
    "FetchResult",
    "NotificationSettings",
    "RatingStats",
    "Review",
    "ReviewPage",
    "SyncLogEntry",
    "SyncStatus",
    "Target",
    "compute_rating_stats",
    # Review sources
    "FetchFailedError",
    "GooglePlacesReviewClient",
    "ReviewSourceClient",
    "SerpApiReviewClient",
    "create_review_client",
    # Store
    "PersistFailedError",
    "ReviewStore",
]
