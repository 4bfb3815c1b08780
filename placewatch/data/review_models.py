"""
Placewatch Data Models
======================

Dataclasses for the monitored places, their canonical reviews and the
append-only sync log.

Models:
    - Target: A monitored place and where its notifications go
    - Review: Canonical, source-agnostic review record
    - ReviewPage / FetchResult: Output of the review source client
    - SyncLogEntry: One row of the sync log
    - NotificationSettings: Per-deployment notification preferences
    - RatingStats: Aggregates shown on the dashboard
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, FrozenSet, Iterable


ANONYMOUS_AUTHOR = "Anonymous"
UNKNOWN_RATING = 0
DEFAULT_NOTIFY_RATINGS = frozenset({1, 2, 3})


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SyncStatus(Enum):
    """Outcome recorded in the sync log."""
    SUCCESS = "success"
    EMPTY = "empty"
    NO_NEW = "no-new"
    ERROR = "error"
    SUMMARY = "summary"
    HEARTBEAT = "heartbeat"


@dataclass
class Target:
    """
    A monitored place.

    ``place_id`` is the external source identifier (Google place id or
    SerpApi data id). Targets are created through configuration and are
    never modified by the pipeline.
    """
    id: str
    place_id: str
    chat_id: Optional[str] = None
    name: str = ""
    active: bool = True

    @property
    def display_name(self) -> str:
        return self.name or self.place_id


@dataclass
class Review:
    """Canonical review after normalization."""
    external_id: str
    author_name: str
    rating: int
    review_date: datetime
    text: str = ""
    author_photo_url: Optional[str] = None
    fetched_at: datetime = field(default_factory=utcnow)
    date_is_fallback: bool = False

    @property
    def has_known_rating(self) -> bool:
        return 1 <= self.rating <= 5

    def to_row(self, target_id: str) -> Dict[str, Any]:
        """Column values for the reviews table."""
        return {
            "target_id": target_id,
            "external_id": self.external_id,
            "author_name": self.author_name,
            "author_photo_url": self.author_photo_url,
            "rating": self.rating,
            "review_text": self.text,
            "review_date": self.review_date,
            "fetched_at": self.fetched_at,
        }


@dataclass
class ReviewPage:
    """One page returned by the review source."""
    reviews: List[Review]
    next_page_token: Optional[str] = None


@dataclass
class FetchResult:
    """All pages fetched for one target in one cycle."""
    place_id: str
    reviews: List[Review] = field(default_factory=list)
    pages_fetched: int = 0
    truncated: bool = False


@dataclass
class SyncLogEntry:
    """
    One append-only sync log row.

    ``target_id`` is None for global entries (cycle summary, heartbeat).
    """
    status: SyncStatus
    target_id: Optional[str] = None
    fetched_count: int = 0
    inserted_count: int = 0
    message: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class NotificationSettings:
    """Notification preferences for single-target deployments."""
    chat_id: str
    place_id: Optional[str] = None
    is_active: bool = True
    notify_on_rating: FrozenSet[int] = DEFAULT_NOTIFY_RATINGS
    id: Optional[int] = None

    def __post_init__(self):
        self.notify_on_rating = frozenset(int(r) for r in (self.notify_on_rating or ()))

    def allows(self, rating: int) -> bool:
        """Whether a review with this rating should be notified."""
        return rating in self.notify_on_rating


@dataclass
class RatingStats:
    """Rating aggregates over a set of reviews."""
    total_reviews: int
    rated_reviews: int
    average_rating: Optional[float]
    distribution: Dict[int, int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_reviews": self.total_reviews,
            "rated_reviews": self.rated_reviews,
            "average_rating": self.average_rating,
            "distribution": {str(k): v for k, v in self.distribution.items()},
        }


def compute_rating_stats(ratings: Iterable[int]) -> RatingStats:
    """
    Aggregate ratings for the dashboard.

    Unknown ratings (0) count toward the total but are excluded from the
    average and the 1-5 distribution.
    """
    distribution = {star: 0 for star in range(1, 6)}
    total = 0
    for rating in ratings:
        total += 1
        if rating in distribution:
            distribution[rating] += 1

    rated = sum(distribution.values())
    average = None
    if rated:
        average = round(sum(star * count for star, count in distribution.items()) / rated, 2)

    return RatingStats(
        total_reviews=total,
        rated_reviews=rated,
        average_rating=average,
        distribution=distribution,
    )
