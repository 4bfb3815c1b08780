"""
Shared fixtures: in-memory store, recording notifier and scripted review
client, so sync cycles run without PostgreSQL, SerpApi or Telegram.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from placewatch.data.places_client import ReviewSourceClient
from placewatch.data.review_models import (
    FetchResult,
    NotificationSettings,
    Review,
    SyncLogEntry,
    Target,
)
from placewatch.data.review_store import PersistFailedError, select_new_reviews
from placewatch.notifications.telegram_notifier import NotifyFailedError, TelegramNotifier


def make_review(external_id="r1", rating=5, author="Alice", text="Great", day=1, **kwargs) -> Review:
    return Review(
        external_id=external_id,
        author_name=author,
        rating=rating,
        review_date=datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc),
        text=text,
        **kwargs,
    )


class InMemoryStore:
    """Store double with the same dedup semantics as ReviewStore."""

    def __init__(self, targets=None, settings=None, admin_chat_id=None):
        self.targets: List[Target] = list(targets or [])
        self.settings: Optional[NotificationSettings] = settings
        self.admin_chat_id = admin_chat_id
        self.rows: Dict[tuple, Review] = {}
        self.sync_logs: List[SyncLogEntry] = []
        self.fail_insert_for = set()
        self.fail_targets = False
        self.fail_sync_log = False

    def get_active_targets(self):
        if self.fail_targets:
            raise PersistFailedError("Database operation failed: connection refused")
        return [t for t in self.targets if t.active]

    def get_notification_settings(self):
        return self.settings

    def get_admin_chat_id(self):
        return self.admin_chat_id

    def filter_and_insert_new(self, target, candidates):
        if target.id in self.fail_insert_for:
            raise PersistFailedError("Database operation failed: disk full")
        existing = {ext for (tid, ext) in self.rows if tid == target.id}
        new_reviews = select_new_reviews(candidates, existing)
        for review in new_reviews:
            self.rows[(target.id, review.external_id)] = review
        return new_reviews

    def insert_sync_log(self, entry):
        if self.fail_sync_log:
            raise PersistFailedError("Database operation failed: sync log")
        self.sync_logs.append(entry)

    def get_daily_review_counts(self, days=7, timezone_name="UTC"):
        return [{"day": f"2024-01-0{i + 1}", "count": i} for i in range(days)]

    def count_sync_outcomes(self, since):
        counts = {}
        for entry in self.sync_logs:
            if entry.target_id is not None:
                counts[entry.status.value] = counts.get(entry.status.value, 0) + 1
        return counts

    def reviews_for(self, target_id):
        return [r for (tid, _), r in self.rows.items() if tid == target_id]


class RecordingNotifier(TelegramNotifier):
    """Real notifier logic with the HTTP transport replaced by a list."""

    def __init__(self, fail=False):
        super().__init__(bot_token="123:test-token", enabled=True)
        self.sent = []
        self.fail = fail

    def _post(self, chat_id, text, parse_mode):
        if self.fail:
            raise NotifyFailedError("Telegram API error: 502 - Bad Gateway", status_code=502)
        self.sent.append((chat_id, text))

    def texts_for(self, chat_id):
        return [text for cid, text in self.sent if cid == chat_id]


class ScriptedClient(ReviewSourceClient):
    """Returns canned batches per place id; an Exception value is raised."""

    SOURCE_NAME = "scripted"

    def __init__(self, batches=None):
        super().__init__(api_key="test-key", page_delay_seconds=0)
        self.batches = dict(batches or {})
        self.calls = []

    def fetch_all_reviews(self, place_id):
        self.calls.append(place_id)
        batch = self.batches.get(place_id, [])
        if isinstance(batch, Exception):
            raise batch
        return FetchResult(place_id=place_id, reviews=list(batch), pages_fetched=1)


@pytest.fixture
def store():
    return InMemoryStore(admin_chat_id="admin-chat")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(fail=True)


@pytest.fixture
def client():
    return ScriptedClient()


@pytest.fixture
def review_factory():
    return make_review


@pytest.fixture
def db_env(monkeypatch, tmp_path):
    """Minimal valid environment for load_settings()."""
    for key, value in {
        "DATABASE_PASSWORD": "secret",
        "SERPAPI_KEY": "serp-key",
        "TELEGRAM_BOT_TOKEN": "123:abc",
        "PLACEWATCH_STATE_DIR": str(tmp_path),
    }.items():
        monkeypatch.setenv(key, value)
    for key in ("REVIEW_SOURCE", "GOOGLE_PLACES_API_KEY", "SCHEDULER_SYNC_HOURS", "ENABLE_NOTIFICATIONS"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path
