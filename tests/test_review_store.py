"""
Tests for the PostgreSQL review store.

The connection pool is a MagicMock; SQL is not executed. Dedup semantics
against a real database are covered by the unique constraint in SCHEMA_SQL.
"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from placewatch.data.review_models import (
    NotificationSettings,
    Review,
    SyncLogEntry,
    SyncStatus,
    Target,
)
from placewatch.data.review_store import (
    DEFAULT_TARGET_ID,
    PersistFailedError,
    ReviewStore,
    fill_daily_counts,
    select_new_reviews,
)


def review(external_id, rating=5):
    return Review(
        external_id=external_id,
        author_name="Alice",
        rating=rating,
        review_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def mock_pool():
    """Pool whose connections all hand out the same cursor."""
    cur = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cur
    db_pool = MagicMock()
    db_pool.getconn.return_value = conn
    return db_pool, conn, cur


class TestSelectNewReviews:

    def test_set_difference_keeps_order(self):
        batch = [review("c"), review("a"), review("b")]
        assert [r.external_id for r in select_new_reviews(batch, {"a"})] == ["c", "b"]

    def test_duplicates_inside_batch(self):
        batch = [review("a"), review("a"), review("b")]
        assert [r.external_id for r in select_new_reviews(batch, set())] == ["a", "b"]

    def test_everything_known(self):
        assert select_new_reviews([review("a")], {"a", "b"}) == []


class TestFillDailyCounts:

    def test_fills_missing_days(self):
        rows = [(date(2024, 1, 6), 3)]
        counts = fill_daily_counts(rows, end=date(2024, 1, 7), days=3)

        assert counts == [
            {"day": "2024-01-05", "count": 0},
            {"day": "2024-01-06", "count": 3},
            {"day": "2024-01-07", "count": 0},
        ]


class TestFilterAndInsertNew:
    """Tests for the dedup insert path."""

    def test_empty_batch_does_not_touch_database(self):
        db_pool, _, _ = mock_pool()
        store = ReviewStore(db_pool=db_pool)

        assert store.filter_and_insert_new(Target(id="t1", place_id="p"), []) == []
        db_pool.getconn.assert_not_called()

    @patch("placewatch.data.review_store.execute_values")
    def test_inserts_only_new(self, mock_execute_values):
        db_pool, conn, cur = mock_pool()
        cur.fetchall.return_value = [("a",)]
        mock_execute_values.return_value = [("b",), ("c",)]
        store = ReviewStore(db_pool=db_pool)

        inserted = store.filter_and_insert_new(
            Target(id="t1", place_id="p"),
            [review("a"), review("b"), review("c")],
        )

        assert [r.external_id for r in inserted] == ["b", "c"]
        values = mock_execute_values.call_args.args[2]
        assert [v[1] for v in values] == ["b", "c"]
        assert all(v[0] == "t1" for v in values)
        assert mock_execute_values.call_args.kwargs["fetch"] is True
        assert cur.execute.call_args.args[1] == ("t1",)
        conn.commit.assert_called_once()

    @patch("placewatch.data.review_store.execute_values")
    def test_concurrent_insert_is_not_reported(self, mock_execute_values):
        db_pool, _, cur = mock_pool()
        cur.fetchall.return_value = []
        # "a" was inserted by another writer between the SELECT and the INSERT
        mock_execute_values.return_value = [("b",)]
        store = ReviewStore(db_pool=db_pool)

        inserted = store.filter_and_insert_new(Target(id="t1", place_id="p"), [review("a"), review("b")])

        assert [r.external_id for r in inserted] == ["b"]

    @patch("placewatch.data.review_store.execute_values")
    def test_nothing_new_skips_insert(self, mock_execute_values):
        db_pool, _, cur = mock_pool()
        cur.fetchall.return_value = [("a",), ("b",)]
        store = ReviewStore(db_pool=db_pool)

        assert store.filter_and_insert_new(Target(id="t1", place_id="p"), [review("a"), review("b")]) == []
        mock_execute_values.assert_not_called()

    def test_database_error_rolls_back(self):
        db_pool, conn, cur = mock_pool()
        cur.execute.side_effect = RuntimeError("connection reset")
        store = ReviewStore(db_pool=db_pool)

        with pytest.raises(PersistFailedError, match="connection reset"):
            store.filter_and_insert_new(Target(id="t1", place_id="p"), [review("a")])

        conn.rollback.assert_called_once()
        db_pool.putconn.assert_called_once_with(conn)


class TestTargets:

    def test_location_rows(self):
        db_pool, _, cur = mock_pool()
        cur.fetchall.return_value = [
            {"id": 7, "name": "Leeds", "place_id": "ChIJleeds", "telegram_chat_id": "-100", "active": True},
        ]
        store = ReviewStore(db_pool=db_pool)

        targets = store.get_active_targets()

        assert targets == [Target(id="7", name="Leeds", place_id="ChIJleeds", chat_id="-100", active=True)]

    def test_falls_back_to_settings_place(self):
        db_pool, _, cur = mock_pool()
        cur.fetchall.return_value = []
        cur.fetchone.return_value = {
            "id": 1,
            "telegram_chat_id": "-200",
            "place_id": "ChIJsingle",
            "is_active": True,
            "notify_on_rating": [1, 2],
        }
        store = ReviewStore(db_pool=db_pool)

        targets = store.get_active_targets()

        assert len(targets) == 1
        assert targets[0].id == DEFAULT_TARGET_ID
        assert targets[0].place_id == "ChIJsingle"
        assert targets[0].chat_id == "-200"

    def test_admin_chat(self):
        db_pool, _, cur = mock_pool()
        cur.fetchone.return_value = ("-999",)
        store = ReviewStore(db_pool=db_pool)

        assert store.get_admin_chat_id() == "-999"


class TestSettingsAndLogs:

    def test_settings_row_mapping(self):
        db_pool, _, cur = mock_pool()
        cur.fetchone.return_value = {
            "id": 1,
            "telegram_chat_id": "-200",
            "place_id": None,
            "is_active": False,
            "notify_on_rating": [1, 2, 3],
        }
        store = ReviewStore(db_pool=db_pool)

        settings = store.get_notification_settings()

        assert settings == NotificationSettings(
            id=1, chat_id="-200", place_id=None, is_active=False, notify_on_rating=frozenset({1, 2, 3}),
        )

    def test_empty_rating_set_is_kept(self):
        db_pool, _, cur = mock_pool()
        cur.fetchone.return_value = {
            "id": 1,
            "telegram_chat_id": "-200",
            "place_id": None,
            "is_active": True,
            "notify_on_rating": [],
        }
        store = ReviewStore(db_pool=db_pool)

        settings = store.get_notification_settings()

        assert settings.notify_on_rating == frozenset()
        assert settings.allows(1) is False

    def test_null_rating_set_uses_default(self):
        db_pool, _, cur = mock_pool()
        cur.fetchone.return_value = {
            "id": 1,
            "telegram_chat_id": "-200",
            "place_id": None,
            "is_active": True,
            "notify_on_rating": None,
        }
        store = ReviewStore(db_pool=db_pool)

        assert store.get_notification_settings().notify_on_rating == frozenset({1, 2, 3})

    def test_no_settings_row(self):
        db_pool, _, cur = mock_pool()
        cur.fetchone.return_value = None
        store = ReviewStore(db_pool=db_pool)

        assert store.get_notification_settings() is None

    def test_insert_sync_log(self):
        db_pool, conn, cur = mock_pool()
        store = ReviewStore(db_pool=db_pool)

        store.insert_sync_log(SyncLogEntry(status=SyncStatus.NO_NEW, target_id="t1", fetched_count=4))

        params = cur.execute.call_args.args[1]
        assert params[:4] == ("t1", "no-new", 4, 0)
        conn.commit.assert_called_once()

    def test_requires_config_or_pool(self):
        with pytest.raises(ValueError):
            ReviewStore()
