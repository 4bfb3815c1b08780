"""
Placewatch Review Store
=======================

PostgreSQL persistence for targets, reviews, the sync log and the
notification settings row.

Deduplication:
    The (target_id, external_id) pair is the only dedup key. Existing ids
    are loaded per target, the batch is diffed against them, and the
    difference is inserted with ON CONFLICT DO NOTHING ... RETURNING so a
    concurrent writer's rows are skipped silently and only the rows this
    call actually inserted are reported back.

Usage:
    from placewatch.data.review_store import ReviewStore

    with ReviewStore(settings.database) as store:
        store.ensure_schema()
        inserted = store.filter_and_insert_new(target, reviews)
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import List, Dict, Optional, Any, Iterable, Set, Tuple

from psycopg2.extras import execute_values, RealDictCursor
from psycopg2 import pool

from .config import DatabaseConfig
from .review_models import (
    DEFAULT_NOTIFY_RATINGS,
    NotificationSettings,
    Review,
    SyncLogEntry,
    Target,
    utcnow,
)

logger = logging.getLogger(__name__)


DEFAULT_TARGET_ID = "default"

# Insert column order; matches Review.to_row keys
REVIEW_COLUMNS = (
    "target_id",
    "external_id",
    "author_name",
    "author_photo_url",
    "rating",
    "review_text",
    "review_date",
    "fetched_at",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS locations (
    id                TEXT PRIMARY KEY,
    name              TEXT NOT NULL DEFAULT '',
    place_id          TEXT,
    telegram_chat_id  TEXT,
    active            BOOLEAN NOT NULL DEFAULT TRUE,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS reviews (
    id                BIGSERIAL PRIMARY KEY,
    target_id         TEXT NOT NULL,
    external_id       TEXT NOT NULL,
    author_name       TEXT NOT NULL DEFAULT 'Anonymous',
    author_photo_url  TEXT,
    rating            SMALLINT NOT NULL DEFAULT 0 CHECK (rating BETWEEN 0 AND 5),
    review_text       TEXT NOT NULL DEFAULT '',
    review_date       TIMESTAMPTZ NOT NULL,
    fetched_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT reviews_target_external_key UNIQUE (target_id, external_id)
);

CREATE INDEX IF NOT EXISTS idx_reviews_review_date ON reviews (review_date DESC);
CREATE INDEX IF NOT EXISTS idx_reviews_fetched_at ON reviews (fetched_at);

CREATE TABLE IF NOT EXISTS review_sync_logs (
    id                BIGSERIAL PRIMARY KEY,
    target_id         TEXT,
    status            TEXT NOT NULL,
    fetched_count     INTEGER NOT NULL DEFAULT 0,
    inserted_count    INTEGER NOT NULL DEFAULT 0,
    message           TEXT NOT NULL DEFAULT '',
    created_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS notification_settings (
    id                SERIAL PRIMARY KEY,
    telegram_chat_id  TEXT NOT NULL,
    place_id          TEXT,
    is_active         BOOLEAN NOT NULL DEFAULT TRUE,
    notify_on_rating  INTEGER[] NOT NULL DEFAULT '{1,2,3}',
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class PersistFailedError(Exception):
    """Storage unavailable or an unexpected constraint violation."""
    pass


def select_new_reviews(candidates: Iterable[Review], existing_ids: Set[str]) -> List[Review]:
    """
    Set difference of a batch against already stored ids.

    Keeps batch order and drops repeated ids inside the batch itself.
    """
    seen = set(existing_ids)
    new_reviews = []
    for review in candidates:
        if review.external_id in seen:
            continue
        seen.add(review.external_id)
        new_reviews.append(review)
    return new_reviews


def fill_daily_counts(rows: Iterable[Tuple[date, int]], end: date, days: int) -> List[Dict[str, Any]]:
    """Expand sparse (day, count) rows into one entry per day, oldest first."""
    counts = {day: count for day, count in rows}
    start = end - timedelta(days=days - 1)
    return [
        {"day": (start + timedelta(days=i)).isoformat(), "count": int(counts.get(start + timedelta(days=i), 0))}
        for i in range(days)
    ]


class ReviewStore:
    """
    Storage adapter over a psycopg2 connection pool.

    Every public method runs in its own transaction. Failures surface as
    PersistFailedError.
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        db_pool: Optional[pool.ThreadedConnectionPool] = None,
    ):
        """
        Initialize the store.

        Args:
            config: Database configuration (required when db_pool is None)
            db_pool: Existing connection pool (creates new if None)
        """
        if config is None and db_pool is None:
            raise ValueError("ReviewStore needs a DatabaseConfig or a connection pool")
        self.config = config
        self._db_pool = db_pool
        self._own_pool = db_pool is None

    @property
    def db_pool(self) -> pool.ThreadedConnectionPool:
        """Lazy-initialize database connection pool."""
        if self._db_pool is None:
            self._db_pool = pool.ThreadedConnectionPool(
                minconn=self.config.pool_min_size,
                maxconn=self.config.pool_max_size,
                **self.config.connection_dict
            )
            logger.info(f"Database connection pool created: {self.config.host}:{self.config.port}/{self.config.name}")
        return self._db_pool

    @contextmanager
    def get_db_connection(self):
        """
        Get a database connection from the pool.

        Commits on success, rolls back and raises PersistFailedError on any
        failure.
        """
        conn = None
        try:
            conn = self.db_pool.getconn()
            yield conn
            conn.commit()
        except Exception as e:
            if conn:
                conn.rollback()
            raise PersistFailedError(f"Database operation failed: {e}") from e
        finally:
            if conn:
                self.db_pool.putconn(conn)

    def close(self):
        """Clean up resources."""
        if self._own_pool and self._db_pool is not None:
            self._db_pool.closeall()
            self._db_pool = None
            logger.info("Database connection pool closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def ensure_schema(self):
        """Create tables and indexes if missing."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        logger.info("Database schema ensured")

    def check_connection(self) -> bool:
        """Cheap connectivity check for health endpoints."""
        try:
            with self.get_db_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
            return True
        except PersistFailedError as e:
            logger.warning(f"DB health check failed: {e}")
            return False

    # =========================================================================
    # Targets
    # =========================================================================

    def get_active_targets(self) -> List[Target]:
        """
        Active targets with a place id.

        Single-target deployments have no location rows; the place id stored
        on the notification settings row is used as the only target.
        """
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, name, place_id, telegram_chat_id, active
                    FROM locations
                    WHERE active = TRUE AND place_id IS NOT NULL AND place_id <> ''
                    ORDER BY name, id
                """)
                rows = cur.fetchall()

        targets = [
            Target(
                id=str(row["id"]),
                name=row["name"] or "",
                place_id=row["place_id"],
                chat_id=row["telegram_chat_id"],
                active=row["active"],
            )
            for row in rows
        ]
        if targets:
            return targets

        settings = self.get_notification_settings()
        if settings is not None and settings.place_id:
            logger.debug("No location rows, using the notification settings place id")
            return [Target(
                id=DEFAULT_TARGET_ID,
                place_id=settings.place_id,
                chat_id=settings.chat_id,
            )]
        return []

    def get_admin_chat_id(self) -> Optional[str]:
        """Chat id of the active location row with no place id (the admin row)."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT telegram_chat_id
                    FROM locations
                    WHERE place_id IS NULL AND active = TRUE
                    ORDER BY created_at
                    LIMIT 1
                """)
                row = cur.fetchone()
        return row[0] if row and row[0] else None

    # =========================================================================
    # Reviews
    # =========================================================================

    def filter_and_insert_new(self, target: Target, candidates: List[Review]) -> List[Review]:
        """
        Insert the reviews of a batch not yet stored for this target.

        Args:
            target: Target the batch belongs to
            candidates: Canonical reviews from the source client

        Returns:
            The reviews confirmed inserted by this call (len() is the count)

        Raises:
            PersistFailedError: On any storage failure
        """
        if not candidates:
            return []

        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT external_id FROM reviews WHERE target_id = %s",
                    (target.id,),
                )
                existing = {row[0] for row in cur.fetchall()}

                new_reviews = select_new_reviews(candidates, existing)
                if not new_reviews:
                    return []

                values = [
                    tuple(r.to_row(target.id)[column] for column in REVIEW_COLUMNS)
                    for r in new_reviews
                ]
                returned = execute_values(
                    cur,
                    f"""
                    INSERT INTO reviews ({', '.join(REVIEW_COLUMNS)}) VALUES %s
                    ON CONFLICT (target_id, external_id) DO NOTHING
                    RETURNING external_id
                    """,
                    values,
                    page_size=len(values),
                    fetch=True,
                )
                inserted_ids = {row[0] for row in returned}

        inserted = [r for r in new_reviews if r.external_id in inserted_ids]
        skipped = len(new_reviews) - len(inserted)
        if skipped:
            logger.info(f"{target.id}: {skipped} review(s) already inserted by a concurrent writer")

        logger.debug(
            f"{target.id}: {len(candidates)} candidates, {len(existing)} existing, "
            f"{len(inserted)} inserted"
        )
        return inserted

    def list_reviews(
        self,
        target_id: Optional[str] = None,
        rating: Optional[int] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Reviews for the dashboard, newest first."""
        clauses = []
        params: List[Any] = []
        if target_id:
            clauses.append("target_id = %s")
            params.append(target_id)
        if rating is not None:
            clauses.append("rating = %s")
            params.append(rating)
        if search:
            clauses.append("(review_text ILIKE %s OR author_name ILIKE %s)")
            params.extend([f"%{search}%", f"%{search}%"])

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(f"""
                    SELECT target_id, external_id, author_name, author_photo_url,
                           rating, review_text, review_date, fetched_at
                    FROM reviews
                    {where}
                    ORDER BY review_date DESC, id DESC
                    LIMIT %s OFFSET %s
                """, params)
                return [dict(row) for row in cur.fetchall()]

    def get_ratings(self, target_id: Optional[str] = None) -> List[int]:
        """Every stored rating, for aggregate statistics."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                if target_id:
                    cur.execute("SELECT rating FROM reviews WHERE target_id = %s", (target_id,))
                else:
                    cur.execute("SELECT rating FROM reviews")
                return [int(row[0]) for row in cur.fetchall()]

    def get_daily_review_counts(self, days: int = 7, timezone_name: str = "UTC") -> List[Dict[str, Any]]:
        """
        Reviews ingested per local day over the last ``days`` days.

        Re-aggregated from the reviews table, never from the sync log.
        """
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT (fetched_at AT TIME ZONE %s)::date AS day, COUNT(*)
                    FROM reviews
                    WHERE fetched_at >= NOW() - make_interval(days => %s)
                    GROUP BY 1
                    ORDER BY 1
                """, (timezone_name, days))
                rows = cur.fetchall()
                cur.execute("SELECT (NOW() AT TIME ZONE %s)::date", (timezone_name,))
                today = cur.fetchone()[0]

        return fill_daily_counts(rows, end=today, days=days)

    # =========================================================================
    # Sync log
    # =========================================================================

    def insert_sync_log(self, entry: SyncLogEntry):
        """Append one sync log row."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO review_sync_logs
                        (target_id, status, fetched_count, inserted_count, message, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                """, (
                    entry.target_id,
                    entry.status.value,
                    entry.fetched_count,
                    entry.inserted_count,
                    entry.message[:2000],
                    entry.created_at,
                ))

    def list_sync_logs(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent sync log rows."""
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT target_id, status, fetched_count, inserted_count, message, created_at
                    FROM review_sync_logs
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                """, (limit,))
                return [dict(row) for row in cur.fetchall()]

    def count_sync_outcomes(self, since: datetime) -> Dict[str, int]:
        """Per-status counts of per-target sync log rows since a time."""
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT status, COUNT(*)
                    FROM review_sync_logs
                    WHERE created_at >= %s AND target_id IS NOT NULL
                    GROUP BY status
                """, (since,))
                return {row[0]: int(row[1]) for row in cur.fetchall()}

    # =========================================================================
    # Notification settings
    # =========================================================================

    def get_notification_settings(self) -> Optional[NotificationSettings]:
        """The single settings row, if one exists."""
        with self.get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, telegram_chat_id, place_id, is_active, notify_on_rating
                    FROM notification_settings
                    ORDER BY id
                    LIMIT 1
                """)
                row = cur.fetchone()

        if row is None:
            return None
        return NotificationSettings(
            id=row["id"],
            chat_id=row["telegram_chat_id"],
            place_id=row["place_id"],
            is_active=row["is_active"],
            notify_on_rating=(
                DEFAULT_NOTIFY_RATINGS if row["notify_on_rating"] is None else row["notify_on_rating"]
            ),
        )

    def save_notification_settings(self, settings: NotificationSettings) -> NotificationSettings:
        """Update the settings row, or create it on first save."""
        ratings = sorted(settings.notify_on_rating)
        with self.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id FROM notification_settings ORDER BY id LIMIT 1")
                row = cur.fetchone()
                if row:
                    cur.execute("""
                        UPDATE notification_settings
                        SET telegram_chat_id = %s, place_id = %s, is_active = %s,
                            notify_on_rating = %s, updated_at = %s
                        WHERE id = %s
                    """, (settings.chat_id, settings.place_id, settings.is_active, ratings, utcnow(), row[0]))
                    settings_id = row[0]
                else:
                    cur.execute("""
                        INSERT INTO notification_settings
                            (telegram_chat_id, place_id, is_active, notify_on_rating, updated_at)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING id
                    """, (settings.chat_id, settings.place_id, settings.is_active, ratings, utcnow()))
                    settings_id = cur.fetchone()[0]

        logger.info(f"Notification settings saved (id={settings_id})")
        return NotificationSettings(
            id=settings_id,
            chat_id=settings.chat_id,
            place_id=settings.place_id,
            is_active=settings.is_active,
            notify_on_rating=settings.notify_on_rating,
        )
