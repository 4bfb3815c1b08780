"""
Google Places Review Client
===========================

Fetches reviews for a place from one of two upstream sources and
normalizes them into the canonical ``Review`` record.

Sources:
    serpapi        : SerpApi google_maps_reviews engine (paginated via
                     next_page_token, newest first)
    google_places  : Google Places Details API (fields=reviews, single page,
                     at most 5 reviews)

Normalization rules (same for both sources):
    - missing author           -> "Anonymous"
    - missing / invalid rating -> 0 (unknown)
    - review date              -> edit timestamp, then explicit date,
                                  then ingestion time
    - missing review id        -> "<place_id>_<epoch seconds>", or a hash of
                                  author and text when no date parses

Errors:
    Network failures, non-200 responses and embedded error fields raise
    FetchFailedError. The client never retries; the caller decides.
"""

import hashlib
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import requests

from .config import ConfigError, ReviewSourceConfig
from .review_models import (
    ANONYMOUS_AUTHOR,
    UNKNOWN_RATING,
    FetchResult,
    Review,
    ReviewPage,
    utcnow,
)

logger = logging.getLogger(__name__)


# Field names seen across upstream API versions, in precedence order
ID_FIELDS = ("review_id", "reviewId", "google_review_id")
AUTHOR_FIELDS = ("author_name", "author_title", "author")
PHOTO_FIELDS = ("profile_photo_url", "author_photo_url", "author_image")
TEXT_FIELDS = ("snippet", "text", "review_text")
EDIT_DATE_FIELDS = ("iso_date_of_last_edit", "edited_at")
DATE_FIELDS = ("iso_date", "publishTime", "time", "review_date", "date")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%Y",
    "%B %d, %Y",
    "%d %B %Y",
)


class FetchFailedError(Exception):
    """Upstream review source error or malformed response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Any] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


def parse_review_date(value: Any) -> Optional[datetime]:
    """
    Best-effort parse of an upstream date value.

    Accepts epoch seconds, ISO-8601 strings and a few absolute date formats.
    Relative strings such as "2 weeks ago" are not parseable and give None.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    if text.isdigit():
        return parse_review_date(int(text))

    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue

    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first_present(raw: Dict[str, Any], keys) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _normalize_rating(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return UNKNOWN_RATING
    try:
        rating = int(round(float(value)))
    except (TypeError, ValueError):
        return UNKNOWN_RATING
    if rating < 1:
        return UNKNOWN_RATING
    return min(rating, 5)


def _extract_author(raw: Dict[str, Any]):
    """Return (name, photo_url) from the flat or nested ``user`` shapes."""
    user = raw.get("user")
    name = None
    photo = None
    if isinstance(user, dict):
        name = user.get("name")
        photo = user.get("thumbnail")
    elif isinstance(user, str):
        name = user

    attribution = raw.get("authorAttribution")
    if isinstance(attribution, dict):
        name = name or attribution.get("displayName")
        photo = photo or attribution.get("photoUri")

    name = name or _first_present(raw, AUTHOR_FIELDS)
    photo = photo or _first_present(raw, PHOTO_FIELDS)

    name = str(name).strip() if name else ""
    return name or ANONYMOUS_AUTHOR, photo or None


def _extract_text(raw: Dict[str, Any]) -> str:
    text = _first_present(raw, TEXT_FIELDS)
    if text is None:
        extracted = raw.get("extracted_snippet")
        if isinstance(extracted, dict):
            text = extracted.get("original")
    if isinstance(text, dict):
        text = text.get("text") or text.get("original")
    return str(text).strip() if text else ""


def normalize_review(raw: Dict[str, Any], place_id: str, now: Optional[datetime] = None) -> Review:
    """
    Convert one raw upstream review into a canonical Review.

    Args:
        raw: Review object as returned by the upstream API
        place_id: External id of the place, used for derived review ids
        now: Ingestion time (default: current UTC time)

    Returns:
        Review with a non-null review_date
    """
    now = now or utcnow()

    author, photo = _extract_author(raw)
    text = _extract_text(raw)
    rating = _normalize_rating(raw.get("rating"))

    edited = None
    for key in EDIT_DATE_FIELDS:
        edited = parse_review_date(raw.get(key))
        if edited:
            break

    published = None
    for key in DATE_FIELDS:
        published = parse_review_date(raw.get(key))
        if published:
            break

    review_date = edited or published or now

    external_id = _first_present(raw, ID_FIELDS)
    if external_id is None:
        stamp = published or edited
        if stamp is not None:
            external_id = f"{place_id}_{int(stamp.timestamp())}"
        else:
            # author and text only; relative dates ("2 weeks ago") change between runs
            fingerprint = "|".join([author, text])
            digest = hashlib.sha1(fingerprint.encode("utf-8")).hexdigest()[:16]
            external_id = f"{place_id}_{digest}"

    return Review(
        external_id=str(external_id),
        author_name=author,
        rating=rating,
        review_date=review_date,
        text=text,
        author_photo_url=photo,
        fetched_at=now,
        date_is_fallback=edited is None and published is None,
    )


class ReviewSourceClient:
    """
    Base client: request plumbing, pagination and normalization.

    Subclasses implement ``_request_page`` for one upstream API and return
    the raw review list plus the next page token.
    """

    SOURCE_NAME = "base"

    def __init__(
        self,
        api_key: str,
        max_pages: int = 5,
        page_delay_seconds: float = 1.0,
        timeout: int = 30,
        language: str = "en",
    ):
        """
        Initialize client.

        Args:
            api_key: Upstream API key
            max_pages: Hard cap on pages followed per target
            page_delay_seconds: Pause between page fetches
            timeout: HTTP timeout in seconds
            language: Review language hint
        """
        if not api_key:
            raise ConfigError(f"{self.SOURCE_NAME} API key not configured")

        self.api_key = api_key
        self.max_pages = max_pages
        self.page_delay_seconds = page_delay_seconds
        self.timeout = timeout
        self.language = language

        self._requests_made = 0
        self._reviews_fetched = 0

    def fetch_reviews(self, place_id: str, page_token: Optional[str] = None) -> ReviewPage:
        """
        Fetch and normalize one page of reviews.

        Args:
            place_id: External place id (must be non-empty)
            page_token: Token returned with the previous page, if any

        Returns:
            ReviewPage with canonical reviews and the next page token

        Raises:
            ConfigError: If place_id is empty
            FetchFailedError: On any upstream failure
        """
        if not place_id or not str(place_id).strip():
            raise ConfigError("Target has no external place id configured")

        raw_reviews, next_token = self._request_page(place_id, page_token)

        now = utcnow()
        reviews = []
        for raw in raw_reviews:
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed review entry for {place_id}: {raw!r:.80}")
                continue
            reviews.append(normalize_review(raw, place_id, now=now))

        self._reviews_fetched += len(reviews)
        return ReviewPage(reviews=reviews, next_page_token=next_token or None)

    def fetch_all_reviews(self, place_id: str) -> FetchResult:
        """
        Follow next-page tokens until exhausted or the page cap is hit.

        Hitting the cap (or a repeated token) is a truncation, not an
        error: the pages fetched so far are returned.
        """
        result = FetchResult(place_id=place_id)
        seen_tokens = set()
        token = None

        while True:
            page = self.fetch_reviews(place_id, token)
            result.pages_fetched += 1
            result.reviews.extend(page.reviews)

            token = page.next_page_token
            if not token:
                break

            if token in seen_tokens:
                result.truncated = True
                logger.warning(
                    f"Pagination truncated for {place_id}: repeated page token "
                    f"after {result.pages_fetched} page(s)"
                )
                break

            if result.pages_fetched >= self.max_pages:
                result.truncated = True
                logger.warning(
                    f"Pagination truncated for {place_id}: page cap {self.max_pages} reached, "
                    f"{len(result.reviews)} reviews kept"
                )
                break

            seen_tokens.add(token)
            if self.page_delay_seconds > 0:
                time.sleep(self.page_delay_seconds)

        logger.info(
            f"{self.SOURCE_NAME}: {place_id} - {len(result.reviews)} reviews "
            f"in {result.pages_fetched} page(s)"
        )
        return result

    def _request_page(self, place_id: str, page_token: Optional[str]):
        raise NotImplementedError

    def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET a JSON document, mapping every failure to FetchFailedError."""
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchFailedError(f"{self.SOURCE_NAME} request failed: {e}")
        finally:
            self._requests_made += 1

        if response.status_code != 200:
            raise FetchFailedError(
                f"{self.SOURCE_NAME} error: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            raise FetchFailedError(
                f"{self.SOURCE_NAME} returned malformed JSON",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise FetchFailedError(f"{self.SOURCE_NAME} returned unexpected payload type")
        return data

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return {
            "source": self.SOURCE_NAME,
            "requests_made": self._requests_made,
            "reviews_fetched": self._reviews_fetched,
        }


class SerpApiReviewClient(ReviewSourceClient):
    """Reviews through the SerpApi google_maps_reviews engine."""

    SOURCE_NAME = "serpapi"
    BASE_URL = "https://serpapi.com/search.json"

    def _request_page(self, place_id: str, page_token: Optional[str]):
        params = {
            "engine": "google_maps_reviews",
            "api_key": self.api_key,
            "hl": self.language,
            "sort_by": "newestFirst",
        }
        # data ids look like "0x47d8a00baf21de75:0x52963a5addd52a99"
        if place_id.startswith("0x"):
            params["data_id"] = place_id
        else:
            params["place_id"] = place_id
        if page_token:
            params["next_page_token"] = page_token

        data = self._get_json(self.BASE_URL, params)

        status = (data.get("search_metadata") or {}).get("status")
        if data.get("error") or status == "Error":
            raise FetchFailedError(f"SerpApi error: {data.get('error') or status}", response=data)

        reviews = data.get("reviews") or []
        pagination = data.get("serpapi_pagination") or {}
        return reviews, pagination.get("next_page_token")


class GooglePlacesReviewClient(ReviewSourceClient):
    """Reviews through the Google Places Details API."""

    SOURCE_NAME = "google_places"
    BASE_URL = "https://maps.googleapis.com/maps/api/place/details/json"

    def _request_page(self, place_id: str, page_token: Optional[str]):
        params = {
            "place_id": place_id,
            "fields": "reviews",
            "key": self.api_key,
            "language": self.language,
            "reviews_sort": "newest",
        }

        data = self._get_json(self.BASE_URL, params)

        status = data.get("status")
        if status != "OK":
            raise FetchFailedError(
                f"Google Places API error: {status} - {data.get('error_message', 'Unknown error')}",
                response=data,
            )

        reviews = (data.get("result") or {}).get("reviews") or []
        return reviews, None


def create_review_client(config: ReviewSourceConfig) -> ReviewSourceClient:
    """Build the client for the configured source."""
    client_cls = GooglePlacesReviewClient if config.source == "google_places" else SerpApiReviewClient
    return client_cls(
        api_key=config.api_key,
        max_pages=config.max_pages,
        page_delay_seconds=config.page_delay_seconds,
        timeout=config.request_timeout,
        language=config.language,
    )
