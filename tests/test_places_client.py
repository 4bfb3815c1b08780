"""
Tests for the review source clients.

Note: These tests mock requests.get; no SerpApi or Google call is made.
"""

from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
import requests

from placewatch.data.config import ConfigError, ReviewSourceConfig
from placewatch.data.places_client import (
    FetchFailedError,
    GooglePlacesReviewClient,
    SerpApiReviewClient,
    create_review_client,
    normalize_review,
    parse_review_date,
)

NOW = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def json_response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = str(payload)
    return response


def serp_page(reviews, next_token=None):
    payload = {"search_metadata": {"status": "Success"}, "reviews": reviews}
    if next_token:
        payload["serpapi_pagination"] = {"next_page_token": next_token}
    return json_response(payload)


class TestParseReviewDate:

    def test_iso_with_z(self):
        assert parse_review_date("2024-03-05T10:15:00Z") == datetime(2024, 3, 5, 10, 15, tzinfo=timezone.utc)

    def test_epoch_seconds(self):
        assert parse_review_date(1700000000) == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert parse_review_date("1700000000") == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_relative_string_is_unparseable(self):
        assert parse_review_date("2 weeks ago") is None

    def test_garbage(self):
        assert parse_review_date(None) is None
        assert parse_review_date("") is None
        assert parse_review_date({"x": 1}) is None


class TestNormalizeReview:
    """Tests for the raw-to-canonical mapping."""

    def test_serpapi_shape(self):
        raw = {
            "review_id": "Ci9DQUlR",
            "user": {"name": "Bob", "thumbnail": "https://img/bob.png"},
            "rating": 4.0,
            "snippet": "Tasty",
            "iso_date": "2024-05-20T09:00:00Z",
        }
        review = normalize_review(raw, "place-1", now=NOW)

        assert review.external_id == "Ci9DQUlR"
        assert review.author_name == "Bob"
        assert review.author_photo_url == "https://img/bob.png"
        assert review.rating == 4
        assert review.text == "Tasty"
        assert review.review_date == datetime(2024, 5, 20, 9, 0, tzinfo=timezone.utc)
        assert review.date_is_fallback is False

    def test_google_places_shape_derives_id_from_time(self):
        raw = {"author_name": "Carol", "rating": 2, "text": "Cold fries", "time": 1700000000}
        review = normalize_review(raw, "ChIJabc", now=NOW)

        assert review.external_id == "ChIJabc_1700000000"
        assert review.author_name == "Carol"

    def test_edit_date_takes_precedence(self):
        raw = {
            "review_id": "x",
            "iso_date": "2024-01-01T00:00:00Z",
            "iso_date_of_last_edit": "2024-02-01T00:00:00Z",
        }
        review = normalize_review(raw, "p", now=NOW)
        assert review.review_date == datetime(2024, 2, 1, tzinfo=timezone.utc)

    def test_unparseable_date_falls_back_to_now(self):
        raw = {"review_id": "x", "date": "3 months ago", "rating": 5}
        review = normalize_review(raw, "p", now=NOW)

        assert review.review_date == NOW
        assert review.date_is_fallback is True

    def test_missing_fields_get_defaults(self):
        review = normalize_review({"review_id": "x"}, "p", now=NOW)

        assert review.author_name == "Anonymous"
        assert review.rating == 0
        assert review.text == ""

    def test_out_of_range_ratings(self):
        assert normalize_review({"review_id": "a", "rating": 7}, "p", now=NOW).rating == 5
        assert normalize_review({"review_id": "b", "rating": -1}, "p", now=NOW).rating == 0
        assert normalize_review({"review_id": "c", "rating": "n/a"}, "p", now=NOW).rating == 0

    def test_derived_id_without_date_is_stable(self):
        raw = {"user": "Dan", "snippet": "ok", "date": "a week ago"}
        first = normalize_review(raw, "p", now=NOW)
        second = normalize_review(raw, "p", now=datetime(2025, 1, 1, tzinfo=timezone.utc))

        assert first.external_id.startswith("p_")
        assert first.external_id == second.external_id

    def test_derived_id_survives_relative_date_drift(self):
        earlier = normalize_review({"user": "Dan", "snippet": "ok", "date": "2 weeks ago"}, "p", now=NOW)
        later = normalize_review({"user": "Dan", "snippet": "ok", "date": "3 weeks ago"}, "p", now=NOW)

        assert earlier.external_id == later.external_id
        assert later.date_is_fallback is True


class TestSerpApiClient:
    """Tests for SerpApi pagination and error mapping."""

    def test_requires_api_key(self):
        with pytest.raises(ConfigError):
            SerpApiReviewClient(api_key="")

    def test_empty_place_id(self):
        client = SerpApiReviewClient(api_key="k")
        with pytest.raises(ConfigError):
            client.fetch_reviews("  ")

    @patch("placewatch.data.places_client.time.sleep")
    @patch("placewatch.data.places_client.requests.get")
    def test_follows_pages(self, mock_get, mock_sleep):
        mock_get.side_effect = [
            serp_page([{"review_id": "a", "rating": 5}], next_token="t1"),
            serp_page([{"review_id": "b", "rating": 3}]),
        ]
        client = SerpApiReviewClient(api_key="k", page_delay_seconds=1.0)

        result = client.fetch_all_reviews("ChIJplace")

        assert [r.external_id for r in result.reviews] == ["a", "b"]
        assert result.pages_fetched == 2
        assert result.truncated is False
        mock_sleep.assert_called_once_with(1.0)

        second_params = mock_get.call_args_list[1].kwargs["params"]
        assert second_params["next_page_token"] == "t1"
        assert second_params["place_id"] == "ChIJplace"
        assert second_params["engine"] == "google_maps_reviews"

        stats = client.get_stats()
        assert stats["requests_made"] == 2
        assert stats["reviews_fetched"] == 2

    @patch("placewatch.data.places_client.time.sleep")
    @patch("placewatch.data.places_client.requests.get")
    def test_page_cap_truncates(self, mock_get, mock_sleep):
        mock_get.side_effect = [
            serp_page([{"review_id": f"r{i}"}], next_token=f"t{i}") for i in range(5)
        ]
        client = SerpApiReviewClient(api_key="k", max_pages=3)

        result = client.fetch_all_reviews("p")

        assert result.pages_fetched == 3
        assert result.truncated is True
        assert len(result.reviews) == 3

    @patch("placewatch.data.places_client.time.sleep")
    @patch("placewatch.data.places_client.requests.get")
    def test_repeated_token_truncates(self, mock_get, mock_sleep):
        mock_get.side_effect = [
            serp_page([{"review_id": "a"}], next_token="same"),
            serp_page([{"review_id": "b"}], next_token="same"),
        ]
        client = SerpApiReviewClient(api_key="k", max_pages=10)

        result = client.fetch_all_reviews("p")

        assert result.pages_fetched == 2
        assert result.truncated is True

    @patch("placewatch.data.places_client.requests.get")
    def test_data_id_parameter(self, mock_get):
        mock_get.return_value = serp_page([])
        client = SerpApiReviewClient(api_key="k")

        client.fetch_reviews("0x47d8a00baf21de75:0x52963a5addd52a99")

        params = mock_get.call_args.kwargs["params"]
        assert params["data_id"].startswith("0x")
        assert "place_id" not in params

    @patch("placewatch.data.places_client.requests.get")
    def test_http_error(self, mock_get):
        mock_get.return_value = json_response({"error": "bad"}, status_code=401)
        client = SerpApiReviewClient(api_key="k")

        with pytest.raises(FetchFailedError) as exc_info:
            client.fetch_reviews("p")
        assert exc_info.value.status_code == 401

    @patch("placewatch.data.places_client.requests.get")
    def test_error_field_in_body(self, mock_get):
        mock_get.return_value = json_response({"error": "Invalid API key."})
        client = SerpApiReviewClient(api_key="k")

        with pytest.raises(FetchFailedError, match="Invalid API key"):
            client.fetch_reviews("p")

    @patch("placewatch.data.places_client.requests.get")
    def test_network_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("boom")
        client = SerpApiReviewClient(api_key="k")

        with pytest.raises(FetchFailedError):
            client.fetch_reviews("p")

    @patch("placewatch.data.places_client.requests.get")
    def test_malformed_json(self, mock_get):
        response = json_response(None)
        response.json.side_effect = ValueError("no json")
        mock_get.return_value = response
        client = SerpApiReviewClient(api_key="k")

        with pytest.raises(FetchFailedError, match="malformed"):
            client.fetch_reviews("p")

    @patch("placewatch.data.places_client.requests.get")
    def test_malformed_entries_are_skipped(self, mock_get):
        mock_get.return_value = serp_page(["not a review", {"review_id": "ok"}])
        client = SerpApiReviewClient(api_key="k")

        page = client.fetch_reviews("p")

        assert [r.external_id for r in page.reviews] == ["ok"]


class TestGooglePlacesClient:

    @patch("placewatch.data.places_client.requests.get")
    def test_single_page(self, mock_get):
        mock_get.return_value = json_response({
            "status": "OK",
            "result": {"reviews": [{"author_name": "Eve", "rating": 1, "time": 1700000000}]},
        })
        client = GooglePlacesReviewClient(api_key="k")

        result = client.fetch_all_reviews("ChIJx")

        assert result.pages_fetched == 1
        assert result.reviews[0].external_id == "ChIJx_1700000000"
        assert mock_get.call_args.kwargs["params"]["fields"] == "reviews"

    @patch("placewatch.data.places_client.requests.get")
    def test_status_not_ok(self, mock_get):
        mock_get.return_value = json_response({"status": "REQUEST_DENIED", "error_message": "key"})
        client = GooglePlacesReviewClient(api_key="k")

        with pytest.raises(FetchFailedError, match="REQUEST_DENIED"):
            client.fetch_reviews("ChIJx")


class TestCreateReviewClient:

    def test_selects_source(self):
        serp = create_review_client(ReviewSourceConfig(source="serpapi", serpapi_key="s"))
        places = create_review_client(ReviewSourceConfig(source="google_places", google_places_api_key="g"))

        assert isinstance(serp, SerpApiReviewClient)
        assert isinstance(places, GooglePlacesReviewClient)
        assert places.api_key == "g"
