from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from review_autopilot.infrastructure.gmb import GMBClient, parse_timestamp, rating_to_number

from conftest import LOCATION, make_settings


def _response(payload=None, status=200):
    response = Mock()
    response.status_code = status
    response.json.return_value = payload or {}
    if status >= 400:
        error = requests.HTTPError(f"{status} error")
        error.response = response
        response.raise_for_status.side_effect = error
    else:
        response.raise_for_status.return_value = None
    return response


def _raw_review(review_id, star="FIVE", update_time="2024-05-01T10:00:00Z", reply=None):
    raw = {
        "reviewId": review_id,
        "reviewer": {"displayName": "Ana"},
        "starRating": star,
        "comment": "Great",
        "createTime": update_time,
        "updateTime": update_time,
    }
    if reply:
        raw["reviewReply"] = {"comment": reply}
    return raw


@pytest.fixture
def session():
    session = Mock()
    session.post.return_value = _response({"access_token": "access"})
    return session


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return GMBClient(make_settings(), session=session, sleep=sleeps.append)


def test_rating_and_timestamp_parsing():
    assert rating_to_number("FOUR") == 4
    assert rating_to_number("STAR_RATING_UNSPECIFIED") == 0
    assert parse_timestamp("2024-05-01T10:00:00.123456789Z") == datetime(
        2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc
    )
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_fetch_maps_reviews(client, session):
    session.get.return_value = _response({"reviews": [
        _raw_review("r1"),
        {"name": "accounts/1/locations/2/reviews/r2", "starRating": "TWO", "reviewReply": {"comment": "Sorry"}},
    ]})

    reviews = client.fetch_reviews(LOCATION, "refresh")

    assert [r.review_id for r in reviews] == ["r1", "r2"]
    assert reviews[0].rating == 5
    assert reviews[0].reviewer_name == "Ana"
    assert reviews[1].reviewer_name == "Customer"
    assert reviews[1].comment == ""
    assert reviews[1].has_reply
    args, kwargs = session.get.call_args
    assert args[0] == f"https://mybusiness.googleapis.com/v4/{LOCATION}/reviews"
    assert kwargs["headers"]["Authorization"] == "Bearer access"
    assert kwargs["params"] == {"pageSize": 50}


def test_fetch_filters_by_since(client, session):
    session.get.return_value = _response({"reviews": [
        _raw_review("old", update_time="2024-04-30T10:00:00Z"),
        _raw_review("new", update_time="2024-05-02T10:00:00Z"),
        {"reviewId": "undated", "starRating": "ONE"},
    ]})

    reviews = client.fetch_reviews(LOCATION, "refresh", since=datetime(2024, 5, 1, tzinfo=timezone.utc))

    assert [r.review_id for r in reviews] == ["new", "undated"]


def test_fetch_stops_at_page_ceiling(client, session):
    session.get.side_effect = [
        _response({"reviews": [_raw_review(f"r{i}")], "nextPageToken": f"p{i + 1}"}) for i in range(10)
    ]

    reviews = client.fetch_reviews(LOCATION, "refresh")

    assert len(reviews) == 5
    assert session.get.call_count == 5
    assert session.get.call_args.kwargs["params"] == {"pageSize": 50, "pageToken": "p4"}


def test_fetch_returns_none_when_a_page_fails(client, session):
    session.get.side_effect = [
        _response({"reviews": [_raw_review("r1")], "nextPageToken": "p2"}),
        _response(status=503),
    ]

    assert client.fetch_reviews(LOCATION, "refresh") is None


def test_fetch_returns_empty_list_when_nothing_new(client, session):
    session.get.return_value = _response({})

    assert client.fetch_reviews(LOCATION, "refresh") == []


def test_token_refresh_backs_off_then_fails(client, session, sleeps):
    session.post.return_value = _response(status=401)

    assert client.fetch_reviews(LOCATION, "revoked") is None
    assert session.post.call_count == 4
    assert sleeps == [1.0, 2.0, 4.0]
    session.get.assert_not_called()


def test_token_refresh_recovers_after_transient_error(client, session, sleeps):
    session.post.side_effect = [requests.ConnectionError("reset"), _response({"access_token": "access"})]

    assert client.refresh_access_token("refresh") == "access"
    assert sleeps == [1.0]
    assert session.post.call_args.kwargs["data"]["grant_type"] == "refresh_token"


def test_post_reply(client, session):
    session.put.return_value = _response({"comment": "Thanks"})

    assert client.post_reply(LOCATION, "r1", "Thanks", "refresh") is True

    args, kwargs = session.put.call_args
    assert args[0].endswith(f"{LOCATION}/reviews/r1/reply")
    assert kwargs["json"] == {"comment": "Thanks"}


def test_post_reply_failure(client, session):
    session.put.return_value = _response(status=403)

    assert client.post_reply(LOCATION, "r1", "Thanks", "refresh") is False
