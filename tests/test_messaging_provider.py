from unittest.mock import Mock

import pytest
import requests

from review_autopilot.infrastructure.whatsapp import (
    CloudAPIProvider,
    RecipientRateLimiter,
    is_individual_number,
    normalize_phone,
)

from conftest import OWNER_PHONE, make_settings


@pytest.fixture
def session():
    session = Mock()
    response = Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = {"messages": [{"id": "wamid.1"}]}
    session.post.return_value = response
    return session


@pytest.fixture
def provider(session):
    return CloudAPIProvider.from_settings(make_settings(), session=session)


def test_phone_validation():
    assert normalize_phone("+92 300-1234567") == "923001234567"
    assert is_individual_number("+92 300 1234567")
    assert not is_individual_number("120363041234567890@g.us")
    assert not is_individual_number("12345")
    assert not is_individual_number("")


def test_sends_template_payload(provider, session):
    result = provider.send_reminder("+92 300 1234567", "Cafe X", "Ana", 2, 3)

    assert result.ok
    args, kwargs = session.post.call_args
    assert args[0] == "https://graph.facebook.com/v18.0/1234567890/messages"
    assert kwargs["headers"]["Authorization"] == "Bearer wa-token"
    payload = kwargs["json"]
    assert payload["to"] == OWNER_PHONE
    assert payload["template"]["name"] == "manual_review_reminder_v1"
    texts = [p["text"] for p in payload["template"]["components"][0]["parameters"]]
    assert texts == ["Cafe X", "2 stars", "Ana", "3"]


def test_positive_summary_truncates_reply(provider, session):
    provider.send_positive_summary(OWNER_PHONE, "Cafe X", 5, "Ana", "x" * 150)

    texts = [p["text"] for p in session.post.call_args.kwargs["json"]["template"]["components"][0]["parameters"]]
    assert texts[1] == "5 stars"
    assert texts[3] == "x" * 100 + "..."


def test_group_recipient_rejected(provider, session):
    result = provider.send_critical_alert("120363041234567890@g.us", "Cafe X", 1, "Ana", "Bad")

    assert not result.ok
    assert not result.skipped
    assert result.rejected
    session.post.assert_not_called()


def test_unconfigured_provider_skips(session):
    provider = CloudAPIProvider(session=session)

    result = provider.send_escalation(OWNER_PHONE, "Cafe X", "Ana", 1, 26)

    assert result.skipped
    assert not result.ok
    session.post.assert_not_called()


def test_api_error_is_reported(provider, session):
    session.post.side_effect = requests.ConnectionError("down")

    assert not provider.send_reminder(OWNER_PHONE, "Cafe X", "Ana", 2, 1).ok


def test_rate_limit_per_recipient(session):
    limiter = RecipientRateLimiter(max_per_hour=2)
    provider = CloudAPIProvider(
        access_token="wa-token", phone_number_id="1234567890", session=session, rate_limiter=limiter
    )

    results = [provider.send_reminder(OWNER_PHONE, "Cafe X", "Ana", 2, n).ok for n in range(3)]

    assert results == [True, True, False]
    assert provider.send_reminder("923009999999", "Cafe X", "Ana", 2, 1).ok
    assert session.post.call_count == 3


def test_rate_limit_window_slides():
    now = [0.0]
    limiter = RecipientRateLimiter(max_per_hour=1, clock=lambda: now[0])

    assert limiter.try_acquire(OWNER_PHONE)
    assert not limiter.try_acquire(OWNER_PHONE)
    now[0] = 3600.0
    assert limiter.try_acquire(OWNER_PHONE)


def test_rate_limiter_forgets_idle_recipients():
    now = [0.0]
    limiter = RecipientRateLimiter(max_per_hour=1, clock=lambda: now[0])

    assert limiter.try_acquire(OWNER_PHONE)
    now[0] = 3600.0
    assert limiter.try_acquire("923009999999")

    assert OWNER_PHONE not in limiter._sent
    assert list(limiter._sent) == ["923009999999"]
