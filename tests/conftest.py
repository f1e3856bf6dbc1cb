"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from review_autopilot.application import AutomationEngine
from review_autopilot.domain import ExternalReview
from review_autopilot.infrastructure.config import (
    AutomationSettings,
    GoogleSettings,
    LLMSettings,
    Settings,
    WhatsAppSettings,
)
from review_autopilot.infrastructure.persistence import (
    ManualQueueStore,
    OutletStore,
    ReviewStore,
    WorkflowStore,
    init_database,
)
from review_autopilot.infrastructure.whatsapp import MessagingProvider, SendResult

START = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

OWNER_PHONE = "923001234567"
SUPER_ADMIN_PHONE = "923009999999"
LOCATION = "accounts/1/locations/2"
REFRESH_TOKEN = "owner-refresh-token"


class FakeClock:
    """Mutable UTC clock for the engine."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGMB:
    """In-memory stand-in for GMBClient."""

    def __init__(self) -> None:
        self.reviews: Dict[str, List[ExternalReview]] = {}
        self.failing_locations = set()
        self.fail_post = False
        self.fetch_calls = []
        self.post_attempts = []

    def fetch_reviews(self, location_name, refresh_token, since=None):
        self.fetch_calls.append((location_name, since))
        if location_name in self.failing_locations:
            return None
        return list(self.reviews.get(location_name, []))

    def post_reply(self, location_name, review_id, text, refresh_token):
        self.post_attempts.append((location_name, review_id, text))
        return not self.fail_post


class FakeReplies:
    """Reply generator returning a fixed reply (or None to simulate failure)."""

    def __init__(self, reply: Optional[str] = "Thank you Ana, we hope to see you again soon!") -> None:
        self.reply = reply
        self.calls = []

    def generate_reply(self, review_text, rating, business_name, customer_name="Customer"):
        self.calls.append((review_text, rating, business_name, customer_name))
        return self.reply


class RecordingProvider(MessagingProvider):
    """Messaging provider that records template sends instead of calling WhatsApp."""

    def __init__(self) -> None:
        super().__init__()
        self.sent = []
        self.fail = False

    def send_template(self, phone, template_name, params):
        if self.fail:
            return SendResult(ok=False)
        self.sent.append((phone, template_name, list(params)))
        return SendResult(ok=True)

    def sent_with(self, template_name: str):
        return [s for s in self.sent if s[1] == template_name]


def make_external(
    review_id: str = "rev-1",
    rating: int = 5,
    comment: str = "Great coffee",
    reviewer_name: str = "Ana",
    update_time: Optional[datetime] = None,
    reply_comment: Optional[str] = None,
) -> ExternalReview:
    return ExternalReview(
        review_id=review_id,
        reviewer_name=reviewer_name,
        rating=rating,
        comment=comment,
        create_time=update_time,
        update_time=update_time,
        reply_comment=reply_comment,
    )


def make_settings(enabled: bool = True, **automation) -> Settings:
    return Settings(
        automation=AutomationSettings(enabled=enabled, **automation),
        google=GoogleSettings(client_id="client-id", client_secret="client-secret", retry_delay_seconds=1.0),
        whatsapp=WhatsAppSettings(access_token="wa-token", phone_number_id="1234567890"),
        llm=LLMSettings(api_key="llm-key"),
        database_file=":memory:",
        log_level="DEBUG",
    )


@pytest.fixture
def db(tmp_path):
    return init_database(str(tmp_path / "reviews.db"))


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def reviews(db):
    return ReviewStore(db)


@pytest.fixture
def workflows(db):
    return WorkflowStore(db)


@pytest.fixture
def queue(db):
    return ManualQueueStore(db)


@pytest.fixture
def outlets(db):
    return OutletStore(db)


@pytest.fixture
def owner_id(outlets):
    return outlets.add_user(
        "Owner", "owner@example.com", whatsapp_number=OWNER_PHONE, google_refresh_token=REFRESH_TOKEN
    )


@pytest.fixture
def super_admin_id(outlets):
    return outlets.add_user("Admin", "admin@example.com", role="SUPER_ADMIN", whatsapp_number=SUPER_ADMIN_PHONE)


@pytest.fixture
def outlet_id(outlets, owner_id):
    return outlets.add_outlet(owner_id, "Cafe X", google_location_name=LOCATION)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gmb():
    return FakeGMB()


@pytest.fixture
def replies():
    return FakeReplies()


@pytest.fixture
def messaging():
    return RecordingProvider()


@pytest.fixture
def engine(db, reviews, queue, workflows, outlets, gmb, replies, messaging, settings, clock, outlet_id):
    return AutomationEngine(
        db=db,
        reviews=reviews,
        queue=queue,
        workflows=workflows,
        outlets=outlets,
        gmb=gmb,
        replies=replies,
        messaging=messaging,
        settings=settings,
        clock=clock,
    )
