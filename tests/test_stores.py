import sqlite3

import pytest

from review_autopilot.domain import ReviewStatus
from review_autopilot.infrastructure.persistence import ReviewNotFoundError

from conftest import LOCATION, OWNER_PHONE, REFRESH_TOKEN, START, SUPER_ADMIN_PHONE


# ── Reviews ────────────────────────────────────────────────────────

def test_create_and_find_review(reviews, outlet_id):
    review = reviews.create_review(outlet_id, 5, "Ana", "Lovely", external_review_id="ext-1")

    assert review.status == ReviewStatus.PENDING
    assert reviews.find_by_external_id("ext-1").id == review.id
    assert reviews.find_by_signature(outlet_id, "Ana", 5).id == review.id
    assert reviews.find_by_signature(outlet_id, "Ana", 4) is None


def test_duplicate_external_id_rejected(reviews, outlet_id):
    reviews.create_review(outlet_id, 5, "Ana", external_review_id="ext-1")

    with pytest.raises(sqlite3.IntegrityError):
        reviews.create_review(outlet_id, 4, "Bob", external_review_id="ext-1")


def test_rating_out_of_range_rejected(reviews, outlet_id):
    with pytest.raises(sqlite3.IntegrityError):
        reviews.create_review(outlet_id, 6, "Ana")


def test_update_review_only_touches_text_fields(reviews, outlet_id):
    review = reviews.create_review(outlet_id, 5, "Ana")

    updated = reviews.update_review(review.id, ai_reply_text="Thanks!")
    assert updated.ai_reply_text == "Thanks!"

    with pytest.raises(ValueError):
        reviews.update_review(review.id, status="CLOSED")

    with pytest.raises(ReviewNotFoundError):
        reviews.update_review("missing", ai_reply_text="x")


def test_transaction_rolls_back_on_error(db, reviews, workflows, outlet_id):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            review = reviews.create_review(outlet_id, 2, "Ana", conn=conn)
            workflows.create(review.id, conn=conn)
            raise RuntimeError("boom")

    assert reviews.count() == 0


def test_list_by_status(reviews, workflows, outlet_id):
    first = reviews.create_review(outlet_id, 5, "Ana")
    reviews.create_review(outlet_id, 4, "Bob")
    workflows.create(first.id)
    workflows.transition(first.id, ReviewStatus.AUTO_REPLIED)

    assert [r.id for r in reviews.list_by_status(ReviewStatus.AUTO_REPLIED)] == [first.id]
    assert len(reviews.list_by_status(ReviewStatus.PENDING)) == 1


def test_list_retryable_only_returns_work_a_retry_can_finish(reviews, workflows, outlets, owner_id, outlet_id):
    expired_id = outlets.add_outlet(owner_id, "Closed Cafe", subscription_status="EXPIRED")

    def auto_replied(outlet, name, reply="Thanks!", external_id=None):
        review = reviews.create_review(outlet, 5, name, external_review_id=external_id)
        workflows.create(review.id)
        workflows.transition(review.id, ReviewStatus.AUTO_REPLIED)
        if reply:
            reviews.update_review(review.id, ai_reply_text=reply)
        return review

    ready = auto_replied(outlet_id, "Ana", external_id="ext-1")
    auto_replied(outlet_id, "Bob", reply=None, external_id="ext-2")
    auto_replied(outlet_id, "Cy")
    auto_replied(expired_id, "Dee", external_id="ext-3")

    positive = reviews.create_review(outlet_id, 4, "Eve")
    reviews.create_review(outlet_id, 2, "Fay")
    reviews.create_review(expired_id, 5, "Gus")

    assert [r.id for r in reviews.list_retryable(ReviewStatus.AUTO_REPLIED)] == [ready.id]
    assert [r.id for r in reviews.list_retryable(ReviewStatus.PENDING)] == [positive.id]
    with pytest.raises(ValueError):
        reviews.list_retryable(ReviewStatus.CLOSED)


# ── Outlets ────────────────────────────────────────────────────────

def test_eligible_outlet_carries_owner_details(outlets, outlet_id):
    eligible = outlets.list_eligible_outlets()

    assert len(eligible) == 1
    outlet = eligible[0]
    assert outlet.id == outlet_id
    assert outlet.google_location_name == LOCATION
    assert outlet.owner_refresh_token == REFRESH_TOKEN
    assert outlet.owner_whatsapp_number == OWNER_PHONE
    assert outlet.has_platform_credentials


@pytest.mark.parametrize("field, value", [
    ("api_status", "DISABLED"),
    ("onboarding_status", "PENDING"),
    ("subscription_status", "EXPIRED"),
])
def test_outlet_needs_every_status_to_be_eligible(outlets, owner_id, field, value):
    outlets.add_outlet(owner_id, "Shop", google_location_name=LOCATION, **{field: value})

    assert outlets.list_eligible_outlets() == []


def test_super_admin_contacts(outlets, owner_id, super_admin_id):
    outlets.add_user("Silent", "silent@example.com", role="SUPER_ADMIN")

    contacts = outlets.list_super_admin_contacts()

    assert [c.whatsapp_number for c in contacts] == [SUPER_ADMIN_PHONE]
    assert outlets.get_contact(owner_id).whatsapp_number == OWNER_PHONE


def test_checkpoint_upsert(outlets, outlet_id):
    assert outlets.get_checkpoint(outlet_id) is None

    outlets.save_checkpoint(outlet_id, START)
    assert outlets.get_checkpoint(outlet_id) == START

    later = START.replace(hour=11)
    outlets.save_checkpoint(outlet_id, later)
    assert outlets.get_checkpoint(outlet_id) == later
