from datetime import timedelta

import pytest

from review_autopilot.domain import ManualQueueStatus, ReviewStatus
from review_autopilot.infrastructure.persistence import ManualQueueStore, QueueEntryNotFoundError

from conftest import START


@pytest.fixture
def review(reviews, workflows, outlet_id):
    review = reviews.create_review(outlet_id, 1, "Ana", "Never again", external_review_id="ext-q")
    workflows.create(review.id)
    workflows.transition(review.id, ReviewStatus.MANUAL_PENDING, next_reminder_at=START)
    return review


def test_first_reminder_is_fifteen_minutes_after_queueing(queue, review, outlet_id):
    entry = queue.add_to_queue(review.id, outlet_id, now=START)

    assert entry.status == ManualQueueStatus.PENDING
    assert entry.reminder_count == 0
    assert entry.next_reminder_at == START + timedelta(minutes=15)


def test_add_to_queue_returns_existing_entry(queue, review, outlet_id):
    first = queue.add_to_queue(review.id, outlet_id, now=START)
    second = queue.add_to_queue(review.id, outlet_id, now=START + timedelta(hours=1))

    assert second.id == first.id
    assert second.next_reminder_at == first.next_reminder_at


def test_only_due_entries_are_pending(queue, review, outlet_id):
    queue.add_to_queue(review.id, outlet_id, now=START)

    assert queue.get_pending_reminders(now=START + timedelta(minutes=14)) == []
    assert len(queue.get_pending_reminders(now=START + timedelta(minutes=15))) == 1


def test_reminder_schedule_is_indexed_by_reminders_sent(queue):
    assert [queue.next_delay(n) for n in range(1, 5)] == [
        timedelta(hours=2), timedelta(hours=6), timedelta(hours=12), timedelta(hours=24)
    ]
    assert queue.next_delay(9) == timedelta(hours=24)


def test_entry_escalates_when_reminders_run_out(queue, review, outlet_id):
    entry = queue.add_to_queue(review.id, outlet_id, now=START)
    now = START
    for expected in range(1, 5):
        entry = queue.update_reminder_sent(entry.id, now=now)
        assert entry.reminder_count == expected
        assert entry.status == ManualQueueStatus.PENDING
        assert entry.next_reminder_at == now + queue.next_delay(expected)

    entry = queue.update_reminder_sent(entry.id, now=now)

    assert entry.reminder_count == 5
    assert entry.status == ManualQueueStatus.ESCALATED
    assert entry.next_reminder_at is None


def test_terminal_entry_is_not_advanced(queue, review, outlet_id):
    entry = queue.add_to_queue(review.id, outlet_id, now=START)
    queue.mark_as_responded(entry.id)

    after = queue.update_reminder_sent(entry.id, now=START)

    assert after.status == ManualQueueStatus.RESPONDED
    assert after.reminder_count == 0
    assert queue.get_pending_reminders(now=START + timedelta(days=1)) == []


def test_custom_max_reminders(db, review, outlet_id):
    queue = ManualQueueStore(db, max_reminders=2, reminder_schedule_minutes=(10, 20))
    entry = queue.add_to_queue(review.id, outlet_id, now=START)

    queue.update_reminder_sent(entry.id, now=START)
    entry = queue.update_reminder_sent(entry.id, now=START)

    assert entry.status == ManualQueueStatus.ESCALATED


def test_unknown_entry_raises(queue):
    with pytest.raises(QueueEntryNotFoundError):
        queue.update_reminder_sent("missing")


def test_empty_schedule_rejected(db):
    with pytest.raises(ValueError):
        ManualQueueStore(db, reminder_schedule_minutes=())


def test_lookup_by_id_and_status(queue, review, outlet_id):
    entry = queue.add_to_queue(review.id, outlet_id, now=START)

    assert queue.get(entry.id).review_id == review.id
    assert queue.get("missing") is None
    assert [e.id for e in queue.list_by_status(ManualQueueStatus.PENDING)] == [entry.id]

    queue.mark_as_responded(entry.id)
    assert queue.list_by_status(ManualQueueStatus.PENDING) == []
    assert queue.get_by_review_id(review.id).next_reminder_at is None
