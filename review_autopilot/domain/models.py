"""
Domain Models - Reviews, Manual Queue and Workflow Records
===========================================================

Plain dataclasses shared by the persistence layer and the automation engine.
No I/O here.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ReviewStatus(Enum):
    """Lifecycle state of a review (also used as the workflow state)."""
    PENDING = "PENDING"
    AUTO_REPLIED = "AUTO_REPLIED"
    MANUAL_PENDING = "MANUAL_PENDING"
    CLOSED = "CLOSED"
    ESCALATED = "ESCALATED"
    COMPLETED = "COMPLETED"


class ManualQueueStatus(Enum):
    """Status of a manual-handling queue entry."""
    PENDING = "PENDING"
    RESPONDED = "RESPONDED"
    ESCALATED = "ESCALATED"


class PendingNotification(Enum):
    """Notification recorded as owed before it is actually sent."""
    CRITICAL_ALERT = "critical_alert"
    POSITIVE_SUMMARY = "positive_summary"


POSITIVE_RATING_THRESHOLD = 4


def is_positive_rating(rating: int) -> bool:
    """4-5 stars go to the auto-reply path, 1-3 stars to manual handling."""
    return rating >= POSITIVE_RATING_THRESHOLD


@dataclass
class Review:
    """Review record from database."""
    id: str
    outlet_id: str
    rating: int
    customer_name: str
    review_text: str
    status: ReviewStatus
    created_at: datetime
    updated_at: datetime
    external_review_id: Optional[str] = None
    ai_reply_text: Optional[str] = None
    manual_reply_text: Optional[str] = None

    @property
    def is_positive(self) -> bool:
        return is_positive_rating(self.rating)


@dataclass
class ManualQueueEntry:
    """One entry per review waiting for a manual reply."""
    id: str
    review_id: str
    outlet_id: str
    reminder_count: int
    status: ManualQueueStatus
    created_at: datetime
    updated_at: datetime
    assigned_admin_id: Optional[str] = None
    next_reminder_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ManualQueueStatus.RESPONDED, ManualQueueStatus.ESCALATED)


@dataclass
class ReviewWorkflow:
    """Authoritative state-machine row for a review."""
    review_id: str
    current_state: ReviewStatus
    reminder_count: int
    last_action_at: datetime
    created_at: datetime
    updated_at: datetime
    last_reminder_at: Optional[datetime] = None
    next_reminder_at: Optional[datetime] = None
    pending_notification: Optional[PendingNotification] = None


@dataclass
class Contact:
    """A user that can be notified over WhatsApp."""
    id: str
    name: str
    whatsapp_number: Optional[str] = None


@dataclass
class EligibleOutlet:
    """
    Outlet allowed to run automation, joined with its owner's details.

    Outlets and users are owned by the account/billing side of the product;
    the automation engine only reads them.
    """
    id: str
    name: str
    user_id: str
    google_location_name: Optional[str] = None
    owner_refresh_token: Optional[str] = None
    owner_whatsapp_number: Optional[str] = None

    @property
    def has_platform_credentials(self) -> bool:
        return bool(self.owner_refresh_token and self.google_location_name)


@dataclass
class ExternalReview:
    """A review as reported by Google Business Profile."""
    review_id: str
    reviewer_name: str
    rating: int
    comment: str
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    reply_comment: Optional[str] = None

    @property
    def has_reply(self) -> bool:
        return bool(self.reply_comment)
