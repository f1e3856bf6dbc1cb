"""
Review Store - Review Persistence
==================================

Reviews are created by the automation engine the first time an external
review is seen; external_review_id is unique so ingestion is idempotent.
Status updates go through WorkflowStore, which keeps Review.status in step
with the workflow row.
"""

import sqlite3
import logging
from typing import List, Optional

from ...domain.models import POSITIVE_RATING_THRESHOLD, Review, ReviewStatus
from .database import Database, from_db_time, new_id, to_db_time, utc_now
from .outlet_store import (
    REQUIRED_API_STATUS,
    REQUIRED_ONBOARDING_STATUS,
    REQUIRED_SUBSCRIPTION_STATUS,
)

logger = logging.getLogger(__name__)


class ReviewNotFoundError(Exception):
    """Raised when a review id does not exist."""
    pass


class ReviewStore:
    """
    CRUD for the reviews table.

    Usage:
        store = ReviewStore(db)
        review = store.create_review(outlet_id, rating=5, customer_name="Ana",
                                     review_text="Great!", external_review_id="abc")
        store.find_by_external_id("abc")
    """

    # Columns callers may change through update_review()
    UPDATABLE_FIELDS = {"ai_reply_text", "manual_reply_text", "review_text", "customer_name"}

    def __init__(self, db: Database):
        self._db = db

    def create_review(
        self,
        outlet_id: str,
        rating: int,
        customer_name: str,
        review_text: str = "",
        external_review_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Review:
        """
        Insert a new PENDING review.

        Raises sqlite3.IntegrityError when external_review_id already exists.
        """
        review_id = new_id()
        now = to_db_time(utc_now())
        with self._db.transaction(conn) as c:
            c.execute(
                """INSERT INTO reviews (id, outlet_id, external_review_id, rating, customer_name,
                                        review_text, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (review_id, outlet_id, external_review_id or None, rating, customer_name,
                 review_text or "", ReviewStatus.PENDING.value, now, now)
            )
            return self._get(c, review_id)

    def update_review(self, review_id: str, conn: Optional[sqlite3.Connection] = None, **updates) -> Review:
        """Update free-form review fields (not status)."""
        unknown = set(updates) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update review fields: {sorted(unknown)}")

        with self._db.transaction(conn) as c:
            if updates:
                set_clause = ", ".join(f"{k} = ?" for k in updates)
                values = list(updates.values()) + [to_db_time(utc_now()), review_id]
                c.execute(f"UPDATE reviews SET {set_clause}, updated_at = ? WHERE id = ?", values)
            return self._get(c, review_id)

    def get(self, review_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Review]:
        with self._db.transaction(conn) as c:
            row = c.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
            return self._row_to_review(row) if row else None

    def find_by_external_id(self, external_review_id: str) -> Optional[Review]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reviews WHERE external_review_id = ?", (external_review_id,)
            ).fetchone()
            return self._row_to_review(row) if row else None

    def find_by_signature(self, outlet_id: str, customer_name: str, rating: int) -> Optional[Review]:
        """Fallback duplicate check for platform reviews without a stable id."""
        with self._db.transaction() as conn:
            row = conn.execute(
                """SELECT * FROM reviews
                   WHERE outlet_id = ? AND customer_name = ? AND rating = ?
                   ORDER BY created_at LIMIT 1""",
                (outlet_id, customer_name, rating)
            ).fetchone()
            return self._row_to_review(row) if row else None

    def list_by_status(self, status: ReviewStatus, limit: int = 100) -> List[Review]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM reviews WHERE status = ? ORDER BY created_at LIMIT ?",
                (status.value, limit)
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def list_retryable(self, status: ReviewStatus) -> List[Review]:
        """
        Reviews a retry can still move forward, on currently eligible outlets.

        AUTO_REPLIED: the reply text and Google review id are both present.
        PENDING: positive reviews still waiting for an AI reply.
        """
        if status == ReviewStatus.AUTO_REPLIED:
            condition = "r.ai_reply_text IS NOT NULL AND r.external_review_id IS NOT NULL"
            params = []
        elif status == ReviewStatus.PENDING:
            condition = "r.rating >= ?"
            params = [POSITIVE_RATING_THRESHOLD]
        else:
            raise ValueError(f"No retry path for status {status.value}")

        with self._db.transaction() as conn:
            rows = conn.execute(
                f"""SELECT r.* FROM reviews r
                    JOIN outlets o ON o.id = r.outlet_id
                    WHERE r.status = ?
                      AND o.api_status = ?
                      AND o.onboarding_status = ?
                      AND o.subscription_status = ?
                      AND {condition}
                    ORDER BY r.created_at""",
                [status.value, REQUIRED_API_STATUS, REQUIRED_ONBOARDING_STATUS,
                 REQUIRED_SUBSCRIPTION_STATUS] + params
            ).fetchall()
            return [self._row_to_review(row) for row in rows]

    def count(self) -> int:
        with self._db.transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM reviews").fetchone()[0]

    def _get(self, conn: sqlite3.Connection, review_id: str) -> Review:
        row = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
        if row is None:
            raise ReviewNotFoundError(f"Review not found: {review_id}")
        return self._row_to_review(row)

    def _row_to_review(self, row: sqlite3.Row) -> Review:
        """Convert database row to Review object."""
        return Review(
            id=row["id"],
            outlet_id=row["outlet_id"],
            external_review_id=row["external_review_id"],
            rating=row["rating"],
            customer_name=row["customer_name"],
            review_text=row["review_text"] or "",
            ai_reply_text=row["ai_reply_text"],
            manual_reply_text=row["manual_reply_text"],
            status=ReviewStatus(row["status"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )
