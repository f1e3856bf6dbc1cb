"""
Workflow Store - Authoritative Review State
============================================

Every state change is validated against the workflow graph and written
together with the reviews.status projection on the same connection, so the
two can never drift apart.
"""

import sqlite3
import logging
from datetime import datetime
from typing import List, Optional

from ...domain.models import PendingNotification, ReviewStatus, ReviewWorkflow
from ...domain.workflow import WorkflowNotFoundError, ensure_transition
from .database import Database, from_db_time, to_db_time, utc_now

logger = logging.getLogger(__name__)


class WorkflowStore:
    """CRUD and transitions for the review_workflows table."""

    def __init__(self, db: Database):
        self._db = db

    def create(
        self,
        review_id: str,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> ReviewWorkflow:
        """Create the PENDING workflow row for a new review (no-op if present)."""
        ts = to_db_time(now or utc_now())
        with self._db.transaction(conn) as c:
            c.execute(
                """INSERT OR IGNORE INTO review_workflows
                       (review_id, current_state, reminder_count, last_action_at, created_at, updated_at)
                   VALUES (?, ?, 0, ?, ?, ?)""",
                (review_id, ReviewStatus.PENDING.value, ts, ts, ts)
            )
            return self._require(c, review_id)

    def get(self, review_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[ReviewWorkflow]:
        with self._db.transaction(conn) as c:
            row = c.execute(
                "SELECT * FROM review_workflows WHERE review_id = ?", (review_id,)
            ).fetchone()
            return self._row_to_workflow(row) if row else None

    def transition(
        self,
        review_id: str,
        target: ReviewStatus,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
        next_reminder_at: Optional[datetime] = None,
        pending_notification: Optional[PendingNotification] = None,
    ) -> ReviewWorkflow:
        """
        Move a review to `target` and project the state onto reviews.status.

        Leaving the manual queue (ESCALATED/COMPLETED) clears the reminder
        timer. Raises InvalidTransitionError for edges outside the graph.
        """
        ts = to_db_time(now or utc_now())
        with self._db.transaction(conn) as c:
            current = self._require(c, review_id)
            ensure_transition(review_id, current.current_state, target)

            if target == ReviewStatus.MANUAL_PENDING:
                next_at = to_db_time(next_reminder_at)
            else:
                next_at = None

            c.execute(
                """UPDATE review_workflows
                   SET current_state = ?, next_reminder_at = ?, last_action_at = ?, updated_at = ?,
                       pending_notification = COALESCE(?, pending_notification)
                   WHERE review_id = ?""",
                (target.value, next_at, ts, ts,
                 pending_notification.value if pending_notification else None, review_id)
            )
            c.execute(
                "UPDATE reviews SET status = ?, updated_at = ? WHERE id = ?",
                (target.value, ts, review_id)
            )
            logger.debug(f"Review {review_id}: {current.current_state.value} -> {target.value}")
            return self._require(c, review_id)

    def record_reminder(
        self,
        review_id: str,
        reminder_count: int,
        next_reminder_at: Optional[datetime],
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> ReviewWorkflow:
        """Mirror the queue entry's counters after a reminder was sent."""
        ts = to_db_time(now or utc_now())
        with self._db.transaction(conn) as c:
            self._require(c, review_id)
            c.execute(
                """UPDATE review_workflows
                   SET reminder_count = ?, last_reminder_at = ?, next_reminder_at = ?,
                       last_action_at = ?, updated_at = ?
                   WHERE review_id = ?""",
                (reminder_count, ts, to_db_time(next_reminder_at), ts, ts, review_id)
            )
            return self._require(c, review_id)

    def clear_pending_notification(self, review_id: str, conn: Optional[sqlite3.Connection] = None) -> None:
        with self._db.transaction(conn) as c:
            c.execute(
                "UPDATE review_workflows SET pending_notification = NULL, updated_at = ? WHERE review_id = ?",
                (to_db_time(utc_now()), review_id)
            )

    def list_pending_notifications(self, limit: int = 100) -> List[ReviewWorkflow]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                """SELECT * FROM review_workflows
                   WHERE pending_notification IS NOT NULL
                   ORDER BY updated_at LIMIT ?""",
                (limit,)
            ).fetchall()
            return [self._row_to_workflow(row) for row in rows]

    def _require(self, conn: sqlite3.Connection, review_id: str) -> ReviewWorkflow:
        row = conn.execute(
            "SELECT * FROM review_workflows WHERE review_id = ?", (review_id,)
        ).fetchone()
        if row is None:
            raise WorkflowNotFoundError(f"Workflow not found for review {review_id}")
        return self._row_to_workflow(row)

    def _row_to_workflow(self, row: sqlite3.Row) -> ReviewWorkflow:
        pending = row["pending_notification"]
        return ReviewWorkflow(
            review_id=row["review_id"],
            current_state=ReviewStatus(row["current_state"]),
            reminder_count=row["reminder_count"],
            last_action_at=from_db_time(row["last_action_at"]),
            last_reminder_at=from_db_time(row["last_reminder_at"]),
            next_reminder_at=from_db_time(row["next_reminder_at"]),
            pending_notification=PendingNotification(pending) if pending else None,
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )
