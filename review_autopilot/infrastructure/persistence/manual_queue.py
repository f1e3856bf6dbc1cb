"""
Manual Review Queue - Reminder Bookkeeping for Critical Reviews
================================================================

One entry per review that needs a manual reply. The queue is the source
of truth for reminder timing:

    reminder #1 at created + 15m, then +2h, +6h, +12h, +24h ...
    after max_reminders reminders the entry becomes ESCALATED.
"""

import sqlite3
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from ...domain.models import ManualQueueEntry, ManualQueueStatus
from ...domain.workflow import REMINDER_TERMINAL_STATES
from .database import Database, from_db_time, new_id, to_db_time, utc_now

logger = logging.getLogger(__name__)


class QueueEntryNotFoundError(Exception):
    """Raised when a queue entry id does not exist."""
    pass


class ManualQueueStore:
    """
    Manual queue persistence with escalating reminder schedule.

    Usage:
        queue = ManualQueueStore(db, max_reminders=5,
                                 reminder_schedule_minutes=(15, 120, 360, 720, 1440))
        entry = queue.add_to_queue(review.id, outlet.id)
        for due in queue.get_pending_reminders():
            queue.update_reminder_sent(due.id)
    """

    def __init__(
        self,
        db: Database,
        max_reminders: int = 5,
        reminder_schedule_minutes: Sequence[int] = (15, 120, 360, 720, 1440),
        first_reminder_minutes: int = 15,
    ):
        if not reminder_schedule_minutes:
            raise ValueError("reminder_schedule_minutes must not be empty")
        self._db = db
        self.max_reminders = max_reminders
        self.reminder_schedule = [timedelta(minutes=m) for m in reminder_schedule_minutes]
        self.first_reminder_delay = timedelta(minutes=first_reminder_minutes)

    def add_to_queue(
        self,
        review_id: str,
        outlet_id: str,
        assigned_admin_id: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> ManualQueueEntry:
        """Queue a review; returns the existing entry if it is already queued."""
        now = now or utc_now()
        with self._db.transaction(conn) as c:
            existing = c.execute(
                "SELECT * FROM manual_review_queue WHERE review_id = ?", (review_id,)
            ).fetchone()
            if existing:
                logger.warning(f"Review {review_id} already in manual queue")
                return self._row_to_entry(existing)

            entry_id = new_id()
            ts = to_db_time(now)
            c.execute(
                """INSERT INTO manual_review_queue
                       (id, review_id, outlet_id, assigned_admin_id, reminder_count,
                        next_reminder_at, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 0, ?, ?, ?, ?)""",
                (entry_id, review_id, outlet_id, assigned_admin_id,
                 to_db_time(now + self.first_reminder_delay),
                 ManualQueueStatus.PENDING.value, ts, ts)
            )
            return self._require(c, entry_id)

    def get_pending_reminders(self, now: Optional[datetime] = None) -> List[ManualQueueEntry]:
        """
        Entries whose reminder is due.

        Entries of reviews whose workflow already reached a terminal state
        are excluded even when their timer is stale.
        """
        now = now or utc_now()
        terminal = [state.value for state in REMINDER_TERMINAL_STATES]
        placeholders = ", ".join("?" for _ in terminal)
        with self._db.transaction() as conn:
            rows = conn.execute(
                f"""SELECT q.* FROM manual_review_queue q
                    LEFT JOIN review_workflows w ON w.review_id = q.review_id
                    WHERE q.status = ?
                      AND q.next_reminder_at IS NOT NULL
                      AND q.next_reminder_at <= ?
                      AND (w.current_state IS NULL OR w.current_state NOT IN ({placeholders}))
                    ORDER BY q.next_reminder_at""",
                [ManualQueueStatus.PENDING.value, to_db_time(now)] + terminal
            ).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def update_reminder_sent(
        self,
        entry_id: str,
        conn: Optional[sqlite3.Connection] = None,
        now: Optional[datetime] = None,
    ) -> ManualQueueEntry:
        """
        Count one more reminder and schedule the next one.

        When the new count reaches max_reminders the entry is ESCALATED and
        its timer cleared.
        """
        now = now or utc_now()
        with self._db.transaction(conn) as c:
            entry = self._require(c, entry_id)
            if entry.is_terminal:
                logger.warning(f"Queue entry {entry_id} already {entry.status.value}, not advancing")
                return entry

            new_count = entry.reminder_count + 1

            if new_count >= self.max_reminders:
                c.execute(
                    """UPDATE manual_review_queue
                       SET reminder_count = ?, status = ?, next_reminder_at = NULL, updated_at = ?
                       WHERE id = ?""",
                    (new_count, ManualQueueStatus.ESCALATED.value, to_db_time(now), entry_id)
                )
                logger.info(f"Queue entry {entry_id} escalated after {new_count} reminders")
            else:
                c.execute(
                    """UPDATE manual_review_queue
                       SET reminder_count = ?, next_reminder_at = ?, updated_at = ?
                       WHERE id = ?""",
                    (new_count, to_db_time(now + self.next_delay(new_count)), to_db_time(now), entry_id)
                )

            return self._require(c, entry_id)

    def next_delay(self, reminders_sent: int) -> timedelta:
        """Delay before the next reminder; the last step repeats past the end."""
        if reminders_sent < len(self.reminder_schedule):
            return self.reminder_schedule[reminders_sent]
        return self.reminder_schedule[-1]

    def mark_as_responded(
        self,
        entry_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> ManualQueueEntry:
        with self._db.transaction(conn) as c:
            self._require(c, entry_id)
            c.execute(
                """UPDATE manual_review_queue
                   SET status = ?, next_reminder_at = NULL, updated_at = ?
                   WHERE id = ?""",
                (ManualQueueStatus.RESPONDED.value, to_db_time(utc_now()), entry_id)
            )
            return self._require(c, entry_id)

    def get(self, entry_id: str) -> Optional[ManualQueueEntry]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM manual_review_queue WHERE id = ?", (entry_id,)
            ).fetchone()
            return self._row_to_entry(row) if row else None

    def get_by_review_id(
        self,
        review_id: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[ManualQueueEntry]:
        with self._db.transaction(conn) as c:
            row = c.execute(
                "SELECT * FROM manual_review_queue WHERE review_id = ?", (review_id,)
            ).fetchone()
            return self._row_to_entry(row) if row else None

    def list_by_status(self, status: ManualQueueStatus, limit: int = 100) -> List[ManualQueueEntry]:
        with self._db.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM manual_review_queue WHERE status = ? ORDER BY created_at LIMIT ?",
                (status.value, limit)
            ).fetchall()
            return [self._row_to_entry(row) for row in rows]

    def _require(self, conn: sqlite3.Connection, entry_id: str) -> ManualQueueEntry:
        row = conn.execute(
            "SELECT * FROM manual_review_queue WHERE id = ?", (entry_id,)
        ).fetchone()
        if row is None:
            raise QueueEntryNotFoundError(f"Queue item not found: {entry_id}")
        return self._row_to_entry(row)

    def _row_to_entry(self, row: sqlite3.Row) -> ManualQueueEntry:
        return ManualQueueEntry(
            id=row["id"],
            review_id=row["review_id"],
            outlet_id=row["outlet_id"],
            assigned_admin_id=row["assigned_admin_id"],
            reminder_count=row["reminder_count"],
            next_reminder_at=from_db_time(row["next_reminder_at"]),
            status=ManualQueueStatus(row["status"]),
            created_at=from_db_time(row["created_at"]),
            updated_at=from_db_time(row["updated_at"]),
        )
