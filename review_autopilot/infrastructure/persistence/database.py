"""
SQLite Database - Connection, Transactions and Schema
======================================================

One SQLite file holds the review automation state:
- reviews, manual_review_queue, review_workflows (written by the engine)
- users, outlets (owned by the account side, read-only to the engine)
- fetch_checkpoints (per-outlet low-water mark for review polling)

Stores share a Database and accept an optional open connection so that
multi-table updates can run in a single transaction.
"""

import sqlite3
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DATABASE_FILE = "review_autopilot.db"

# Fixed-width UTC format: lexical order == chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime for storage (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Database:
    """
    SQLite database for Review Autopilot.

    Usage:
        db = Database("review_autopilot.db")
        db.init()

        with db.transaction() as conn:
            reviews.create_review(..., conn=conn)
            workflows.create(review.id, conn=conn)
    """

    def __init__(self, db_path: str = DATABASE_FILE):
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self, conn: Optional[sqlite3.Connection] = None) -> Iterator[sqlite3.Connection]:
        """
        Run a unit of work atomically.

        When `conn` is given the caller already owns a transaction and the
        work joins it; commit/rollback stay with the outer block.
        """
        if conn is not None:
            yield conn
            return

        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT UNIQUE NOT NULL,
                    role TEXT NOT NULL DEFAULT 'USER',
                    whatsapp_number TEXT,
                    google_refresh_token TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS outlets (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    name TEXT NOT NULL,
                    google_location_name TEXT,
                    api_status TEXT NOT NULL DEFAULT 'DISABLED',
                    subscription_status TEXT NOT NULL DEFAULT 'TRIAL',
                    onboarding_status TEXT NOT NULL DEFAULT 'PENDING',
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT PRIMARY KEY,
                    outlet_id TEXT NOT NULL REFERENCES outlets(id) ON DELETE CASCADE,
                    external_review_id TEXT UNIQUE,
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    customer_name TEXT NOT NULL,
                    review_text TEXT NOT NULL DEFAULT '',
                    ai_reply_text TEXT,
                    manual_reply_text TEXT,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS manual_review_queue (
                    id TEXT PRIMARY KEY,
                    review_id TEXT UNIQUE NOT NULL REFERENCES reviews(id) ON DELETE CASCADE,
                    outlet_id TEXT NOT NULL REFERENCES outlets(id) ON DELETE CASCADE,
                    assigned_admin_id TEXT REFERENCES users(id) ON DELETE SET NULL,
                    reminder_count INTEGER NOT NULL DEFAULT 0 CHECK (reminder_count >= 0),
                    next_reminder_at TEXT,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS review_workflows (
                    review_id TEXT PRIMARY KEY REFERENCES reviews(id) ON DELETE CASCADE,
                    current_state TEXT NOT NULL,
                    reminder_count INTEGER NOT NULL DEFAULT 0,
                    last_action_at TEXT NOT NULL,
                    last_reminder_at TEXT,
                    next_reminder_at TEXT,
                    pending_notification TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS fetch_checkpoints (
                    outlet_id TEXT PRIMARY KEY REFERENCES outlets(id) ON DELETE CASCADE,
                    last_fetched_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            self._migrate(conn)
            self._create_indexes(conn)

            logger.info(f"Database initialized: {self.db_path}")

    def _migrate(self, conn):
        """Add missing columns to tables created by older versions."""
        existing = {row[1] for row in conn.execute("PRAGMA table_info(review_workflows)").fetchall()}

        migrations = {
            "pending_notification": "ALTER TABLE review_workflows ADD COLUMN pending_notification TEXT",
        }

        for col, sql in migrations.items():
            if col not in existing:
                conn.execute(sql)
                logger.info(f"Migrated: added '{col}' column to review_workflows")

    def _create_indexes(self, conn):
        statements = [
            "CREATE INDEX IF NOT EXISTS idx_reviews_outlet ON reviews(outlet_id)",
            "CREATE INDEX IF NOT EXISTS idx_reviews_status ON reviews(status)",
            "CREATE INDEX IF NOT EXISTS idx_queue_status_next ON manual_review_queue(status, next_reminder_at)",
            "CREATE INDEX IF NOT EXISTS idx_workflow_state ON review_workflows(current_state)",
            "CREATE INDEX IF NOT EXISTS idx_workflow_pending ON review_workflows(pending_notification)",
            "CREATE INDEX IF NOT EXISTS idx_outlets_user ON outlets(user_id)",
        ]
        for sql in statements:
            conn.execute(sql)


def init_database(db_path: str = DATABASE_FILE) -> Database:
    """Create the database file and tables if needed."""
    db = Database(db_path)
    db.init()
    return db
