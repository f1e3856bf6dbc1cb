"""
Outlet Store - Eligibility, Contacts and Fetch Checkpoints
===========================================================

Outlets and users belong to the account/billing side of the product. The
automation engine reads them through this store:
- which outlets may run automation (eligibility)
- who to notify (owner, assigned admin, super admins)
- where polling left off for each outlet (checkpoint)
"""

import sqlite3
import logging
from datetime import datetime
from typing import List, Optional

from ...domain.models import Contact, EligibleOutlet
from .database import Database, from_db_time, new_id, to_db_time, utc_now

logger = logging.getLogger(__name__)

ROLE_SUPER_ADMIN = "SUPER_ADMIN"

# Statuses an outlet must have for automation to poll it
REQUIRED_API_STATUS = "ENABLED"
REQUIRED_ONBOARDING_STATUS = "COMPLETED"
REQUIRED_SUBSCRIPTION_STATUS = "ACTIVE"


class OutletStore:
    """
    Eligibility provider backed by the users/outlets tables.

    Usage:
        outlets = OutletStore(db)
        for outlet in outlets.list_eligible_outlets():
            since = outlets.get_checkpoint(outlet.id)
    """

    def __init__(self, db: Database):
        self._db = db

    # ── Users / outlets (seeding and lookups) ───────────────────────

    def add_user(
        self,
        name: str,
        email: str,
        role: str = "USER",
        whatsapp_number: Optional[str] = None,
        google_refresh_token: Optional[str] = None,
    ) -> str:
        """Create a user and return its id."""
        user_id = new_id()
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO users (id, name, email, role, whatsapp_number, google_refresh_token, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (user_id, name, email, role, whatsapp_number, google_refresh_token, to_db_time(utc_now()))
            )
        return user_id

    def add_outlet(
        self,
        user_id: str,
        name: str,
        google_location_name: Optional[str] = None,
        api_status: str = REQUIRED_API_STATUS,
        subscription_status: str = REQUIRED_SUBSCRIPTION_STATUS,
        onboarding_status: str = REQUIRED_ONBOARDING_STATUS,
    ) -> str:
        """Create an outlet and return its id."""
        outlet_id = new_id()
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO outlets (id, user_id, name, google_location_name, api_status,
                                        subscription_status, onboarding_status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (outlet_id, user_id, name, google_location_name, api_status,
                 subscription_status, onboarding_status, to_db_time(utc_now()))
            )
        return outlet_id

    def list_eligible_outlets(self) -> List[EligibleOutlet]:
        """Outlets with API enabled, onboarding completed and an active subscription."""
        with self._db.transaction() as conn:
            total = conn.execute("SELECT COUNT(*) FROM outlets").fetchone()[0]
            rows = conn.execute(
                """SELECT o.id, o.name, o.user_id, o.google_location_name,
                          u.google_refresh_token, u.whatsapp_number
                   FROM outlets o
                   JOIN users u ON u.id = o.user_id
                   WHERE o.api_status = ?
                     AND o.onboarding_status = ?
                     AND o.subscription_status = ?
                   ORDER BY o.created_at""",
                (REQUIRED_API_STATUS, REQUIRED_ONBOARDING_STATUS, REQUIRED_SUBSCRIPTION_STATUS)
            ).fetchall()

        outlets = [self._row_to_outlet(row) for row in rows]
        logger.info(f"Automation: {len(outlets)}/{total} outlets eligible for polling")
        return outlets

    def get_outlet(self, outlet_id: str) -> Optional[EligibleOutlet]:
        """Outlet with owner details, regardless of eligibility."""
        with self._db.transaction() as conn:
            row = conn.execute(
                """SELECT o.id, o.name, o.user_id, o.google_location_name,
                          u.google_refresh_token, u.whatsapp_number
                   FROM outlets o
                   JOIN users u ON u.id = o.user_id
                   WHERE o.id = ?""",
                (outlet_id,)
            ).fetchone()
            return self._row_to_outlet(row) if row else None

    def get_contact(self, user_id: str) -> Optional[Contact]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT id, name, whatsapp_number FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            return self._row_to_contact(row) if row else None

    def list_super_admin_contacts(self) -> List[Contact]:
        """Super administrators that have a WhatsApp number configured."""
        with self._db.transaction() as conn:
            rows = conn.execute(
                """SELECT id, name, whatsapp_number FROM users
                   WHERE role = ? AND whatsapp_number IS NOT NULL AND whatsapp_number != ''
                   ORDER BY created_at""",
                (ROLE_SUPER_ADMIN,)
            ).fetchall()
            return [self._row_to_contact(row) for row in rows]

    # ── Fetch checkpoints ──────────────────────────────────────────

    def get_checkpoint(self, outlet_id: str) -> Optional[datetime]:
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT last_fetched_at FROM fetch_checkpoints WHERE outlet_id = ?", (outlet_id,)
            ).fetchone()
            return from_db_time(row["last_fetched_at"]) if row else None

    def save_checkpoint(self, outlet_id: str, fetched_at: datetime) -> None:
        ts = to_db_time(fetched_at)
        with self._db.transaction() as conn:
            conn.execute(
                """INSERT INTO fetch_checkpoints (outlet_id, last_fetched_at, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(outlet_id) DO UPDATE SET
                       last_fetched_at = excluded.last_fetched_at,
                       updated_at = excluded.updated_at""",
                (outlet_id, ts, to_db_time(utc_now()))
            )

    def _row_to_outlet(self, row: sqlite3.Row) -> EligibleOutlet:
        return EligibleOutlet(
            id=row["id"],
            name=row["name"],
            user_id=row["user_id"],
            google_location_name=row["google_location_name"],
            owner_refresh_token=row["google_refresh_token"],
            owner_whatsapp_number=row["whatsapp_number"],
        )

    def _row_to_contact(self, row: sqlite3.Row) -> Contact:
        return Contact(
            id=row["id"],
            name=row["name"],
            whatsapp_number=row["whatsapp_number"] or None,
        )
