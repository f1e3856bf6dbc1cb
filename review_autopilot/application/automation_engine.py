"""
Automation Engine - Review Processing Cycle
============================================

Every polling interval:

    0. reconcile  retry owed notifications, unposted replies, missing AI replies
    1. fetch      new Google reviews per eligible outlet (per-outlet checkpoint)
    2. classify   store once per external review id, branch on rating
    3. positive   (4-5 stars) AI reply -> post to Google -> CLOSED -> notify owner
    4. critical   (1-3 stars) MANUAL_PENDING + queue entry -> WhatsApp alert
    5. remind     due queue entries -> reminder to assigned admin or owner
    6. escalate   reminders exhausted -> ESCALATED -> owner/admin + super admins

Failures are isolated per outlet and per review: they are logged and the
item is picked up again on the next cycle.
"""

import sqlite3
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..domain.models import (
    EligibleOutlet,
    ExternalReview,
    ManualQueueEntry,
    ManualQueueStatus,
    PendingNotification,
    Review,
    ReviewStatus,
)
from ..domain.workflow import is_reminder_terminal
from ..infrastructure.config import get_settings
from ..infrastructure.gmb import GMBClient
from ..infrastructure.llm import ReplyService
from ..infrastructure.persistence import (
    Database,
    ManualQueueStore,
    OutletStore,
    ReviewNotFoundError,
    ReviewStore,
    WorkflowStore,
    init_database,
    utc_now,
)
from ..infrastructure.whatsapp import (
    CloudAPIProvider,
    MessagingProvider,
    is_individual_number,
    normalize_phone,
)
from .scheduler import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """What one processing cycle did."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    outlets_processed: int = 0
    outlets_skipped: int = 0
    outlets_failed: int = 0
    reviews_fetched: int = 0
    reviews_created: int = 0
    duplicates_skipped: int = 0
    auto_replied: int = 0
    closed: int = 0
    queued: int = 0
    reminders_sent: int = 0
    escalated: int = 0
    notifications_sent: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)

    def record_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)

    def summary(self) -> str:
        return (
            f"outlets={self.outlets_processed} (skipped {self.outlets_skipped}, failed {self.outlets_failed}) "
            f"fetched={self.reviews_fetched} created={self.reviews_created} "
            f"auto_replied={self.auto_replied} closed={self.closed} queued={self.queued} "
            f"reminders={self.reminders_sent} escalated={self.escalated} "
            f"notifications={self.notifications_sent} errors={self.errors}"
        )


class AutomationEngine:
    """
    Orchestrates the review automation cycle.

    USAGE:
        engine = AutomationEngine.from_settings()
        engine.start()      # runs now, then every polling interval
        ...
        engine.stop()

        report = engine.run_cycle()   # one synchronous cycle
    """

    def __init__(
        self,
        db: Database,
        reviews: ReviewStore,
        queue: ManualQueueStore,
        workflows: WorkflowStore,
        outlets: OutletStore,
        gmb: GMBClient,
        replies: ReplyService,
        messaging: MessagingProvider,
        settings=None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings or get_settings()
        self._db = db
        self._reviews = reviews
        self._queue = queue
        self._workflows = workflows
        self._outlets = outlets
        self._gmb = gmb
        self._replies = replies
        self._messaging = messaging
        self._clock = clock

        self._cycle_lock = threading.Lock()
        self._task = PeriodicTask(
            self.run_cycle,
            interval_seconds=self._settings.automation.polling_interval_minutes * 60,
            name="review-automation",
        )
        self.last_report: Optional[CycleReport] = None

    @classmethod
    def from_settings(cls, settings=None, db: Optional[Database] = None) -> "AutomationEngine":
        """Wire the engine to SQLite, Google, OpenRouter and WhatsApp from settings."""
        settings = settings or get_settings()
        db = db or init_database(settings.database_file)
        automation = settings.automation
        return cls(
            db=db,
            reviews=ReviewStore(db),
            queue=ManualQueueStore(
                db,
                max_reminders=automation.max_reminders,
                reminder_schedule_minutes=automation.reminder_schedule_minutes,
                first_reminder_minutes=automation.first_reminder_minutes,
            ),
            workflows=WorkflowStore(db),
            outlets=OutletStore(db),
            gmb=GMBClient(settings),
            replies=ReplyService(settings),
            messaging=CloudAPIProvider.from_settings(settings),
            settings=settings,
        )

    # ── Lifecycle ──────────────────────────────────────────────────

    @property
    def reviews(self) -> ReviewStore:
        return self._reviews

    @property
    def queue(self) -> ManualQueueStore:
        return self._queue

    @property
    def settings(self):
        return self._settings

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    @property
    def is_cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> bool:
        """Start the schedule. No-op when disabled or already running."""
        if not self._settings.automation.enabled:
            logger.info("Automation worker disabled (AUTOMATION_ENABLED != true)")
            return False

        if self._task.is_running:
            logger.debug("Automation worker already running")
            return False

        logger.info(
            f"Starting automation worker: interval {self._settings.automation.polling_interval_minutes} minutes"
        )
        return self._task.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel the schedule; a cycle in flight is allowed to finish."""
        if not self._task.is_running:
            return
        self._task.stop(timeout)
        logger.info("Automation worker stopped")

    # ── Cycle ──────────────────────────────────────────────────────

    def run_cycle(self) -> Optional[CycleReport]:
        """
        Run one full cycle. Returns None without doing anything when another
        cycle is still in progress.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("Automation: previous batch still running, skipping this one")
            return None

        try:
            report = CycleReport(started_at=self._clock())
            logger.info("Automation: starting review processing batch")

            try:
                eligible = self._outlets.list_eligible_outlets()
            except Exception as e:
                logger.exception("Automation: could not load eligible outlets")
                eligible = []
                report.record_error(f"eligibility: {e}")

            eligible_by_id = {outlet.id: outlet for outlet in eligible}

            self._run_phase("reconcile", lambda: self._reconcile(eligible_by_id, report), report)
            self._run_phase("fetch", lambda: self._fetch_and_process(eligible, report), report)
            self._run_phase("reminders", lambda: self._process_reminders(report), report)

            report.finished_at = self._clock()
            self.last_report = report
            logger.info(f"Automation: batch complete ({report.summary()})")
            return report
        finally:
            self._cycle_lock.release()

    def _run_phase(self, name: str, phase: Callable[[], None], report: CycleReport) -> None:
        try:
            phase()
        except Exception as e:
            logger.exception(f"Automation: {name} phase failed")
            report.record_error(f"{name}: {e}")

    # ── Reconcile ──────────────────────────────────────────────────

    def _reconcile(self, eligible_by_id: Dict[str, EligibleOutlet], report: CycleReport) -> None:
        """Retry work a previous cycle could not finish, once per item."""
        for workflow in self._workflows.list_pending_notifications():
            try:
                review = self._reviews.get(workflow.review_id)
                outlet = self._outlets.get_outlet(review.outlet_id) if review else None
                if review is None or outlet is None:
                    logger.warning(f"Dropping pending notification for review {workflow.review_id}: data missing")
                    self._workflows.clear_pending_notification(workflow.review_id)
                    continue
                self._deliver_notification(review, outlet, workflow.pending_notification, report)
            except Exception as e:
                logger.exception(f"Failed to resend notification for review {workflow.review_id}")
                report.record_error(f"notification {workflow.review_id}: {e}")

        for review in self._reviews.list_retryable(ReviewStatus.AUTO_REPLIED):
            outlet = eligible_by_id.get(review.outlet_id)
            if outlet is None:
                continue
            try:
                logger.info(f"Retrying GMB reply for review {review.id}")
                self._post_auto_reply(review, review.ai_reply_text, outlet, report)
            except Exception as e:
                logger.exception(f"Failed to retry reply for review {review.id}")
                report.record_error(f"post {review.id}: {e}")

        for review in self._reviews.list_retryable(ReviewStatus.PENDING):
            outlet = eligible_by_id.get(review.outlet_id)
            if outlet is None:
                continue
            try:
                logger.info(f"Retrying AI reply generation for review {review.id}")
                self._handle_positive_review(review, outlet, report)
            except Exception as e:
                logger.exception(f"Failed to retry positive review {review.id}")
                report.record_error(f"positive {review.id}: {e}")

    # ── Fetch & classify ───────────────────────────────────────────

    def _fetch_and_process(self, eligible: List[EligibleOutlet], report: CycleReport) -> None:
        logger.info(f"Processing {len(eligible)} eligible outlets")

        for outlet in eligible:
            if not outlet.has_platform_credentials:
                logger.warning(f"Outlet {outlet.id} missing GMB credentials")
                report.outlets_skipped += 1
                continue

            try:
                self._process_outlet(outlet, report)
            except Exception as e:
                logger.exception(f"Failed to process outlet {outlet.id}")
                report.outlets_failed += 1
                report.record_error(f"outlet {outlet.id}: {e}")

    def _process_outlet(self, outlet: EligibleOutlet, report: CycleReport) -> None:
        since = self._outlets.get_checkpoint(outlet.id)
        fetched = self._gmb.fetch_reviews(
            outlet.google_location_name, outlet.owner_refresh_token, since=since
        )

        if fetched is None:
            logger.warning(f"Fetch failed for outlet {outlet.id}, will retry next cycle")
            report.outlets_failed += 1
            return

        report.outlets_processed += 1
        report.reviews_fetched += len(fetched)
        if fetched:
            logger.info(f"Fetched {len(fetched)} new reviews for outlet {outlet.id}")

        all_stored = True
        for external in fetched:
            try:
                self._process_external_review(external, outlet, report)
            except sqlite3.IntegrityError as e:
                logger.error(f"Data integrity error storing review {external.review_id}: {e}")
                report.record_error(f"integrity {external.review_id}: {e}")
                all_stored = False
            except Exception as e:
                logger.exception(f"Failed to process review {external.review_id} for outlet {outlet.id}")
                report.record_error(f"review {external.review_id}: {e}")
                all_stored = False

        # A failed review keeps the old mark so the next fetch sees it again
        if all_stored:
            self._outlets.save_checkpoint(outlet.id, report.started_at)

    def _find_existing(self, external: ExternalReview, outlet: EligibleOutlet) -> Optional[Review]:
        if external.review_id:
            return self._reviews.find_by_external_id(external.review_id)
        return self._reviews.find_by_signature(outlet.id, external.reviewer_name, external.rating)

    def _process_external_review(self, external: ExternalReview, outlet: EligibleOutlet, report: CycleReport) -> None:
        if external.has_reply:
            logger.info(f"Skipping review {external.review_id} (already has Google reply)")
            return

        if not 1 <= external.rating <= 5:
            logger.warning(f"Skipping review {external.review_id} with unknown rating")
            return

        if self._find_existing(external, outlet):
            logger.debug(f"Review {external.review_id} already processed")
            report.duplicates_skipped += 1
            return

        now = self._clock()
        with self._db.transaction() as conn:
            review = self._reviews.create_review(
                outlet_id=outlet.id,
                rating=external.rating,
                customer_name=external.reviewer_name,
                review_text=external.comment,
                external_review_id=external.review_id or None,
                conn=conn,
            )
            self._workflows.create(review.id, conn=conn, now=now)

            if not review.is_positive:
                entry = self._queue.add_to_queue(review.id, outlet.id, conn=conn, now=now)
                self._workflows.transition(
                    review.id,
                    ReviewStatus.MANUAL_PENDING,
                    conn=conn,
                    now=now,
                    next_reminder_at=entry.next_reminder_at,
                    pending_notification=PendingNotification.CRITICAL_ALERT,
                )

        report.reviews_created += 1
        logger.info(f"Created review {review.id} with rating {review.rating}")

        if review.is_positive:
            self._handle_positive_review(review, outlet, report)
        else:
            report.queued += 1
            logger.info(f"Queued critical review {review.id} for manual reply")
            self._deliver_notification(review, outlet, PendingNotification.CRITICAL_ALERT, report)

    # ── Positive path ──────────────────────────────────────────────

    def _handle_positive_review(self, review: Review, outlet: EligibleOutlet, report: CycleReport) -> None:
        logger.info(f"Handling positive review {review.id} ({review.rating} stars)")

        reply = self._replies.generate_reply(
            review.review_text, review.rating, outlet.name, customer_name=review.customer_name
        )
        if not reply:
            logger.error(f"Failed to generate AI reply for review {review.id}, leaving it pending")
            return

        with self._db.transaction() as conn:
            self._reviews.update_review(review.id, conn=conn, ai_reply_text=reply)
            self._workflows.transition(review.id, ReviewStatus.AUTO_REPLIED, conn=conn, now=self._clock())
        report.auto_replied += 1

        self._post_auto_reply(review, reply, outlet, report)

    def _post_auto_reply(self, review: Review, reply: str, outlet: EligibleOutlet, report: CycleReport) -> None:
        if not review.external_review_id:
            logger.warning(f"Review {review.id} has no Google review id, reply cannot be posted")
            return

        posted = self._gmb.post_reply(
            outlet.google_location_name, review.external_review_id, reply, outlet.owner_refresh_token
        )
        if not posted:
            logger.error(f"Failed to post AI reply to GMB for review {review.id}, will retry next cycle")
            return

        self._workflows.transition(
            review.id,
            ReviewStatus.CLOSED,
            now=self._clock(),
            pending_notification=PendingNotification.POSITIVE_SUMMARY,
        )
        report.closed += 1
        logger.info(f"Closed review {review.id} after successful AI reply")

        review = self._reviews.get(review.id) or review
        self._deliver_notification(review, outlet, PendingNotification.POSITIVE_SUMMARY, report)

    # ── Notifications ──────────────────────────────────────────────

    def _deliver_notification(
        self,
        review: Review,
        outlet: EligibleOutlet,
        kind: PendingNotification,
        report: CycleReport,
    ) -> None:
        """Send an owed owner notification and clear its marker once delivered."""
        phone = outlet.owner_whatsapp_number
        if not phone:
            logger.warning(f"No WhatsApp number configured for outlet {outlet.id}")
            self._workflows.clear_pending_notification(review.id)
            return

        if not is_individual_number(phone):
            logger.error(f"Outlet {outlet.id} WhatsApp number cannot receive messages, dropping {kind.value}")
            self._workflows.clear_pending_notification(review.id)
            return

        if kind == PendingNotification.CRITICAL_ALERT:
            suggested = self._replies.generate_reply(
                review.review_text, review.rating, outlet.name, customer_name=review.customer_name
            )
            result = self._messaging.send_critical_alert(
                phone, outlet.name, review.rating, review.customer_name, review.review_text, suggested
            )
        else:
            result = self._messaging.send_positive_summary(
                phone, outlet.name, review.rating, review.customer_name, review.ai_reply_text or ""
            )

        if result.ok:
            self._workflows.clear_pending_notification(review.id)
            report.notifications_sent += 1
            logger.info(f"Sent {kind.value} for review {review.id} to {phone}")
        elif result.skipped or result.rejected:
            logger.warning(f"Dropping {kind.value} for review {review.id}: messaging not configured or recipient rejected")
            self._workflows.clear_pending_notification(review.id)
        else:
            logger.warning(f"Could not send {kind.value} for review {review.id}, will retry next cycle")

    # ── Reminders & escalation ─────────────────────────────────────

    def _process_reminders(self, report: CycleReport) -> None:
        due = self._queue.get_pending_reminders(now=self._clock())
        if not due:
            return

        logger.info(f"Sending {len(due)} manual-review reminders")
        for entry in due:
            try:
                self._process_reminder(entry, report)
            except Exception as e:
                logger.exception(f"Failed to process reminder for item {entry.id}")
                report.record_error(f"reminder {entry.id}: {e}")

    def _resolve_recipient(self, entry: ManualQueueEntry, outlet: EligibleOutlet) -> Optional[str]:
        """Assigned admin first, otherwise the outlet owner."""
        if entry.assigned_admin_id:
            admin = self._outlets.get_contact(entry.assigned_admin_id)
            if admin and admin.whatsapp_number:
                return admin.whatsapp_number
        return outlet.owner_whatsapp_number

    def _process_reminder(self, entry: ManualQueueEntry, report: CycleReport) -> None:
        workflow = self._workflows.get(entry.review_id)
        if workflow is None:
            logger.warning(f"Workflow not found for review {entry.review_id}")
            return

        if is_reminder_terminal(workflow.current_state):
            logger.debug(f"Review {entry.review_id} already in final state {workflow.current_state.value}")
            return

        review = self._reviews.get(entry.review_id)
        outlet = self._outlets.get_outlet(entry.outlet_id)
        if review is None or outlet is None:
            logger.warning(f"Queue entry {entry.id} references missing review or outlet")
            return

        recipient = self._resolve_recipient(entry, outlet)
        if recipient:
            result = self._messaging.send_reminder(
                recipient, outlet.name, review.customer_name, review.rating, entry.reminder_count + 1
            )
            if result.ok:
                report.reminders_sent += 1
                logger.info(f"Sent reminder #{entry.reminder_count + 1} for review {review.id}")
            else:
                logger.warning(f"Reminder #{entry.reminder_count + 1} for review {review.id} not delivered")
        else:
            logger.warning(f"No WhatsApp number for outlet {entry.outlet_id}")

        # Queue first, then mirror onto the workflow row
        now = self._clock()
        with self._db.transaction() as conn:
            updated = self._queue.update_reminder_sent(entry.id, conn=conn, now=now)
            self._workflows.record_reminder(
                entry.review_id, updated.reminder_count, updated.next_reminder_at, conn=conn, now=now
            )
            if updated.status == ManualQueueStatus.ESCALATED:
                self._workflows.transition(entry.review_id, ReviewStatus.ESCALATED, conn=conn, now=now)

        if updated.status == ManualQueueStatus.ESCALATED:
            report.escalated += 1
            logger.info(f"Review {review.id} escalated after {updated.reminder_count} reminders")
            self._send_escalation(updated, review, outlet, recipient, report)

    def _send_escalation(
        self,
        entry: ManualQueueEntry,
        review: Review,
        outlet: EligibleOutlet,
        primary: Optional[str],
        report: CycleReport,
    ) -> None:
        recipients: List[str] = []
        seen = set()
        candidates = [primary] + [admin.whatsapp_number for admin in self._outlets.list_super_admin_contacts()]
        for phone in candidates:
            if phone and normalize_phone(phone) not in seen:
                seen.add(normalize_phone(phone))
                recipients.append(phone)

        if not recipients:
            logger.warning(f"No escalation recipients for review {review.id}")
            return

        hours_pending = int((self._clock() - entry.created_at).total_seconds() // 3600)
        for phone in recipients:
            result = self._messaging.send_escalation(
                phone, outlet.name, review.customer_name, review.rating, hours_pending
            )
            if result.ok:
                report.notifications_sent += 1
            else:
                logger.warning(f"Escalation notice for review {review.id} to {phone} not delivered")

    # ── Manual replies ─────────────────────────────────────────────

    def record_manual_reply(self, review_id: str, reply_text: str) -> Review:
        """
        Complete a critical review with a human-written reply.

        Raises ReviewNotFoundError, InvalidTransitionError (review not on the
        manual path) or ValueError (empty reply).
        """
        text = (reply_text or "").strip()
        if not text:
            raise ValueError("Reply text must not be empty")

        review = self._reviews.get(review_id)
        if review is None:
            raise ReviewNotFoundError(f"Review not found: {review_id}")

        with self._db.transaction() as conn:
            self._workflows.transition(review_id, ReviewStatus.COMPLETED, conn=conn, now=self._clock())
            self._reviews.update_review(review_id, conn=conn, manual_reply_text=text)
            self._workflows.clear_pending_notification(review_id, conn=conn)
            entry = self._queue.get_by_review_id(review_id, conn=conn)
            if entry is not None:
                self._queue.mark_as_responded(entry.id, conn=conn)

        logger.info(f"Manual reply recorded for review {review_id}")

        outlet = self._outlets.get_outlet(review.outlet_id)
        if outlet and outlet.has_platform_credentials and review.external_review_id:
            if not self._gmb.post_reply(
                outlet.google_location_name, review.external_review_id, text, outlet.owner_refresh_token
            ):
                logger.error(f"Manual reply for review {review_id} saved but not posted to GMB")

        return self._reviews.get(review_id)
