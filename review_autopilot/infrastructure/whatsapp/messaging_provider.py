"""
Messaging Provider - Abstraction Layer for WhatsApp Notifications
==================================================================

Provides a unified interface for sending WhatsApp template messages to
outlet owners and admins. Only pre-approved templates are sent, only to
individual numbers (1:1), and never more than the hourly per-recipient
limit.

USAGE:
    provider = CloudAPIProvider(access_token="EAAx...", phone_number_id="12345")
    result = provider.send_reminder("923001234567", "Cafe X", "Ana", 2, 1)
    if not result.ok:
        ...
"""

import re
import time
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional, Sequence

import requests

from ..config import get_settings

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15


@dataclass(frozen=True)
class SendResult:
    """
    Outcome of a send.

    skipped=True: messaging is not configured.
    rejected=True: the recipient can never be messaged (group id, bad number).
    """
    ok: bool
    skipped: bool = False
    rejected: bool = False


def normalize_phone(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def is_individual_number(phone: str) -> bool:
    """WhatsApp Business API only supports 1:1 messaging."""
    if not phone:
        return False
    if "@g.us" in phone:
        logger.error(f"Group messaging is NOT supported: {phone}")
        return False
    digits = normalize_phone(phone)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        logger.warning(f"Invalid phone number length: {len(digits)}")
        return False
    return True


def _stars(rating: int) -> str:
    return f"{rating} star{'s' if rating != 1 else ''}"


class RecipientRateLimiter:
    """
    Sliding one-hour window per recipient.

    Each accepted message consumes one slot; rejected attempts do not.
    """

    WINDOW_SECONDS = 3600

    def __init__(self, max_per_hour: int = 100, clock: Callable[[], float] = time.monotonic):
        self.max_per_hour = max_per_hour
        self._clock = clock
        self._sent: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def try_acquire(self, recipient: str) -> bool:
        now = self._clock()
        with self._lock:
            self._forget_idle(now)
            timestamps = self._sent[recipient]
            while timestamps and timestamps[0] <= now - self.WINDOW_SECONDS:
                timestamps.popleft()
            if len(timestamps) >= self.max_per_hour:
                logger.warning(
                    f"Rate limit exceeded for {recipient}: {len(timestamps)} messages in last hour"
                )
                return False
            timestamps.append(now)
            return True

    def _forget_idle(self, now: float) -> None:
        """Drop recipients with nothing left in the window. Caller holds the lock."""
        cutoff = now - self.WINDOW_SECONDS
        idle = [r for r, stamps in self._sent.items() if not stamps or stamps[-1] <= cutoff]
        for recipient in idle:
            del self._sent[recipient]


class MessagingProvider(ABC):
    """
    Abstract base class for WhatsApp messaging providers.
    Implement send_template() to add new messaging backends; the
    notification helpers below are shared.
    """

    def __init__(
        self,
        template_critical_alert: str = "low_rating_review_v1",
        template_reminder: str = "manual_review_reminder_v1",
        template_escalation: str = "review_escalation_v1",
        template_positive_summary: str = "positive_review_replied_v1",
    ):
        self.template_critical_alert = template_critical_alert
        self.template_reminder = template_reminder
        self.template_escalation = template_escalation
        self.template_positive_summary = template_positive_summary

    @abstractmethod
    def send_template(self, phone: str, template_name: str, params: Sequence[str]) -> SendResult:
        """Send a template message to a phone number."""
        ...

    def send_critical_alert(
        self,
        phone: str,
        outlet_name: str,
        rating: int,
        customer_name: str,
        review_text: str,
        suggested_reply: Optional[str] = None,
    ) -> SendResult:
        """Critical review (1-3 stars) needs a manual reply."""
        return self.send_template(phone, self.template_critical_alert, [
            outlet_name,
            _stars(rating),
            customer_name,
            (review_text or "(no message)")[:250],
            (suggested_reply or "")[:300],
        ])

    def send_reminder(
        self,
        phone: str,
        outlet_name: str,
        customer_name: str,
        rating: int,
        reminder_number: int,
    ) -> SendResult:
        """Manual reply still pending."""
        return self.send_template(phone, self.template_reminder, [
            outlet_name,
            _stars(rating),
            customer_name,
            str(reminder_number),
        ])

    def send_escalation(
        self,
        phone: str,
        outlet_name: str,
        customer_name: str,
        rating: int,
        hours_pending: int,
    ) -> SendResult:
        """Reminders exhausted without a reply."""
        return self.send_template(phone, self.template_escalation, [
            outlet_name,
            _stars(rating),
            customer_name,
            str(hours_pending),
        ])

    def send_positive_summary(
        self,
        phone: str,
        outlet_name: str,
        rating: int,
        customer_name: str,
        reply_text: str,
    ) -> SendResult:
        """A positive review was answered automatically."""
        excerpt = reply_text if len(reply_text) <= 100 else reply_text[:100] + "..."
        return self.send_template(phone, self.template_positive_summary, [
            outlet_name,
            _stars(rating),
            customer_name,
            excerpt,
        ])


class CloudAPIProvider(MessagingProvider):
    """
    WhatsApp Cloud API provider.

    Configuration needed:
        - access_token: WhatsApp Business API token
        - phone_number_id: Registered WhatsApp phone number ID
        - api_url: API endpoint (default: Meta Cloud API)
    """

    # Meta WhatsApp Cloud API base URL
    DEFAULT_API_URL = "https://graph.facebook.com/v18.0"

    def __init__(
        self,
        access_token: str = "",
        phone_number_id: str = "",
        api_url: str = "",
        language_code: str = "en_US",
        max_messages_per_hour: int = 100,
        timeout_seconds: int = 15,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RecipientRateLimiter] = None,
        **templates,
    ):
        super().__init__(**templates)
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_url = api_url or self.DEFAULT_API_URL
        self._language_code = language_code
        self._timeout = timeout_seconds
        self._session = session or requests.Session()
        self.rate_limiter = rate_limiter or RecipientRateLimiter(max_messages_per_hour)

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "CloudAPIProvider":
        wa = (settings or get_settings()).whatsapp
        return cls(
            access_token=wa.access_token,
            phone_number_id=wa.phone_number_id,
            api_url=wa.api_url,
            language_code=wa.language_code,
            max_messages_per_hour=wa.max_messages_per_hour,
            timeout_seconds=wa.timeout_seconds,
            template_critical_alert=wa.template_critical_alert,
            template_reminder=wa.template_reminder,
            template_escalation=wa.template_escalation,
            template_positive_summary=wa.template_positive_summary,
            **kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._access_token and self._phone_number_id)

    def send_template(self, phone: str, template_name: str, params: Sequence[str]) -> SendResult:
        """
        POST {api_url}/{phone_number_id}/messages with a template payload.

        Returns SendResult(ok=False, skipped=True) when credentials are
        missing, SendResult(ok=False, rejected=True) for invalid recipients,
        SendResult(ok=False) on rate-limit or API errors.
        """
        if not self.is_configured:
            logger.warning("WhatsApp credentials not configured")
            return SendResult(ok=False, skipped=True)

        if not is_individual_number(phone):
            return SendResult(ok=False, rejected=True)

        recipient = normalize_phone(phone)
        if not self.rate_limiter.try_acquire(recipient):
            return SendResult(ok=False)

        template = {"name": template_name, "language": {"code": self._language_code}}
        if params:
            template["components"] = [{
                "type": "body",
                "parameters": [{"type": "text", "text": str(p if p is not None else "")} for p in params],
            }]

        payload = {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "template",
            "template": template,
        }

        try:
            response = self._session.post(
                f"{self._api_url}/{self._phone_number_id}/messages",
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()

            message_id = None
            try:
                message_id = (response.json().get("messages") or [{}])[0].get("id")
            except ValueError:
                pass

            logger.info(f"WhatsApp template {template_name} sent to {recipient} (message {message_id})")
            return SendResult(ok=True)

        except requests.Timeout:
            logger.warning(f"WhatsApp API timeout sending {template_name} to {recipient}")
            return SendResult(ok=False)

        except requests.RequestException as e:
            logger.error(f"Failed to send WhatsApp template {template_name} to {recipient}: {e}")
            return SendResult(ok=False)
