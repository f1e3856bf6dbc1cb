"""
Google Business Profile Client - Reviews In, Replies Out
=========================================================

- Refreshes an access token from the outlet owner's refresh token before
  every call, retrying with exponential backoff (1s, 2s, 4s)
- Lists reviews page by page, capped at max_pages x page_size per call
- Filters by update time client-side (the API has no reliable filter)
- Posts replies

fetch_reviews() returns None on failure, distinct from [] ("nothing new"),
so callers know not to advance their checkpoint.
"""

import time
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

import requests

from ...domain.models import ExternalReview
from ..config import get_settings

logger = logging.getLogger(__name__)

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}

# Logged on authorization failures so operators can find outlets to reconnect
RECONNECT_MARKER = "[needs-reconnect]"


def rating_to_number(star_rating: Optional[str]) -> int:
    """Convert the API's star rating enum ("FIVE") to 1-5; unknown values give 0."""
    return STAR_RATINGS.get(star_rating or "", 0)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse RFC 3339 timestamps such as 2024-05-01T10:00:00.123456Z."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat accepts at most 6 fractional digits
    if "." in text:
        head, _, rest = text.partition(".")
        digits = ""
        while rest and rest[0].isdigit():
            digits += rest[0]
            rest = rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.warning(f"Unparseable review timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def describe_http_error(status: Optional[int]) -> str:
    """Actionable log text for the API's common failure statuses."""
    if status == 401:
        return f"{RECONNECT_MARKER} Unauthorized - refresh token may be invalid or revoked"
    if status == 403:
        return "Forbidden - check Business Profile permissions for this location"
    if status == 429:
        return "Rate limited - will retry next cycle"
    if status == 503:
        return "Service unavailable - will retry next cycle"
    return f"HTTP error {status}" if status else "Network error"


def _status_of(error: requests.RequestException) -> Optional[int]:
    response = getattr(error, "response", None)
    return response.status_code if response is not None else None


class GMBClient:
    """
    Google Business Profile reviews client.

    USAGE:
        client = GMBClient()
        reviews = client.fetch_reviews("accounts/1/locations/2", refresh_token, since=checkpoint)
        if reviews is None:
            ...  # failed, retry next cycle
        client.post_reply("accounts/1/locations/2", review.review_id, "Thanks!", refresh_token)
    """

    def __init__(
        self,
        settings=None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        google = (settings or get_settings()).google
        self._client_id = google.client_id
        self._client_secret = google.client_secret
        self._token_url = google.token_url
        self._api_url = google.api_url
        self._page_size = google.page_size
        self._max_pages = google.max_pages
        self._max_retries = google.max_retries
        self._retry_delay = google.retry_delay_seconds
        self._timeout = google.timeout_seconds
        self._session = session or requests.Session()
        self._sleep = sleep

    # ── Auth ───────────────────────────────────────────────────────

    def refresh_access_token(self, refresh_token: str) -> Optional[str]:
        """
        Exchange a refresh token for an access token.

        Tries once plus max_retries retries, waiting retry_delay * 2**attempt
        between attempts. Returns None when every attempt failed.
        """
        for attempt in range(self._max_retries + 1):
            try:
                logger.debug(f"Refreshing Google access token (attempt {attempt + 1})")
                response = self._session.post(
                    self._token_url,
                    data={
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                    timeout=self._timeout,
                )
                response.raise_for_status()
                token = response.json().get("access_token")
                if token:
                    return token
                logger.error(f"Token response without access_token (attempt {attempt + 1})")

            except requests.RequestException as e:
                logger.error(
                    f"Failed to refresh access token (attempt {attempt + 1}): "
                    f"{describe_http_error(_status_of(e))}"
                )
            except ValueError as e:
                logger.error(f"Invalid token response (attempt {attempt + 1}): {e}")

            if attempt < self._max_retries:
                delay = self._retry_delay * (2 ** attempt)
                logger.info(f"Retrying token refresh in {delay:.1f}s...")
                self._sleep(delay)

        return None

    # ── Reviews ────────────────────────────────────────────────────

    def fetch_reviews(
        self,
        location_name: str,
        refresh_token: str,
        since: Optional[datetime] = None,
    ) -> Optional[List[ExternalReview]]:
        """
        Fetch reviews for a location.

        Args:
            location_name: "accounts/{account}/locations/{location}".
            refresh_token: Owner's OAuth refresh token.
            since: Only return reviews created/updated strictly after this.

        Returns:
            List of reviews (possibly empty), or None if the fetch failed.
        """
        access_token = self.refresh_access_token(refresh_token)
        if not access_token:
            logger.error(f"{RECONNECT_MARKER} Could not refresh access token for {location_name}")
            return None

        raw_reviews: List[dict] = []
        page_token: Optional[str] = None
        page_count = 0

        while True:
            params = {"pageSize": self._page_size}
            if page_token:
                params["pageToken"] = page_token

            try:
                response = self._session.get(
                    f"{self._api_url}/{location_name}/reviews",
                    headers={"Authorization": f"Bearer {access_token}"},
                    params=params,
                    timeout=self._timeout,
                )
                response.raise_for_status()
                data = response.json()
            except requests.RequestException as e:
                logger.error(
                    f"GMB: error fetching page {page_count + 1} for {location_name}: "
                    f"{describe_http_error(_status_of(e))}"
                )
                return None
            except ValueError as e:
                logger.error(f"GMB: invalid JSON on page {page_count + 1} for {location_name}: {e}")
                return None

            page = data.get("reviews") or []
            raw_reviews.extend(page)
            page_token = data.get("nextPageToken")
            page_count += 1
            logger.debug(f"Fetched page {page_count} with {len(page)} reviews")

            if not page_token:
                break
            if page_count >= self._max_pages:
                logger.warning(f"Pagination limit reached ({self._max_pages} pages) - stopping fetch")
                break

        reviews = [self._to_external_review(r) for r in raw_reviews]

        if since is not None:
            reviews = [r for r in reviews if self._is_newer(r, since)]

        logger.info(
            f"Fetched {len(reviews)} reviews from GMB for {location_name} "
            f"({page_count} pages, filtered={'yes' if since else 'no'})"
        )
        return reviews

    def post_reply(self, location_name: str, review_id: str, text: str, refresh_token: str) -> bool:
        """PUT {location}/reviews/{id}/reply. Returns True when the reply was accepted."""
        access_token = self.refresh_access_token(refresh_token)
        if not access_token:
            logger.error(f"{RECONNECT_MARKER} Could not refresh access token to reply on {location_name}")
            return False

        try:
            response = self._session.put(
                f"{self._api_url}/{location_name}/reviews/{review_id}/reply",
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                json={"comment": text},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(
                f"Failed to post GMB reply for review {review_id}: {describe_http_error(_status_of(e))}"
            )
            return False

        logger.info(f"Posted reply to GMB review {review_id} ({location_name})")
        return True

    def _to_external_review(self, raw: dict) -> ExternalReview:
        reviewer = raw.get("reviewer") or {}
        reply = raw.get("reviewReply") or {}
        review_id = raw.get("reviewId") or (raw.get("name") or "").split("/")[-1]
        return ExternalReview(
            review_id=review_id,
            reviewer_name=reviewer.get("displayName") or "Customer",
            rating=rating_to_number(raw.get("starRating")),
            comment=raw.get("comment") or "",
            create_time=parse_timestamp(raw.get("createTime")),
            update_time=parse_timestamp(raw.get("updateTime")),
            reply_comment=reply.get("comment"),
        )

    @staticmethod
    def _is_newer(review: ExternalReview, since: datetime) -> bool:
        stamp = review.update_time or review.create_time
        if stamp is None:
            # Undated reviews are kept; idempotency drops the ones already stored
            return True
        return stamp > since
