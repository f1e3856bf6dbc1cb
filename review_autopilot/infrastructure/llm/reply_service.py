"""
Reply Service - LLM-Generated Google Review Replies
====================================================

ARCHITECTURAL DECISION:
- Uses an OpenAI-compatible chat completions API (OpenRouter by default)
- Returns a reply of at most 40 words, or None on any failure
- No business logic - the engine decides what to do with a missing reply

EXTENSIBILITY:
- To use a different model: set LLM_MODEL
- To use OpenAI directly: set LLM_API_URL and the key
"""

import logging
from typing import Optional

import requests

from ..config import get_settings

logger = logging.getLogger(__name__)


def enforce_word_limit(text: str, limit: int) -> str:
    words = str(text).strip().split()
    return " ".join(words[:limit])


class ReplyService:
    """
    Reply generation service using LLM.

    USAGE:
        service = ReplyService()
        reply = service.generate_reply("Great service!", 5, "Cafe X", customer_name="Ana")
        if reply is None:
            ...  # try again next cycle

    FAILURE BEHAVIOR:
    - If no API key: None
    - If API fails or times out: None
    - If response is empty: None
    """

    SYSTEM_PROMPT = (
        "You write professional replies to Google reviews for a business.\n"
        "STRICT RULES:\n"
        "- Must be under {max_words} words.\n"
        "- Must include the customer's name.\n"
        "- Tone: professional, warm, human.\n"
        "- For 4-5 stars: thank them and invite them back.\n"
        "- For 1-3 stars: apologize, acknowledge concern, offer help, suggest contacting the store.\n"
        "- No emojis.\n"
        "- Do NOT mention AI or language models.\n"
        "- Do NOT include phone numbers."
    )

    USER_TEMPLATE = (
        "Rating: {rating}\n"
        "Customer: {customer}\n"
        "Review Message: {message}\n"
        "Business Name: {business}\n\n"
        "Write a single reply only."
    )

    # Used for 4-5 star reviews that carry no text
    NO_TEXT_TEMPLATE = (
        "Thank you so much, {customer}, for the {rating}-star review! "
        "We truly appreciate your support and look forward to serving you again."
    )

    def __init__(self, settings=None, session: Optional[requests.Session] = None):
        """Initialize reply service with settings."""
        llm = (settings or get_settings()).llm
        self._api_key = llm.api_key
        self._api_url = llm.api_url
        self._model = llm.model
        self._temperature = llm.temperature
        self._max_tokens = llm.max_tokens
        self._max_words = llm.max_reply_words
        self._timeout = llm.timeout_seconds
        self._session = session or requests.Session()

        if not self._api_key:
            logger.warning(
                "No OPENROUTER_API_KEY set. "
                "AI replies cannot be generated."
            )

    def generate_reply(
        self,
        review_text: str,
        rating: int,
        business_name: str,
        customer_name: str = "Customer",
    ) -> Optional[str]:
        """
        Generate a reply for a review.

        Args:
            review_text: Review comment (may be empty).
            rating: Star rating 1-5.
            business_name: Outlet name shown to the customer.
            customer_name: Reviewer display name.

        Returns:
            Reply text, or None if generation failed.
        """
        if not self._api_key:
            logger.warning("LLM API key not configured")
            return None

        message = (review_text or "").strip()
        customer = (customer_name or "").strip() or "Customer"

        if rating >= 4 and not message:
            return enforce_word_limit(
                self.NO_TEXT_TEMPLATE.format(customer=customer, rating=rating), self._max_words
            )

        content = self._complete(
            self.SYSTEM_PROMPT.format(max_words=self._max_words),
            self.USER_TEMPLATE.format(
                rating=rating,
                customer=customer,
                message=message or "(no message)",
                business=business_name,
            ),
        )
        if not content:
            return None

        reply = enforce_word_limit(content, self._max_words)
        logger.info(f"AI reply generated for {business_name} ({rating} stars, {len(reply.split())} words)")
        return reply

    def _complete(self, system: str, user: str) -> Optional[str]:
        """
        Call the chat completions API.

        Returns:
            Message content or None if the API call fails.
        """
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

        try:
            response = self._session.post(
                self._api_url,
                headers=headers,
                json=payload,
                timeout=self._timeout
            )
            response.raise_for_status()

            content = self._extract_response_content(response.json())
            if not content:
                logger.warning("LLM returned empty response")
                return None
            return content

        except requests.Timeout:
            logger.warning("LLM API timeout, reply not generated")
            return None

        except requests.RequestException as e:
            logger.warning(f"LLM API error: {e}")
            return None

        except ValueError as e:
            logger.warning(f"LLM API returned invalid JSON: {e}")
            return None

    def _extract_response_content(self, data: dict) -> str:
        """Extract text content from API response."""
        try:
            choices = data.get("choices", [])
            if choices:
                message = choices[0].get("message", {})
                return (message.get("content") or "").strip()
        except (KeyError, IndexError, TypeError, AttributeError):
            pass
        return ""
