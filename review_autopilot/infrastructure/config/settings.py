"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses, one group per external concern
- Single source of truth for all configurable values

EXTENSIBILITY:
- To add a new collaborator: add a settings group and hang it off Settings
- To switch LLM provider: change LLM_API_URL / LLM_MODEL
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Tuple

# Load .env file if present (development convenience)
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_minutes_list(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    """Parse a comma separated list of minutes, e.g. "15,120,360"."""
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return tuple(int(part) for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class AutomationSettings:
    """Review automation engine settings."""

    # When False, AutomationEngine.start() is a no-op
    enabled: bool = field(default_factory=lambda: _env_bool("AUTOMATION_ENABLED", False))
    polling_interval_minutes: int = field(
        default_factory=lambda: _env_int("AUTOMATION_POLLING_INTERVAL_MINUTES", 15)
    )

    # Escalate once this many reminders went unanswered
    max_reminders: int = field(default_factory=lambda: _env_int("AUTOMATION_MAX_REMINDERS", 5))

    # Delay before reminder N+1, indexed by the number of reminders already sent:
    # 15 minutes, 2 hours, 6 hours, 12 hours, 24 hours
    reminder_schedule_minutes: Tuple[int, ...] = field(
        default_factory=lambda: _env_minutes_list(
            "AUTOMATION_REMINDER_SCHEDULE_MINUTES", (15, 120, 360, 720, 1440)
        )
    )
    first_reminder_minutes: int = field(
        default_factory=lambda: _env_int("AUTOMATION_FIRST_REMINDER_MINUTES", 15)
    )


@dataclass(frozen=True)
class GoogleSettings:
    """Google Business Profile API settings."""

    client_id: str = field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_ID", ""))
    client_secret: str = field(default_factory=lambda: os.getenv("GOOGLE_CLIENT_SECRET", ""))
    token_url: str = "https://oauth2.googleapis.com/token"
    api_url: str = "https://mybusiness.googleapis.com/v4"

    # SAFETY: cap API usage per fetch (pages x page size)
    page_size: int = field(default_factory=lambda: _env_int("GMB_PAGE_SIZE", 50))
    max_pages: int = field(default_factory=lambda: _env_int("GMB_MAX_PAGES", 5))

    # Token refresh retries with exponential backoff (1s, 2s, 4s)
    max_retries: int = field(default_factory=lambda: _env_int("GOOGLE_MAX_RETRIES", 3))
    retry_delay_seconds: float = field(
        default_factory=lambda: _env_float("GOOGLE_RETRY_DELAY_SECONDS", 1.0)
    )
    timeout_seconds: int = 20


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp Cloud API settings."""

    access_token: str = field(default_factory=lambda: os.getenv("WHATSAPP_ACCESS_TOKEN", ""))
    phone_number_id: str = field(default_factory=lambda: os.getenv("WHATSAPP_PHONE_NUMBER_ID", ""))
    api_url: str = "https://graph.facebook.com/v18.0"
    language_code: str = field(default_factory=lambda: os.getenv("WHATSAPP_TEMPLATE_LANGUAGE", "en_US"))

    # Templates must be pre-approved in WhatsApp Business Manager
    template_critical_alert: str = field(
        default_factory=lambda: os.getenv("WHATSAPP_TEMPLATE_LOW_RATING", "low_rating_review_v1")
    )
    template_reminder: str = field(
        default_factory=lambda: os.getenv("WHATSAPP_TEMPLATE_REMINDER", "manual_review_reminder_v1")
    )
    template_escalation: str = field(
        default_factory=lambda: os.getenv("WHATSAPP_TEMPLATE_ESCALATION", "review_escalation_v1")
    )
    template_positive_summary: str = field(
        default_factory=lambda: os.getenv("WHATSAPP_TEMPLATE_CONFIRMATION", "positive_review_replied_v1")
    )

    # SAFETY: Rate limit per recipient to avoid WhatsApp blocking
    max_messages_per_hour: int = field(
        default_factory=lambda: _env_int("WHATSAPP_MAX_MESSAGES_PER_HOUR", 100)
    )
    timeout_seconds: int = 15


@dataclass(frozen=True)
class LLMSettings:
    """OpenRouter LLM settings for reply generation."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    api_url: str = field(
        default_factory=lambda: os.getenv("LLM_API_URL", "https://openrouter.ai/api/v1/chat/completions")
    )
    model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "meta-llama/llama-3.2-3b-instruct:free")
    )

    temperature: float = 0.6
    max_tokens: int = 120
    max_reply_words: int = 40
    timeout_seconds: int = 30


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from review_autopilot.infrastructure.config import get_settings
        settings = get_settings()
        print(settings.automation.polling_interval_minutes)
    """

    # Sub-settings groups
    automation: AutomationSettings = field(default_factory=AutomationSettings)
    google: GoogleSettings = field(default_factory=GoogleSettings)
    whatsapp: WhatsAppSettings = field(default_factory=WhatsAppSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)

    database_file: str = field(
        default_factory=lambda: os.getenv("DATABASE_FILE", "review_autopilot.db")
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.automation.enabled:
            issues.append(
                "WARNING: AUTOMATION_ENABLED is not true. "
                "The automation engine will not start."
            )

        if self.automation.max_reminders < 1:
            issues.append("ERROR: AUTOMATION_MAX_REMINDERS must be at least 1.")

        if not self.automation.reminder_schedule_minutes:
            issues.append("ERROR: AUTOMATION_REMINDER_SCHEDULE_MINUTES is empty.")

        if not self.google.client_id or not self.google.client_secret:
            issues.append(
                "WARNING: GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET not set. "
                "Reviews cannot be fetched or replied to."
            )

        if not self.whatsapp.access_token or not self.whatsapp.phone_number_id:
            issues.append(
                "WARNING: WHATSAPP_ACCESS_TOKEN / WHATSAPP_PHONE_NUMBER_ID not set. "
                "Notifications will be skipped."
            )

        if not self.llm.api_key:
            issues.append(
                "WARNING: OPENROUTER_API_KEY not set. "
                "Positive reviews will stay pending without an AI reply."
            )

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Cached to ensure consistent settings throughout application lifecycle.
    """
    return Settings()
