from .messaging_provider import (
    CloudAPIProvider,
    MessagingProvider,
    RecipientRateLimiter,
    SendResult,
    is_individual_number,
    normalize_phone,
)

__all__ = [
    "CloudAPIProvider",
    "MessagingProvider",
    "RecipientRateLimiter",
    "SendResult",
    "is_individual_number",
    "normalize_phone",
]
