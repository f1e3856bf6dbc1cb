from .settings import (
    AutomationSettings,
    GoogleSettings,
    LLMSettings,
    Settings,
    WhatsAppSettings,
    get_settings,
)

__all__ = [
    "AutomationSettings",
    "GoogleSettings",
    "LLMSettings",
    "Settings",
    "WhatsAppSettings",
    "get_settings",
]
