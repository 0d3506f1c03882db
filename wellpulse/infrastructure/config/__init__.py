from .settings import (
    DatabaseSettings,
    DispatchSettings,
    LLMSettings,
    Settings,
    TwilioSettings,
    get_settings,
)

__all__ = [
    "DatabaseSettings",
    "DispatchSettings",
    "LLMSettings",
    "Settings",
    "TwilioSettings",
    "get_settings",
]
