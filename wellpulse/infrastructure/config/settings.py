"""
Settings Module - Centralized Configuration Management
=======================================================

ARCHITECTURAL DECISION:
- All configuration is loaded from environment variables (no hardcoded secrets)
- Settings are immutable dataclasses, built once at process start
- Services receive the settings group they need through their constructor

EXTENSIBILITY:
- To add another gateway: add a settings group next to TwilioSettings
- To switch LLM provider: change LLMSettings api_url and model
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache

# Load .env file if present (development convenience)
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # python-dotenv is optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class TwilioSettings:
    """Messaging gateway credentials and sending addresses."""

    account_sid: str = field(default_factory=lambda: os.getenv("TWILIO_ACCOUNT_SID", ""))
    auth_token: str = field(default_factory=lambda: os.getenv("TWILIO_AUTH_TOKEN", ""))

    # Outbound broadcasts and inbound acknowledgments may use different numbers
    broadcast_number: str = field(default_factory=lambda: os.getenv("TWILIO_WHATSAPP_NUMBER", ""))
    reply_number: str = field(default_factory=lambda: os.getenv("TWILIO_REPLY_NUMBER", ""))

    api_base: str = field(
        default_factory=lambda: os.getenv("TWILIO_API_BASE", "https://api.twilio.com")
    )

    # Public URL Twilio signs; needed when running behind a proxy
    webhook_url: str = field(default_factory=lambda: os.getenv("TWILIO_WEBHOOK_URL", ""))

    # "whatsapp" prefixes addresses with "whatsapp:", "sms" sends plain E.164
    channel: str = field(default_factory=lambda: os.getenv("MESSAGING_CHANNEL", "whatsapp"))

    timeout_seconds: int = field(default_factory=lambda: _env_int("TWILIO_TIMEOUT_SECONDS", 15))

    @property
    def channel_prefix(self) -> str:
        return "whatsapp:" if self.channel == "whatsapp" else ""

    @property
    def reply_from(self) -> str:
        return self.reply_number or self.broadcast_number

    @property
    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.broadcast_number)


@dataclass(frozen=True)
class DatabaseSettings:
    """Local data store settings."""

    path: str = field(default_factory=lambda: os.getenv("DATABASE_PATH", "wellpulse.db"))


@dataclass(frozen=True)
class LLMSettings:
    """OpenRouter LLM settings for reply sentiment classification."""

    api_key: str = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    api_url: str = "https://openrouter.ai/api/v1/chat/completions"

    # Free model from OpenRouter
    model: str = field(
        default_factory=lambda: os.getenv("OPENROUTER_MODEL", "meta-llama/llama-3.2-3b-instruct:free")
    )

    # Deterministic output
    temperature: float = 0.0
    timeout_seconds: int = 15


@dataclass(frozen=True)
class DispatchSettings:
    """Fan-out width and correlation lifetimes."""

    max_workers: int = field(default_factory=lambda: _env_int("DISPATCH_MAX_WORKERS", 4))

    # MessageContext lifetimes (hours)
    checkin_ttl_hours: int = 24
    announcement_ttl_hours: int = 24
    poll_ttl_hours: int = 24 * 7

    # Tell the employee how to correct an unparseable reply
    send_correction_hints: bool = field(
        default_factory=lambda: _env_bool("SEND_CORRECTION_HINTS", True)
    )

    # Keep replies that match no active context as general feedback
    store_unmatched_as_feedback: bool = field(
        default_factory=lambda: _env_bool("STORE_UNMATCHED_AS_FEEDBACK", False)
    )


@dataclass(frozen=True)
class Settings:
    """
    Root settings container - Single source of truth for all configuration.

    Usage:
        from wellpulse.infrastructure.config import get_settings
        settings = get_settings()
        provider = TwilioProvider(settings.twilio)
    """

    twilio: TwilioSettings = field(default_factory=TwilioSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)

    def validate(self) -> list[str]:
        """
        Validate settings and return list of warnings/errors.
        Returns empty list if all settings are valid.
        """
        issues = []

        if not self.twilio.is_configured:
            issues.append(
                "WARNING: TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN or TWILIO_WHATSAPP_NUMBER not set. "
                "Broadcasts cannot be dispatched."
            )

        if not self.twilio.auth_token:
            issues.append(
                "WARNING: TWILIO_AUTH_TOKEN not set. "
                "Inbound webhooks will be processed without signature verification."
            )

        if not self.llm.api_key:
            issues.append(
                "WARNING: OPENROUTER_API_KEY not set. "
                "Reply sentiment will use keyword fallback."
            )

        if self.dispatch.max_workers < 1:
            issues.append("WARNING: DISPATCH_MAX_WORKERS must be >= 1. Falling back to sequential sends.")

        return issues


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get singleton Settings instance.
    Call this at the entry point only and pass the result down.
    """
    return Settings()
