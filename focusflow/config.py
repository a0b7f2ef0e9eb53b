# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Environment-driven configuration for FocusFlow.

**Simple Explanation:**
All knobs (API keys, retry budgets, bot voice) are read from environment
variables once at startup. `load_settings()` turns them into a `Settings`
object that gets passed to the pieces that need it, instead of each module
calling `os.getenv` on its own.
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_GREETING = (
    "Hello everyone! I am your AI moderator for today's group discussion. "
    "I will be asking you a series of questions. "
    "Please speak one at a time when responding. Let's begin!"
)
DEFAULT_CLOSING_MESSAGE = (
    "Thank you all for your valuable input today. "
    "This concludes our session. Have a great day!"
)


def _get_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def _get_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration."""

    # OpenAI (speech synthesis, transcription, summaries)
    openai_api_key: Optional[str] = None
    tts_model: str = "gpt-4o-mini-tts"
    tts_voice: str = "alloy"
    tts_speed: float = 1.0
    transcribe_model: str = "whisper-1"
    summary_model: str = "gpt-4o-mini"

    # Meeting bot provider
    recall_api_key: Optional[str] = None
    recall_region: str = "us-west-2"
    public_base_url: Optional[str] = None
    webhook_secret: Optional[str] = None

    # Bot persona
    bot_name: str = "Focus Group Moderator"
    bot_greeting: str = DEFAULT_GREETING
    bot_closing_message: str = DEFAULT_CLOSING_MESSAGE

    # Orchestrator budgets
    join_max_attempts: int = 3
    join_timeout_seconds: float = 60.0
    persist_max_attempts: int = 3
    persist_retry_delay: float = 0.5
    stale_session_minutes: int = 30
    max_bot_hours: float = 2.0

    # Storage
    store_backend: str = "memory"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    encryption_key: Optional[str] = None

    # Scheduling
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_refresh_token: Optional[str] = None
    google_calendar_id: str = "primary"
    calendar_timezone: str = "UTC"
    bot_email: Optional[str] = None

    # Observability / auth
    sentry_dsn: Optional[str] = None
    sentry_environment: str = "production"
    unkey_root_key: Optional[str] = None

    @property
    def calendar_enabled(self) -> bool:
        return bool(
            self.google_client_id
            and self.google_client_secret
            and self.google_refresh_token
        )


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Raises:
        ValueError: If a numeric variable is malformed or out of range
    """
    supabase_url = os.getenv("SUPABASE_URL")
    # Support both modern and legacy naming
    supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv(
        "SUPABASE_SECRET_KEY"
    )
    default_backend = "supabase" if supabase_url and supabase_key else "memory"
    store_backend = os.getenv("STORE_BACKEND", default_backend).lower()
    if store_backend not in ("supabase", "memory"):
        raise ValueError(
            f"STORE_BACKEND must be 'supabase' or 'memory', got {store_backend!r}"
        )

    tts_speed = _get_float("TTS_SPEED", 1.0, minimum=0.25)
    if tts_speed > 4.0:
        raise ValueError(f"TTS_SPEED must be <= 4.0, got {tts_speed}")

    return Settings(
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        tts_model=os.getenv("TTS_MODEL", "gpt-4o-mini-tts"),
        tts_voice=os.getenv("TTS_VOICE", "alloy"),
        tts_speed=tts_speed,
        transcribe_model=os.getenv("TRANSCRIBE_MODEL", "whisper-1"),
        summary_model=os.getenv("SUMMARY_MODEL", "gpt-4o-mini"),
        recall_api_key=os.getenv("RECALL_API_KEY"),
        recall_region=os.getenv("RECALL_REGION", "us-west-2"),
        public_base_url=os.getenv("PUBLIC_BASE_URL"),
        webhook_secret=os.getenv("WEBHOOK_SECRET"),
        bot_name=os.getenv("BOT_NAME", "Focus Group Moderator"),
        bot_greeting=os.getenv("BOT_GREETING", DEFAULT_GREETING),
        bot_closing_message=os.getenv("BOT_CLOSING_MESSAGE", DEFAULT_CLOSING_MESSAGE),
        join_max_attempts=_get_int("JOIN_MAX_ATTEMPTS", 3),
        join_timeout_seconds=_get_float("JOIN_TIMEOUT_SECONDS", 60.0, minimum=1.0),
        persist_max_attempts=_get_int("PERSIST_MAX_ATTEMPTS", 3),
        persist_retry_delay=_get_float("PERSIST_RETRY_DELAY", 0.5),
        stale_session_minutes=_get_int("STALE_SESSION_MINUTES", 30),
        max_bot_hours=_get_float("MAX_BOT_HOURS", 2.0, minimum=0.1),
        store_backend=store_backend,
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        encryption_key=os.getenv("ENCRYPTION_KEY"),
        google_client_id=os.getenv("GOOGLE_CLIENT_ID"),
        google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET"),
        google_refresh_token=os.getenv("GOOGLE_REFRESH_TOKEN"),
        google_calendar_id=os.getenv("GOOGLE_CALENDAR_ID", "primary"),
        calendar_timezone=os.getenv("CALENDAR_TIMEZONE", "UTC"),
        bot_email=os.getenv("BOT_EMAIL"),
        sentry_dsn=os.getenv("SENTRY_DSN"),
        sentry_environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        unkey_root_key=os.getenv("UNKEY_ROOT_KEY"),
    )
