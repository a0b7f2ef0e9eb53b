# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Tests for settings loading and service wiring."""

import pytest

from focusflow.bot.orchestrator import OrchestratorConfig
from focusflow.config import DEFAULT_GREETING, Settings, load_settings
from focusflow.container import build_services, webhook_url
from focusflow.db import InMemorySessionStore
from focusflow.providers.meeting import RecallMeetingDriver
from focusflow.tests.fakes import FakeMeetingDriver, FakeSynthesizer, FakeTranscription

ENV_VARS = [
    "OPENAI_API_KEY",
    "RECALL_API_KEY",
    "PUBLIC_BASE_URL",
    "WEBHOOK_SECRET",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_SECRET_KEY",
    "STORE_BACKEND",
    "TTS_SPEED",
    "TTS_VOICE",
    "JOIN_MAX_ATTEMPTS",
    "PERSIST_MAX_ATTEMPTS",
    "BOT_NAME",
    "BOT_GREETING",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_defaults(self) -> None:
        settings = load_settings()

        assert settings.store_backend == "memory"
        assert settings.bot_greeting == DEFAULT_GREETING
        assert settings.join_max_attempts == 3
        assert settings.calendar_enabled is False

    def test_values_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TTS_VOICE", "nova")
        monkeypatch.setenv("TTS_SPEED", "1.25")
        monkeypatch.setenv("JOIN_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("BOT_NAME", "Facilitator")
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("GOOGLE_REFRESH_TOKEN", "refresh")

        settings = load_settings()

        assert settings.tts_voice == "nova"
        assert settings.tts_speed == 1.25
        assert settings.join_max_attempts == 5
        assert settings.bot_name == "Facilitator"
        assert settings.calendar_enabled is True

    def test_supabase_selected_when_configured(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
        monkeypatch.setenv("SUPABASE_SECRET_KEY", "service-role")

        settings = load_settings()

        assert settings.store_backend == "supabase"
        assert settings.supabase_key == "service-role"

    def test_explicit_memory_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://project.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role")
        monkeypatch.setenv("STORE_BACKEND", "MEMORY")

        assert load_settings().store_backend == "memory"

    @pytest.mark.parametrize(
        "name,value",
        [
            ("STORE_BACKEND", "sqlite"),
            ("TTS_SPEED", "fast"),
            ("TTS_SPEED", "5"),
            ("JOIN_MAX_ATTEMPTS", "0"),
            ("PERSIST_MAX_ATTEMPTS", "two"),
        ],
    )
    def test_invalid_values(
        self, monkeypatch: pytest.MonkeyPatch, name: str, value: str
    ) -> None:
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError, match=name):
            load_settings()

    def test_orchestrator_config_from_settings(self) -> None:
        settings = Settings(bot_name="Facilitator", tts_voice="nova", join_max_attempts=4)

        config = OrchestratorConfig.from_settings(settings)

        assert config.bot_name == "Facilitator"
        assert config.speech_options.voice == "nova"
        assert config.join_max_attempts == 4


class TestWebhookUrl:
    def test_not_configured(self) -> None:
        assert webhook_url(Settings()) is None

    def test_with_secret(self) -> None:
        settings = Settings(public_base_url="https://bot.example.com/", webhook_secret="s3cret")
        assert webhook_url(settings) == (
            "https://bot.example.com/webhooks/meeting-events?token=s3cret"
        )


@pytest.mark.asyncio
class TestBuildServices:
    async def test_requires_openai_key(self) -> None:
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            build_services(Settings(recall_api_key="recall"))

    async def test_requires_recall_key(self) -> None:
        with pytest.raises(ValueError, match="RECALL_API_KEY"):
            build_services(
                Settings(),
                synthesizer=FakeSynthesizer(),
                transcription=FakeTranscription(),
            )

    async def test_builds_recall_driver(self) -> None:
        services = build_services(
            Settings(recall_api_key="recall", public_base_url="https://bot.example.com"),
            synthesizer=FakeSynthesizer(),
            transcription=FakeTranscription(),
        )

        assert isinstance(services.driver, RecallMeetingDriver)
        assert services.driver.webhook_url == "https://bot.example.com/webhooks/meeting-events"
        assert services.calendar is None
        assert services.openai_client is None
        await services.aclose()

    async def test_overrides_are_wired_through(self) -> None:
        store = InMemorySessionStore()
        driver = FakeMeetingDriver()
        services = build_services(
            Settings(),
            session_store=store,
            driver=driver,
            synthesizer=FakeSynthesizer(),
            transcription=FakeTranscription(),
        )

        assert services.bot_service.session_store is store
        assert services.scheduling.bot_service is services.bot_service
        assert services.scheduling.calendar is None
        await services.aclose()
