# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Service container - builds the shared clients once per process.

**Simple Explanation:**
Instead of creating OpenAI / HTTP / database clients when a module is
imported, `build_services()` creates them explicitly at startup (FastAPI
lifespan or the standalone bot runner) and `aclose()` shuts them down.
Tests pass fakes in through the keyword overrides.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

import httpx
from openai import AsyncOpenAI

from focusflow.bot.bot_service import BotService
from focusflow.bot.orchestrator import OrchestratorConfig, SessionOrchestrator
from focusflow.config import Settings
from focusflow.db import FocusGroupStore, SessionStore, build_stores
from focusflow.models import FocusGroup, FocusGroupSession
from focusflow.providers.meeting import MeetingDriver, RecallMeetingDriver
from focusflow.providers.speech import OpenAISpeechSynthesizer, SpeechSynthesizer
from focusflow.providers.transcription import (
    OpenAITranscriptionService,
    TranscriptionService,
)
from focusflow.scheduling import GoogleCalendarClient, SchedulingService

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/meeting-events"


@dataclass
class ServiceContainer:
    settings: Settings
    http_client: httpx.AsyncClient
    openai_client: Optional[AsyncOpenAI]
    focus_group_store: FocusGroupStore
    session_store: SessionStore
    driver: MeetingDriver
    synthesizer: SpeechSynthesizer
    transcription: TranscriptionService
    orchestrator_config: OrchestratorConfig
    calendar: Optional[GoogleCalendarClient] = None
    bot_service: BotService = field(init=False)
    scheduling: SchedulingService = field(init=False)

    def __post_init__(self):
        self.bot_service = BotService(self.session_store, self.build_orchestrator)
        self.scheduling = SchedulingService(
            self.focus_group_store, self.session_store, self.bot_service, self.calendar
        )

    def build_orchestrator(
        self, focus_group: FocusGroup, session: FocusGroupSession
    ) -> SessionOrchestrator:
        return SessionOrchestrator(
            focus_group=focus_group,
            session=session,
            driver=self.driver,
            synthesizer=self.synthesizer,
            transcription=self.transcription,
            session_store=self.session_store,
            focus_group_store=self.focus_group_store,
            config=self.orchestrator_config,
        )

    async def aclose(self) -> None:
        """Stop running bots, then close network clients."""
        await self.bot_service.cleanup()
        await self.http_client.aclose()
        if self.openai_client is not None:
            await self.openai_client.close()
        logger.info("Service container closed")


def webhook_url(settings: Settings) -> Optional[str]:
    """Public URL the meeting provider should post realtime events to."""
    if not settings.public_base_url:
        return None
    url = settings.public_base_url.rstrip("/") + WEBHOOK_PATH
    if settings.webhook_secret:
        url += "?" + urlencode({"token": settings.webhook_secret})
    return url


def build_services(
    settings: Settings,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    focus_group_store: Optional[FocusGroupStore] = None,
    session_store: Optional[SessionStore] = None,
    driver: Optional[MeetingDriver] = None,
    synthesizer: Optional[SpeechSynthesizer] = None,
    transcription: Optional[TranscriptionService] = None,
    calendar: Optional[GoogleCalendarClient] = None,
) -> ServiceContainer:
    """
    Construct every shared service from settings.

    Raises:
        ValueError: If a required credential is missing for a service that
            was not supplied explicitly
    """
    http_client = http_client or httpx.AsyncClient(timeout=30.0)

    if focus_group_store is None or session_store is None:
        default_fg_store, default_session_store = build_stores(
            settings.store_backend,
            supabase_url=settings.supabase_url,
            supabase_key=settings.supabase_key,
            encryption_key=settings.encryption_key,
        )
        focus_group_store = focus_group_store or default_fg_store
        session_store = session_store or default_session_store

    openai_client: Optional[AsyncOpenAI] = None
    if synthesizer is None or transcription is None:
        if not settings.openai_api_key:
            raise ValueError(
                "OPENAI_API_KEY is required for speech synthesis and transcription"
            )
        openai_client = AsyncOpenAI(api_key=settings.openai_api_key)
    if synthesizer is None:
        synthesizer = OpenAISpeechSynthesizer(openai_client, model=settings.tts_model)
    if transcription is None:
        transcription = OpenAITranscriptionService(
            openai_client,
            transcribe_model=settings.transcribe_model,
            text_model=settings.summary_model,
        )

    if driver is None:
        if not settings.recall_api_key:
            raise ValueError("RECALL_API_KEY is required for the meeting bot")
        if not settings.public_base_url:
            logger.warning(
                "⚠️ PUBLIC_BASE_URL not set - the bot will not receive live transcripts"
            )
        driver = RecallMeetingDriver(
            http_client,
            api_key=settings.recall_api_key,
            region=settings.recall_region,
            webhook_url=webhook_url(settings),
            join_timeout=settings.join_timeout_seconds,
        )

    if calendar is None and settings.calendar_enabled:
        calendar = GoogleCalendarClient(
            http_client,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            refresh_token=settings.google_refresh_token,
            calendar_id=settings.google_calendar_id,
            time_zone=settings.calendar_timezone,
            bot_email=settings.bot_email,
        )
    if calendar is None:
        logger.info("ℹ️ Google Calendar not configured - meeting links must be supplied")

    orchestrator_config = OrchestratorConfig.from_settings(settings)

    container = ServiceContainer(
        settings=settings,
        http_client=http_client,
        openai_client=openai_client,
        focus_group_store=focus_group_store,
        session_store=session_store,
        driver=driver,
        synthesizer=synthesizer,
        transcription=transcription,
        orchestrator_config=orchestrator_config,
        calendar=calendar,
    )
    logger.info(f"✅ Services ready (store backend: {settings.store_backend})")
    return container
