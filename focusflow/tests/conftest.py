# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Test configuration and fixtures for FocusFlow.

Orchestrator runs use the fakes in `focusflow.tests.fakes`, so they are fast
and never touch the network.
"""

from datetime import timedelta
from typing import Callable, Optional

import pytest

from focusflow.bot.orchestrator import OrchestratorConfig, SessionOrchestrator
from focusflow.db import InMemoryFocusGroupStore, InMemorySessionStore
from focusflow.models import (
    FocusGroup,
    FocusGroupParticipant,
    FocusGroupSession,
    FocusGroupSettings,
    Question,
    Questionnaire,
    utc_now,
)
from focusflow.providers.meeting.base import MeetingDriver
from focusflow.providers.speech import SpeechSynthesizer
from focusflow.providers.transcription import TranscriptionService
from focusflow.tests.fakes import FakeMeetingDriver, FakeSynthesizer, FakeTranscription


@pytest.fixture
def make_focus_group() -> Callable[..., FocusGroup]:
    def _make(
        questions: Optional[list[str]] = None,
        time_per_question: float = 5,
        enable_summarization: bool = False,
        owner_id: str = "owner-1",
    ) -> FocusGroup:
        questions = questions or ["What did you like?", "What would you improve?"]
        return FocusGroup(
            title="Checkout Redesign Feedback",
            description="Feedback on the new checkout flow",
            owner_id=owner_id,
            questionnaire=Questionnaire(
                title="Checkout",
                questions=[
                    Question(order=i, text=text) for i, text in enumerate(questions, 1)
                ],
            ),
            participants=[
                FocusGroupParticipant(email="alice@example.com", name="Alice"),
                FocusGroupParticipant(email="bob@example.com", name="Bob"),
            ],
            scheduled_at=utc_now() + timedelta(days=1),
            meeting_link="https://meet.google.com/abc-defg-hij",
            settings=FocusGroupSettings(
                time_per_question=time_per_question,
                enable_summarization=enable_summarization,
            ),
        )

    return _make


@pytest.fixture
def focus_group(make_focus_group: Callable[..., FocusGroup]) -> FocusGroup:
    return make_focus_group()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def focus_group_store() -> InMemoryFocusGroupStore:
    return InMemoryFocusGroupStore()


@pytest.fixture
def orchestrator_config() -> OrchestratorConfig:
    """No retry delays and no fillers, so played audio is predictable."""
    return OrchestratorConfig(
        bot_name="Moderator",
        greeting="Hello everyone!",
        closing_message="Thanks, that's all for today.",
        join_retry_delay=0,
        persist_retry_delay=0,
        enable_fillers=False,
    )


@pytest.fixture
def make_orchestrator(
    session_store: InMemorySessionStore,
    focus_group_store: InMemoryFocusGroupStore,
    orchestrator_config: OrchestratorConfig,
) -> Callable[..., SessionOrchestrator]:
    def _make(
        focus_group: FocusGroup,
        session: FocusGroupSession,
        driver: Optional[MeetingDriver] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        transcription: Optional[TranscriptionService] = None,
        store=None,
        config: Optional[OrchestratorConfig] = None,
    ) -> SessionOrchestrator:
        return SessionOrchestrator(
            focus_group=focus_group,
            session=session,
            driver=driver or FakeMeetingDriver(),
            synthesizer=synthesizer or FakeSynthesizer(),
            transcription=transcription or FakeTranscription(),
            session_store=store if store is not None else session_store,
            focus_group_store=focus_group_store,
            config=config or orchestrator_config,
        )

    return _make
