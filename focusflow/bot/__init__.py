# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Focus group moderator bot.

This module contains the session orchestrator, the supervisor that runs it in
the background, and the helpers it uses for prompts, speaker attribution and
transcripts.
"""

from focusflow.bot.bot_process import BotProcess
from focusflow.bot.bot_service import BotService
from focusflow.bot.orchestrator import (
    OrchestratorConfig,
    SessionOrchestrator,
    StepOutcome,
)
from focusflow.bot.speaker_tracking import SpeakerIdentity, SpeakerTracker
from focusflow.bot.transcript_handler import TranscriptHandler

__all__ = [
    "BotService",
    "BotProcess",
    "SessionOrchestrator",
    "OrchestratorConfig",
    "StepOutcome",
    "SpeakerTracker",
    "SpeakerIdentity",
    "TranscriptHandler",
]
