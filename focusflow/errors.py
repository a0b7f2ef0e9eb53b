# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Error taxonomy for the focus group bot.

**Simple Explanation:**
Every adapter (meeting provider, OpenAI, Supabase, Google Calendar) turns the
errors of its own library into one of these classes. The orchestrator only
needs to know which of them are fatal (join, disconnect, persistence) and
which just skip a step (synthesis, playback, summarization).
"""

from typing import Optional


class FocusFlowError(Exception):
    """Base class for all focus group bot errors."""


class JoinFailure(FocusFlowError):
    """The bot could not establish presence in the meeting."""


class DisconnectDetected(FocusFlowError):
    """The bot lost its meeting presence mid-session."""


class SynthesisFailure(FocusFlowError):
    """
    Text-to-speech failed.

    Args:
        message: Error details
        transient: True for network/quota problems that may succeed on retry,
            False for invalid input that will never succeed
    """

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class PlaybackFailure(FocusFlowError):
    """The meeting provider refused or failed to play an audio segment."""


class TranscriptionFailure(FocusFlowError):
    """Speech-to-text or text cleanup failed."""


class SummarizationFailure(FocusFlowError):
    """Generating a per-question summary failed."""


class PersistenceFailure(FocusFlowError):
    """The state store could not durably write a session."""


class NotFoundError(FocusFlowError):
    """A requested record does not exist (or is not visible to the caller)."""


class CalendarError(FocusFlowError):
    """Creating the calendar event for a focus group failed."""


class MeetingProviderError(FocusFlowError):
    """
    Error returned by the meeting-bot provider API.

    Attributes:
        operation: Which provider call failed (e.g., "create_bot")
        status_code: HTTP status code (0 for network errors)
        message: Error details
        bot_id: Provider bot ID, when one exists
    """

    def __init__(
        self,
        operation: str,
        status_code: int,
        message: str,
        bot_id: Optional[str] = None,
    ):
        self.operation = operation
        self.status_code = status_code
        self.message = message
        self.bot_id = bot_id
        super().__init__(f"{operation} failed ({status_code}): {message}")

    @property
    def is_transient(self) -> bool:
        """Network errors, rate limiting and 5xx responses are worth retrying."""
        return self.status_code == 0 or self.status_code == 429 or self.status_code >= 500


class ConflictError(FocusFlowError):
    """The request conflicts with the current state of a focus group."""


class BotAlreadyRunning(ConflictError):
    """A bot is already running for this focus group."""
