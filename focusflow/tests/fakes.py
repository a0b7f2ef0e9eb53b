# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""In-process fakes for the meeting provider, OpenAI and the database."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from focusflow.db import InMemorySessionStore
from focusflow.errors import (
    DisconnectDetected,
    JoinFailure,
    PersistenceFailure,
    SummarizationFailure,
    SynthesisFailure,
)
from focusflow.models import FocusGroupSession
from focusflow.providers.meeting.base import MeetingConnection, MeetingDriver, Utterance
from focusflow.providers.speech import AudioSegment, SpeechOptions, SpeechSynthesizer
from focusflow.providers.transcription import TranscriptionService


class FakeMeetingDriver(MeetingDriver):
    """
    Scripted meeting.

    Args:
        windows: Utterances to yield for each listen() call, in order
        join_failures: How many join attempts fail before one succeeds
            (-1 fails forever)
        disconnect_after_window: Drop the connection once this many listening
            windows have finished
        fail_play_containing: Raise DisconnectDetected from play() for text
            containing this substring
    """

    def __init__(
        self,
        windows: Optional[list[list[Utterance]]] = None,
        join_failures: int = 0,
        disconnect_after_window: Optional[int] = None,
        fail_play_containing: Optional[str] = None,
    ):
        self.windows = list(windows or [])
        self.join_failures = join_failures
        self.disconnect_after_window = disconnect_after_window
        self.fail_play_containing = fail_play_containing
        self.join_attempts = 0
        self.listen_calls = 0
        self.listen_budgets: list[float] = []
        self.played: list[str] = []
        self.connected = False
        self.leave_calls = 0

    async def join(self, meeting_link: str, bot_name: str) -> MeetingConnection:
        self.join_attempts += 1
        if self.join_failures < 0 or self.join_attempts <= self.join_failures:
            raise JoinFailure("Meeting not reachable")
        self.connected = True
        return MeetingConnection(
            connection_id="fake-bot-1", meeting_link=meeting_link, bot_name=bot_name
        )

    async def play(self, connection: MeetingConnection, audio: AudioSegment) -> None:
        if not self.connected:
            raise DisconnectDetected("Bot is not in the meeting")
        if self.fail_play_containing and self.fail_play_containing in audio.text:
            self.connected = False
            raise DisconnectDetected("Meeting ended during playback")
        self.played.append(audio.text)

    async def listen(self, connection: MeetingConnection, budget_seconds: float):
        index = self.listen_calls
        self.listen_calls += 1
        self.listen_budgets.append(budget_seconds)
        for utterance in self.windows[index] if index < len(self.windows) else []:
            yield utterance
        if (
            self.disconnect_after_window is not None
            and self.listen_calls >= self.disconnect_after_window
        ):
            self.connected = False

    async def is_connected(self, connection: MeetingConnection) -> bool:
        return self.connected

    async def leave(self, connection: MeetingConnection) -> None:
        self.leave_calls += 1
        self.connected = False


class FakeSynthesizer(SpeechSynthesizer):
    """Returns the text as bytes; fails for text containing `fail_containing`."""

    def __init__(self, fail_containing: Optional[str] = None):
        self.fail_containing = fail_containing
        self.requests: list[str] = []

    async def synthesize(self, text: str, options: SpeechOptions) -> AudioSegment:
        self.requests.append(text)
        if self.fail_containing and self.fail_containing in text:
            raise SynthesisFailure("TTS quota exceeded", transient=True)
        return AudioSegment(data=text.encode("utf-8"), format="mp3", text=text)


class FakeTranscription(TranscriptionService):
    def __init__(self, fail_summaries: bool = False):
        self.fail_summaries = fail_summaries
        self.summarized: list[list[str]] = []

    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        return audio.decode("utf-8")

    async def clean(self, raw_text: str) -> str:
        return raw_text.strip()

    async def summarize(self, texts: list[str], question: Optional[str] = None) -> str:
        self.summarized.append(list(texts))
        if self.fail_summaries:
            raise SummarizationFailure("Model unavailable")
        return f"{len(texts)} people answered."


class FlakySessionStore(InMemorySessionStore):
    """In-memory store whose saves start failing after `fail_after` successes."""

    def __init__(self, fail_after: int):
        super().__init__()
        self.fail_after = fail_after
        self.save_attempts = 0

    async def save(self, session: FocusGroupSession) -> None:
        self.save_attempts += 1
        if self.save_attempts > self.fail_after:
            raise PersistenceFailure("Database unavailable")
        await super().save(session)


def make_utterance(
    participant_id: str,
    name: str,
    text: str,
    seconds_from_start: float = 0.0,
    duration: float = 2.0,
    email: Optional[str] = None,
) -> Utterance:
    return Utterance(
        participant_id=participant_id,
        participant_name=name,
        participant_email=email,
        timestamp=datetime(2025, 6, 1, 15, 0, tzinfo=timezone.utc)
        + timedelta(seconds=seconds_from_start),
        duration=duration,
        text=text,
    )


