# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Base Meeting Driver - the bot's presence in a live video meeting.

**Simple Explanation:**
A meeting driver is the "body" of the bot. It can walk into a meeting, say
something (play audio), listen to what people say back, and tell us whether
it is still in the room. The orchestrator only talks to this interface, so
swapping meeting platforms never touches the session logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Optional

from focusflow.models import utc_now
from focusflow.providers.speech import AudioSegment

# Typical conversational speaking rate used to estimate clip length
WORDS_PER_SECOND = 2.5


@dataclass
class MeetingConnection:
    """Handle for one bot presence in one meeting."""

    connection_id: str
    meeting_link: str
    bot_name: str
    joined_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Utterance:
    """
    One stretch of speech from one participant.

    Drivers whose platform already transcribes speech fill `text`; drivers
    that only capture audio fill `audio` and the orchestrator transcribes it.
    """

    participant_id: str
    participant_name: Optional[str]
    timestamp: datetime
    duration: float = 0.0
    text: Optional[str] = None
    audio: Optional[bytes] = None
    participant_email: Optional[str] = None


def estimate_speech_seconds(text: str, speed: float = 1.0) -> float:
    """Rough playback length of spoken text."""
    words = len(text.split())
    if words == 0:
        return 0.0
    return words / (WORDS_PER_SECOND * max(speed, 0.25))


class MeetingDriver(ABC):
    """
    Abstract base class for meeting participant drivers.

    Error contract:
    - join raises JoinFailure
    - play raises PlaybackFailure, or DisconnectDetected if the bot is gone
    - listen raises DisconnectDetected if presence is lost mid-window
    """

    @abstractmethod
    async def join(self, meeting_link: str, bot_name: str) -> MeetingConnection:
        pass

    @abstractmethod
    async def play(self, connection: MeetingConnection, audio: AudioSegment) -> None:
        pass

    @abstractmethod
    def listen(
        self, connection: MeetingConnection, budget_seconds: float
    ) -> AsyncIterator[Utterance]:
        """
        Stream utterances until the budget elapses.

        The sequence is finite, yields events in capture order (interleaving
        speakers as they arrive) and cannot be restarted.
        """

    @abstractmethod
    async def is_connected(self, connection: MeetingConnection) -> bool:
        pass

    @abstractmethod
    async def leave(self, connection: MeetingConnection) -> None:
        pass
