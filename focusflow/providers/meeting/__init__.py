# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Meeting participant drivers."""

from focusflow.providers.meeting.base import (
    MeetingConnection,
    MeetingDriver,
    Utterance,
    estimate_speech_seconds,
)
from focusflow.providers.meeting.recall import RecallMeetingDriver

__all__ = [
    "MeetingConnection",
    "MeetingDriver",
    "RecallMeetingDriver",
    "Utterance",
    "estimate_speech_seconds",
]
