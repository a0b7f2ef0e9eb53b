# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Domain models for focus groups and bot sessions.

**Simple Explanation:**
A FocusGroup is the scheduled discussion (who, when, which questions).
A FocusGroupSession is one attempt by the bot to run that discussion; it is
the audit record the orchestrator checkpoints as it goes.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field

SessionStatus = Literal["waiting", "in-progress", "completed", "failed"]
BotStatus = Literal["idle", "joining", "active", "disconnected", "ended"]
FocusGroupStatus = Literal["scheduled", "in-progress", "completed", "cancelled"]
ParticipantStatus = Literal["invited", "joined", "completed"]

TERMINAL_SESSION_STATUSES = ("completed", "failed")
UNFINISHED_SESSION_STATUSES = ("waiting", "in-progress")

# Rank used to keep session status monotonic; both terminal states share a rank
_SESSION_STATUS_RANK = {
    "waiting": 0,
    "in-progress": 1,
    "completed": 2,
    "failed": 2,
}


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class InvalidTransition(ValueError):
    """Raised when a session status would move backwards."""


class Question(BaseModel):
    id: str = Field(default_factory=new_id)
    order: int = 0
    text: str


class Questionnaire(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    questions: list[Question] = Field(default_factory=list)

    def ordered_questions(self) -> list[Question]:
        """Questions in the order they should be asked."""
        return sorted(self.questions, key=lambda q: q.order)


class FocusGroupParticipant(BaseModel):
    email: str
    name: Optional[str] = None
    status: ParticipantStatus = "invited"


class FocusGroupSettings(BaseModel):
    max_participants: int = Field(default=20, ge=1)
    # Seconds the bot listens after each question
    time_per_question: float = Field(default=5, gt=0)
    enable_summarization: bool = True


class FocusGroup(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None
    owner_id: str
    questionnaire: Questionnaire
    participants: list[FocusGroupParticipant] = Field(default_factory=list)
    scheduled_at: datetime
    duration: int = 60  # minutes
    status: FocusGroupStatus = "scheduled"
    meeting_link: Optional[str] = None
    meeting_id: Optional[str] = None
    calendar_event_id: Optional[str] = None
    settings: FocusGroupSettings = Field(default_factory=FocusGroupSettings)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_participant(self, email: str) -> Optional[FocusGroupParticipant]:
        for participant in self.participants:
            if participant.email.lower() == email.lower():
                return participant
        return None


class ParticipantStats(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    joined_at: Optional[datetime] = None
    speaking_time: float = 0.0
    response_count: int = 0


class Response(BaseModel):
    participant_email: Optional[str] = None
    participant_name: Optional[str] = None
    text: str
    timestamp: datetime
    duration: float = 0.0


class QuestionResponse(BaseModel):
    question_id: str
    question_text: str
    asked_at: datetime
    responses: list[Response] = Field(default_factory=list)
    summary: Optional[str] = None


class ErrorLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    error: str
    context: str


class FocusGroupSession(BaseModel):
    id: str = Field(default_factory=new_id)
    focus_group_id: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    status: SessionStatus = "waiting"
    bot_status: BotStatus = "idle"
    participants: list[ParticipantStats] = Field(default_factory=list)
    question_responses: list[QuestionResponse] = Field(default_factory=list)
    full_transcript: str = ""
    error_logs: list[ErrorLogEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def advance_status(self, status: SessionStatus) -> None:
        """
        Move the session status forward.

        Raises:
            InvalidTransition: If the move goes backwards or leaves a terminal state
        """
        if status == self.status:
            return
        if self.is_terminal or _SESSION_STATUS_RANK[status] < _SESSION_STATUS_RANK[
            self.status
        ]:
            raise InvalidTransition(
                f"Session {self.id} cannot move from {self.status} to {status}"
            )
        self.status = status

    def log_error(self, error: str, context: str) -> ErrorLogEntry:
        entry = ErrorLogEntry(error=error, context=context)
        self.error_logs.append(entry)
        return entry

    def participant_stats_for(
        self, email: Optional[str], name: Optional[str]
    ) -> ParticipantStats:
        """Find (or start) the runtime stats entry for a participant."""
        for stats in self.participants:
            if email and stats.email and stats.email.lower() == email.lower():
                return stats
            if not email and not stats.email and stats.name == name:
                return stats
        stats = ParticipantStats(email=email, name=name, joined_at=utc_now())
        self.participants.append(stats)
        return stats
