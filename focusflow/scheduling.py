# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Scheduling Façade - creating focus groups and starting their bots.

**Simple Explanation:**
An organizer creates a focus group (title, questions, participants, time).
If Google Calendar is configured we create a calendar event with a Google
Meet link and invite everyone, including the bot's own account. Later the
organizer asks us to start the bot: we create a fresh session in `waiting`
state, hand it to the BotService and return immediately.

Everything here is scoped to the owner making the request; another owner's
focus group is reported as not found.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel, Field

from focusflow.bot.bot_service import BotService
from focusflow.db import FocusGroupStore, SessionStore
from focusflow.errors import BotAlreadyRunning, CalendarError, ConflictError, NotFoundError
from focusflow.models import (
    FocusGroup,
    FocusGroupParticipant,
    FocusGroupSession,
    FocusGroupSettings,
    Question,
    Questionnaire,
    new_id,
)

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


# ----------------------------------------------------------------------
# Request models
# ----------------------------------------------------------------------


class QuestionnaireInput(BaseModel):
    title: Optional[str] = None
    questions: list[str] = Field(..., min_length=1)


class ParticipantInput(BaseModel):
    email: str = Field(..., min_length=3)
    name: Optional[str] = None


class FocusGroupCreateRequest(BaseModel):
    """
    Request model for creating a focus group.

    `meeting_link` is required when Google Calendar is not configured; when it
    is given, no calendar event is created.
    """

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    questionnaire: QuestionnaireInput
    participants: list[ParticipantInput] = Field(default_factory=list)
    scheduled_at: datetime
    duration: int = Field(default=60, ge=1, description="Duration in minutes")
    meeting_link: Optional[str] = None
    settings: FocusGroupSettings = Field(default_factory=FocusGroupSettings)


# ----------------------------------------------------------------------
# Google Calendar
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class CalendarEvent:
    calendar_event_id: str
    meeting_link: Optional[str]
    meeting_id: Optional[str]


class GoogleCalendarClient:
    """
    Minimal Google Calendar v3 client using a long-lived refresh token.

    Access tokens are exchanged on demand and cached until shortly before
    they expire.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        calendar_id: str = "primary",
        time_zone: str = "UTC",
        bot_email: Optional[str] = None,
    ):
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.calendar_id = calendar_id
        self.time_zone = time_zone
        self.bot_email = bot_email
        self._access_token: Optional[str] = None
        self._expires_at = 0.0

    async def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._expires_at:
            return self._access_token

        try:
            response = await self.http_client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"Google token refresh failed: {e}") from e

        if response.status_code >= 400:
            raise CalendarError(
                f"Google token refresh failed ({response.status_code}): {response.text}"
            )

        data = response.json()
        self._access_token = data["access_token"]
        # Refresh a minute early
        self._expires_at = time.monotonic() + max(int(data.get("expires_in", 3600)) - 60, 0)
        logger.info("Google access token refreshed")
        return self._access_token

    def build_event(self, focus_group: FocusGroup) -> Dict[str, Any]:
        """Calendar event body for a focus group, with a Meet conference request."""
        start = focus_group.scheduled_at
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        end = start + timedelta(minutes=focus_group.duration or 60)

        attendees = []
        if self.bot_email:
            attendees.append({"email": self.bot_email})
        attendees.extend({"email": p.email} for p in focus_group.participants)

        return {
            "summary": focus_group.title,
            "description": focus_group.description or "Focus Group Discussion",
            "start": {"dateTime": start.isoformat(), "timeZone": self.time_zone},
            "end": {"dateTime": end.isoformat(), "timeZone": self.time_zone},
            "attendees": attendees,
            "conferenceData": {
                "createRequest": {
                    "requestId": f"focus-group-{focus_group.id}",
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 30},
                    {"method": "popup", "minutes": 10},
                ],
            },
        }

    async def create_meeting(self, focus_group: FocusGroup) -> CalendarEvent:
        """
        Create the calendar event and return its Meet link.

        Raises:
            CalendarError: If Google rejects the request or is unreachable
        """
        token = await self._get_access_token()
        url = f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events"
        try:
            response = await self.http_client.post(
                url,
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                headers={"Authorization": f"Bearer {token}"},
                json=self.build_event(focus_group),
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"Failed to create meeting: {e}") from e

        if response.status_code >= 400:
            logger.error(
                f"❌ Google Calendar error ({response.status_code}): {response.text}"
            )
            raise CalendarError(f"Failed to create meeting ({response.status_code})")

        data = response.json()
        meeting_link = None
        for entry_point in (data.get("conferenceData") or {}).get("entryPoints", []):
            if entry_point.get("entryPointType") == "video":
                meeting_link = entry_point.get("uri")
                break

        logger.info(f"✅ Calendar event created: {data.get('id')} ({meeting_link})")
        return CalendarEvent(
            calendar_event_id=data["id"],
            meeting_link=meeting_link,
            meeting_id=meeting_link.rstrip("/").split("/")[-1] if meeting_link else None,
        )

    async def delete_event(self, calendar_event_id: str) -> None:
        """
        Delete a calendar event and notify attendees.

        Raises:
            CalendarError: If Google rejects the request or is unreachable
        """
        token = await self._get_access_token()
        url = f"{GOOGLE_CALENDAR_API}/calendars/{self.calendar_id}/events/{calendar_event_id}"
        try:
            response = await self.http_client.delete(
                url,
                params={"sendUpdates": "all"},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise CalendarError(f"Failed to delete calendar event: {e}") from e

        # 410 Gone: already deleted
        if response.status_code >= 400 and response.status_code != 410:
            raise CalendarError(
                f"Failed to delete calendar event ({response.status_code})"
            )


# ----------------------------------------------------------------------
# Service
# ----------------------------------------------------------------------


class SchedulingService:
    """Owner-scoped operations on focus groups and their bot sessions."""

    def __init__(
        self,
        focus_group_store: FocusGroupStore,
        session_store: SessionStore,
        bot_service: BotService,
        calendar: Optional[GoogleCalendarClient] = None,
    ):
        self.focus_group_store = focus_group_store
        self.session_store = session_store
        self.bot_service = bot_service
        self.calendar = calendar

    async def create_focus_group(
        self, owner_id: str, request: FocusGroupCreateRequest
    ) -> FocusGroup:
        """
        Create and persist a focus group, scheduling its meeting.

        Raises:
            ValueError: If no meeting link is given and no calendar is configured
            CalendarError: If the calendar event could not be created
        """
        if not request.meeting_link and self.calendar is None:
            raise ValueError(
                "meeting_link is required when Google Calendar is not configured"
            )

        texts = [text.strip() for text in request.questionnaire.questions if text.strip()]
        questionnaire = Questionnaire(
            title=request.questionnaire.title or request.title,
            questions=[
                Question(order=index, text=text)
                for index, text in enumerate(texts, start=1)
            ],
        )
        if not questionnaire.questions:
            raise ValueError("questionnaire must contain at least one question")

        focus_group = FocusGroup(
            id=new_id(),
            title=request.title,
            description=request.description,
            owner_id=owner_id,
            questionnaire=questionnaire,
            participants=[
                FocusGroupParticipant(email=p.email, name=p.name)
                for p in request.participants
            ],
            scheduled_at=request.scheduled_at,
            duration=request.duration,
            meeting_link=request.meeting_link,
            settings=request.settings,
        )

        if request.meeting_link:
            focus_group.meeting_id = request.meeting_link.rstrip("/").split("/")[-1]
        else:
            event = await self.calendar.create_meeting(focus_group)
            focus_group.calendar_event_id = event.calendar_event_id
            focus_group.meeting_link = event.meeting_link
            focus_group.meeting_id = event.meeting_id

        await self.focus_group_store.save(focus_group)
        logger.info(
            f"✅ Focus group created: {focus_group.id} ('{focus_group.title}', "
            f"{len(focus_group.participants)} participants)"
        )
        return focus_group

    async def list_focus_groups(self, owner_id: str) -> list[FocusGroup]:
        return await self.focus_group_store.list_for_owner(owner_id)

    async def get_focus_group(self, owner_id: str, focus_group_id: str) -> FocusGroup:
        """
        Raises:
            NotFoundError: If it does not exist or belongs to another owner
        """
        focus_group = await self.focus_group_store.get(focus_group_id)
        if focus_group.owner_id != owner_id:
            raise NotFoundError(f"Focus group {focus_group_id} not found")
        return focus_group

    async def start_bot(self, owner_id: str, focus_group_id: str) -> Dict[str, str]:
        """
        Create a waiting session and launch the bot for it. Does not wait on the run.

        Raises:
            NotFoundError: Unknown focus group
            ConflictError: Focus group finished, cancelled, has no meeting link,
                or already has a running bot
        """
        focus_group = await self.get_focus_group(owner_id, focus_group_id)
        if focus_group.status in ("completed", "cancelled"):
            raise ConflictError(
                f"Focus group {focus_group_id} is {focus_group.status} and cannot be started"
            )
        if not focus_group.meeting_link:
            raise ConflictError(f"Focus group {focus_group_id} has no meeting link")
        if self.bot_service.running_bot_for_focus_group(focus_group.id) is not None:
            raise BotAlreadyRunning(
                f"Bot already running for focus group {focus_group_id}"
            )

        session = await self.session_store.create(focus_group.id)
        try:
            await self.bot_service.launch(focus_group, session)
        except BotAlreadyRunning as e:
            session.log_error(str(e), "launch")
            session.advance_status("failed")
            session.bot_status = "disconnected"
            await self.session_store.save(session)
            raise

        return {"session_id": session.id, "status": "waiting"}

    async def get_session_status(
        self, owner_id: str, focus_group_id: str
    ) -> FocusGroupSession:
        """
        Latest session for a focus group.

        Raises:
            NotFoundError: Unknown focus group, or it has no session yet
        """
        await self.get_focus_group(owner_id, focus_group_id)
        return await self.session_store.find_latest_for_focus_group(focus_group_id)

    async def stop_session(self, owner_id: str, session_id: str) -> bool:
        session = await self.session_store.get(session_id)
        await self.get_focus_group(owner_id, session.focus_group_id)
        return await self.bot_service.stop_bot(session_id)

    async def cancel_focus_group(self, owner_id: str, focus_group_id: str) -> FocusGroup:
        """
        Cancel a focus group, stopping its bot and removing the calendar event.

        Raises:
            NotFoundError: Unknown focus group
            ConflictError: Focus group already completed
        """
        focus_group = await self.get_focus_group(owner_id, focus_group_id)
        if focus_group.status == "completed":
            raise ConflictError(f"Focus group {focus_group_id} already completed")
        if focus_group.status == "cancelled":
            return focus_group

        bot_process = self.bot_service.running_bot_for_focus_group(focus_group.id)
        if bot_process is not None:
            await self.bot_service.stop_bot(bot_process.session_id)

        focus_group.status = "cancelled"
        await self.focus_group_store.save(focus_group)

        if self.calendar is not None and focus_group.calendar_event_id:
            try:
                await self.calendar.delete_event(focus_group.calendar_event_id)
            except CalendarError as e:
                logger.warning(
                    f"⚠️ Could not delete calendar event for {focus_group_id}: {e}"
                )

        logger.info(f"Focus group cancelled: {focus_group_id}")
        return focus_group
