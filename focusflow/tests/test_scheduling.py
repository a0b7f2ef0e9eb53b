# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Tests for focus group scheduling and the Google Calendar client."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from focusflow.errors import BotAlreadyRunning, CalendarError, ConflictError, NotFoundError
from focusflow.scheduling import (
    GOOGLE_TOKEN_URL,
    CalendarEvent,
    FocusGroupCreateRequest,
    GoogleCalendarClient,
    SchedulingService,
)

MEET_LINK = "https://meet.google.com/xyz-abcd-efg"


class FakeGoogleAPI:
    def __init__(self, event_status: int = 200, delete_status: int = 204):
        self.event_status = event_status
        self.delete_status = delete_status
        self.requests: list[httpx.Request] = []
        self.token_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == GOOGLE_TOKEN_URL:
            self.token_requests += 1
            return httpx.Response(200, json={"access_token": "ya29.token", "expires_in": 3600})
        if request.method == "POST" and request.url.path.endswith("/events"):
            if self.event_status >= 400:
                return httpx.Response(self.event_status, text="forbidden")
            return httpx.Response(
                200,
                json={
                    "id": "event-1",
                    "conferenceData": {
                        "entryPoints": [
                            {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                            {"entryPointType": "video", "uri": MEET_LINK},
                        ]
                    },
                },
            )
        if request.method == "DELETE":
            return httpx.Response(self.delete_status)
        return httpx.Response(404)


def make_calendar(api: FakeGoogleAPI, bot_email=None) -> GoogleCalendarClient:
    return GoogleCalendarClient(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        client_id="client-id",
        client_secret="client-secret",
        refresh_token="refresh-token",
        bot_email=bot_email,
    )


def create_request(**overrides) -> FocusGroupCreateRequest:
    data = {
        "title": "Checkout Redesign Feedback",
        "questionnaire": {"questions": ["What did you like?", "  ", "What would you improve?"]},
        "participants": [
            {"email": "alice@example.com", "name": "Alice"},
            {"email": "bob@example.com"},
        ],
        "scheduled_at": "2025-06-01T15:00:00Z",
        "duration": 45,
    }
    data.update(overrides)
    return FocusGroupCreateRequest.model_validate(data)


@pytest.mark.asyncio
class TestGoogleCalendarClient:
    async def test_create_meeting(self, focus_group) -> None:
        api = FakeGoogleAPI()
        calendar = make_calendar(api, bot_email="bot@example.com")

        event = await calendar.create_meeting(focus_group)

        assert event == CalendarEvent(
            calendar_event_id="event-1",
            meeting_link=MEET_LINK,
            meeting_id="xyz-abcd-efg",
        )
        token_request, event_request = api.requests
        assert b"grant_type=refresh_token" in token_request.content
        assert event_request.headers["Authorization"] == "Bearer ya29.token"
        assert event_request.url.params["conferenceDataVersion"] == "1"
        assert event_request.url.params["sendUpdates"] == "all"

        body = json.loads(event_request.content)
        assert body["summary"] == "Checkout Redesign Feedback"
        assert body["conferenceData"]["createRequest"]["requestId"] == (
            f"focus-group-{focus_group.id}"
        )
        assert [a["email"] for a in body["attendees"]] == [
            "bot@example.com",
            "alice@example.com",
            "bob@example.com",
        ]

    async def test_event_window_uses_duration(self, focus_group) -> None:
        focus_group.scheduled_at = datetime(2025, 6, 1, 15, 0)
        focus_group.duration = 90

        body = make_calendar(FakeGoogleAPI()).build_event(focus_group)

        assert body["start"]["dateTime"] == "2025-06-01T15:00:00+00:00"
        assert body["end"]["dateTime"] == "2025-06-01T16:30:00+00:00"

    async def test_access_token_is_cached(self, focus_group) -> None:
        api = FakeGoogleAPI()
        calendar = make_calendar(api)

        await calendar.create_meeting(focus_group)
        await calendar.create_meeting(focus_group)

        assert api.token_requests == 1

    async def test_rejected_event(self, focus_group) -> None:
        calendar = make_calendar(FakeGoogleAPI(event_status=403))

        with pytest.raises(CalendarError, match="403"):
            await calendar.create_meeting(focus_group)

    async def test_token_failure(self, focus_group) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        calendar = GoogleCalendarClient(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            client_id="id",
            client_secret="secret",
            refresh_token="revoked",
        )

        with pytest.raises(CalendarError, match="token refresh failed"):
            await calendar.create_meeting(focus_group)

    async def test_delete_already_gone(self) -> None:
        calendar = make_calendar(FakeGoogleAPI(delete_status=410))
        await calendar.delete_event("event-1")

    async def test_delete_failure(self) -> None:
        calendar = make_calendar(FakeGoogleAPI(delete_status=500))
        with pytest.raises(CalendarError):
            await calendar.delete_event("event-1")


@pytest.fixture
def bot_service() -> MagicMock:
    service = MagicMock()
    service.running_bot_for_focus_group.return_value = None
    service.launch = AsyncMock()
    service.stop_bot = AsyncMock(return_value=True)
    return service


@pytest.fixture
def scheduling(focus_group_store, session_store, bot_service) -> SchedulingService:
    return SchedulingService(focus_group_store, session_store, bot_service)


@pytest.mark.asyncio
class TestCreateFocusGroup:
    async def test_with_meeting_link(self, scheduling, focus_group_store) -> None:
        focus_group = await scheduling.create_focus_group(
            "owner-1", create_request(meeting_link=MEET_LINK)
        )

        assert focus_group.owner_id == "owner-1"
        assert focus_group.status == "scheduled"
        assert focus_group.meeting_id == "xyz-abcd-efg"
        assert focus_group.duration == 45
        assert focus_group.scheduled_at == datetime(2025, 6, 1, 15, 0, tzinfo=timezone.utc)
        questions = focus_group.questionnaire.ordered_questions()
        assert [(q.order, q.text) for q in questions] == [
            (1, "What did you like?"),
            (2, "What would you improve?"),
        ]
        assert focus_group.questionnaire.title == "Checkout Redesign Feedback"
        assert [p.status for p in focus_group.participants] == ["invited", "invited"]
        assert (await focus_group_store.get(focus_group.id)).id == focus_group.id

    async def test_without_link_or_calendar(self, scheduling) -> None:
        with pytest.raises(ValueError, match="meeting_link is required"):
            await scheduling.create_focus_group("owner-1", create_request())

    async def test_blank_questions_rejected(self, scheduling) -> None:
        request = create_request(
            meeting_link=MEET_LINK, questionnaire={"questions": ["  "]}
        )
        with pytest.raises(ValueError, match="at least one question"):
            await scheduling.create_focus_group("owner-1", request)

    async def test_calendar_creates_meeting(
        self, focus_group_store, session_store, bot_service
    ) -> None:
        calendar = MagicMock()
        calendar.create_meeting = AsyncMock(
            return_value=CalendarEvent("event-1", MEET_LINK, "xyz-abcd-efg")
        )
        service = SchedulingService(focus_group_store, session_store, bot_service, calendar)

        focus_group = await service.create_focus_group("owner-1", create_request())

        assert focus_group.calendar_event_id == "event-1"
        assert focus_group.meeting_link == MEET_LINK
        calendar.create_meeting.assert_awaited_once()

    async def test_explicit_link_skips_calendar(
        self, focus_group_store, session_store, bot_service
    ) -> None:
        calendar = MagicMock()
        calendar.create_meeting = AsyncMock()
        service = SchedulingService(focus_group_store, session_store, bot_service, calendar)

        await service.create_focus_group("owner-1", create_request(meeting_link=MEET_LINK))

        calendar.create_meeting.assert_not_awaited()

    async def test_calendar_error_saves_nothing(
        self, focus_group_store, session_store, bot_service
    ) -> None:
        calendar = MagicMock()
        calendar.create_meeting = AsyncMock(side_effect=CalendarError("quota"))
        service = SchedulingService(focus_group_store, session_store, bot_service, calendar)

        with pytest.raises(CalendarError):
            await service.create_focus_group("owner-1", create_request())
        assert await focus_group_store.list_for_owner("owner-1") == []


@pytest.mark.asyncio
class TestOwnerScoping:
    async def test_other_owner_sees_not_found(
        self, scheduling, focus_group_store, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)

        assert (await scheduling.get_focus_group("owner-1", focus_group.id)).id == focus_group.id
        with pytest.raises(NotFoundError):
            await scheduling.get_focus_group("owner-2", focus_group.id)
        with pytest.raises(NotFoundError):
            await scheduling.start_bot("owner-2", focus_group.id)

    async def test_list_only_own_groups(
        self, scheduling, focus_group_store, make_focus_group
    ) -> None:
        mine = make_focus_group(owner_id="owner-1")
        theirs = make_focus_group(owner_id="owner-2")
        await focus_group_store.save(mine)
        await focus_group_store.save(theirs)

        listed = await scheduling.list_focus_groups("owner-1")

        assert [fg.id for fg in listed] == [mine.id]


@pytest.mark.asyncio
class TestStartBot:
    async def test_start_creates_waiting_session(
        self, scheduling, focus_group_store, session_store, bot_service, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)

        result = await scheduling.start_bot("owner-1", focus_group.id)

        assert result["status"] == "waiting"
        session = await session_store.get(result["session_id"])
        assert session.focus_group_id == focus_group.id
        assert session.status == "waiting"
        assert session.bot_status == "idle"
        launched_group, launched_session = bot_service.launch.await_args.args
        assert launched_group.id == focus_group.id
        assert launched_session.id == session.id

    @pytest.mark.parametrize("status", ["completed", "cancelled"])
    async def test_finished_group_cannot_start(
        self, scheduling, focus_group_store, focus_group, status
    ) -> None:
        focus_group.status = status
        await focus_group_store.save(focus_group)

        with pytest.raises(ConflictError):
            await scheduling.start_bot("owner-1", focus_group.id)

    async def test_group_without_link_cannot_start(
        self, scheduling, focus_group_store, focus_group
    ) -> None:
        focus_group.meeting_link = None
        await focus_group_store.save(focus_group)

        with pytest.raises(ConflictError, match="no meeting link"):
            await scheduling.start_bot("owner-1", focus_group.id)

    async def test_running_bot_rejected(
        self, scheduling, focus_group_store, session_store, bot_service, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)
        bot_service.running_bot_for_focus_group.return_value = MagicMock()

        with pytest.raises(BotAlreadyRunning):
            await scheduling.start_bot("owner-1", focus_group.id)
        assert await session_store.list_unfinished() == []

    async def test_lost_launch_race_fails_session(
        self, scheduling, focus_group_store, session_store, bot_service, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)
        bot_service.launch.side_effect = BotAlreadyRunning("already running")

        with pytest.raises(BotAlreadyRunning):
            await scheduling.start_bot("owner-1", focus_group.id)

        session = await session_store.find_latest_for_focus_group(focus_group.id)
        assert session.status == "failed"
        assert session.error_logs[-1].context == "launch"


@pytest.mark.asyncio
class TestSessions:
    async def test_session_status_before_start(
        self, scheduling, focus_group_store, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)

        with pytest.raises(NotFoundError):
            await scheduling.get_session_status("owner-1", focus_group.id)

    async def test_session_status_returns_latest(
        self, scheduling, focus_group_store, session_store, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)
        session = await session_store.create(focus_group.id)

        latest = await scheduling.get_session_status("owner-1", focus_group.id)

        assert latest.id == session.id

    async def test_stop_session_checks_owner(
        self, scheduling, focus_group_store, session_store, bot_service, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)
        session = await session_store.create(focus_group.id)

        with pytest.raises(NotFoundError):
            await scheduling.stop_session("owner-2", session.id)
        bot_service.stop_bot.assert_not_awaited()

        assert await scheduling.stop_session("owner-1", session.id) is True
        bot_service.stop_bot.assert_awaited_once_with(session.id)


@pytest.mark.asyncio
class TestCancelFocusGroup:
    async def test_cancel_stops_bot_and_deletes_event(
        self, focus_group_store, session_store, bot_service, focus_group
    ) -> None:
        calendar = MagicMock()
        calendar.delete_event = AsyncMock(side_effect=CalendarError("gone wrong"))
        service = SchedulingService(focus_group_store, session_store, bot_service, calendar)
        focus_group.calendar_event_id = "event-1"
        await focus_group_store.save(focus_group)
        bot_service.running_bot_for_focus_group.return_value = MagicMock(session_id="s-1")

        cancelled = await service.cancel_focus_group("owner-1", focus_group.id)

        assert cancelled.status == "cancelled"
        assert (await focus_group_store.get(focus_group.id)).status == "cancelled"
        bot_service.stop_bot.assert_awaited_once_with("s-1")
        calendar.delete_event.assert_awaited_once_with("event-1")

    async def test_cancel_is_idempotent(
        self, scheduling, focus_group_store, focus_group
    ) -> None:
        await focus_group_store.save(focus_group)

        await scheduling.cancel_focus_group("owner-1", focus_group.id)
        again = await scheduling.cancel_focus_group("owner-1", focus_group.id)

        assert again.status == "cancelled"

    async def test_completed_group_cannot_be_cancelled(
        self, scheduling, focus_group_store, focus_group
    ) -> None:
        focus_group.status = "completed"
        await focus_group_store.save(focus_group)

        with pytest.raises(ConflictError):
            await scheduling.cancel_focus_group("owner-1", focus_group.id)
