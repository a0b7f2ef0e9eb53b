# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Recall.ai Meeting Driver

Gives the bot a presence in Google Meet / Zoom / Teams calls through
Recall.ai's meeting bot REST API:
https://{region}.recall.ai/api/v1/bot/

Key Features:
- Real HTTP requests using a shared httpx async client
- Join waits until the provider reports the bot is in the call
- Playback through the provider's output_audio endpoint (base64 mp3)
- Realtime transcript events are pushed by Recall.ai to our webhook and
  routed by bot id into a per-connection queue that `listen` drains
"""

import asyncio
import base64
import logging
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from focusflow.errors import (
    DisconnectDetected,
    JoinFailure,
    MeetingProviderError,
    PlaybackFailure,
)
from focusflow.models import utc_now
from focusflow.providers.meeting.base import (
    MeetingConnection,
    MeetingDriver,
    Utterance,
    estimate_speech_seconds,
)
from focusflow.providers.speech import AudioSegment

logger = logging.getLogger(__name__)

# Bot status codes reported by Recall.ai
IN_CALL_STATUSES = {"in_call_not_recording", "in_call_recording"}
PENDING_STATUSES = {"ready", "joining_call", "in_waiting_room"}
ENDED_STATUSES = {"call_ended", "done", "fatal", "analysis_done", "analysis_failed"}

TRANSCRIPT_EVENT = "transcript.data"
STATUS_EVENT = "bot.status_change"


class RecallMeetingDriver(MeetingDriver):
    """Recall.ai implementation of the meeting participant driver."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_key: str,
        region: str = "us-west-2",
        webhook_url: Optional[str] = None,
        join_timeout: float = 60.0,
        poll_interval: float = 2.0,
        wait_for_playback: bool = True,
    ):
        """
        Initialize the Recall.ai driver.

        Args:
            http_client: Shared httpx client (owned by the service container)
            api_key: Recall.ai API key
            region: Recall.ai region subdomain
            webhook_url: Public URL Recall.ai posts realtime transcript events to
            join_timeout: Seconds to wait for the bot to be admitted to the call
            poll_interval: Seconds between status polls while joining
            wait_for_playback: Block play() until the clip has roughly finished
        """
        self.http_client = http_client
        self.api_key = api_key
        self.base_url = f"https://{region}.recall.ai/api/v1"
        self.webhook_url = webhook_url
        self.join_timeout = join_timeout
        self.poll_interval = poll_interval
        self.wait_for_playback = wait_for_playback
        # bot_id -> queue of utterances waiting to be consumed by listen()
        self._queues: Dict[str, asyncio.Queue] = {}
        # bot ids the provider told us have left the call
        self._ended: set[str] = set()

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Token {self.api_key}",
        }

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        bot_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._get_headers(),
                json=json,
                timeout=15.0,
            )
        except httpx.HTTPError as e:
            raise MeetingProviderError(operation, 0, str(e), bot_id=bot_id) from e

        if response.status_code >= 400:
            raise MeetingProviderError(
                operation, response.status_code, response.text[:500], bot_id=bot_id
            )
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _latest_status(bot_data: Dict[str, Any]) -> Optional[str]:
        status_changes = bot_data.get("status_changes") or []
        if not status_changes:
            return None
        return status_changes[-1].get("code")

    # ------------------------------------------------------------------
    # MeetingDriver interface
    # ------------------------------------------------------------------

    async def join(self, meeting_link: str, bot_name: str) -> MeetingConnection:
        if not meeting_link:
            raise JoinFailure("Focus group has no meeting link")

        payload: Dict[str, Any] = {
            "meeting_url": meeting_link,
            "bot_name": bot_name,
            "recording_config": {
                "transcript": {
                    "provider": {
                        "recallai_streaming": {
                            "mode": "prioritize_low_latency",
                            "language_code": "en",
                        }
                    }
                },
            },
        }
        if self.webhook_url:
            payload["recording_config"]["realtime_endpoints"] = [
                {
                    "type": "webhook",
                    "url": self.webhook_url,
                    "events": [TRANSCRIPT_EVENT],
                }
            ]
        else:
            logger.warning(
                "⚠️ PUBLIC_BASE_URL not set - the bot will join but cannot hear participants"
            )

        try:
            bot_data = await self._request("create_bot", "POST", "/bot/", json=payload)
        except MeetingProviderError as e:
            raise JoinFailure(f"Could not create meeting bot: {e}") from e

        bot_id = str(bot_data["id"])
        self._queues[bot_id] = asyncio.Queue()
        logger.info(f"🤖 Meeting bot created: {bot_id} for {meeting_link}")

        try:
            await self._wait_until_in_call(bot_id)
        except (JoinFailure, MeetingProviderError, asyncio.TimeoutError) as e:
            self._queues.pop(bot_id, None)
            await self._leave_quietly(bot_id)
            if isinstance(e, JoinFailure):
                raise
            raise JoinFailure(f"Bot {bot_id} was not admitted to the call: {e}") from e

        logger.info(f"✅ Bot {bot_id} is in the call")
        return MeetingConnection(
            connection_id=bot_id, meeting_link=meeting_link, bot_name=bot_name
        )

    async def _wait_until_in_call(self, bot_id: str) -> None:
        async def _poll():
            while True:
                bot_data = await self._request(
                    "get_bot", "GET", f"/bot/{bot_id}/", bot_id=bot_id
                )
                status = self._latest_status(bot_data)
                if status in IN_CALL_STATUSES:
                    return
                if status in ENDED_STATUSES:
                    raise JoinFailure(f"Bot {bot_id} ended before joining (status={status})")
                logger.debug(f"⏳ Bot {bot_id} join status: {status}")
                await asyncio.sleep(self.poll_interval)

        await asyncio.wait_for(_poll(), timeout=self.join_timeout)

    async def play(self, connection: MeetingConnection, audio: AudioSegment) -> None:
        bot_id = connection.connection_id
        if bot_id in self._ended:
            raise DisconnectDetected(f"Bot {bot_id} has left the call")

        try:
            await self._request(
                "output_audio",
                "POST",
                f"/bot/{bot_id}/output_audio/",
                json={
                    "kind": audio.format,
                    "b64_data": base64.b64encode(audio.data).decode(),
                },
                bot_id=bot_id,
            )
        except MeetingProviderError as e:
            if not await self.is_connected(connection):
                raise DisconnectDetected(f"Bot {bot_id} left the call during playback") from e
            raise PlaybackFailure(str(e)) from e

        if self.wait_for_playback:
            await asyncio.sleep(estimate_speech_seconds(audio.text))

    async def listen(
        self, connection: MeetingConnection, budget_seconds: float
    ) -> AsyncIterator[Utterance]:
        bot_id = connection.connection_id
        queue = self._queues.setdefault(bot_id, asyncio.Queue())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget_seconds

        while True:
            if bot_id in self._ended:
                raise DisconnectDetected(f"Bot {bot_id} left the call while listening")
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            try:
                utterance = await asyncio.wait_for(
                    queue.get(), timeout=min(remaining, self.poll_interval)
                )
            except asyncio.TimeoutError:
                continue
            yield utterance

    async def is_connected(self, connection: MeetingConnection) -> bool:
        bot_id = connection.connection_id
        if bot_id in self._ended:
            return False
        try:
            bot_data = await self._request(
                "get_bot", "GET", f"/bot/{bot_id}/", bot_id=bot_id
            )
        except MeetingProviderError as e:
            if e.is_transient:
                # Can't tell - assume still connected rather than failing the session
                logger.warning(f"⚠️ Could not check status of bot {bot_id}: {e}")
                return True
            return False

        status = self._latest_status(bot_data)
        if status in ENDED_STATUSES:
            self._ended.add(bot_id)
            return False
        return True

    async def leave(self, connection: MeetingConnection) -> None:
        bot_id = connection.connection_id
        try:
            await self._request(
                "leave_call", "POST", f"/bot/{bot_id}/leave_call/", bot_id=bot_id
            )
            logger.info(f"🚪 Bot {bot_id} left the call")
        finally:
            self._queues.pop(bot_id, None)
            self._ended.discard(bot_id)

    async def _leave_quietly(self, bot_id: str) -> None:
        try:
            await self._request(
                "leave_call", "POST", f"/bot/{bot_id}/leave_call/", bot_id=bot_id
            )
        except MeetingProviderError as e:
            logger.debug(f"Ignoring leave_call error for bot {bot_id}: {e}")

    # ------------------------------------------------------------------
    # Webhook routing
    # ------------------------------------------------------------------

    def dispatch_event(self, payload: Dict[str, Any]) -> bool:
        """
        Route a realtime webhook event to the connection it belongs to.

        Returns:
            True if the event was for a bot this driver is tracking
        """
        event = payload.get("event")
        data = payload.get("data") or {}
        bot_id = str((data.get("bot") or {}).get("id") or "")

        if event == STATUS_EVENT:
            if not bot_id or bot_id not in self._queues:
                # Includes the final status events sent after our own leave_call
                return False
            code = (data.get("status") or {}).get("code")
            if code in ENDED_STATUSES:
                logger.warning(f"⚠️ Bot {bot_id} reported status {code}")
                self._ended.add(bot_id)
            return True

        if event != TRANSCRIPT_EVENT:
            return False

        queue = self._queues.get(bot_id)
        if queue is None:
            logger.debug(f"Dropping transcript event for unknown bot {bot_id}")
            return False

        utterance = parse_transcript_event(data.get("data") or {})
        if utterance is None:
            return True
        queue.put_nowait(utterance)
        return True


def parse_transcript_event(event_data: Dict[str, Any]) -> Optional[Utterance]:
    """Turn a Recall.ai transcript.data body into an Utterance (None if empty)."""
    words = event_data.get("words") or []
    text = " ".join(w.get("text", "") for w in words).strip()
    if not text:
        return None

    participant = event_data.get("participant") or {}
    start = (words[0].get("start_timestamp") or {}) if words else {}
    end = (words[-1].get("end_timestamp") or {}) if words else {}

    duration = 0.0
    if start.get("relative") is not None and end.get("relative") is not None:
        duration = max(float(end["relative"]) - float(start["relative"]), 0.0)

    timestamp = utc_now()
    if start.get("absolute"):
        try:
            timestamp = datetime.fromisoformat(
                str(start["absolute"]).replace("Z", "+00:00")
            )
        except ValueError:
            logger.debug(f"Unparseable timestamp {start['absolute']!r}, using now")

    return Utterance(
        participant_id=str(participant.get("id", "unknown")),
        participant_name=participant.get("name"),
        participant_email=participant.get("email"),
        timestamp=timestamp,
        duration=duration,
        text=text,
    )
