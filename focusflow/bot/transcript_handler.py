# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Transcript handler for building a session's full transcript."""

import logging
from datetime import datetime, timezone
from typing import Optional, Union

from focusflow.models import FocusGroupSession

logger = logging.getLogger(__name__)


class TranscriptHandler:
    """
    Appends spoken lines (bot prompts and participant answers) to a session.

    Attributes:
        session: The session whose `full_transcript` is being built
        bot_name: Speaker label used for lines the bot says
        line_count: Number of lines appended by this handler
    """

    def __init__(self, session: FocusGroupSession, bot_name: Optional[str] = None):
        self.session = session
        self.bot_name: str = bot_name or "Moderator"
        self.line_count = 0

    def _normalize_timestamp(
        self, timestamp: Optional[Union[str, float, int, datetime]]
    ) -> Optional[str]:
        """
        Convert timestamp to ISO format string.

        Args:
            timestamp: datetime, ISO string, Unix timestamp or None

        Returns:
            ISO format timestamp string, or None if timestamp is None
        """
        if timestamp is None:
            return None
        if isinstance(timestamp, datetime):
            return timestamp.isoformat()
        if isinstance(timestamp, str):
            return timestamp  # Assume already formatted
        if isinstance(timestamp, (int, float)):
            return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
        return None

    def _format_transcript_line(
        self,
        speaker_name: str,
        content: str,
        timestamp: Optional[Union[str, float, int, datetime]] = None,
    ) -> str:
        normalized_timestamp = self._normalize_timestamp(timestamp)
        timestamp_str = f"[{normalized_timestamp}] " if normalized_timestamp else ""
        return f"{timestamp_str}{speaker_name}: {content}"

    def _append(self, line: str) -> None:
        if self.session.full_transcript:
            self.session.full_transcript += "\n" + line
        else:
            self.session.full_transcript = line
        self.line_count += 1

    def add_bot_line(
        self, content: str, timestamp: Optional[Union[str, float, int, datetime]] = None
    ) -> None:
        """Record something the bot said."""
        if not content or not content.strip():
            return
        self._append(
            self._format_transcript_line(self.bot_name, content.strip(), timestamp)
        )

    def add_participant_line(
        self,
        speaker_name: Optional[str],
        content: str,
        timestamp: Optional[Union[str, float, int, datetime]] = None,
    ) -> None:
        """Record something a participant said."""
        if not content or not content.strip():
            return
        self._append(
            self._format_transcript_line(
                speaker_name or "Participant", content.strip(), timestamp
            )
        )
        logger.debug(f"📝 Transcript line added ({self.line_count} total)")
