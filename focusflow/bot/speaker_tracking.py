# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Speaker tracking for attributing utterances to focus group participants."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from focusflow.models import FocusGroup
from focusflow.providers.meeting.base import Utterance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeakerIdentity:
    email: Optional[str]
    name: Optional[str]


class SpeakerTracker:
    """
    Maps meeting-provider participant IDs to invited focus group participants.

    Matching order for a participant ID seen for the first time:
    1. Email reported by the provider matches an invited participant
    2. Display name matches an invited participant's name (case-insensitive)
    3. First invited participant not mapped yet (join order)
    4. Otherwise an anonymous identity using the display name
    """

    def __init__(self, focus_group: FocusGroup):
        self.focus_group = focus_group
        # Mapping: provider participant id -> identity
        self.speaker_map: Dict[str, SpeakerIdentity] = {}

    def _mapped_emails(self) -> set[str]:
        return {
            identity.email.lower()
            for identity in self.speaker_map.values()
            if identity.email
        }

    def _match(self, utterance: Utterance) -> SpeakerIdentity:
        mapped = self._mapped_emails()

        if utterance.participant_email:
            participant = self.focus_group.find_participant(utterance.participant_email)
            if participant:
                return SpeakerIdentity(participant.email, participant.name)
            return SpeakerIdentity(utterance.participant_email, utterance.participant_name)

        display_name = (utterance.participant_name or "").strip().lower()
        if display_name:
            for participant in self.focus_group.participants:
                if participant.email.lower() in mapped:
                    continue
                if participant.name and participant.name.strip().lower() == display_name:
                    return SpeakerIdentity(participant.email, participant.name)

        for participant in self.focus_group.participants:
            if participant.email.lower() not in mapped:
                return SpeakerIdentity(
                    participant.email, participant.name or utterance.participant_name
                )

        return SpeakerIdentity(None, utterance.participant_name)

    def identify(self, utterance: Utterance) -> SpeakerIdentity:
        """Resolve (and remember) who said an utterance."""
        identity = self.speaker_map.get(utterance.participant_id)
        if identity is not None:
            return identity

        identity = self._match(utterance)
        self.speaker_map[utterance.participant_id] = identity
        logger.info(
            f"✅ Speaker mapping: provider {utterance.participant_id} "
            f"({utterance.participant_name}) → {identity.email or 'unlisted participant'}"
        )

        if identity.email:
            participant = self.focus_group.find_participant(identity.email)
            if participant and participant.status == "invited":
                participant.status = "joined"
        return identity

    def get_all_mappings(self) -> Dict[str, SpeakerIdentity]:
        return self.speaker_map.copy()
