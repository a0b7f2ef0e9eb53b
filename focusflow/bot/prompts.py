# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Spoken text the moderator bot uses during a session."""

import itertools
from typing import Iterator

from focusflow.models import FocusGroup

FILLER_PHRASES = (
    "Thank you. Would anyone else like to add something?",
    "Great point. Does anyone have a different perspective?",
    "Thanks for sharing. Anyone else?",
    "I appreciate that. Feel free to build on what was just said.",
)


def greeting_prompt(base_greeting: str, focus_group: FocusGroup) -> str:
    count = len(focus_group.participants)
    people = "participant" if count == 1 else "participants"
    return (
        f"{base_greeting} Welcome to {focus_group.title}. "
        f"We have {count} {people} invited today."
    )


def question_prompt(index: int, total: int, text: str) -> str:
    """Prompt for question `index` (1-indexed) of `total`."""
    text = text.strip()
    if not text.endswith((".", "?", "!")):
        text = f"{text}."
    return (
        f"Question {index} of {total}: {text} "
        "Please take a moment to share your thoughts."
    )


def summary_prompt(summary: str) -> str:
    return f"Let me summarize what I heard. {summary}"


def filler_rotation() -> Iterator[str]:
    """Endless rotation through the filler phrases, in a fixed order."""
    return itertools.cycle(FILLER_PHRASES)
