# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Speech Synthesis Adapter - turns bot prompts into playable audio.

**Simple Explanation:**
The orchestrator hands us text ("Question 1 of 3: ...") and gets back an mp3
it can play into the meeting. Nothing here touches session state, so the same
text with the same voice always produces an equivalent audio segment.
"""

import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from focusflow.errors import SynthesisFailure

logger = logging.getLogger(__name__)

MIN_SPEED = 0.25
MAX_SPEED = 4.0
# OpenAI's speech endpoint rejects inputs longer than this
MAX_INPUT_CHARS = 4096


@dataclass(frozen=True)
class SpeechOptions:
    voice: str = "alloy"
    speed: float = 1.0


@dataclass(frozen=True)
class AudioSegment:
    """A synthesized clip ready to be played into a meeting."""

    data: bytes
    format: str
    text: str


class SpeechSynthesizer(ABC):
    """
    Abstract base class for text-to-speech providers.

    Implementations raise SynthesisFailure with `transient=True` for
    network/quota problems and `transient=False` for invalid input.
    """

    @abstractmethod
    async def synthesize(self, text: str, options: SpeechOptions) -> AudioSegment:
        pass


def validate_speech_request(text: str, options: SpeechOptions) -> None:
    """Reject requests that can never succeed (permanent failures)."""
    if not text or not text.strip():
        raise SynthesisFailure("Cannot synthesize empty text", transient=False)
    if not MIN_SPEED <= options.speed <= MAX_SPEED:
        raise SynthesisFailure(
            f"Speed {options.speed} outside supported range {MIN_SPEED}-{MAX_SPEED}",
            transient=False,
        )


def _chunk_text(text: str, limit: int = MAX_INPUT_CHARS) -> list[str]:
    """Split long text on sentence boundaries so each piece fits one request."""
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    current = ""
    for sentence in text.replace("\n", " ").split(". "):
        piece = sentence if sentence.endswith(".") else f"{sentence}."
        while len(piece) > limit:
            chunks.append(piece[:limit])
            piece = piece[limit:]
        if current and len(current) + len(piece) + 1 > limit:
            chunks.append(current)
            current = piece
        else:
            current = f"{current} {piece}".strip()
    if current:
        chunks.append(current)
    return chunks


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """
    OpenAI text-to-speech with a small cache for repeated phrases.

    **Simple Explanation:**
    Filler phrases like "Would anyone else like to add something?" get played
    many times per session. We remember the last few clips we made so each
    phrase is only paid for once.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = "gpt-4o-mini-tts",
        cache_size: int = 32,
    ):
        self.client = client
        self.model = model
        self.cache_size = cache_size
        self._cache: "OrderedDict[tuple[str, str, float], AudioSegment]" = OrderedDict()

    async def synthesize(self, text: str, options: SpeechOptions) -> AudioSegment:
        validate_speech_request(text, options)

        cache_key = (text, options.voice, options.speed)
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._cache.move_to_end(cache_key)
            return cached

        audio = bytearray()
        for chunk in _chunk_text(text):
            audio.extend(await self._synthesize_chunk(chunk, options))

        segment = AudioSegment(data=bytes(audio), format="mp3", text=text)
        self._cache[cache_key] = segment
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        logger.debug(f"🔊 Synthesized {len(segment.data)} bytes for: {text[:60]}")
        return segment

    async def _synthesize_chunk(self, text: str, options: SpeechOptions) -> bytes:
        try:
            response = await self.client.audio.speech.create(
                model=self.model,
                voice=options.voice,
                input=text,
                speed=options.speed,
                response_format="mp3",
            )
            return response.content
        except (
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.RateLimitError,
            openai.InternalServerError,
        ) as e:
            raise SynthesisFailure(f"Speech synthesis unavailable: {e}", transient=True) from e
        except openai.APIStatusError as e:
            raise SynthesisFailure(
                f"Speech synthesis rejected ({e.status_code}): {e}", transient=False
            ) from e
