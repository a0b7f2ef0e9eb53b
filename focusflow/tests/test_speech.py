# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Tests for the OpenAI speech synthesis adapter."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from focusflow.errors import SynthesisFailure
from focusflow.providers.speech import (
    MAX_INPUT_CHARS,
    OpenAISpeechSynthesizer,
    SpeechOptions,
    _chunk_text,
    validate_speech_request,
)

SPEECH_URL = "https://api.openai.com/v1/audio/speech"


def status_error(cls, status_code: int):
    request = httpx.Request("POST", SPEECH_URL)
    response = httpx.Response(status_code, request=request)
    return cls(f"HTTP {status_code}", response=response, body=None)


@pytest.fixture
def openai_client() -> MagicMock:
    client = MagicMock()
    client.audio.speech.create = AsyncMock(
        side_effect=lambda **kwargs: MagicMock(content=kwargs["input"].encode())
    )
    return client


class TestValidation:
    def test_empty_text_is_permanent_failure(self) -> None:
        with pytest.raises(SynthesisFailure) as exc_info:
            validate_speech_request("   ", SpeechOptions())
        assert exc_info.value.transient is False

    @pytest.mark.parametrize("speed", [0.1, 4.5])
    def test_speed_out_of_range(self, speed: float) -> None:
        with pytest.raises(SynthesisFailure, match="outside supported range") as exc_info:
            validate_speech_request("Hello", SpeechOptions(speed=speed))
        assert exc_info.value.transient is False

    def test_valid_request(self) -> None:
        validate_speech_request("Hello", SpeechOptions(voice="nova", speed=1.25))


class TestChunking:
    def test_short_text_is_one_chunk(self) -> None:
        assert _chunk_text("Hello there.") == ["Hello there."]

    def test_long_text_split_on_sentences(self) -> None:
        sentence = "This sentence is part of a very long closing message"
        text = ". ".join([sentence] * 200)

        chunks = _chunk_text(text)

        assert len(chunks) > 1
        assert all(len(chunk) <= MAX_INPUT_CHARS for chunk in chunks)
        assert all(chunk.endswith(".") for chunk in chunks)


@pytest.mark.asyncio
class TestOpenAISpeechSynthesizer:
    async def test_synthesize(self, openai_client: MagicMock) -> None:
        synthesizer = OpenAISpeechSynthesizer(openai_client, model="tts-1")

        segment = await synthesizer.synthesize("Welcome!", SpeechOptions(voice="nova"))

        assert segment.data == b"Welcome!"
        assert segment.format == "mp3"
        assert segment.text == "Welcome!"
        openai_client.audio.speech.create.assert_awaited_once_with(
            model="tts-1",
            voice="nova",
            input="Welcome!",
            speed=1.0,
            response_format="mp3",
        )

    async def test_repeated_phrase_is_cached(self, openai_client: MagicMock) -> None:
        synthesizer = OpenAISpeechSynthesizer(openai_client)
        options = SpeechOptions()

        first = await synthesizer.synthesize("Anyone else?", options)
        second = await synthesizer.synthesize("Anyone else?", options)

        assert first == second
        assert openai_client.audio.speech.create.await_count == 1

    async def test_cache_is_bounded(self, openai_client: MagicMock) -> None:
        synthesizer = OpenAISpeechSynthesizer(openai_client, cache_size=2)
        options = SpeechOptions()

        for text in ("One.", "Two.", "Three."):
            await synthesizer.synthesize(text, options)
        await synthesizer.synthesize("One.", options)

        assert len(synthesizer._cache) == 2
        assert openai_client.audio.speech.create.await_count == 4

    async def test_long_text_concatenates_chunks(self, openai_client: MagicMock) -> None:
        synthesizer = OpenAISpeechSynthesizer(openai_client)
        text = ". ".join(["Thanks for joining us today"] * 300)

        segment = await synthesizer.synthesize(text, SpeechOptions())

        assert openai_client.audio.speech.create.await_count > 1
        assert segment.text == text

    async def test_invalid_request_never_calls_api(self, openai_client: MagicMock) -> None:
        synthesizer = OpenAISpeechSynthesizer(openai_client)

        with pytest.raises(SynthesisFailure):
            await synthesizer.synthesize("", SpeechOptions())
        openai_client.audio.speech.create.assert_not_awaited()

    @pytest.mark.parametrize(
        "error",
        [
            status_error(openai.RateLimitError, 429),
            status_error(openai.InternalServerError, 500),
            openai.APIConnectionError(request=httpx.Request("POST", SPEECH_URL)),
        ],
    )
    async def test_transient_errors(self, openai_client: MagicMock, error) -> None:
        openai_client.audio.speech.create.side_effect = error
        synthesizer = OpenAISpeechSynthesizer(openai_client)

        with pytest.raises(SynthesisFailure) as exc_info:
            await synthesizer.synthesize("Hello", SpeechOptions())
        assert exc_info.value.transient is True

    async def test_rejected_request_is_permanent(self, openai_client: MagicMock) -> None:
        openai_client.audio.speech.create.side_effect = status_error(
            openai.BadRequestError, 400
        )
        synthesizer = OpenAISpeechSynthesizer(openai_client)

        with pytest.raises(SynthesisFailure, match="rejected") as exc_info:
            await synthesizer.synthesize("Hello", SpeechOptions())
        assert exc_info.value.transient is False
