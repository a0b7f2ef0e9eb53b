# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Transcription and cleanup capability.

Three remote calls the orchestrator relies on:
- transcribe: raw participant audio -> text (Whisper)
- clean: remove filler words and fix obvious speech-to-text errors
- summarize: condense the answers to one question into a short spoken summary
"""

import io
import logging
from abc import ABC, abstractmethod

import openai
from openai import AsyncOpenAI

from focusflow.errors import SummarizationFailure, TranscriptionFailure

logger = logging.getLogger(__name__)

CLEAN_TRANSCRIPTION_PROMPT = """You are a professional transcription editor. Your task is to:
1. Remove filler words (um, uh, like, you know, etc.)
2. Fix grammar and punctuation
3. Correct obvious speech-to-text errors
4. Maintain the original meaning and tone
5. Keep the response concise but complete
6. Ensure proper capitalization

Return only the cleaned text without any additional commentary."""

SUMMARIZE_RESPONSES_PROMPT = """You are moderating a live focus group discussion.
You will receive the answers participants gave to a single question.
Write a neutral summary of two or three sentences that captures the main
points and any disagreement. The summary will be read aloud, so use plain
conversational language with no lists, markdown or special characters.
Do not attribute points to named participants."""


class TranscriptionService(ABC):
    """Abstract interface for speech-to-text, cleanup and summarization."""

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        """Raises TranscriptionFailure."""

    @abstractmethod
    async def clean(self, raw_text: str) -> str:
        """Raises TranscriptionFailure."""

    @abstractmethod
    async def summarize(self, texts: list[str], question: str | None = None) -> str:
        """Raises SummarizationFailure."""


class OpenAITranscriptionService(TranscriptionService):
    """Whisper for transcription, chat completions for cleanup and summaries."""

    def __init__(
        self,
        client: AsyncOpenAI,
        transcribe_model: str = "whisper-1",
        text_model: str = "gpt-4o-mini",
        language: str = "en",
    ):
        self.client = client
        self.transcribe_model = transcribe_model
        self.text_model = text_model
        self.language = language

    async def transcribe(self, audio: bytes, filename: str = "utterance.wav") -> str:
        if not audio:
            return ""
        buffer = io.BytesIO(audio)
        buffer.name = filename
        try:
            result = await self.client.audio.transcriptions.create(
                model=self.transcribe_model,
                file=buffer,
                language=self.language,
                temperature=0,
            )
        except openai.OpenAIError as e:
            raise TranscriptionFailure(f"Transcription failed: {e}") from e
        return (result.text or "").strip()

    async def clean(self, raw_text: str) -> str:
        if not raw_text or not raw_text.strip():
            return ""
        try:
            cleaned = await self._complete(CLEAN_TRANSCRIPTION_PROMPT, raw_text)
        except openai.OpenAIError as e:
            raise TranscriptionFailure(f"Transcript cleanup failed: {e}") from e
        return cleaned or raw_text.strip()

    async def summarize(self, texts: list[str], question: str | None = None) -> str:
        answers = [t.strip() for t in texts if t and t.strip()]
        if not answers:
            return ""

        body = "\n".join(f"- {answer}" for answer in answers)
        if question:
            body = f"Question: {question}\n\nAnswers:\n{body}"
        try:
            summary = await self._complete(SUMMARIZE_RESPONSES_PROMPT, body)
        except openai.OpenAIError as e:
            raise SummarizationFailure(f"Summarization failed: {e}") from e
        if not summary:
            raise SummarizationFailure("Summarization returned no text")
        return summary

    async def _complete(self, system_prompt: str, user_content: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.text_model,
            temperature=0.3,
            max_tokens=1000,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
        )
        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()
