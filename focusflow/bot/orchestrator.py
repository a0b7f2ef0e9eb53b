# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Session Orchestrator - drives one bot run through a focus group.

**Simple Explanation:**
This is the moderator's script. For one FocusGroupSession it:
1. Joins the meeting (the only step allowed to fail the whole run up front)
2. Greets everyone
3. For every question: asks it, listens for a while, optionally summarizes
4. Says goodbye

After every question the session is checkpointed to the state store, so if
anything crashes after question k, questions 1..k are still on record.

**Failure policy:**
Every step returns a StepOutcome instead of letting exceptions escape.
Cosmetic failures (speech synthesis, playback, summaries) are written to the
session's error log and the run continues. Losing the meeting connection or
the ability to persist state ends the run as `failed`, keeping everything
recorded so far.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from focusflow.bot.prompts import (
    filler_rotation,
    greeting_prompt,
    question_prompt,
    summary_prompt,
)
from focusflow.bot.speaker_tracking import SpeakerTracker
from focusflow.bot.transcript_handler import TranscriptHandler
from focusflow.config import DEFAULT_CLOSING_MESSAGE, DEFAULT_GREETING, Settings
from focusflow.db import FocusGroupStore, SessionStore
from focusflow.errors import (
    DisconnectDetected,
    JoinFailure,
    PersistenceFailure,
    PlaybackFailure,
    SummarizationFailure,
    SynthesisFailure,
    TranscriptionFailure,
)
from focusflow.models import (
    FocusGroup,
    FocusGroupSession,
    Question,
    QuestionResponse,
    Response,
    utc_now,
)
from focusflow.providers.meeting.base import MeetingConnection, MeetingDriver, Utterance
from focusflow.providers.speech import SpeechOptions, SpeechSynthesizer
from focusflow.providers.transcription import TranscriptionService

logger = logging.getLogger(__name__)

# Extra time allowed past the listening budget before we stop waiting on the driver
LISTEN_GRACE_SECONDS = 2.0


@dataclass(frozen=True)
class StepOutcome:
    """Result of one orchestrator step."""

    step: str
    ok: bool
    error: Optional[Exception] = None
    fatal: bool = False

    @classmethod
    def success(cls, step: str) -> "StepOutcome":
        return cls(step=step, ok=True)

    @classmethod
    def failure(
        cls, step: str, error: Exception, fatal: bool = False
    ) -> "StepOutcome":
        return cls(step=step, ok=False, error=error, fatal=fatal)


@dataclass(frozen=True)
class OrchestratorConfig:
    bot_name: str = "Focus Group Moderator"
    greeting: str = DEFAULT_GREETING
    closing_message: str = DEFAULT_CLOSING_MESSAGE
    speech_options: SpeechOptions = SpeechOptions()
    join_max_attempts: int = 3
    join_retry_delay: float = 2.0
    persist_max_attempts: int = 3
    persist_retry_delay: float = 0.5
    enable_fillers: bool = True
    clean_transcripts: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorConfig":
        return cls(
            bot_name=settings.bot_name,
            greeting=settings.bot_greeting,
            closing_message=settings.bot_closing_message,
            speech_options=SpeechOptions(
                voice=settings.tts_voice, speed=settings.tts_speed
            ),
            join_max_attempts=settings.join_max_attempts,
            persist_max_attempts=settings.persist_max_attempts,
            persist_retry_delay=settings.persist_retry_delay,
        )


class SessionOrchestrator:
    """State machine for one FocusGroupSession: join → greet → questions → close."""

    def __init__(
        self,
        focus_group: FocusGroup,
        session: FocusGroupSession,
        driver: MeetingDriver,
        synthesizer: SpeechSynthesizer,
        transcription: TranscriptionService,
        session_store: SessionStore,
        focus_group_store: Optional[FocusGroupStore] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.focus_group = focus_group
        self.session = session
        self.driver = driver
        self.synthesizer = synthesizer
        self.transcription = transcription
        self.session_store = session_store
        self.focus_group_store = focus_group_store
        self.config = config or OrchestratorConfig()

        self.connection: Optional[MeetingConnection] = None
        self.transcript = TranscriptHandler(session, bot_name=self.config.bot_name)
        self.speakers = SpeakerTracker(focus_group)
        self._fillers = filler_rotation()
        self._filler_tasks: set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._step = "join"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Ask the run to wrap up at the next step boundary."""
        if not self._stop_event.is_set():
            logger.info(f"🛑 Stop requested for session {self.session.id}")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> FocusGroupSession:
        """
        Execute the whole session.

        Never raises for session-level failures; the outcome is recorded on
        the session (status, bot_status, error_logs) and persisted. Only task
        cancellation is re-raised after a best-effort checkpoint.
        """
        logger.info(
            f"🚀 Starting session {self.session.id} for focus group "
            f"'{self.focus_group.title}' ({self.focus_group.id})"
        )
        try:
            if await self._join():
                await self._run_in_meeting()
        except DisconnectDetected as e:
            logger.error(
                f"❌ Disconnect detected during {self._step} for session {self.session.id}: {e}"
            )
            await self._finish_failed(str(e), context=self._step)
        except PersistenceFailure as e:
            logger.error(
                f"❌ Cannot persist session {self.session.id}, aborting: {e}",
                exc_info=True,
            )
            await self._finish_failed(str(e), context="persistence", retry=False)
        except asyncio.CancelledError:
            logger.warning(f"⚠️ Session {self.session.id} cancelled during {self._step}")
            await self._finish_failed(
                "Bot task was cancelled", context="cancelled", retry=False
            )
            raise
        except Exception as e:
            logger.error(
                f"❌ Unexpected error in session {self.session.id} during {self._step}: {e}",
                exc_info=True,
            )
            await self._finish_failed(f"Unexpected error: {e}", context=self._step)
        finally:
            await self._drain_filler_tasks()
            await self._leave()

        logger.info(
            f"🏁 Session {self.session.id} finished: status={self.session.status}, "
            f"questions={len(self.session.question_responses)}, "
            f"errors={len(self.session.error_logs)}"
        )
        return self.session

    # ------------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------------

    async def _join(self) -> bool:
        self._step = "join"
        self.session.bot_status = "joining"
        self.session.started_at = utc_now()
        await self._checkpoint()

        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.join_max_attempts + 1):
            if self.stop_requested:
                last_error = JoinFailure("Stop requested before the bot joined")
                break
            try:
                self.connection = await self.driver.join(
                    self.focus_group.meeting_link or "", self.config.bot_name
                )
                break
            except Exception as e:
                last_error = e
                logger.warning(
                    f"⚠️ Join attempt {attempt}/{self.config.join_max_attempts} failed "
                    f"for session {self.session.id}: {e}",
                    exc_info=not isinstance(e, JoinFailure),
                )
                if attempt < self.config.join_max_attempts:
                    await asyncio.sleep(self.config.join_retry_delay * (2 ** (attempt - 1)))

        if self.connection is None:
            message = f"Could not join meeting: {last_error}"
            logger.error(f"❌ {message} (session {self.session.id})")
            await self._finish_failed(message, context="join")
            return False

        self.session.bot_status = "active"
        self.session.advance_status("in-progress")
        if await self._focus_group_cancelled():
            logger.info(
                f"🛑 Focus group {self.focus_group.id} was cancelled while the bot was joining"
            )
            self.focus_group.status = "cancelled"
            self.request_stop()
        else:
            self.focus_group.status = "in-progress"
            await self._save_focus_group()
        await self._checkpoint()
        logger.info(f"✅ Bot joined meeting for session {self.session.id}")
        return True

    async def _run_in_meeting(self) -> None:
        if not self.stop_requested:
            self._step = "greeting"
            await self._ensure_connected()
            outcome = await self._speak(
                greeting_prompt(self.config.greeting, self.focus_group), "greeting"
            )
            self._record(outcome)

        questions = self.focus_group.questionnaire.ordered_questions()
        total = len(questions)
        for index, question in enumerate(questions, start=1):
            if self.stop_requested:
                logger.info(
                    f"🛑 Skipping remaining {total - index + 1} question(s) for "
                    f"session {self.session.id}"
                )
                break
            await self._ask_question(index, total, question)
            # Checkpoint after every question, whatever happened inside it
            await self._checkpoint()

        await self._close()

    async def _ask_question(self, index: int, total: int, question: Question) -> None:
        self._step = f"question_{index}"
        await self._ensure_connected()
        logger.info(f"❓ Asking question {index}/{total}: {question.text}")

        outcome = await self._speak(
            question_prompt(index, total, question.text), f"question_{index}_prompt"
        )
        self._record(outcome)

        question_response = QuestionResponse(
            question_id=question.id,
            question_text=question.text,
            asked_at=self._next_asked_at(),
        )
        self.session.question_responses.append(question_response)

        outcome = await self._listen(question_response, index)
        self._record(outcome)

        if (
            self.focus_group.settings.enable_summarization
            and question_response.responses
            and not self.stop_requested
        ):
            outcome = await self._summarize(question_response, index)
            self._record(outcome)

    async def _close(self) -> None:
        self._step = "closing"
        if self.stop_requested:
            self.session.log_error("Session stopped by organizer", "stop_requested")

        await self._ensure_connected()
        outcome = await self._speak(self.config.closing_message, "closing")
        self._record(outcome)

        responded = {
            stats.email.lower() for stats in self.session.participants if stats.email
        }
        for participant in self.focus_group.participants:
            if participant.email.lower() in responded:
                participant.status = "completed"
        if await self._focus_group_cancelled():
            self.focus_group.status = "cancelled"
        else:
            self.focus_group.status = "completed"
        await self._save_focus_group()

        self.session.advance_status("completed")
        self.session.bot_status = "ended"
        self.session.ended_at = utc_now()
        await self._checkpoint()
        logger.info(f"✅ Session {self.session.id} completed")

    # ------------------------------------------------------------------
    # Step helpers (each returns a StepOutcome)
    # ------------------------------------------------------------------

    async def _speak(self, text: str, step: str) -> StepOutcome:
        """Synthesize text and play it into the meeting."""
        try:
            audio = await self.synthesizer.synthesize(text, self.config.speech_options)
        except SynthesisFailure as e:
            kind = "transient" if e.transient else "permanent"
            return StepOutcome.failure(step, SynthesisFailure(f"{kind}: {e}", e.transient))
        except Exception as e:
            return StepOutcome.failure(step, e)

        try:
            await self.driver.play(self.connection, audio)
        except DisconnectDetected as e:
            return StepOutcome.failure(step, e, fatal=True)
        except PlaybackFailure as e:
            return StepOutcome.failure(step, e)
        except Exception as e:
            return StepOutcome.failure(step, PlaybackFailure(str(e)))

        self.transcript.add_bot_line(text, utc_now())
        return StepOutcome.success(step)

    async def _listen(self, question_response: QuestionResponse, index: int) -> StepOutcome:
        """Capture utterances for one question until the time budget runs out."""
        step = f"question_{index}_listen"
        budget = float(self.focus_group.settings.time_per_question)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget + LISTEN_GRACE_SECONDS

        stream = self.driver.listen(self.connection, budget)
        iterator = stream.__aiter__()
        try:
            while not self.stop_requested:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    utterance = await asyncio.wait_for(iterator.__anext__(), timeout=remaining)
                except StopAsyncIteration:
                    break
                except asyncio.TimeoutError:
                    logger.warning(
                        f"⚠️ Listening window overran its {budget}s budget, moving on"
                    )
                    break
                await self._record_utterance(question_response, utterance, step)
                self._schedule_filler()
        except DisconnectDetected as e:
            return StepOutcome.failure(step, e, fatal=True)
        except Exception as e:
            return StepOutcome.failure(step, e)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            await self._drain_filler_tasks()

        if not await self._is_connected():
            return StepOutcome.failure(
                step,
                DisconnectDetected("Bot lost meeting presence while listening"),
                fatal=True,
            )
        logger.info(
            f"👂 Question {index}: captured {len(question_response.responses)} response(s)"
        )
        return StepOutcome.success(step)

    async def _record_utterance(
        self, question_response: QuestionResponse, utterance: Utterance, step: str
    ) -> None:
        text = (utterance.text or "").strip()
        if not text and utterance.audio:
            try:
                text = await self.transcription.transcribe(utterance.audio)
            except TranscriptionFailure as e:
                logger.warning(f"⚠️ Could not transcribe utterance: {e}")
                self.session.log_error(str(e), f"{step}_transcribe")
                return

        if text and self.config.clean_transcripts:
            try:
                text = await self.transcription.clean(text) or text
            except Exception as e:
                logger.warning(f"⚠️ Cleanup failed, keeping raw text: {e}")

        if not text.strip():
            return

        identity = self.speakers.identify(utterance)
        question_response.responses.append(
            Response(
                participant_email=identity.email,
                participant_name=identity.name,
                text=text,
                timestamp=utterance.timestamp,
                duration=utterance.duration,
            )
        )
        stats = self.session.participant_stats_for(identity.email, identity.name)
        stats.response_count += 1
        stats.speaking_time += utterance.duration
        self.transcript.add_participant_line(
            identity.name or identity.email, text, utterance.timestamp
        )

    async def _summarize(self, question_response: QuestionResponse, index: int) -> StepOutcome:
        step = f"question_{index}_summary"
        try:
            summary = await self.transcription.summarize(
                [r.text for r in question_response.responses],
                question=question_response.question_text,
            )
        except SummarizationFailure as e:
            return StepOutcome.failure(step, e)
        except Exception as e:
            return StepOutcome.failure(step, SummarizationFailure(str(e)))

        if not summary:
            return StepOutcome.success(step)
        question_response.summary = summary
        return await self._speak(summary_prompt(summary), step)

    def _schedule_filler(self) -> None:
        """Play the next filler phrase in the background, at most one at a time."""
        if not self.config.enable_fillers or self._filler_tasks:
            return
        task = asyncio.create_task(self._speak(next(self._fillers), "filler"))
        self._filler_tasks.add(task)
        task.add_done_callback(self._filler_tasks.discard)

    async def _drain_filler_tasks(self) -> None:
        if not self._filler_tasks:
            return
        results = await asyncio.gather(*list(self._filler_tasks), return_exceptions=True)
        for result in results:
            failed = isinstance(result, BaseException) or not result.ok
            if failed:
                # Fillers are cosmetic; a real disconnect is caught by the next check
                logger.debug(f"Filler phrase not played: {result}")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record(self, outcome: StepOutcome) -> None:
        """Log a step failure; re-raise it when it is fatal."""
        if outcome.ok:
            return
        self.session.log_error(str(outcome.error), outcome.step)
        if outcome.fatal:
            raise outcome.error
        logger.warning(
            f"⚠️ Step {outcome.step} failed for session {self.session.id} "
            f"(continuing): {outcome.error}"
        )

    def _next_asked_at(self):
        now = utc_now()
        if self.session.question_responses:
            previous = self.session.question_responses[-1].asked_at
            if now <= previous:
                now = previous + timedelta(microseconds=1)
        return now

    async def _is_connected(self) -> bool:
        if self.connection is None:
            return False
        try:
            return await self.driver.is_connected(self.connection)
        except Exception as e:
            logger.warning(f"⚠️ Could not check meeting connection: {e}")
            return True

    async def _ensure_connected(self) -> None:
        if not await self._is_connected():
            raise DisconnectDetected(f"Bot lost meeting presence before {self._step}")

    async def _checkpoint(self) -> None:
        """
        Persist the session with bounded retries.

        Raises:
            PersistenceFailure: If every attempt failed
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.config.persist_max_attempts + 1):
            try:
                await self.session_store.save(self.session)
                return
            except Exception as e:
                last_error = e
                logger.warning(
                    f"⚠️ Checkpoint attempt {attempt}/{self.config.persist_max_attempts} "
                    f"failed for session {self.session.id}: {e}"
                )
                if attempt < self.config.persist_max_attempts:
                    await asyncio.sleep(self.config.persist_retry_delay * attempt)
        raise PersistenceFailure(
            f"Could not save session {self.session.id} after "
            f"{self.config.persist_max_attempts} attempts: {last_error}"
        )

    async def _focus_group_cancelled(self) -> bool:
        """Whether the organizer cancelled the focus group while the bot ran."""
        if self.focus_group_store is None:
            return False
        try:
            stored = await self.focus_group_store.get(self.focus_group.id)
        except Exception as e:
            logger.warning(f"⚠️ Could not reload focus group {self.focus_group.id}: {e}")
            return False
        return stored.status == "cancelled"

    async def _save_focus_group(self) -> None:
        if self.focus_group_store is None:
            return
        try:
            await self.focus_group_store.save(self.focus_group)
        except Exception as e:
            logger.warning(f"⚠️ Could not update focus group {self.focus_group.id}: {e}")
            self.session.log_error(str(e), "focus_group_update")

    async def _finish_failed(self, error: str, context: str, retry: bool = True) -> None:
        """Mark the session failed and write it, keeping all progress so far."""
        self.session.log_error(error, context)
        if not self.session.is_terminal:
            self.session.advance_status("failed")
        self.session.bot_status = "disconnected"
        self.session.ended_at = utc_now()

        if retry:
            try:
                await self._checkpoint()
                return
            except PersistenceFailure as e:
                self.session.log_error(str(e), "persistence")

        # Last best-effort write
        try:
            await self.session_store.save(self.session)
        except Exception as e:
            logger.error(
                f"❌ Final write for session {self.session.id} failed, "
                f"last checkpoint stands: {e}"
            )

    async def _leave(self) -> None:
        if self.connection is None:
            return
        try:
            await self.driver.leave(self.connection)
        except Exception as e:
            logger.warning(f"⚠️ Error leaving meeting for session {self.session.id}: {e}")
        finally:
            self.connection = None
