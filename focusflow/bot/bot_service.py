# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Bot Process Supervisor - runs session orchestrators in the background."""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from focusflow.bot.bot_process import BotProcess
from focusflow.bot.orchestrator import SessionOrchestrator
from focusflow.db import SessionStore
from focusflow.errors import BotAlreadyRunning, NotFoundError
from focusflow.models import FocusGroup, FocusGroupSession, utc_now

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[FocusGroup, FocusGroupSession], SessionOrchestrator]


class BotService:
    """
    Service to manage running orchestrators.

    **Simple Explanation:**
    `launch()` starts the orchestrator as an asyncio task and returns right
    away, so the HTTP request that triggered it never waits on the meeting.
    Whatever happens inside the run is only visible through the session
    record in the state store.
    """

    def __init__(
        self,
        session_store: SessionStore,
        orchestrator_factory: OrchestratorFactory,
    ):
        self.session_store = session_store
        self.orchestrator_factory = orchestrator_factory
        # Keyed by session id
        self.active_bots: Dict[str, BotProcess] = {}
        self._start_lock = asyncio.Lock()

    def running_bot_for_focus_group(self, focus_group_id: str) -> Optional[BotProcess]:
        for bot_process in self.active_bots.values():
            if bot_process.focus_group_id == focus_group_id and bot_process.is_running:
                return bot_process
        return None

    async def launch(
        self, focus_group: FocusGroup, session: FocusGroupSession
    ) -> BotProcess:
        """
        Start an orchestrator for the session and return immediately.

        Raises:
            BotAlreadyRunning: If this focus group already has a running bot
        """
        async with self._start_lock:
            existing = self.running_bot_for_focus_group(focus_group.id)
            if existing is not None:
                raise BotAlreadyRunning(
                    f"Bot already running for focus group {focus_group.id} "
                    f"(session {existing.session_id})"
                )

            orchestrator = self.orchestrator_factory(focus_group, session)
            task = asyncio.create_task(
                self._run_orchestrator(orchestrator),
                name=f"focus-group-bot-{session.id}",
            )
            # Track the bot before it starts running so concurrent requests see it
            bot_process = BotProcess(focus_group.id, session.id, task, orchestrator)
            self.active_bots[session.id] = bot_process
            task.add_done_callback(lambda t: self._cleanup_bot(session.id))

        logger.info(
            f"Started bot for focus group {focus_group.id} "
            f"(session: {session.id}, ID: {bot_process.process_id})"
        )
        return bot_process

    async def _run_orchestrator(self, orchestrator: SessionOrchestrator) -> None:
        try:
            await orchestrator.run()
        except asyncio.CancelledError:
            logger.info(f"Bot task for session {orchestrator.session.id} cancelled")
            raise
        except Exception as e:
            # Nobody awaits this task; the session record is the only outcome
            logger.error(
                f"❌ Orchestrator for session {orchestrator.session.id} crashed: {e}",
                exc_info=True,
            )

    def _cleanup_bot(self, session_id: str) -> None:
        """Clean up a bot that has finished."""
        bot_process = self.active_bots.pop(session_id, None)
        if bot_process is None:
            return
        runtime_hours = bot_process.runtime_seconds / 3600
        if runtime_hours > 1:
            logger.warning(
                f"⚠️ Bot for session {session_id} ran for {runtime_hours:.2f} hours "
                f"({bot_process.runtime_seconds:.1f}s) - this is longer than expected"
            )
        logger.info(
            f"Cleaning up bot for session {session_id} (ran for {runtime_hours:.2f} hours)"
        )

    async def stop_bot(self, session_id: str) -> bool:
        """
        Ask the bot for a session to stop.

        A locally running orchestrator gets a stop request and wraps up at its
        next step boundary. A session with no local runner is closed out
        directly in the state store.

        Returns:
            True if a stop was requested or recorded, False if the session is
            unknown or already finished

        Raises:
            PersistenceFailure: If the session could not be updated
        """
        bot_process = self.active_bots.get(session_id)
        if bot_process is not None and bot_process.is_running:
            bot_process.orchestrator.request_stop()
            logger.info(f"Stop requested for bot in session: {session_id}")
            return True

        try:
            session = await self.session_store.get(session_id)
        except NotFoundError:
            logger.warning(f"No bot or session found for: {session_id}")
            return False

        if session.is_terminal:
            logger.info(f"Session {session_id} already finished ({session.status})")
            return False

        session.log_error("Session stopped by organizer", "stop_requested")
        session.advance_status("completed" if session.status == "in-progress" else "failed")
        session.bot_status = "ended"
        session.ended_at = utc_now()
        await self.session_store.save(session)
        logger.info(f"Closed out session {session_id} with no running bot")
        return True

    def is_bot_running(self, session_id: str) -> bool:
        """Check if a bot is running for the given session."""
        if session_id not in self.active_bots:
            return False
        return self.active_bots[session_id].is_running

    def get_bot_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Get detailed status of a bot."""
        if session_id not in self.active_bots:
            return None

        bot_process = self.active_bots[session_id]
        return {
            "session_id": session_id,
            "focus_group_id": bot_process.focus_group_id,
            "process_id": bot_process.process_id,
            "is_running": bot_process.is_running,
            "stop_requested": bot_process.orchestrator.stop_requested,
            "runtime_seconds": bot_process.runtime_seconds,
        }

    def list_active_bots(self) -> Dict[str, Dict[str, Any]]:
        """List all active bots with their status."""
        result = {}
        for session_id in list(self.active_bots):
            status = self.get_bot_status(session_id)
            if status is not None:
                runtime_hours = status.get("runtime_seconds", 0) / 3600
                status["runtime_hours"] = runtime_hours
                if runtime_hours > 1:
                    status["warning"] = (
                        f"Bot has been running for {runtime_hours:.2f} hours"
                    )
                result[session_id] = status
        return result

    async def cleanup_long_running_bots(self, max_hours: float = 2.0) -> int:
        """
        Stop bots that have been running longer than max_hours.

        This is a safety mechanism to prevent bots running forever.

        Returns:
            Number of bots stopped
        """
        stopped_count = 0
        max_seconds = max_hours * 3600

        for session_id, bot_process in list(self.active_bots.items()):
            if bot_process.is_running and bot_process.runtime_seconds > max_seconds:
                logger.warning(
                    f"⚠️ Stopping long-running bot: {session_id} "
                    f"(ran for {bot_process.runtime_seconds / 3600:.2f} hours, "
                    f"max: {max_hours}h)"
                )
                await self.stop_bot(session_id)
                stopped_count += 1

        if stopped_count > 0:
            logger.info(f"Cleaned up {stopped_count} long-running bot(s)")
        return stopped_count

    async def reconcile_stale_sessions(self, max_age_minutes: int = 30) -> int:
        """
        Fail unfinished sessions that nothing is running anymore.

        A session stuck in waiting/in-progress with no local bot and no
        checkpoint for `max_age_minutes` is from a crashed run.

        Returns:
            Number of sessions marked failed
        """
        cutoff = utc_now() - timedelta(minutes=max_age_minutes)
        reconciled = 0
        for session in await self.session_store.list_unfinished():
            if self.is_bot_running(session.id) or session.updated_at > cutoff:
                continue
            logger.warning(
                f"⚠️ Marking stale session {session.id} as failed "
                f"(last update {session.updated_at.isoformat()})"
            )
            session.log_error(
                f"No checkpoint for over {max_age_minutes} minutes and no running bot",
                "stale_session",
            )
            session.advance_status("failed")
            session.bot_status = "disconnected"
            session.ended_at = utc_now()
            await self.session_store.save(session)
            reconciled += 1

        if reconciled:
            logger.info(f"Reconciled {reconciled} stale session(s)")
        return reconciled

    async def cleanup(self, timeout: float = 5.0) -> None:
        """Stop all running bots, giving each a chance to leave the meeting."""
        logger.info(f"Cleaning up {len(self.active_bots)} bots...")
        running = [bp for bp in self.active_bots.values() if bp.is_running]
        for bot_process in running:
            bot_process.orchestrator.request_stop()

        tasks = [bp.task for bp in running]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                logger.info(f"🛑 Cancelling bot task: {task.get_name()}")
                task.cancel()
            if pending:
                try:
                    await asyncio.wait_for(
                        asyncio.gather(*pending, return_exceptions=True),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "⚠️ Timeout waiting for bot tasks to complete, proceeding with cleanup"
                    )

        self.active_bots.clear()
        logger.info("All bots cleaned up")
