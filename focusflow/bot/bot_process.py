# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""Bot process representation for lifecycle management."""

import asyncio
import time
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from focusflow.bot.orchestrator import SessionOrchestrator


class BotProcess:
    """Represents a single running orchestrator with proper lifecycle management."""

    def __init__(
        self,
        focus_group_id: str,
        session_id: str,
        task: asyncio.Task,
        orchestrator: "SessionOrchestrator",
    ):
        self.focus_group_id = focus_group_id
        self.session_id = session_id
        self.task = task
        self.orchestrator = orchestrator  # Kept so stop requests can reach the run
        self.process_id = str(uuid.uuid4())
        self.start_time = time.monotonic()

    @property
    def is_running(self) -> bool:
        """Check if the orchestrator task is still running."""
        return not self.task.done()

    @property
    def runtime_seconds(self) -> float:
        """Get how long the bot has been running."""
        return time.monotonic() - self.start_time
