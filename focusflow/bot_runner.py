# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
Run one focus group session in the foreground.

Usage:
    python -m focusflow.bot_runner --focus-group-id <id> [--session-id <id>]

Useful as a worker-process entry point and for manual testing against a real
meeting. The focus group must already exist in the configured store, so this
needs the Supabase backend.

Live transcripts arrive through the `/webhooks/meeting-events` endpoint of
whichever process PUBLIC_BASE_URL points at. Pass `--webhook-port` to serve
that endpoint from this process.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from dotenv import load_dotenv

from focusflow.config import load_settings
from focusflow.container import ServiceContainer, build_services
from focusflow.errors import NotFoundError
from focusflow.models import FocusGroupSession

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _load_session(
    services: ServiceContainer, focus_group_id: str, session_id: Optional[str]
) -> FocusGroupSession:
    if not session_id:
        return await services.session_store.create(focus_group_id)

    session = await services.session_store.get(session_id)
    if session.focus_group_id != focus_group_id:
        raise NotFoundError(
            f"Session {session_id} does not belong to focus group {focus_group_id}"
        )
    if session.status != "waiting":
        raise ValueError(f"Session {session_id} is {session.status}, expected waiting")
    return session


async def run_session(
    focus_group_id: str,
    session_id: Optional[str] = None,
    webhook_port: Optional[int] = None,
) -> FocusGroupSession:
    """Run a single session to a terminal state and return it."""
    services = build_services(load_settings())
    server_task: Optional[asyncio.Task] = None
    server = None
    try:
        if webhook_port:
            import uvicorn

            from focusflow.main import app

            app.state.services = services
            server = uvicorn.Server(
                uvicorn.Config(app, host="0.0.0.0", port=webhook_port, log_level="info")
            )
            server_task = asyncio.create_task(server.serve())
            logger.info(f"Serving meeting webhooks on port {webhook_port}")

        focus_group = await services.focus_group_store.get(focus_group_id)
        session = await _load_session(services, focus_group_id, session_id)
        orchestrator = services.build_orchestrator(focus_group, session)

        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, orchestrator.request_stop)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        logger.info(f"Starting bot for focus group {focus_group_id} (session {session.id})")
        return await orchestrator.run()
    finally:
        if server is not None:
            server.should_exit = True
            await server_task
        await services.aclose()


def main():
    """Main entry point for the standalone bot runner."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Run the focus group moderator bot for one session"
    )
    parser.add_argument("--focus-group-id", required=True, help="Focus group ID")
    parser.add_argument(
        "--session-id",
        help="Existing waiting session to run (a new one is created if omitted)",
    )
    parser.add_argument(
        "--webhook-port",
        type=int,
        help="Serve /webhooks/meeting-events on this port while the bot runs",
    )
    args = parser.parse_args()

    try:
        session = asyncio.run(
            run_session(args.focus_group_id, args.session_id, args.webhook_port)
        )
    except (NotFoundError, ValueError) as e:
        logger.error(f"Cannot start bot: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Bot interrupted by user")
        sys.exit(130)

    print(
        f"Session {session.id}: status={session.status} bot_status={session.bot_status} "
        f"questions={len(session.question_responses)} errors={len(session.error_logs)}"
    )
    sys.exit(0 if session.status == "completed" else 1)


if __name__ == "__main__":
    main()
