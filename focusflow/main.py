# Copyright 2025 Lunch Pail Labs, LLC
# Licensed under the Apache License, Version 2.0

"""
FocusFlow FastAPI Application

Main entry point for the focus group bot API server.
"""

import hmac
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from focusflow import __version__
from focusflow.config import load_settings
from focusflow.container import ServiceContainer, build_services
from focusflow.errors import CalendarError, ConflictError, NotFoundError
from focusflow.models import FocusGroup, FocusGroupSession
from focusflow.scheduling import FocusGroupCreateRequest
from shared.auth import UnkeyAuthMiddleware

# Set up logging first (before Sentry, so Sentry can capture log messages)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

load_dotenv()


def init_sentry() -> None:
    """
    Initialize Sentry for error tracking when SENTRY_DSN is set.

    Errors logged with logger.error (including orchestrator failures that no
    HTTP caller ever sees) are sent as Sentry events.
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        logger.info("ℹ️  Sentry not configured (SENTRY_DSN not set)")
        return

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        release=os.getenv("SENTRY_RELEASE"),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        traces_sample_rate=0.1,
        send_default_pii=False,  # Participant emails stay out of Sentry
    )
    logger.info("✅ Sentry initialized for error tracking")


init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services on startup (unless injected), close them on shutdown."""
    services: Optional[ServiceContainer] = getattr(app.state, "services", None)
    owns_services = services is None
    if owns_services:
        services = build_services(load_settings())
        app.state.services = services

    try:
        await services.bot_service.reconcile_stale_sessions(
            services.settings.stale_session_minutes
        )
    except Exception as e:
        logger.error(f"❌ Stale session reconciliation failed: {e}", exc_info=True)

    yield

    if owns_services:
        await services.aclose()
        app.state.services = None
    else:
        await services.bot_service.cleanup()


app = FastAPI(
    title="FocusFlow API",
    description="AI moderator bot that runs focus groups in live meetings",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(UnkeyAuthMiddleware)


class VersionHeaderMiddleware(BaseHTTPMiddleware):
    """Add API version header to responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/v1/"):
            response.headers["X-API-Version"] = "v1"
        return response


app.add_middleware(VersionHeaderMiddleware)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(CalendarError)
async def calendar_error_handler(request: Request, exc: CalendarError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


def get_owner_id(request: Request) -> str:
    """Owner of the presented API key (set by UnkeyAuthMiddleware)."""
    owner_id = getattr(request.state, "owner_id", None)
    if not owner_id:
        raise HTTPException(status_code=401, detail="Unauthenticated request")
    return owner_id


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "focusflow"}


# ============================================================================
# Meeting provider webhooks (public)
# ============================================================================


@app.post("/webhooks/meeting-events")
async def meeting_events_webhook(
    request: Request, token: Optional[str] = Query(default=None)
) -> dict[str, Any]:
    """
    Receive realtime events (transcripts, status changes) from the meeting provider.

    The provider calls this URL for every bot it runs; events are routed to
    the listening orchestrator by bot id.
    """
    services = get_services(request)
    secret = services.settings.webhook_secret
    if secret and not hmac.compare_digest(token or "", secret):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Webhook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Webhook body must be a JSON object")

    dispatch = getattr(services.driver, "dispatch_event", None)
    routed = bool(dispatch(payload)) if dispatch else False
    if not routed:
        logger.debug(f"Unrouted meeting event: {payload.get('event')}")
    return {"status": "ok", "routed": routed}


# ============================================================================
# v1 API Router
# ============================================================================
v1_router = APIRouter(
    prefix="/v1",
    tags=["v1"],
    responses={404: {"description": "Not found"}},
)


class BotStartResponse(BaseModel):
    """Response when starting a bot."""

    session_id: str
    status: str


@v1_router.post("/focus-groups", status_code=201)
async def create_focus_group_v1(
    body: FocusGroupCreateRequest, request: Request
) -> FocusGroup:
    """
    Create a focus group and schedule its meeting.

    When Google Calendar is configured and no `meeting_link` is given, a
    calendar event with a Meet link is created and participants are invited.

    Use: POST /v1/focus-groups
    """
    services = get_services(request)
    try:
        return await services.scheduling.create_focus_group(get_owner_id(request), body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@v1_router.get("/focus-groups")
async def list_focus_groups_v1(request: Request) -> dict[str, Any]:
    services = get_services(request)
    focus_groups = await services.scheduling.list_focus_groups(get_owner_id(request))
    return {"focus_groups": [fg.model_dump(mode="json") for fg in focus_groups]}


@v1_router.get("/focus-groups/{focus_group_id}")
async def get_focus_group_v1(focus_group_id: str, request: Request) -> FocusGroup:
    services = get_services(request)
    return await services.scheduling.get_focus_group(
        get_owner_id(request), focus_group_id
    )


@v1_router.post("/focus-groups/{focus_group_id}/start", response_model=BotStartResponse)
async def start_focus_group_bot_v1(
    focus_group_id: str, request: Request
) -> BotStartResponse:
    """
    Start the moderator bot for a focus group.

    Returns as soon as the session record exists; poll
    GET /v1/focus-groups/{id}/session for progress.

    Use: POST /v1/focus-groups/{id}/start
    """
    services = get_services(request)
    result = await services.scheduling.start_bot(get_owner_id(request), focus_group_id)
    return BotStartResponse(**result)


@v1_router.get("/focus-groups/{focus_group_id}/session")
async def get_session_status_v1(
    focus_group_id: str, request: Request
) -> FocusGroupSession:
    """Latest session for a focus group (404 if the bot was never started)."""
    services = get_services(request)
    return await services.scheduling.get_session_status(
        get_owner_id(request), focus_group_id
    )


@v1_router.post("/focus-groups/{focus_group_id}/cancel")
async def cancel_focus_group_v1(focus_group_id: str, request: Request) -> FocusGroup:
    services = get_services(request)
    return await services.scheduling.cancel_focus_group(
        get_owner_id(request), focus_group_id
    )


@v1_router.post("/sessions/{session_id}/stop")
async def stop_session_v1(session_id: str, request: Request) -> dict[str, Any]:
    """
    Ask the bot for a session to wrap up.

    The bot finishes its current step, plays the closing message and leaves.

    Use: POST /v1/sessions/{session_id}/stop
    """
    services = get_services(request)
    success = await services.scheduling.stop_session(get_owner_id(request), session_id)
    return {
        "status": "stopping" if success else "not_running",
        "session_id": session_id,
    }


@v1_router.get("/bots/status")
async def get_bot_status_v1(request: Request) -> dict[str, Any]:
    """
    Get status of all active bots (v1 API).

    Useful for monitoring and detecting long-running bots.

    Use: GET /v1/bots/status
    """
    services = get_services(request)
    active_bots = services.bot_service.list_active_bots()

    total_runtime_hours = sum(
        bot.get("runtime_hours", 0) for bot in active_bots.values()
    )
    long_running = [
        {
            "session_id": session_id,
            "runtime_hours": bot.get("runtime_hours", 0),
            "warning": bot.get("warning"),
        }
        for session_id, bot in active_bots.items()
        if bot.get("runtime_hours", 0) > 1
    ]

    return {
        "total_active_bots": len(active_bots),
        "total_runtime_hours": round(total_runtime_hours, 2),
        "long_running_bots": long_running,
        "bots": active_bots,
    }


@v1_router.post("/bots/cleanup")
async def cleanup_bots_v1(
    request: Request, max_hours: Optional[float] = None
) -> dict[str, Any]:
    """
    Stop long-running bots and fail stale sessions (v1 API).

    Args:
        max_hours: Stop bots running longer than this (default: MAX_BOT_HOURS)

    Use: POST /v1/bots/cleanup
    """
    services = get_services(request)
    max_hours = max_hours if max_hours is not None else services.settings.max_bot_hours
    stopped_count = await services.bot_service.cleanup_long_running_bots(max_hours)
    reconciled = await services.bot_service.reconcile_stale_sessions(
        services.settings.stale_session_minutes
    )
    return {
        "status": "success",
        "bots_stopped": stopped_count,
        "stale_sessions_failed": reconciled,
        "max_hours": max_hours,
    }


app.include_router(v1_router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run("focusflow.main:app", host="0.0.0.0", port=port, log_level="info")
