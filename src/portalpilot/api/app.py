"""
HTTP API for the Co-Pilot.

It exposes the following endpoints:
- **GET /health** - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **DELETE /sessions/{session_id}** - close a session, abandoning any turn in flight.
- **GET /sessions/{session_id}/turns** - read the conversation, optionally from an index on.
- **POST /agent** - submit a message: {"message": "...", "session_id": "...", "mode": "chat"}
"""

import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    List,
)

from fastapi import (
    APIRouter,
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
)
from fastapi.middleware.cors import CORSMiddleware

from portalpilot.agent.session import (
    SessionBusyError,
    SessionManager,
    SessionNotFoundError,
    build_session_manager,
)
from portalpilot.api.models import (
    MessageRequest,
    MessageResponse,
    SessionResponse,
    TurnsResponse,
)
from portalpilot.config import settings
from portalpilot.core.schema import AssistantTurn

logger = logging.getLogger(__name__)

router = APIRouter()


def _manager(request: Request) -> SessionManager:
    return request.app.state.manager


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@router.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(request: Request) -> SessionResponse:
    """Create a new conversation session."""
    return SessionResponse(session_id=_manager(request).create_session())


@router.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions(request: Request) -> List[str]:
    """List all active session IDs."""
    return _manager(request).list_sessions()


@router.delete("/sessions/{session_id}", status_code=204, summary="Close a session")
async def close_session(session_id: str, request: Request) -> Response:
    """Close a session; turns already appended stay readable until it is dropped."""
    try:
        _manager(request).close_session(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}") from exc
    return Response(status_code=204)


@router.get(
    "/sessions/{session_id}/turns", response_model=TurnsResponse, summary="Read conversation turns"
)
async def get_turns(
    session_id: str, request: Request, since: int = Query(0, ge=0)
) -> TurnsResponse:
    """Return the session's turns from index *since* on."""
    try:
        session = _manager(request).get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}") from exc
    return TurnsResponse(
        session_id=session_id, since=since, turns=list(session.conversation.since(since))
    )


@router.post("/agent", response_model=MessageResponse, summary="Process a message")
async def agent_endpoint(req: MessageRequest, request: Request) -> MessageResponse:
    """Process a user message, creating a session when none is given."""
    manager = _manager(request)
    session_id = req.session_id or manager.create_session()

    try:
        result = await manager.submit_user_message(
            session_id, req.message, mode=req.mode, context_tag=req.context_tag
        )
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session {session_id}") from exc
    except SessionBusyError as exc:
        logger.warning("Rejected message for busy session %s", session_id)
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    try:
        new_turns = list(manager.get(session_id).conversation.since(result.first_index))
    except SessionNotFoundError:
        new_turns = []  # closed while the message was in flight
    replies = [turn for turn in new_turns if isinstance(turn, AssistantTurn)]

    return MessageResponse(
        session_id=session_id,
        status=result.status,
        reply=replies[-1].text if replies else None,
        suggestions=list(replies[-1].suggestions) if replies else [],
        error=result.error,
        error_kind=result.error_kind,
        turns=new_turns,
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(manager: SessionManager | None = None) -> FastAPI:
    """Build the FastAPI application around *manager* (default: built from settings)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.manager.aclose()

    app = FastAPI(
        title="Portal Pilot API",
        version="0.1.0",
        description="CRM Co-Pilot orchestration API",
        lifespan=lifespan,
    )
    app.state.manager = manager or build_session_manager(settings)
    # The CRM-embedded panel calls the API from the portal's origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the application.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Portal Pilot API at %s:%d (reload=%s, log_level=%s)",
        host,
        port,
        reload,
        log_level,
    )
    uvicorn.run(
        "portalpilot.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m portalpilot.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
