"""FastAPI main application for the FactMate fact-checking service."""

import asyncio
import logging
import secrets
import time
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Deque, Dict, List, Optional

from fastapi import (
    FastAPI,
    HTTPException,
    BackgroundTasks,
    Request,
    Depends,
    Security,
    UploadFile,
    File,
    Query,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, StreamingResponse
from fastapi.security import APIKeyHeader

from .. import __version__
from ..config import settings
from ..exceptions import DocumentParseError
from ..models.schemas import (
    CredentialsRequest,
    CredentialsStatus,
    DocumentResponse,
    SessionResponse,
    SessionState,
    StreamEvent,
    SubmitRequest,
)
from ..agents.extractor import ClaimExtractor
from ..graph.orchestrator import FactCheckSession, VerificationGraph, create_graph
from ..report.renderer import Report, format_report, render_report
from ..services.document_loader import load_document

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

DOCUMENT_PARSE_ERROR_MESSAGE = "Error parsing file. Please try extracting text manually."

# session id -> FactCheckSession, in creation order; nothing is persisted
sessions: Dict[str, FactCheckSession] = {}

# client host -> request times inside the current window, oldest first
rate_limit_storage: Dict[str, Deque[float]] = defaultdict(deque)

# One graph serves every session; runs keep their own state
_graph_instance: Optional[VerificationGraph] = None

service_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_graph() -> VerificationGraph:
    global _graph_instance
    if _graph_instance is None:
        _graph_instance = create_graph()
    return _graph_instance


def evict_oldest_sessions():
    """Drop the oldest sessions once the store is over its limit.

    Sessions are kept in insertion order, so the oldest come first. Enough
    are dropped to leave a tenth of the limit free.
    """
    if len(sessions) <= settings.MAX_SESSIONS_STORED:
        return

    keep = int(settings.MAX_SESSIONS_STORED * 0.9)
    stale = list(sessions)[:len(sessions) - keep]
    for session_id in stale:
        del sessions[session_id]
    logger.info(f"Evicted {len(stale)} sessions; {len(sessions)} remain")


def get_session(session_id: str) -> FactCheckSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def build_session_response(session_id: str, session: FactCheckSession) -> SessionResponse:
    return SessionResponse(
        session_id=session_id,
        state=session.state,
        credentials=CredentialsStatus.from_credentials(session.credentials),
    )


async def require_service_key(provided: Optional[str] = Security(service_key_header)) -> bool:
    """Guard for deployments that set ``API_KEY``.

    This key protects the service itself and is unrelated to the OpenAI key
    users put into their sessions. With ``API_KEY`` unset every request passes.
    """
    if not settings.API_KEY:
        return True

    if not provided or not secrets.compare_digest(provided, settings.API_KEY):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing service key",
            headers={"WWW-Authenticate": "X-API-Key"}
        )
    return True


async def rate_limit_check(request: Request):
    """Sliding-window limit of ``RATE_LIMIT_REQUESTS`` per client host.

    Raises:
        HTTPException: 429 once the client has used up its window
    """
    host = request.client.host if request.client else "unknown"
    now = time.monotonic()
    hits = rate_limit_storage[host]

    while hits and hits[0] <= now - settings.RATE_LIMIT_WINDOW:
        hits.popleft()

    if len(hits) >= settings.RATE_LIMIT_REQUESTS:
        logger.warning(f"Rate limit hit for {host}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please wait a moment and try again."
        )

    hits.append(now)


def parse_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"FactMate API {__version__} up (extraction: {settings.LLM_MODEL}, "
        f"verification: {settings.SEARCH_LLM_MODEL})"
    )
    yield
    logger.info(f"FactMate API stopping with {len(sessions)} sessions in memory")


def create_app() -> FastAPI:
    app = FastAPI(
        title="FactMate API",
        description="Extract factual claims from text and verify them with search-grounded LLM calls",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_origins(settings.CORS_ORIGINS),
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "X-API-Key"],
    )

    return app


app = create_app()


@app.get("/health")
async def health_check():
    """Liveness check; never requires the service key."""
    return {
        "status": "healthy",
        "version": __version__,
        "sessions": len(sessions),
    }


@app.get("/config")
async def get_config(_: bool = Depends(require_service_key)):
    """Models and limits the service runs with. No secrets are included."""
    return {
        "extraction_model": settings.LLM_MODEL,
        "verification_model": settings.SEARCH_LLM_MODEL,
        "max_source_chars": ClaimExtractor.MAX_SOURCE_CHARS,
        "max_upload_bytes": settings.MAX_UPLOAD_BYTES,
    }


# ==================== Documents ====================

@app.post("/documents", response_model=DocumentResponse)
async def upload_document(
    http_request: Request,
    file: UploadFile = File(...),
    _: bool = Depends(require_service_key)
):
    """Convert an uploaded .docx or text file to plain text.

    A document that cannot be converted yields a 422 whose detail can be
    shown in place of the text; manual entry is unaffected.
    """
    await rate_limit_check(http_request)

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum {settings.MAX_UPLOAD_BYTES} bytes allowed."
        )

    filename = file.filename or ""

    try:
        text = await asyncio.to_thread(load_document, filename, content)
    except DocumentParseError as e:
        logger.warning(f"Document upload rejected: {e}")
        raise HTTPException(
            status_code=422,
            detail=DOCUMENT_PARSE_ERROR_MESSAGE
        )

    return DocumentResponse(filename=filename, text=text)


# ==================== Sessions ====================

@app.post("/sessions", response_model=SessionResponse, status_code=201)
async def create_session(_: bool = Depends(require_service_key)):
    """Create a new fact-checking session."""
    evict_oldest_sessions()

    session_id = str(uuid.uuid4())
    session = FactCheckSession(graph=get_graph())
    sessions[session_id] = session
    logger.info(f"Session {session_id} opened")

    return build_session_response(session_id, session)


@app.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session_state(session_id: str, _: bool = Depends(require_service_key)):
    """Get the current state of a session."""
    return build_session_response(session_id, get_session(session_id))


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str, _: bool = Depends(require_service_key)):
    """Delete a session and forget its credentials."""
    get_session(session_id)
    del sessions[session_id]

    return {"message": "Session deleted successfully"}


@app.put("/sessions/{session_id}/credentials", response_model=SessionResponse)
async def set_credentials(
    session_id: str,
    request: CredentialsRequest,
    _: bool = Depends(require_service_key)
):
    """Store the user's API keys for this session (in memory only)."""
    session = get_session(session_id)
    session.set_credentials(request.to_credentials())

    return build_session_response(session_id, session)


@app.post("/sessions/{session_id}/submit", response_model=SessionResponse, status_code=202)
async def submit_text(
    session_id: str,
    request: SubmitRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    _: bool = Depends(require_service_key)
):
    """Start fact-checking text in this session.

    The run continues in the background; poll GET /sessions/{session_id}
    or follow GET /sessions/{session_id}/events for progress. Missing
    credentials or empty text are reported right away in the state error.
    """
    await rate_limit_check(http_request)

    session = get_session(session_id)

    credentials = session.credentials
    if credentials is None or not credentials.has_llm_key or not request.text.strip():
        await session.submit(request.text)
    else:
        background_tasks.add_task(session.submit, request.text)
        logger.info(f"Session {session_id}: submission queued ({len(request.text)} characters)")

    return build_session_response(session_id, session)


@app.get("/sessions/{session_id}/report", response_model=Report)
async def get_report(
    session_id: str,
    output_format: str = Query(default="json", alias="format", pattern="^(json|text)$"),
    _: bool = Depends(require_service_key)
):
    """Render the verification report for the session's current state."""
    state = get_session(session_id).state
    report = render_report(state.claims, state.results)

    if output_format == "text":
        return PlainTextResponse(format_report(report))
    return report


# ==================== Streaming ====================

def format_state_event(state: SessionState) -> str:
    """Format a state snapshot, with its rendered report, as an SSE event."""
    event = StreamEvent(
        event_type="state",
        data={
            "state": state.model_dump(mode="json"),
            "report": render_report(state.claims, state.results).model_dump(mode="json"),
        }
    )
    return f"event: state\ndata: {event.model_dump_json()}\n\n"


async def generate_state_events(session: FactCheckSession):
    """Yield the current state, then every change while a run is active.

    Args:
        session: Session to follow

    Yields:
        SSE-formatted event strings
    """
    queue: asyncio.Queue = asyncio.Queue()
    unsubscribe = session.subscribe(queue.put_nowait)

    try:
        state = session.state
        yield format_state_event(state)

        while state.is_active:
            state = await queue.get()
            yield format_state_event(state)
    finally:
        unsubscribe()


@app.get("/sessions/{session_id}/events")
async def stream_session_events(session_id: str, _: bool = Depends(require_service_key)):
    """Stream session state changes using Server-Sent Events.

    Events:
    - state: a new state snapshot together with its rendered report

    The stream ends once the session is no longer extracting or verifying.
    """
    session = get_session(session_id)

    return StreamingResponse(
        generate_state_events(session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "factmate.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG_MODE
    )
