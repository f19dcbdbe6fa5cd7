"""
REST API for CRAIG.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list live and stored sessions.
- **POST /agent**   - multi-turn interaction: {"message": "...", "session_id": "..."}
- **GET /sessions/{session_id}/messages** - the session history in the persisted format.

Each session owns one :class:`~craig.agent.agent_loop.Agent`.  Agents must not run two turns at
once, so every session carries a lock and turns on the same session are serialized here.
"""

import logging
import threading
import uuid
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)

from craig.agent.agent_loop import Agent
from craig.agent.planner_interface import (
    ModelBuilder,
    load_model_builder,
)
from craig.api.models import (
    MessageRequest,
    MessageResponse,
    SessionResponse,
    ToolCallSummary,
)
from craig.common import (
    AnsiColors,
    colored_print,
)
from craig.config import (
    load_skills,
    settings,
)
from craig.core.schema import (
    Message,
    Notification,
    Skill,
    ToolCallsMessage,
    ToolResponseMessage,
    UnknownMessageKindError,
)
from craig.core.serialization import (
    MessageDecodeError,
    messages_to_records,
)
from craig.memory.memory_store import ConversationStore
from craig.tools import (
    DEFAULT_TOOLS,
    BaseTool,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
class Session:
    """A conversation and the lock that serializes its turns."""

    def __init__(self, session_id: str, agent: Agent):
        self.session_id = session_id
        self.agent = agent
        self.lock = threading.Lock()


class _ToolCallCollector:
    """Message listener pairing the tool calls of a turn with their responses."""

    def __init__(self) -> None:
        self.summaries: List[ToolCallSummary] = []
        self._pending: List[Any] = []

    def on_message(self, msg: Message) -> None:
        if isinstance(msg, ToolCallsMessage):
            self._pending = list(msg.tool_calls)
        elif isinstance(msg, ToolResponseMessage):
            for call, resp in zip(self._pending, msg.responses):
                self.summaries.append(
                    ToolCallSummary(
                        tool_name=call.tool_name, args=call.args_dict(), response=resp.response
                    )
                )
            self._pending = []


class SessionManager:
    """Creates, restores and persists agent sessions."""

    def __init__(
        self,
        model_builder_factory: Callable[[], ModelBuilder] = load_model_builder,
        store: ConversationStore | None = None,
        tools: Sequence[BaseTool] | None = None,
        skills: Sequence[Skill] | None = None,
    ):
        self._model_builder_factory = model_builder_factory
        self._model_builder: ModelBuilder | None = None
        self.store = store or ConversationStore()
        self.tools = list(DEFAULT_TOOLS if tools is None else tools)
        self.skills = list(load_skills() if skills is None else skills)
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def model_builder(self) -> ModelBuilder:
        if self._model_builder is None:
            self._model_builder = self._model_builder_factory()
        return self._model_builder

    def _agent_kwargs(self) -> Dict[str, Any]:
        return {"tools": self.tools, "skills": self.skills}

    def create(self) -> Session:
        """Start a fresh conversation."""
        session_id = str(uuid.uuid4())
        agent = Agent.new(
            self.model_builder, personality=settings.PERSONALITY, **self._agent_kwargs()
        )
        session = Session(session_id, agent)
        with self._lock:
            self._sessions[session_id] = session
        self.store.save(session_id, agent.messages())
        logger.info("Created session %s", session_id)
        return session

    def get(self, session_id: str) -> Session | None:
        """Return a live session, restoring it from the store if needed."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                return session
            try:
                known = self.store.exists(session_id)
            except ValueError:
                return None
            if not known:
                return None
            messages = self.store.load(session_id)
            if messages is None:
                return None
            agent = Agent.from_saved(self.model_builder, messages, **self._agent_kwargs())
            session = Session(session_id, agent)
            self._sessions[session_id] = session
            logger.info("Restored session %s (%d messages)", session_id, len(messages))
            return session

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        """Get existing session or create a new one."""
        if session_id:
            session = self.get(session_id)
            if session is not None:
                return session
        return self.create()

    def list_ids(self) -> List[str]:
        with self._lock:
            live = set(self._sessions)
        return sorted(live | set(self.store.list_ids()))

    def send(
        self, session: Session, message: str, notifications: Sequence[Notification] = ()
    ) -> tuple[str, List[ToolCallSummary]]:
        """Run one turn on *session*, saving the history whether or not it succeeds."""
        collector = _ToolCallCollector()
        with session.lock:
            try:
                reply = session.agent.send(
                    message, notifications=notifications, message_listeners=[collector]
                )
            finally:
                self.store.save(session.session_id, session.agent.messages())
        self.store.record_turn(session.session_id, message, reply)
        return reply, collector.summaries


_manager: SessionManager | None = None
_manager_lock = threading.Lock()


def get_session_manager() -> SessionManager:
    """FastAPI dependency returning the process-wide session manager."""
    global _manager  # pylint: disable=global-statement
    with _manager_lock:
        if _manager is None:
            _manager = SessionManager()
    return _manager


def _corrupt_history(session_id: str, exc: Exception) -> HTTPException:
    logger.error("Stored history of session %s cannot be decoded: %s", session_id, exc)
    return HTTPException(
        status_code=500, detail=f"Stored history of session '{session_id}' is corrupt: {exc}"
    )


app = FastAPI(title="CRAIG API", version="0.1.0", description="CRAIG ReAct agent API")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
def create_session(manager: SessionManager = Depends(get_session_manager)) -> SessionResponse:
    """Create a new conversation session."""
    session = manager.create()
    return SessionResponse(session_id=session.session_id)


@app.get("/sessions", response_model=List[str], summary="List sessions")
def list_sessions(manager: SessionManager = Depends(get_session_manager)) -> List[str]:
    """List all live and stored session IDs."""
    return manager.list_ids()


@app.get("/sessions/{session_id}/messages", summary="Session history")
def session_messages(
    session_id: str, manager: SessionManager = Depends(get_session_manager)
) -> List[Dict[str, Any]]:
    """Return the session history as tagged records."""
    try:
        session = manager.get(session_id)
    except (MessageDecodeError, UnknownMessageKindError) as exc:
        raise _corrupt_history(session_id, exc) from exc
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
    return messages_to_records(session.agent.messages())


# Sync handler: a turn blocks on the backend, so FastAPI runs it in its threadpool
@app.post("/agent", response_model=MessageResponse, summary="Process a message")
def agent_endpoint(
    req: MessageRequest, manager: SessionManager = Depends(get_session_manager)
) -> MessageResponse:
    """Process a user message with optional session context."""
    try:
        session = manager.get_or_create(req.session_id)
    except (MessageDecodeError, UnknownMessageKindError) as exc:
        raise _corrupt_history(req.session_id or "", exc) from exc
    try:
        reply, tool_calls = manager.send(session, req.message, req.notifications)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Turn failed for session %s: %s", session.session_id, exc)
        raise HTTPException(status_code=502, detail=f"Agent turn failed: {exc}") from exc

    return MessageResponse(reply=reply, session_id=session.session_id, tool_calls=tool_calls)


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the CRAIG API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in dev docker-compose).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting CRAIG API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )

    try:
        get_session_manager().store.init()
    except OSError as exc:
        logger.error("Failed to initialize conversation store: %s", exc)
        raise RuntimeError("Failed to initialize conversation store") from exc

    colored_print(f"CRAIG API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "craig.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m craig.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
