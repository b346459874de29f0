"""FastAPI transport for editor events.

Endpoints are plain `def` functions, so FastAPI runs them on its threadpool
and they contend with the heartbeat monitor on the engine's lock.
"""

from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request

from harvest.api.models import AckResponse, EventRequest
from harvest.session.engine import SessionEngine
from harvest.utils.exceptions import SessionOrderError
from harvest.utils.logging import get_logger

logger = get_logger(__name__)

try:
    VERSION = version("code-harvest")
except PackageNotFoundError:
    # Running from a source checkout that was never installed
    VERSION = "unknown"


def create_app(engine: SessionEngine, on_fatal: Optional[Callable[[Exception], None]] = None) -> FastAPI:
    """Build the API around an engine.

    Args:
        engine: The engine the events are applied to
        on_fatal: Called when the engine state can no longer be trusted. The
            server uses it to shut the process down.
    """
    app = FastAPI(
        title="Code Harvest API",
        description="Tracks coding sessions from editor events",
        version=VERSION
    )
    app.state.engine = engine
    app.state.on_fatal = on_fatal

    @app.post("/focus-gained", response_model=AckResponse)
    def focus_gained(event: EventRequest, request: Request):
        """Called when an editor instance gains focus."""
        return AckResponse(reply=request.app.state.engine.focus_gained(event.to_event()))

    @app.post("/open-file", response_model=AckResponse)
    def open_file(event: EventRequest, request: Request):
        """Called when a buffer is entered."""
        return AckResponse(reply=request.app.state.engine.open_file(event.to_event()))

    @app.post("/heartbeat", response_model=AckResponse)
    def send_heartbeat(event: EventRequest, request: Request):
        """Called to keep the session alive."""
        return AckResponse(reply=request.app.state.engine.send_heartbeat(event.to_event()))

    @app.post("/end-session", response_model=AckResponse)
    def end_session(event: EventRequest, request: Request):
        """Called when an editor instance exits."""
        try:
            return AckResponse(reply=request.app.state.engine.end_session(event.to_event()))
        except SessionOrderError as e:
            logger.critical(
                f"Events arrived out of order: {e} "
                f"(active={e.active_client_id}, sender={e.client_id})"
            )
            if request.app.state.on_fatal is not None:
                request.app.state.on_fatal(e)
            raise HTTPException(status_code=500, detail="Session state is no longer valid")

    @app.get("/health")
    def health_check(request: Request):
        """Health check endpoint."""
        engine = request.app.state.engine
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "active_client": engine.active_client_id or None,
            "session_active": engine.has_session
        }

    return app
