import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskweave import __version__
from taskweave.api.routes import agents, execution, tasks, threads
from taskweave.application.factory import EngineFactory
from taskweave.core.domain.context import FanOutSink
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.domain.errors import (
    AgentNotFoundError,
    ModelError,
    TaskweaveError,
    ThreadBusyError,
)
from taskweave.infrastructure.streaming.broadcaster import EventBroadcaster

logger = structlog.get_logger()

PROFILE_ENV = "TASKWEAVE_PROFILE"

_STATUS_BY_ERROR: list[tuple[type[TaskweaveError], int]] = [
    (AgentNotFoundError, status.HTTP_404_NOT_FOUND),
    (ThreadBusyError, status.HTTP_409_CONFLICT),
    (ModelError, status.HTTP_502_BAD_GATEWAY),
]


def _status_for(error: TaskweaveError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _attach_broadcaster(engine: AgentEngine) -> EventBroadcaster:
    """Make sure every engine event also reaches an EventBroadcaster."""
    if isinstance(engine.event_sink, EventBroadcaster):
        return engine.event_sink
    broadcaster = EventBroadcaster()
    engine.event_sink = (
        broadcaster
        if engine.event_sink is None
        else FanOutSink(engine.event_sink, broadcaster)
    )
    return broadcaster


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TaskweaveError)
    async def taskweave_error_handler(request: Request, exc: TaskweaveError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error("request_failed", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": exc.to_dict()},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)}
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine from the configured profile unless one was injected."""
    if app.state.engine is None:
        profile = os.getenv(PROFILE_ENV, "dev")
        broadcaster = EventBroadcaster()
        app.state.engine = await EngineFactory().create_engine(
            profile=profile, event_sink=broadcaster
        )
        app.state.broadcaster = broadcaster

    await logger.ainfo("fastapi.startup", message="Taskweave API starting...")
    yield
    await logger.ainfo("fastapi.shutdown", message="Taskweave API shutting down...")
    app.state.broadcaster.close()


def create_app(engine: AgentEngine | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        engine: Pre-built engine. Without one, the engine is created at
            startup from the profile named by ``$TASKWEAVE_PROFILE``.
    """
    app = FastAPI(
        title="Taskweave Agent API",
        description="Agent execution runtime with threads, approvals and streaming",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.broadcaster = _attach_broadcaster(engine) if engine is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)

    app.include_router(execution.router, prefix="/api/v1", tags=["execution"])
    app.include_router(tasks.router, prefix="/api/v1", tags=["tasks"])
    app.include_router(threads.router, prefix="/api/v1", tags=["threads"])
    app.include_router(agents.router, prefix="/api/v1", tags=["agents"])

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "healthy", "version": __version__}

    return app
