"""
Thread API Routes
=================

Endpoints:
- GET    /api/v1/threads                     - List threads (agent filter, paging)
- GET    /api/v1/threads/{thread_id}         - Thread metadata
- PATCH  /api/v1/threads/{thread_id}         - Update title / metadata
- GET    /api/v1/threads/{thread_id}/steps   - Step history
- DELETE /api/v1/threads/{thread_id}         - Delete thread and its session
"""

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response

from taskweave.api.dependencies import get_engine
from taskweave.api.schemas.execution_schemas import (
    ThreadListResponse,
    ThreadResponse,
    ThreadUpdateRequest,
)
from taskweave.core.domain.engine import AgentEngine

router = APIRouter()


async def _require_thread(engine: AgentEngine, thread_id: str):
    thread = await engine.stores.threads.get_thread(thread_id)
    if thread is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Thread '{thread_id}' not found",
        )
    return thread


@router.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    agent_id: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    offset: int | None = Query(default=None, ge=0),
    engine: AgentEngine = Depends(get_engine),
) -> ThreadListResponse:
    """Threads, most recently updated first."""
    threads = await engine.stores.threads.list_threads(
        agent_id=agent_id, limit=limit, offset=offset
    )
    return ThreadListResponse(threads=[ThreadResponse(**asdict(t)) for t in threads])


@router.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(thread_id: str, engine: AgentEngine = Depends(get_engine)) -> ThreadResponse:
    thread = await _require_thread(engine, thread_id)
    return ThreadResponse(**asdict(thread))


@router.patch("/threads/{thread_id}", response_model=ThreadResponse)
async def update_thread(
    thread_id: str,
    update: ThreadUpdateRequest,
    engine: AgentEngine = Depends(get_engine),
) -> ThreadResponse:
    await _require_thread(engine, thread_id)
    thread = await engine.stores.threads.update_thread(
        thread_id, title=update.title, metadata=update.metadata
    )
    return ThreadResponse(**asdict(thread))


@router.get("/threads/{thread_id}/steps")
async def list_steps(
    thread_id: str, engine: AgentEngine = Depends(get_engine)
) -> list[dict[str, Any]]:
    await _require_thread(engine, thread_id)
    steps = await engine.stores.sessions.list_steps(thread_id)
    return [step.to_dict() for step in steps]


@router.delete("/threads/{thread_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_thread(thread_id: str, engine: AgentEngine = Depends(get_engine)) -> Response:
    """
    Raises:
        HTTPException 404: If the thread is unknown
        HTTPException 409: If the thread has a running task
    """
    await _require_thread(engine, thread_id)
    if engine.thread_locks.is_busy(thread_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Thread '{thread_id}' has a running task",
        )
    await engine.stores.sessions.clear_session(thread_id)
    await engine.stores.threads.delete_thread(thread_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
