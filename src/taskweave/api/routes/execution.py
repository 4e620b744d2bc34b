import json

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from taskweave.api.dependencies import get_broadcaster, get_engine
from taskweave.api.schemas.execution_schemas import ExecuteTaskRequest, ExecutionResponse
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.domain.errors import TaskweaveError, ThreadBusyError
from taskweave.infrastructure.streaming.broadcaster import EventBroadcaster

router = APIRouter()
logger = structlog.get_logger().bind(component="execution_routes")


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


@router.post("/execute", response_model=ExecutionResponse)
async def execute_task(
    request: ExecuteTaskRequest, engine: AgentEngine = Depends(get_engine)
) -> ExecutionResponse:
    """Execute a task synchronously and return its outcome.

    Paused executions return status ``input_required`` with the pending
    approvals and delegated tool calls.
    """
    result = await engine.execute(
        request.agent,
        request.task,
        params=request.params,
        context_id=request.thread_id,
        user_id=request.user_id,
    )
    return ExecutionResponse.from_result(result)


@router.post("/execute/stream")
async def execute_task_stream(
    request: ExecuteTaskRequest, engine: AgentEngine = Depends(get_engine)
) -> StreamingResponse:
    """Execute a task with events streamed via SSE.

    Unknown agents and busy threads are rejected before the stream opens.
    Errors raised later are reported by the ``execution_errored`` event.
    """
    await engine.get_agent(request.agent)
    if request.thread_id and engine.thread_locks.is_busy(request.thread_id):
        raise ThreadBusyError(
            request.thread_id, engine.thread_locks.holder(request.thread_id)
        )

    async def event_generator():
        try:
            async for event in engine.stream(
                request.agent,
                request.task,
                params=request.params,
                context_id=request.thread_id,
                user_id=request.user_id,
            ):
                yield _sse(event.to_dict())
        except TaskweaveError as e:
            logger.warning("stream_ended_with_error", code=e.code, error=e.message)

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.get("/events")
async def subscribe_events(
    thread_id: str | None = Query(default=None),
    agent_id: str | None = Query(default=None),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> StreamingResponse:
    """Follow events of all executions, optionally filtered by thread and/or agent."""
    subscription = broadcaster.subscribe(thread_id=thread_id, agent_id=agent_id)

    async def event_generator():
        async with subscription:
            async for event in subscription:
                yield _sse(event.to_dict())

    return StreamingResponse(event_generator(), media_type="text/event-stream")
