"""
Task API Routes
===============

Endpoints:
- GET  /api/v1/tasks/{task_id}                   - Task record
- POST /api/v1/approvals/{tool_call_id}          - Approve or reject a gated tool call
- POST /api/v1/tasks/{task_id}/tool-responses    - Deliver delegated tool results
- POST /api/v1/tasks/{task_id}/cancel            - Cancel a running or paused task
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from taskweave.api.dependencies import get_engine
from taskweave.api.schemas.execution_schemas import (
    ApprovalDecisionRequest,
    CancelResponse,
    ExecutionResponse,
    ToolResponsesRequest,
)
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.domain.errors import ApprovalRejectedError
from taskweave.core.domain.models import TaskState

router = APIRouter()
logger = structlog.get_logger().bind(component="task_routes")


@router.get("/tasks/{task_id}")
async def get_task(task_id: str, engine: AgentEngine = Depends(get_engine)) -> dict[str, Any]:
    """
    Raises:
        HTTPException 404: If the task is unknown
    """
    task = await engine.stores.tasks.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Task '{task_id}' not found"
        )
    return task.to_dict()


@router.post("/approvals/{tool_call_id}", response_model=ExecutionResponse)
async def resolve_approval(
    tool_call_id: str,
    decision: ApprovalDecisionRequest,
    engine: AgentEngine = Depends(get_engine),
) -> ExecutionResponse:
    """
    Approve or reject a pending tool call.

    A rejection is not an HTTP error: the response carries status
    ``failed`` and the rejection message.

    Raises:
        HTTPException 404: If no approval is pending for ``tool_call_id``
    """
    try:
        result = await engine.resume_with_approval(
            tool_call_id, decision.approved, decision.reason
        )
    except ApprovalRejectedError as e:
        task = await engine.stores.tasks.find_task_by_tool_call(tool_call_id)
        logger.info("approval_rejected", tool_call_id=tool_call_id, tool=e.tool_name)
        return ExecutionResponse(
            task_id=task.id if task else "",
            thread_id=task.thread_id if task else None,
            status=TaskState.FAILED.value,
            final_message=e.message,
            agent_id=task.agent_id if task else "",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ExecutionResponse.from_result(result)


@router.post("/tasks/{task_id}/tool-responses", response_model=ExecutionResponse)
async def submit_tool_responses(
    task_id: str,
    payload: ToolResponsesRequest,
    engine: AgentEngine = Depends(get_engine),
) -> ExecutionResponse:
    """Deliver results for delegated tool calls; unknown ids yield 422."""
    result = await engine.resume_with_tool_responses(task_id, payload.responses)
    return ExecutionResponse.from_result(result)


@router.post("/tasks/{task_id}/cancel", response_model=CancelResponse)
async def cancel_task(task_id: str, engine: AgentEngine = Depends(get_engine)) -> CancelResponse:
    """
    Raises:
        HTTPException 404: If the task is unknown
    """
    if not engine.is_running(task_id) and await engine.stores.tasks.get_task(task_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Task '{task_id}' not found"
        )
    return CancelResponse(task_id=task_id, canceled=await engine.cancel(task_id))
