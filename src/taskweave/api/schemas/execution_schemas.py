"""
Execution API Schemas
=====================

Request/response models for task execution, resumption and threads.
"""

from dataclasses import asdict
from typing import Any

from pydantic import BaseModel, Field

from taskweave.core.domain.models import ExecutionResult


class ExecuteTaskRequest(BaseModel):
    """Request to execute a task."""

    agent: str = Field(..., min_length=1, description="Registered agent name")
    task: str = Field(..., min_length=1, description="Task description / user message")
    thread_id: str | None = Field(
        default=None, description="Conversation thread; omit for a stateless run"
    )
    user_id: str | None = None
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Per-call overrides: model, temperature, max_tokens",
    )


class ExecutionResponse(BaseModel):
    """Outcome of an execution or resumption."""

    task_id: str
    thread_id: str | None = None
    status: str
    final_message: str
    agent_id: str
    execution_history: list[dict[str, Any]] = Field(default_factory=list)
    pending_approvals: list[dict[str, Any]] = Field(default_factory=list)
    pending_tool_calls: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ExecutionResult) -> "ExecutionResponse":
        return cls(**asdict(result))


class ApprovalDecisionRequest(BaseModel):
    approved: bool
    reason: str | None = None


class ToolResponsesRequest(BaseModel):
    """Results for delegated tool calls, keyed by tool call id."""

    responses: dict[str, Any] = Field(..., min_length=1)


class CancelResponse(BaseModel):
    task_id: str
    canceled: bool


class ThreadResponse(BaseModel):
    id: str
    agent_id: str
    title: str
    created_at: str
    updated_at: str
    message_count: int
    last_message: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ThreadListResponse(BaseModel):
    threads: list[ThreadResponse]


class ThreadUpdateRequest(BaseModel):
    title: str | None = None
    metadata: dict[str, Any] | None = None
