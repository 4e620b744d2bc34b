"""
Core Domain Models

This module defines the entities the execution engine works with: threads,
tasks, steps, tool calls, approvals, memories and execution results.

All records are plain dataclasses with ``to_dict``/``from_dict`` so that any
store backend can persist them as JSON without knowing their structure.
"""

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_THREAD_TITLE = "New conversation"
UNTITLED_THREAD_TITLE = "Untitled conversation"
TITLE_MAX_CHARS = 80
PREVIEW_MAX_CHARS = 100


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TaskState(str, Enum):
    """Lifecycle state of a single execution attempt."""

    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input_required"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELED)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(
            id=data["id"],
            name=data["name"],
            arguments=dict(data.get("arguments") or {}),
        )


@dataclass
class ToolResponse:
    """
    Result of a tool call.

    Attributes:
        tool_call_id: ID of the call this response answers
        name: Tool name
        result: Result payload (any JSON-serializable value)
        error: Error message if the tool failed
        pending: True while the response awaits external resolution
    """

    tool_call_id: str
    name: str
    result: Any = None
    error: str | None = None
    pending: bool = False

    @property
    def success(self) -> bool:
        return self.error is None and not self.pending

    def to_observation(self) -> dict[str, Any]:
        if self.error is not None:
            return {"success": False, "error": self.error}
        return {"success": True, "result": self.result}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolResponse":
        return cls(
            tool_call_id=data["tool_call_id"],
            name=data.get("name", ""),
            result=data.get("result"),
            error=data.get("error"),
            pending=data.get("pending", False),
        )


@dataclass
class Step:
    """One append-only entry of a thread transcript."""

    role: MessageRole
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None
    agent_id: str | None = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now)

    def to_message(self) -> dict[str, Any]:
        """Render as an OpenAI-style chat message."""
        message: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in self.tool_calls
            ]
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        if self.name:
            message["name"] = self.name
        return message

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "tool_call_id": self.tool_call_id,
            "name": self.name,
            "agent_id": self.agent_id,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Step":
        return cls(
            id=data["id"],
            role=MessageRole(data["role"]),
            content=data.get("content"),
            tool_calls=[ToolCall.from_dict(c) for c in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            agent_id=data.get("agent_id"),
            created_at=data.get("created_at") or utc_now(),
        )


@dataclass
class Thread:
    id: str
    agent_id: str
    title: str = DEFAULT_THREAD_TITLE
    user_id: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    message_count: int = 0
    last_message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def update_with_message(self, message: str) -> None:
        """Bump counters and derive the title from the first message."""
        self.updated_at = utc_now()
        self.message_count += 1
        self.last_message = message[:PREVIEW_MAX_CHARS]

        if self.title == DEFAULT_THREAD_TITLE and self.message_count == 1:
            self.title = message[:TITLE_MAX_CHARS].strip() or UNTITLED_THREAD_TITLE

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thread":
        return cls(**data)


@dataclass
class ApprovalRequest:
    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    reason: str | None = None
    created_at: str = field(default_factory=utc_now)
    resolved_at: str | None = None

    def resolve(self, approved: bool, reason: str | None = None) -> None:
        if self.status != ApprovalStatus.PENDING:
            raise ValueError(
                f"Approval for '{self.tool_call_id}' already resolved as {self.status.value}"
            )
        self.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        self.reason = reason
        self.resolved_at = utc_now()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApprovalRequest":
        return cls(
            tool_call_id=data["tool_call_id"],
            tool_name=data["tool_name"],
            arguments=dict(data.get("arguments") or {}),
            status=ApprovalStatus(data.get("status", "pending")),
            reason=data.get("reason"),
            created_at=data.get("created_at") or utc_now(),
            resolved_at=data.get("resolved_at"),
        )


@dataclass
class PausedExecution:
    """
    Resumable snapshot of an execution waiting for approval or external input.

    Attributes:
        agent_name: Agent that was active when the execution paused
        messages: Chat history snapshot (including the assistant tool-call message)
        pending_calls: Calls of the interrupted batch without a response yet
        responses: Responses already produced for the interrupted batch
        approvals: Approval requests keyed by tool call id
        awaiting_external: Tool call ids waiting for out-of-band results
        iterations: Model calls consumed so far in this attempt
        assistant_step: Assistant step that issued the interrupted batch
        final_result: Answer recorded by the ``final`` tool before the pause
    """

    agent_name: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    pending_calls: list[ToolCall] = field(default_factory=list)
    responses: list[ToolResponse] = field(default_factory=list)
    approvals: dict[str, ApprovalRequest] = field(default_factory=dict)
    awaiting_external: list[str] = field(default_factory=list)
    iterations: int = 0
    assistant_step: Step | None = None
    final_result: str | None = None

    def pending_approvals(self) -> list[ApprovalRequest]:
        return [a for a in self.approvals.values() if a.status == ApprovalStatus.PENDING]

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "messages": self.messages,
            "pending_calls": [c.to_dict() for c in self.pending_calls],
            "responses": [r.to_dict() for r in self.responses],
            "approvals": {k: a.to_dict() for k, a in self.approvals.items()},
            "awaiting_external": list(self.awaiting_external),
            "iterations": self.iterations,
            "assistant_step": self.assistant_step.to_dict() if self.assistant_step else None,
            "final_result": self.final_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PausedExecution":
        return cls(
            agent_name=data["agent_name"],
            messages=list(data.get("messages") or []),
            pending_calls=[ToolCall.from_dict(c) for c in data.get("pending_calls") or []],
            responses=[ToolResponse.from_dict(r) for r in data.get("responses") or []],
            approvals={
                k: ApprovalRequest.from_dict(a)
                for k, a in (data.get("approvals") or {}).items()
            },
            awaiting_external=list(data.get("awaiting_external") or []),
            iterations=data.get("iterations", 0),
            assistant_step=(
                Step.from_dict(data["assistant_step"]) if data.get("assistant_step") else None
            ),
            final_result=data.get("final_result"),
        )


@dataclass
class Task:
    """One execution attempt against a thread."""

    id: str
    agent_id: str
    input: str
    thread_id: str | None = None
    user_id: str | None = None
    state: TaskState = TaskState.SUBMITTED
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    retry_performed: bool = False
    iterations: int = 0
    final_result: str | None = None
    error: str | None = None
    paused: PausedExecution | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "input": self.input,
            "thread_id": self.thread_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "retry_performed": self.retry_performed,
            "iterations": self.iterations,
            "final_result": self.final_result,
            "error": self.error,
            "paused": self.paused.to_dict() if self.paused else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        paused = data.get("paused")
        return cls(
            id=data["id"],
            agent_id=data["agent_id"],
            input=data["input"],
            thread_id=data.get("thread_id"),
            user_id=data.get("user_id"),
            state=TaskState(data.get("state", "submitted")),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
            retry_performed=data.get("retry_performed", False),
            iterations=data.get("iterations", 0),
            final_result=data.get("final_result"),
            error=data.get("error"),
            paused=PausedExecution.from_dict(paused) if paused else None,
        )


@dataclass
class SessionMemory:
    """Durable, user-scoped facts that outlive a single thread."""

    user_id: str
    summary: str
    facts: list[str] = field(default_factory=list)
    agent_id: str | None = None
    thread_id: str | None = None
    id: str = field(default_factory=new_id)
    timestamp: str = field(default_factory=utc_now)

    def matches(self, query: str) -> bool:
        terms = [t for t in query.lower().split() if t]
        if not terms:
            return True
        haystack = " ".join([self.summary, *self.facts]).lower()
        return any(term in haystack for term in terms)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionMemory":
        return cls(**data)


@dataclass
class ExecutionResult:
    """
    Outcome of an engine call.

    Represents the final answer, a terminal failure/cancellation, or a pause
    awaiting approvals or external tool responses.

    Attributes:
        task_id: Task the result belongs to
        thread_id: Thread identifier (None in stateless mode)
        status: Final task state value (completed, failed, canceled, input_required)
        final_message: Final answer or human-readable status summary
        agent_id: Agent that was active when execution stopped
        execution_history: Tool calls and answers recorded during this call
        pending_approvals: Approval requests awaiting a decision
        pending_tool_calls: Delegated tool calls awaiting external results
    """

    task_id: str
    thread_id: str | None
    status: str
    final_message: str
    agent_id: str
    execution_history: list[dict[str, Any]] = field(default_factory=list)
    pending_approvals: list[dict[str, Any]] = field(default_factory=list)
    pending_tool_calls: list[dict[str, Any]] = field(default_factory=list)
