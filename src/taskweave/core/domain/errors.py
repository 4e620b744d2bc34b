"""
Error Taxonomy for Agent Execution

Recoverable errors (UnknownToolError, plain tool failures) are turned into
tool observations so the model can self-correct. Everything else aborts the
current task, moves it to failed and propagates to the caller.
"""

from typing import Any


class TaskweaveError(Exception):
    """Base class for all engine errors."""

    code = "TASKWEAVE_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class AgentNotFoundError(TaskweaveError):
    code = "AGENT_NOT_FOUND"

    def __init__(self, agent_name: str):
        super().__init__(f"Agent not found: {agent_name}", agent_name=agent_name)
        self.agent_name = agent_name


class ThreadBusyError(TaskweaveError):
    code = "THREAD_BUSY"

    def __init__(self, thread_id: str, active_task_id: str | None = None):
        super().__init__(
            f"Thread '{thread_id}' already has a running task",
            thread_id=thread_id,
            active_task_id=active_task_id,
        )
        self.thread_id = thread_id
        self.active_task_id = active_task_id


class IterationLimitExceededError(TaskweaveError):
    code = "ITERATION_LIMIT_EXCEEDED"

    def __init__(self, max_iterations: int):
        super().__init__(
            f"Exceeded maximum iterations ({max_iterations})",
            max_iterations=max_iterations,
        )
        self.max_iterations = max_iterations


class ModelError(TaskweaveError):
    code = "MODEL_ERROR"


class ToolError(TaskweaveError):
    code = "TOOL_ERROR"

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}", tool=tool_name)
        self.tool_name = tool_name


class UnknownToolError(TaskweaveError):
    code = "UNKNOWN_TOOL"

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}", tool=tool_name)
        self.tool_name = tool_name


class ApprovalRejectedError(TaskweaveError):
    code = "APPROVAL_REJECTED"

    def __init__(self, tool_name: str, tool_call_id: str, reason: str | None = None):
        message = f"Tool call '{tool_name}' ({tool_call_id}) was rejected"
        if reason:
            message += f": {reason}"
        super().__init__(message, tool=tool_name, tool_call_id=tool_call_id)
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        self.reason = reason


class ExecutionCanceledError(TaskweaveError):
    """Raised inside the loop when the cancellation signal fires."""

    code = "CANCELED"


class ReflectionError(TaskweaveError):
    code = "REFLECTION_ERROR"


class InvalidTransitionError(TaskweaveError):
    code = "INVALID_TRANSITION"


class StoreError(TaskweaveError):
    code = "STORE_ERROR"
