"""
Application Layer - Task Executor Service

Service layer shared by the CLI and the API. It owns one engine per
profile (created lazily through ``EngineFactory``) and adds progress
reporting and execution logging around the engine calls.
"""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from taskweave.application.factory import EngineFactory
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.domain.events import AgentEvent, AgentEventType
from taskweave.core.domain.models import ExecutionResult

logger = structlog.get_logger()


@dataclass
class ProgressUpdate:
    """Progress update during execution.

    Attributes:
        timestamp: When this update occurred
        event_type: Agent event kind (``tool_call_started``, ...)
        message: Human-readable message describing the event
        details: The event payload
    """

    timestamp: datetime
    event_type: str
    message: str
    details: dict


def describe_event(event: AgentEvent) -> str:
    """One-line human summary of an event."""
    data = event.data
    if event.type == AgentEventType.EXECUTION_STARTED:
        return f"Started with {event.agent_id}"
    if event.type == AgentEventType.MODEL_CALL_STARTED:
        return f"Thinking (step {data.get('iteration')})"
    if event.type == AgentEventType.TOOL_CALL_STARTED:
        return f"Calling {data.get('tool')}"
    if event.type == AgentEventType.TOOL_CALL_FINISHED:
        status = "ok" if data.get("success") else "failed"
        return f"{data.get('tool')} {status}"
    if event.type == AgentEventType.APPROVAL_REQUESTED:
        return f"Approval needed for {data.get('tool')}"
    if event.type == AgentEventType.AGENT_HANDOVER:
        return f"Handover {data.get('from_agent')} -> {data.get('to_agent')}"
    if event.type == AgentEventType.REFLECTION_STARTED:
        return "Reviewing answer"
    if event.type == AgentEventType.WARNING:
        return f"Warning: {data.get('message')}"
    return event.type.value.replace("_", " ")


class _CallbackSink:
    def __init__(self, callback: Callable[[ProgressUpdate], None]):
        self.callback = callback

    async def emit(self, event: AgentEvent) -> None:
        if event.type == AgentEventType.TEXT_DELTA:
            return
        self.callback(
            ProgressUpdate(
                timestamp=datetime.now(),
                event_type=event.type.value,
                message=describe_event(event),
                details=event.data,
            )
        )


class TaskExecutor:
    """Service layer orchestrating task execution.

    Decouples the engine from the presentation layer (CLI/API) so both
    report progress and log executions the same way.
    """

    def __init__(
        self,
        factory: EngineFactory | None = None,
        profile: str = "dev",
        engine: AgentEngine | None = None,
    ):
        """
        Args:
            factory: Optional EngineFactory; a default one is created otherwise
            profile: Profile used when the engine is created lazily
            engine: Pre-built engine; skips the factory entirely
        """
        self.factory = factory or EngineFactory()
        self.profile = profile
        self._engine = engine
        self.logger = logger.bind(component="task_executor")

    async def get_engine(self) -> AgentEngine:
        if self._engine is None:
            self._engine = await self.factory.create_engine(profile=self.profile)
        return self._engine

    async def execute_task(
        self,
        agent_name: str,
        task: str,
        thread_id: str | None = None,
        user_id: str | None = None,
        params: dict[str, Any] | None = None,
        progress_callback: Callable[[ProgressUpdate], None] | None = None,
    ) -> ExecutionResult:
        """Execute ``task`` and report progress through ``progress_callback``.

        Raises:
            TaskweaveError: Any engine error, after it has been logged
        """
        start_time = datetime.now()
        engine = await self.get_engine()

        self.logger.info(
            "task_execution_started",
            agent=agent_name,
            task=task[:100],
            thread_id=thread_id,
            profile=self.profile,
        )

        try:
            if progress_callback is not None:
                result = await engine.execute_stream(
                    agent_name,
                    task,
                    _CallbackSink(progress_callback),
                    params=params,
                    context_id=thread_id,
                    user_id=user_id,
                )
            else:
                result = await engine.execute(
                    agent_name, task, params=params, context_id=thread_id, user_id=user_id
                )
        except Exception as e:
            self.logger.error(
                "task_execution_failed",
                agent=agent_name,
                thread_id=thread_id,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=(datetime.now() - start_time).total_seconds(),
            )
            raise

        self.logger.info(
            "task_execution_completed",
            task_id=result.task_id,
            thread_id=thread_id,
            status=result.status,
            duration_seconds=(datetime.now() - start_time).total_seconds(),
        )
        return result

    async def execute_task_streaming(
        self,
        agent_name: str,
        task: str,
        thread_id: str | None = None,
        user_id: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Yield the events of one execution as they happen."""
        engine = await self.get_engine()
        self.logger.info(
            "task_streaming_started", agent=agent_name, task=task[:100], thread_id=thread_id
        )
        async for event in engine.stream(
            agent_name, task, params=params, context_id=thread_id, user_id=user_id
        ):
            yield event

    async def resolve_approval(
        self, tool_call_id: str, approved: bool, reason: str | None = None
    ) -> ExecutionResult:
        engine = await self.get_engine()
        return await engine.resume_with_approval(tool_call_id, approved, reason)

    async def submit_tool_responses(
        self, task_id: str, responses: dict[str, Any]
    ) -> ExecutionResult:
        engine = await self.get_engine()
        return await engine.resume_with_tool_responses(task_id, responses)

    async def cancel(self, task_id: str) -> bool:
        engine = await self.get_engine()
        return await engine.cancel(task_id)
