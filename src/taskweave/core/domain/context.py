"""
Execution Context

Ambient state threaded through one execution: identifiers, the cancellation
signal and the event sink. Tools receive a ``ToolContext`` that adds the
active agent definition and access to the stores.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog

from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.errors import ExecutionCanceledError
from taskweave.core.domain.events import AgentEvent, AgentEventType
from taskweave.core.domain.models import new_id
from taskweave.core.interfaces.events import EventSinkProtocol
from taskweave.core.interfaces.stores import (
    AgentStoreProtocol,
    MemoryStoreProtocol,
    SessionStoreProtocol,
    TaskStoreProtocol,
    ThreadStoreProtocol,
)
from taskweave.core.interfaces.tools import CodeSandboxProtocol

T = TypeVar("T")

logger = structlog.get_logger().bind(component="execution_context")


class NullEventSink:
    """Sink that drops every event."""

    async def emit(self, event: AgentEvent) -> None:
        return None


class FanOutSink:
    """Forwards each event to several sinks, in order."""

    def __init__(self, *sinks: EventSinkProtocol):
        self.sinks = [s for s in sinks if s is not None]

    async def emit(self, event: AgentEvent) -> None:
        for sink in self.sinks:
            await sink.emit(event)


class QueueSink:
    """Pushes events onto an asyncio queue for an async-iterator consumer."""

    def __init__(self, queue: asyncio.Queue | None = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    async def emit(self, event: AgentEvent) -> None:
        await self.queue.put(event)


@dataclass
class StoreBundle:
    sessions: SessionStoreProtocol
    memories: MemoryStoreProtocol
    threads: ThreadStoreProtocol
    tasks: TaskStoreProtocol
    agents: AgentStoreProtocol


@dataclass
class Handover:
    from_agent: str
    to_agent: str
    reason: str | None = None


@dataclass
class ExecutionContext:
    """
    Per-execution state owned by the engine.

    Attributes:
        task_id: Task being executed
        thread_id: Thread id, None in stateless mode
        agent_id: Currently active agent (changes on handover)
        user_id: Optional user the execution runs for
        run_id: Identifier of this engine call (a resume gets a new run id)
        sink: Event sink receiving every event of this run
        cancel_event: Cancellation signal
        params: Caller-supplied execution parameters
    """

    task_id: str
    thread_id: str | None
    agent_id: str
    user_id: str | None = None
    run_id: str = field(default_factory=new_id)
    sink: EventSinkProtocol = field(default_factory=NullEventSink)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    params: dict[str, Any] = field(default_factory=dict)
    final_result: str | None = None
    handover: Handover | None = None
    _sequence: int = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ExecutionCanceledError("Execution canceled", task_id=self.task_id)

    async def run_cancellable(self, awaitable: Awaitable[T]) -> T:
        """
        Await ``awaitable`` unless the cancellation signal fires first.

        The in-flight work is cancelled when the signal wins the race.

        Raises:
            ExecutionCanceledError: If the execution was cancelled
        """
        work = asyncio.ensure_future(awaitable)
        if self.cancel_event.is_set():
            work.cancel()
            self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work in done:
            return work.result()

        work.cancel()
        try:
            await work
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug("cancelled_work_failed", task_id=self.task_id, error=str(e))
        raise ExecutionCanceledError("Execution canceled", task_id=self.task_id)

    async def emit(self, event_type: AgentEventType, **data: Any) -> AgentEvent:
        self._sequence += 1
        event = AgentEvent(
            type=event_type,
            thread_id=self.thread_id,
            task_id=self.task_id,
            run_id=self.run_id,
            agent_id=self.agent_id,
            sequence=self._sequence,
            data=data,
        )
        await self.sink.emit(event)
        return event


@dataclass
class ToolContext:
    """Bundle handed to built-in tools and external resolvers."""

    agent: AgentDefinition
    execution: ExecutionContext
    stores: StoreBundle
    sandbox: CodeSandboxProtocol | None = None
    tool_call_id: str | None = None

    @property
    def sink(self) -> EventSinkProtocol:
        return self.execution.sink

    def set_final_result(self, result: str) -> None:
        self.execution.final_result = result

    def request_handover(self, to_agent: str, reason: str | None = None) -> None:
        self.execution.handover = Handover(
            from_agent=self.agent.name, to_agent=to_agent, reason=reason
        )
