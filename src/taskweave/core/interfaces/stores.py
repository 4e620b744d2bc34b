"""
Store Protocols

Backend-agnostic persistence contracts used by the execution engine. The
engine depends only on these operations and never on how a backend lays out
or transports its data.
"""

from typing import Protocol

from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.models import SessionMemory, Step, Task, Thread


class SessionStoreProtocol(Protocol):
    """Conversation transcript per thread. No notion of agent or user."""

    async def append_steps(self, thread_id: str, steps: list[Step]) -> None:
        """Append steps atomically; concurrent appends never interleave."""
        ...

    async def append_step(self, thread_id: str, step: Step) -> None:
        ...

    async def list_steps(self, thread_id: str) -> list[Step]:
        ...

    async def list_messages(self, thread_id: str) -> list[dict]:
        ...

    async def clear_session(self, thread_id: str) -> None:
        ...


class MemoryStoreProtocol(Protocol):
    """Cross-thread durable memory keyed by user id."""

    async def store_memory(self, user_id: str, memory: SessionMemory) -> None:
        ...

    async def search_memories(
        self, user_id: str, query: str, limit: int | None = None
    ) -> list[SessionMemory]:
        ...

    async def list_memories(self, user_id: str) -> list[SessionMemory]:
        ...

    async def clear_memories(self, user_id: str) -> None:
        ...


class ThreadStoreProtocol(Protocol):
    async def create_thread(self, thread: Thread) -> Thread:
        ...

    async def get_thread(self, thread_id: str) -> Thread | None:
        ...

    async def update_thread(
        self,
        thread_id: str,
        title: str | None = None,
        metadata: dict | None = None,
    ) -> Thread:
        ...

    async def delete_thread(self, thread_id: str) -> None:
        ...

    async def list_threads(
        self,
        agent_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Thread]:
        ...

    async def update_thread_with_message(self, thread_id: str, message: str) -> Thread:
        ...


class TaskStoreProtocol(Protocol):
    async def create_task(self, task: Task) -> Task:
        ...

    async def get_task(self, task_id: str) -> Task | None:
        ...

    async def save_task(self, task: Task) -> None:
        ...

    async def list_tasks(self, thread_id: str | None = None) -> list[Task]:
        ...

    async def find_task_by_tool_call(self, tool_call_id: str) -> Task | None:
        """Return the paused task waiting on the given tool call, if any."""
        ...


class AgentStoreProtocol(Protocol):
    async def register(self, definition: AgentDefinition) -> None:
        ...

    async def update(self, definition: AgentDefinition) -> None:
        ...

    async def get(self, name: str) -> AgentDefinition | None:
        ...

    async def list(
        self, cursor: str | None = None, limit: int | None = None
    ) -> tuple[list[AgentDefinition], str | None]:
        ...

    async def delete(self, name: str) -> None:
        ...
