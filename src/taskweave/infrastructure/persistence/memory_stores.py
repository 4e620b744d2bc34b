"""
In-Memory Stores

Process-local implementations of the store protocols. Records are kept as
serialized dicts and rebuilt on read, so callers never share mutable state
with the store or with each other.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any

import structlog

from taskweave.core.domain.context import StoreBundle
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.errors import StoreError
from taskweave.core.domain.models import SessionMemory, Step, Task, Thread, utc_now

logger = structlog.get_logger()


class InMemorySessionStore:
    def __init__(self) -> None:
        self._steps: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.locks: dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="memory_session_store")

    def _get_lock(self, thread_id: str) -> asyncio.Lock:
        if thread_id not in self.locks:
            self.locks[thread_id] = asyncio.Lock()
        return self.locks[thread_id]

    async def append_steps(self, thread_id: str, steps: list[Step]) -> None:
        async with self._get_lock(thread_id):
            self._steps[thread_id].extend(step.to_dict() for step in steps)
        self.logger.debug("steps_appended", thread_id=thread_id, count=len(steps))

    async def append_step(self, thread_id: str, step: Step) -> None:
        await self.append_steps(thread_id, [step])

    async def list_steps(self, thread_id: str) -> list[Step]:
        async with self._get_lock(thread_id):
            return [
                Step.from_dict(copy.deepcopy(data)) for data in self._steps.get(thread_id, [])
            ]

    async def list_messages(self, thread_id: str) -> list[dict]:
        return [step.to_message() for step in await self.list_steps(thread_id)]

    async def clear_session(self, thread_id: str) -> None:
        async with self._get_lock(thread_id):
            self._steps.pop(thread_id, None)


class InMemoryMemoryStore:
    def __init__(self) -> None:
        self._memories: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def store_memory(self, user_id: str, memory: SessionMemory) -> None:
        async with self._lock:
            self._memories[user_id].append(memory.to_dict())

    async def list_memories(self, user_id: str) -> list[SessionMemory]:
        async with self._lock:
            return [
                SessionMemory.from_dict(copy.deepcopy(m))
                for m in self._memories.get(user_id, [])
            ]

    async def search_memories(
        self, user_id: str, query: str, limit: int | None = None
    ) -> list[SessionMemory]:
        memories = await self.list_memories(user_id)
        found = [m for m in reversed(memories) if m.matches(query)]
        return found[:limit] if limit else found

    async def clear_memories(self, user_id: str) -> None:
        async with self._lock:
            self._memories.pop(user_id, None)


class InMemoryThreadStore:
    def __init__(self) -> None:
        self._threads: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_thread(self, thread: Thread) -> Thread:
        async with self._lock:
            if thread.id in self._threads:
                raise StoreError(f"Thread already exists: {thread.id}", thread_id=thread.id)
            self._threads[thread.id] = thread.to_dict()
        return Thread.from_dict(thread.to_dict())

    async def get_thread(self, thread_id: str) -> Thread | None:
        async with self._lock:
            data = self._threads.get(thread_id)
            return Thread.from_dict(copy.deepcopy(data)) if data else None

    async def _modify(self, thread_id: str, change) -> Thread:
        async with self._lock:
            data = self._threads.get(thread_id)
            if data is None:
                raise StoreError(f"Thread not found: {thread_id}", thread_id=thread_id)
            thread = Thread.from_dict(copy.deepcopy(data))
            change(thread)
            self._threads[thread_id] = thread.to_dict()
            return Thread.from_dict(thread.to_dict())

    async def update_thread(
        self,
        thread_id: str,
        title: str | None = None,
        metadata: dict | None = None,
    ) -> Thread:
        return await self._modify(
            thread_id, lambda t: apply_thread_update(t, title, metadata)
        )

    async def update_thread_with_message(self, thread_id: str, message: str) -> Thread:
        return await self._modify(thread_id, lambda t: t.update_with_message(message))

    async def delete_thread(self, thread_id: str) -> None:
        async with self._lock:
            self._threads.pop(thread_id, None)

    async def list_threads(
        self,
        agent_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Thread]:
        async with self._lock:
            threads = [Thread.from_dict(copy.deepcopy(d)) for d in self._threads.values()]
        return page_threads(threads, agent_id, limit, offset)


class InMemoryTaskStore:
    def __init__(self) -> None:
        self._tasks: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_task(self, task: Task) -> Task:
        async with self._lock:
            if task.id in self._tasks:
                raise StoreError(f"Task already exists: {task.id}", task_id=task.id)
            self._tasks[task.id] = copy.deepcopy(task.to_dict())
        return task

    async def get_task(self, task_id: str) -> Task | None:
        async with self._lock:
            data = self._tasks.get(task_id)
            return Task.from_dict(copy.deepcopy(data)) if data else None

    async def save_task(self, task: Task) -> None:
        async with self._lock:
            self._tasks[task.id] = copy.deepcopy(task.to_dict())

    async def list_tasks(self, thread_id: str | None = None) -> list[Task]:
        async with self._lock:
            tasks = [Task.from_dict(copy.deepcopy(d)) for d in self._tasks.values()]
        if thread_id is not None:
            tasks = [t for t in tasks if t.thread_id == thread_id]
        return sorted(tasks, key=lambda t: t.created_at)

    async def find_task_by_tool_call(self, tool_call_id: str) -> Task | None:
        for task in await self.list_tasks():
            if task.paused is not None and tool_call_id in paused_call_ids(task):
                return task
        return None


class InMemoryAgentStore:
    def __init__(self, definitions: list[AgentDefinition] | None = None):
        self._agents: dict[str, AgentDefinition] = {d.name: d for d in definitions or []}
        self._lock = asyncio.Lock()

    async def register(self, definition: AgentDefinition) -> None:
        async with self._lock:
            if definition.name in self._agents:
                raise StoreError(
                    f"Agent already registered: {definition.name}", agent_name=definition.name
                )
            self._agents[definition.name] = definition

    async def update(self, definition: AgentDefinition) -> None:
        async with self._lock:
            if definition.name not in self._agents:
                raise StoreError(
                    f"Agent not registered: {definition.name}", agent_name=definition.name
                )
            self._agents[definition.name] = definition

    async def get(self, name: str) -> AgentDefinition | None:
        return self._agents.get(name)

    async def list(
        self, cursor: str | None = None, limit: int | None = None
    ) -> tuple[list[AgentDefinition], str | None]:
        async with self._lock:
            definitions = sorted(self._agents.values(), key=lambda d: d.name)
        return page_definitions(definitions, cursor, limit)

    async def delete(self, name: str) -> None:
        async with self._lock:
            self._agents.pop(name, None)


def apply_thread_update(thread: Thread, title: str | None, metadata: dict | None) -> None:
    if title is not None:
        thread.title = title
    if metadata is not None:
        thread.metadata.update(metadata)
    thread.updated_at = utc_now()


def page_threads(
    threads: list[Thread],
    agent_id: str | None,
    limit: int | None,
    offset: int | None,
) -> list[Thread]:
    if agent_id is not None:
        threads = [t for t in threads if t.agent_id == agent_id]
    threads.sort(key=lambda t: t.updated_at, reverse=True)
    start = offset or 0
    return threads[start : start + limit] if limit else threads[start:]


def paused_call_ids(task: Task) -> set[str]:
    """Tool call ids a paused task is waiting on or holding back."""
    paused = task.paused
    if paused is None:
        return set()
    ids = set(paused.approvals) | set(paused.awaiting_external)
    ids.update(call.id for call in paused.pending_calls)
    return ids


def page_definitions(
    definitions: list[AgentDefinition], cursor: str | None, limit: int | None
) -> tuple[list[AgentDefinition], str | None]:
    """Cursor pagination over name-sorted definitions; the cursor is the last name seen."""
    if cursor:
        definitions = [d for d in definitions if d.name > cursor]
    if not limit or len(definitions) <= limit:
        return definitions, None
    page = definitions[:limit]
    return page, page[-1].name


def in_memory_stores(definitions: list[AgentDefinition] | None = None) -> StoreBundle:
    return StoreBundle(
        sessions=InMemorySessionStore(),
        memories=InMemoryMemoryStore(),
        threads=InMemoryThreadStore(),
        tasks=InMemoryTaskStore(),
        agents=InMemoryAgentStore(definitions),
    )
