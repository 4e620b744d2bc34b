"""
File-Based Stores

JSON/JSONL persistence under a work directory:

    {work_dir}/sessions/{thread_id}.jsonl   - one step per line, append-only
    {work_dir}/memories/{user_id}.jsonl     - one memory per line
    {work_dir}/threads/{thread_id}.json
    {work_dir}/tasks/{task_id}.json

Ids are percent-encoded to form file names. Mutations are serialized with
per-key asyncio locks; whole-record writes go through a temp file and
``os.replace``.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

import aiofiles
import structlog

from taskweave.core.domain.context import StoreBundle
from taskweave.core.domain.errors import StoreError
from taskweave.core.domain.models import SessionMemory, Step, Task, Thread
from taskweave.infrastructure.persistence.file_agent_registry import FileAgentRegistry
from taskweave.infrastructure.persistence.memory_stores import (
    apply_thread_update,
    page_threads,
    paused_call_ids,
)

logger = structlog.get_logger()


def _file_name(key: str, suffix: str) -> str:
    return quote(key, safe="") + suffix


class _KeyedLocks:
    def __init__(self) -> None:
        self.locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        if key not in self.locks:
            self.locks[key] = asyncio.Lock()
        return self.locks[key]


async def _append_lines(path: Path, records: list[dict[str, Any]]) -> None:
    payload = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records)
    async with aiofiles.open(path, "a", encoding="utf-8") as f:
        await f.write(payload)


async def _read_lines(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    records = []
    for number, line in enumerate(content.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(json.loads(line))
        except json.JSONDecodeError as e:
            logger.warning("jsonl_line_corrupt", path=str(path), line=number, error=str(e))
    return records


async def _write_json(path: Path, data: dict[str, Any]) -> None:
    temp_path = path.with_name(f".{path.name}.tmp")
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False, indent=2))
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        raise StoreError(f"Failed to write {path.name}: {e}", path=str(path)) from e


async def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        content = await f.read()
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise StoreError(f"Corrupt record {path.name}: {e}", path=str(path)) from e


class FileSessionStore:
    def __init__(self, work_dir: str | Path):
        self.session_dir = Path(work_dir) / "sessions"
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()
        self.logger = logger.bind(component="file_session_store")

    def _path(self, thread_id: str) -> Path:
        return self.session_dir / _file_name(thread_id, ".jsonl")

    async def append_steps(self, thread_id: str, steps: list[Step]) -> None:
        async with self._locks.get(thread_id):
            await _append_lines(self._path(thread_id), [s.to_dict() for s in steps])
        self.logger.debug("steps_appended", thread_id=thread_id, count=len(steps))

    async def append_step(self, thread_id: str, step: Step) -> None:
        await self.append_steps(thread_id, [step])

    async def list_steps(self, thread_id: str) -> list[Step]:
        async with self._locks.get(thread_id):
            records = await _read_lines(self._path(thread_id))
        return [Step.from_dict(r) for r in records]

    async def list_messages(self, thread_id: str) -> list[dict]:
        return [step.to_message() for step in await self.list_steps(thread_id)]

    async def clear_session(self, thread_id: str) -> None:
        async with self._locks.get(thread_id):
            path = self._path(thread_id)
            if path.exists():
                path.unlink()


class FileMemoryStore:
    def __init__(self, work_dir: str | Path):
        self.memory_dir = Path(work_dir) / "memories"
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    def _path(self, user_id: str) -> Path:
        return self.memory_dir / _file_name(user_id, ".jsonl")

    async def store_memory(self, user_id: str, memory: SessionMemory) -> None:
        async with self._locks.get(user_id):
            await _append_lines(self._path(user_id), [memory.to_dict()])

    async def list_memories(self, user_id: str) -> list[SessionMemory]:
        async with self._locks.get(user_id):
            records = await _read_lines(self._path(user_id))
        return [SessionMemory.from_dict(r) for r in records]

    async def search_memories(
        self, user_id: str, query: str, limit: int | None = None
    ) -> list[SessionMemory]:
        memories = await self.list_memories(user_id)
        found = [m for m in reversed(memories) if m.matches(query)]
        return found[:limit] if limit else found

    async def clear_memories(self, user_id: str) -> None:
        async with self._locks.get(user_id):
            path = self._path(user_id)
            if path.exists():
                path.unlink()


class FileThreadStore:
    def __init__(self, work_dir: str | Path):
        self.thread_dir = Path(work_dir) / "threads"
        self.thread_dir.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    def _path(self, thread_id: str) -> Path:
        return self.thread_dir / _file_name(thread_id, ".json")

    async def create_thread(self, thread: Thread) -> Thread:
        async with self._locks.get(thread.id):
            path = self._path(thread.id)
            if path.exists():
                raise StoreError(f"Thread already exists: {thread.id}", thread_id=thread.id)
            await _write_json(path, thread.to_dict())
        return thread

    async def get_thread(self, thread_id: str) -> Thread | None:
        data = await _read_json(self._path(thread_id))
        return Thread.from_dict(data) if data else None

    async def _modify(self, thread_id: str, change) -> Thread:
        async with self._locks.get(thread_id):
            thread = await self.get_thread(thread_id)
            if thread is None:
                raise StoreError(f"Thread not found: {thread_id}", thread_id=thread_id)
            change(thread)
            await _write_json(self._path(thread_id), thread.to_dict())
        return thread

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
        async with self._locks.get(thread_id):
            path = self._path(thread_id)
            if path.exists():
                path.unlink()

    async def list_threads(
        self,
        agent_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Thread]:
        threads = []
        for path in self.thread_dir.glob("*.json"):
            thread = await self.get_thread(unquote(path.stem))
            if thread is not None:
                threads.append(thread)
        return page_threads(threads, agent_id, limit, offset)


class FileTaskStore:
    def __init__(self, work_dir: str | Path):
        self.task_dir = Path(work_dir) / "tasks"
        self.task_dir.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    def _path(self, task_id: str) -> Path:
        return self.task_dir / _file_name(task_id, ".json")

    async def create_task(self, task: Task) -> Task:
        async with self._locks.get(task.id):
            path = self._path(task.id)
            if path.exists():
                raise StoreError(f"Task already exists: {task.id}", task_id=task.id)
            await _write_json(path, task.to_dict())
        return task

    async def get_task(self, task_id: str) -> Task | None:
        data = await _read_json(self._path(task_id))
        return Task.from_dict(data) if data else None

    async def save_task(self, task: Task) -> None:
        async with self._locks.get(task.id):
            await _write_json(self._path(task.id), task.to_dict())

    async def list_tasks(self, thread_id: str | None = None) -> list[Task]:
        tasks = []
        for path in self.task_dir.glob("*.json"):
            task = await self.get_task(unquote(path.stem))
            if task is not None and (thread_id is None or task.thread_id == thread_id):
                tasks.append(task)
        return sorted(tasks, key=lambda t: t.created_at)

    async def find_task_by_tool_call(self, tool_call_id: str) -> Task | None:
        for task in await self.list_tasks():
            if tool_call_id in paused_call_ids(task):
                return task
        return None


def file_stores(work_dir: str | Path, agents_dir: str | Path | None = None) -> StoreBundle:
    """File-backed bundle; agents live as YAML files under ``agents_dir``."""
    work_dir = Path(work_dir)
    return StoreBundle(
        sessions=FileSessionStore(work_dir),
        memories=FileMemoryStore(work_dir),
        threads=FileThreadStore(work_dir),
        tasks=FileTaskStore(work_dir),
        agents=FileAgentRegistry(agents_dir or work_dir / "agents"),
    )
