"""
Unit Tests for the in-memory and file-backed stores

Both backends share the same contract, so most tests run against each.
"""

import asyncio

import pytest

from taskweave.core.domain.errors import StoreError
from taskweave.core.domain.models import (
    ApprovalRequest,
    MessageRole,
    PausedExecution,
    SessionMemory,
    Step,
    Task,
    TaskState,
    Thread,
)
from taskweave.infrastructure.persistence.file_stores import file_stores
from taskweave.infrastructure.persistence.memory_stores import in_memory_stores


@pytest.fixture(params=["memory", "file"])
def bundle(request, tmp_path):
    if request.param == "memory":
        return in_memory_stores()
    return file_stores(tmp_path / "work")


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_concurrent_appends_lose_nothing(self, bundle):
        await asyncio.gather(
            *(
                bundle.sessions.append_step("t1", Step(role=MessageRole.USER, content=str(i)))
                for i in range(100)
            )
        )

        steps = await bundle.sessions.list_steps("t1")
        assert len(steps) == 100
        assert len({s.id for s in steps}) == 100
        assert sorted(int(s.content) for s in steps) == list(range(100))

    @pytest.mark.asyncio
    async def test_batch_append_keeps_order(self, bundle):
        batch = [
            Step(role=MessageRole.TOOL, content=f"r{i}", tool_call_id=f"c{i}") for i in range(5)
        ]
        await bundle.sessions.append_steps("t1", batch)

        messages = await bundle.sessions.list_messages("t1")
        assert [m["tool_call_id"] for m in messages] == [f"c{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_threads_are_isolated_and_clearable(self, bundle):
        await bundle.sessions.append_step("t1", Step(role=MessageRole.USER, content="a"))
        await bundle.sessions.append_step("t2", Step(role=MessageRole.USER, content="b"))

        await bundle.sessions.clear_session("t1")

        assert await bundle.sessions.list_steps("t1") == []
        assert [s.content for s in await bundle.sessions.list_steps("t2")] == ["b"]

    @pytest.mark.asyncio
    async def test_returned_steps_are_copies(self, bundle):
        await bundle.sessions.append_step("t1", Step(role=MessageRole.USER, content="a"))

        steps = await bundle.sessions.list_steps("t1")
        steps[0].content = "mutated"

        assert (await bundle.sessions.list_steps("t1"))[0].content == "a"


class TestThreadStore:
    @pytest.mark.asyncio
    async def test_create_get_update(self, bundle):
        await bundle.threads.create_thread(Thread(id="t1", agent_id="assistant"))

        await bundle.threads.update_thread_with_message("t1", "Hello")
        updated = await bundle.threads.update_thread("t1", metadata={"pinned": True})

        assert updated.title == "Hello"
        assert updated.metadata == {"pinned": True}
        stored = await bundle.threads.get_thread("t1")
        assert stored.message_count == 1

    @pytest.mark.asyncio
    async def test_duplicate_and_missing(self, bundle):
        await bundle.threads.create_thread(Thread(id="t1", agent_id="assistant"))

        with pytest.raises(StoreError):
            await bundle.threads.create_thread(Thread(id="t1", agent_id="assistant"))
        with pytest.raises(StoreError):
            await bundle.threads.update_thread("missing", title="x")
        assert await bundle.threads.get_thread("missing") is None

    @pytest.mark.asyncio
    async def test_list_filters_sorts_and_pages(self, bundle):
        for i, agent in enumerate(["a", "b", "a", "a"]):
            await bundle.threads.create_thread(
                Thread(id=f"t{i}", agent_id=agent, updated_at=f"2024-01-0{i + 1}T00:00:00")
            )

        threads = await bundle.threads.list_threads(agent_id="a")
        assert [t.id for t in threads] == ["t3", "t2", "t0"]

        page = await bundle.threads.list_threads(limit=2, offset=1)
        assert [t.id for t in page] == ["t2", "t1"]

    @pytest.mark.asyncio
    async def test_delete(self, bundle):
        await bundle.threads.create_thread(Thread(id="t1", agent_id="assistant"))
        await bundle.threads.delete_thread("t1")
        await bundle.threads.delete_thread("t1")
        assert await bundle.threads.get_thread("t1") is None


class TestTaskStore:
    @pytest.mark.asyncio
    async def test_find_paused_task_by_tool_call(self, bundle):
        paused = Task(
            id="task-1",
            agent_id="assistant",
            input="x",
            thread_id="t1",
            state=TaskState.INPUT_REQUIRED,
            paused=PausedExecution(
                agent_name="assistant",
                approvals={"c1": ApprovalRequest(tool_call_id="c1", tool_name="rm")},
                awaiting_external=["c2"],
            ),
        )
        await bundle.tasks.create_task(paused)
        await bundle.tasks.create_task(Task(id="task-2", agent_id="assistant", input="y"))

        assert (await bundle.tasks.find_task_by_tool_call("c1")).id == "task-1"
        assert (await bundle.tasks.find_task_by_tool_call("c2")).id == "task-1"
        assert await bundle.tasks.find_task_by_tool_call("c3") is None

    @pytest.mark.asyncio
    async def test_save_and_list_by_thread(self, bundle):
        task = Task(id="task-1", agent_id="assistant", input="x", thread_id="t1")
        await bundle.tasks.create_task(task)
        task.state = TaskState.WORKING
        await bundle.tasks.save_task(task)

        tasks = await bundle.tasks.list_tasks("t1")
        assert [t.state for t in tasks] == [TaskState.WORKING]
        assert await bundle.tasks.list_tasks("other") == []

        with pytest.raises(StoreError):
            await bundle.tasks.create_task(task)


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_search_is_newest_first_and_limited(self, bundle):
        for summary in ["tea in the morning", "coffee at work", "green tea"]:
            await bundle.memories.store_memory("u1", SessionMemory(user_id="u1", summary=summary))

        found = await bundle.memories.search_memories("u1", "tea", limit=1)
        assert [m.summary for m in found] == ["green tea"]
        assert len(await bundle.memories.search_memories("u1", "tea")) == 2
        assert await bundle.memories.search_memories("u2", "tea") == []

    @pytest.mark.asyncio
    async def test_clear(self, bundle):
        await bundle.memories.store_memory("u1", SessionMemory(user_id="u1", summary="x"))
        await bundle.memories.clear_memories("u1")
        assert await bundle.memories.list_memories("u1") == []


class TestFileLayout:
    @pytest.mark.asyncio
    async def test_ids_are_encoded_as_file_names(self, tmp_path):
        stores = file_stores(tmp_path)
        await stores.threads.create_thread(Thread(id="team/alpha", agent_id="assistant"))
        await stores.sessions.append_step(
            "team/alpha", Step(role=MessageRole.USER, content="hi")
        )

        assert (tmp_path / "threads" / "team%2Falpha.json").exists()
        assert (tmp_path / "sessions" / "team%2Falpha.jsonl").exists()
        threads = await stores.threads.list_threads()
        assert [t.id for t in threads] == ["team/alpha"]

    @pytest.mark.asyncio
    async def test_state_survives_new_store_instance(self, tmp_path):
        first = file_stores(tmp_path)
        await first.sessions.append_step("t1", Step(role=MessageRole.USER, content="hi"))
        await first.memories.store_memory("u1", SessionMemory(user_id="u1", summary="tea"))

        second = file_stores(tmp_path)
        assert [s.content for s in await second.sessions.list_steps("t1")] == ["hi"]
        assert len(await second.memories.list_memories("u1")) == 1

    @pytest.mark.asyncio
    async def test_corrupt_jsonl_line_is_skipped(self, tmp_path):
        stores = file_stores(tmp_path)
        await stores.sessions.append_step("t1", Step(role=MessageRole.USER, content="ok"))
        with open(tmp_path / "sessions" / "t1.jsonl", "a", encoding="utf-8") as f:
            f.write("{not json\n")

        steps = await stores.sessions.list_steps("t1")
        assert [s.content for s in steps] == ["ok"]

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        stores = file_stores(tmp_path)
        await stores.tasks.create_task(Task(id="task-1", agent_id="a", input="x"))

        assert [p.name for p in (tmp_path / "tasks").iterdir()] == ["task-1.json"]
