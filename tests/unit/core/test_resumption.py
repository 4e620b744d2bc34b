"""
Unit Tests for paused executions

Approval gates and delegated (external) tool calls pause a task; resuming
continues the interrupted batch without replaying side effects.
"""

import pytest
from conftest import ScriptedLLM, calls, text, tool_call

from taskweave.core.domain.definitions import AgentDefinition, ApprovalPolicy
from taskweave.core.domain.engine import AgentEngine
from taskweave.core.domain.errors import ApprovalRejectedError, ThreadBusyError
from taskweave.core.domain.events import AgentEventType
from taskweave.core.domain.models import MessageRole, TaskState
from taskweave.infrastructure.persistence.memory_stores import in_memory_stores
from taskweave.infrastructure.streaming.broadcaster import CollectingSink
from taskweave.infrastructure.tools.external import ExternalToolRegistry


@pytest.fixture
def gated_stores():
    return in_memory_stores(
        [
            AgentDefinition(
                name="keeper",
                tools=["store_memory", "search_memories"],
                approval=ApprovalPolicy(tools=["store_memory"]),
            )
        ]
    )


@pytest.fixture
def gated_engine(llm, gated_stores):
    return AgentEngine(llm_provider=llm, stores=gated_stores)


def remember(summary: str, call_id: str = "call-1"):
    return calls(tool_call("store_memory", {"summary": summary}, call_id))


class TestApprovalGate:
    @pytest.mark.asyncio
    async def test_gated_call_pauses_before_running(self, gated_engine, llm, gated_stores):
        llm.responses = [remember("Likes green tea")]
        sink = CollectingSink()

        result = await gated_engine.execute_stream(
            "keeper", "Remember my tea", sink, context_id="t1", user_id="u1"
        )

        assert result.status == "input_required"
        assert result.pending_approvals[0]["tool_call_id"] == "call-1"
        assert result.pending_approvals[0]["tool_name"] == "store_memory"
        assert result.pending_approvals[0]["status"] == "pending"
        assert await gated_stores.memories.list_memories("u1") == []

        requested = sink.of_type(AgentEventType.APPROVAL_REQUESTED)
        assert requested[0].data["tool"] == "store_memory"
        assert sink.of_type(AgentEventType.TOOL_CALL_STARTED) == []
        assert sink.events[-1].type == AgentEventType.EXECUTION_PAUSED

        task = await gated_stores.tasks.get_task(result.task_id)
        assert task.state == TaskState.INPUT_REQUIRED
        assert not gated_engine.thread_locks.is_busy("t1")

    @pytest.mark.asyncio
    async def test_approval_runs_the_call_and_continues(self, gated_engine, llm, gated_stores):
        llm.responses = [remember("Likes green tea"), text("Saved it")]
        paused = await gated_engine.execute(
            "keeper", "Remember my tea", context_id="t1", user_id="u1"
        )

        result = await gated_engine.resume_with_approval("call-1", True)

        assert result.status == "completed"
        assert result.final_message == "Saved it"
        assert result.task_id == paused.task_id
        memories = await gated_stores.memories.list_memories("u1")
        assert [m.summary for m in memories] == ["Likes green tea"]

        steps = await gated_stores.sessions.list_steps("t1")
        assert [s.role for s in steps] == [
            MessageRole.USER,
            MessageRole.ASSISTANT,
            MessageRole.TOOL,
            MessageRole.ASSISTANT,
        ]
        assert steps[2].tool_call_id == "call-1"

    @pytest.mark.asyncio
    async def test_final_answer_survives_the_pause(self, gated_engine, llm, gated_stores):
        llm.responses = [
            calls(
                tool_call("final", {"answer": "Noted your tea"}, "c1"),
                tool_call("store_memory", {"summary": "Likes green tea"}, "c2"),
            )
        ]
        paused = await gated_engine.execute(
            "keeper", "Remember my tea", context_id="t1", user_id="u1"
        )
        assert paused.status == "input_required"
        task = await gated_stores.tasks.get_task(paused.task_id)
        assert task.paused.final_result == "Noted your tea"

        result = await gated_engine.resume_with_approval("c2", True)

        assert result.status == "completed"
        assert result.final_message == "Noted your tea"
        assert len(llm.calls) == 1
        assert len(await gated_stores.memories.list_memories("u1")) == 1

    @pytest.mark.asyncio
    async def test_rejection_fails_task_and_never_runs_tool(
        self, gated_engine, llm, gated_stores
    ):
        llm.responses = [remember("Likes green tea")]
        paused = await gated_engine.execute(
            "keeper", "Remember my tea", context_id="t1", user_id="u1"
        )

        with pytest.raises(ApprovalRejectedError) as exc_info:
            await gated_engine.resume_with_approval("call-1", False, "not now")

        assert exc_info.value.tool_name == "store_memory"
        assert exc_info.value.reason == "not now"
        assert await gated_stores.memories.list_memories("u1") == []
        assert len(llm.calls) == 1
        task = await gated_stores.tasks.get_task(paused.task_id)
        assert task.state == TaskState.FAILED
        assert not gated_engine.thread_locks.is_busy("t1")

    @pytest.mark.asyncio
    async def test_unknown_or_resolved_approval_raises(self, gated_engine, llm):
        with pytest.raises(ValueError):
            await gated_engine.resume_with_approval("missing", True)

        llm.responses = [remember("x"), text("ok")]
        await gated_engine.execute("keeper", "remember", context_id="t1", user_id="u1")
        await gated_engine.resume_with_approval("call-1", True)

        with pytest.raises(ValueError):
            await gated_engine.resume_with_approval("call-1", True)

    @pytest.mark.asyncio
    async def test_calls_before_gate_are_not_replayed(self, gated_engine, llm, gated_stores):
        llm.responses = [
            calls(
                tool_call("search_memories", {"query": "tea"}, "search-1"),
                tool_call("store_memory", {"summary": "Likes tea"}, "store-1"),
            ),
            text("done"),
        ]
        sink = CollectingSink()
        await gated_engine.execute_stream(
            "keeper", "tea", sink, context_id="t1", user_id="u1"
        )

        await gated_engine.resume_with_approval("store-1", True, event_sink=sink)

        started = [e.data["tool_call_id"] for e in sink.of_type(AgentEventType.TOOL_CALL_STARTED)]
        assert started == ["search-1", "store-1"]
        steps = await gated_stores.sessions.list_steps("t1")
        assert [s.tool_call_id for s in steps if s.role == MessageRole.TOOL] == [
            "search-1",
            "store-1",
        ]

    @pytest.mark.asyncio
    async def test_unknown_tools_are_not_gated(self, llm):
        stores = in_memory_stores(
            [AgentDefinition(name="strict", approval=ApprovalPolicy(required=True))]
        )
        engine = AgentEngine(llm_provider=llm, stores=stores)
        llm.responses = [calls(tool_call("nope")), text("ok")]

        result = await engine.execute("strict", "hi")

        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_paused_thread_accepts_new_execution(self, gated_engine, llm):
        llm.responses = [remember("x")]
        await gated_engine.execute("keeper", "remember", context_id="t1", user_id="u1")

        # A paused task does not hold the thread
        result = await gated_engine.execute("keeper", "something else", context_id="t1")
        assert result.status == "completed"

    @pytest.mark.asyncio
    async def test_resume_on_busy_thread_is_rejected(self, gated_engine, llm):
        llm.responses = [remember("x")]
        await gated_engine.execute("keeper", "remember", context_id="t1", user_id="u1")
        gated_engine.thread_locks.acquire("t1", "other-task")

        with pytest.raises(ThreadBusyError):
            await gated_engine.resume_with_approval("call-1", True)


class TestExternalTools:
    @pytest.fixture
    def external_stores(self):
        return in_memory_stores(
            [AgentDefinition(name="support", external_tools=["lookup_ticket"])]
        )

    @pytest.mark.asyncio
    async def test_delegated_call_pauses_until_result_arrives(self, llm, external_stores):
        engine = AgentEngine(llm_provider=llm, stores=external_stores)
        llm.responses = [
            calls(tool_call("lookup_ticket", {"ticket_id": "T-1"}, "ext-1")),
            text("Ticket T-1 is open"),
        ]

        paused = await engine.execute("support", "Status of T-1?", context_id="t1")

        assert paused.status == "input_required"
        assert paused.pending_tool_calls == [
            {"id": "ext-1", "name": "lookup_ticket", "arguments": {"ticket_id": "T-1"}}
        ]
        offered = [t["function"]["name"] for t in llm.calls[0]["tools"]]
        assert "lookup_ticket" in offered

        result = await engine.resume_with_tool_responses(
            paused.task_id, {"ext-1": {"status": "open"}}
        )

        assert result.status == "completed"
        assert result.final_message == "Ticket T-1 is open"
        observation = llm.calls[1]["messages"][-1]
        assert observation["role"] == "tool"
        assert "open" in observation["content"]

    @pytest.mark.asyncio
    async def test_unknown_tool_call_id_is_rejected(self, llm, external_stores):
        engine = AgentEngine(llm_provider=llm, stores=external_stores)
        llm.responses = [calls(tool_call("lookup_ticket", {}, "ext-1"))]
        paused = await engine.execute("support", "lookup", context_id="t1")

        with pytest.raises(ValueError, match="bogus"):
            await engine.resume_with_tool_responses(paused.task_id, {"bogus": 1})

        task = await external_stores.tasks.get_task(paused.task_id)
        assert task.state == TaskState.INPUT_REQUIRED

    @pytest.mark.asyncio
    async def test_partial_results_keep_task_paused(self, llm, external_stores):
        engine = AgentEngine(llm_provider=llm, stores=external_stores)
        llm.responses = [
            calls(
                tool_call("lookup_ticket", {"ticket_id": "A"}, "ext-a"),
                tool_call("lookup_ticket", {"ticket_id": "B"}, "ext-b"),
            ),
            text("Both looked up"),
        ]
        paused = await engine.execute("support", "lookup both", context_id="t1")

        still = await engine.resume_with_tool_responses(paused.task_id, {"ext-a": "open"})
        assert still.status == "input_required"
        assert [c["id"] for c in still.pending_tool_calls] == ["ext-b"]
        assert len(llm.calls) == 1

        result = await engine.resume_with_tool_responses(paused.task_id, {"ext-b": "closed"})
        assert result.final_message == "Both looked up"

    @pytest.mark.asyncio
    async def test_resume_of_task_not_waiting_raises(self, engine):
        result = await engine.execute("assistant", "hi")

        with pytest.raises(ValueError):
            await engine.resume_with_tool_responses(result.task_id, {"x": 1})
        with pytest.raises(ValueError):
            await engine.resume_with_tool_responses("missing", {"x": 1})

    @pytest.mark.asyncio
    async def test_local_handler_runs_inline(self, llm, external_stores):
        external = ExternalToolRegistry()
        external.register("lookup_ticket", handler=lambda args, ctx: {"status": "closed"})
        engine = AgentEngine(llm_provider=llm, stores=external_stores, external_tools=external)
        llm.responses = [calls(tool_call("lookup_ticket", {}, "ext-1")), text("Closed")]

        result = await engine.execute("support", "lookup")

        assert result.status == "completed"
        assert "closed" in llm.calls[1]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_wildcard_agent_delegates_any_unknown_name(self):
        stores = in_memory_stores([AgentDefinition(name="open", external_tools=["*"])])
        llm = ScriptedLLM([calls(tool_call("anything", {}, "x-1"))])
        engine = AgentEngine(llm_provider=llm, stores=stores)

        result = await engine.execute("open", "go")

        assert result.status == "input_required"
        assert result.pending_tool_calls[0]["name"] == "anything"

    @pytest.mark.asyncio
    async def test_cancel_paused_task(self, llm, external_stores):
        engine = AgentEngine(llm_provider=llm, stores=external_stores)
        llm.responses = [calls(tool_call("lookup_ticket", {}, "ext-1"))]
        paused = await engine.execute("support", "lookup", context_id="t1")

        assert await engine.cancel(paused.task_id) is True

        task = await external_stores.tasks.get_task(paused.task_id)
        assert task.state == TaskState.CANCELED
        with pytest.raises(ValueError):
            await engine.resume_with_tool_responses(paused.task_id, {"ext-1": "late"})
