"""Unit Tests for domain models and agent definitions."""

import json

import pytest
from pydantic import ValidationError

from taskweave.core.domain.definitions import AgentDefinition, ApprovalPolicy, ModelSettings
from taskweave.core.domain.models import (
    DEFAULT_THREAD_TITLE,
    UNTITLED_THREAD_TITLE,
    ApprovalRequest,
    ApprovalStatus,
    MessageRole,
    PausedExecution,
    SessionMemory,
    Step,
    Task,
    TaskState,
    Thread,
    ToolCall,
    ToolResponse,
)


class TestThread:
    def test_title_comes_from_first_message(self):
        thread = Thread(id="t1", agent_id="assistant")
        thread.update_with_message("  Plan my trip to Lisbon  ")
        thread.update_with_message("And book a hotel")

        assert thread.title == "Plan my trip to Lisbon"
        assert thread.message_count == 2
        assert thread.last_message == "And book a hotel"

    def test_title_is_truncated(self):
        thread = Thread(id="t1", agent_id="assistant")
        thread.update_with_message("x" * 200)
        assert len(thread.title) == 80
        assert len(thread.last_message) == 100

    def test_blank_first_message_gives_untitled(self):
        thread = Thread(id="t1", agent_id="assistant")
        thread.update_with_message("   ")
        assert thread.title == UNTITLED_THREAD_TITLE

    def test_custom_title_is_kept(self):
        thread = Thread(id="t1", agent_id="assistant", title="Mine")
        thread.update_with_message("Hello")
        assert thread.title == "Mine"
        assert Thread(id="t2", agent_id="a").title == DEFAULT_THREAD_TITLE


class TestStep:
    def test_assistant_tool_call_message(self):
        step = Step(
            role=MessageRole.ASSISTANT,
            tool_calls=[ToolCall(id="c1", name="search", arguments={"q": "tea"})],
        )
        message = step.to_message()

        assert message["role"] == "assistant"
        assert message["tool_calls"][0]["type"] == "function"
        assert json.loads(message["tool_calls"][0]["function"]["arguments"]) == {"q": "tea"}

    def test_tool_message_carries_call_id(self):
        step = Step(role=MessageRole.TOOL, content="{}", tool_call_id="c1", name="search")
        assert step.to_message() == {
            "role": "tool",
            "content": "{}",
            "tool_call_id": "c1",
            "name": "search",
        }

    def test_dict_round_trip_keeps_identity(self):
        step = Step(role=MessageRole.USER, content="hi", agent_id="assistant")
        restored = Step.from_dict(step.to_dict())
        assert restored.id == step.id
        assert restored.role == MessageRole.USER


class TestToolResponse:
    def test_observation_for_error(self):
        response = ToolResponse(tool_call_id="c1", name="x", error="bad")
        assert response.to_observation() == {"success": False, "error": "bad"}
        assert not response.success

    def test_pending_is_not_success(self):
        assert not ToolResponse(tool_call_id="c1", name="x", pending=True).success


class TestApprovalRequest:
    def test_resolve_once(self):
        request = ApprovalRequest(tool_call_id="c1", tool_name="delete")
        request.resolve(False, "too risky")

        assert request.status == ApprovalStatus.REJECTED
        assert request.resolved_at is not None
        with pytest.raises(ValueError):
            request.resolve(True)


class TestTaskSerialization:
    def test_paused_task_survives_serialization(self):
        call = ToolCall(id="c1", name="delete", arguments={"path": "/tmp/x"})
        task = Task(
            id="task-1",
            agent_id="assistant",
            input="clean up",
            thread_id="t1",
            state=TaskState.INPUT_REQUIRED,
            paused=PausedExecution(
                agent_name="assistant",
                pending_calls=[call],
                approvals={"c1": ApprovalRequest(tool_call_id="c1", tool_name="delete")},
                assistant_step=Step(role=MessageRole.ASSISTANT, tool_calls=[call]),
                iterations=2,
                final_result="Cleaned",
            ),
        )

        restored = Task.from_dict(json.loads(json.dumps(task.to_dict())))

        assert restored.state == TaskState.INPUT_REQUIRED
        assert restored.paused.pending_calls[0].arguments == {"path": "/tmp/x"}
        assert restored.paused.pending_approvals()[0].tool_name == "delete"
        assert restored.paused.iterations == 2
        assert restored.paused.final_result == "Cleaned"


class TestSessionMemory:
    def test_matches_any_term(self):
        memory = SessionMemory(user_id="u1", summary="Likes tea", facts=["Lives in Oslo"])
        assert memory.matches("oslo weather")
        assert memory.matches("")
        assert not memory.matches("coffee")


class TestAgentDefinition:
    def test_defaults(self):
        definition = AgentDefinition(name="assistant")
        assert definition.max_iterations == 10
        assert definition.model_settings.model == "main"
        assert definition.render_system_prompt() == "You are assistant, a helpful assistant."

    def test_is_immutable(self):
        definition = AgentDefinition(name="assistant")
        with pytest.raises(ValidationError):
            definition.name = "other"

    @pytest.mark.parametrize("name", ["", "two words", "../escaped", ".hidden", "a/b", "-flag"])
    def test_invalid_names(self, name):
        with pytest.raises(ValidationError):
            AgentDefinition(name=name)

    def test_invalid_iteration_budget(self):
        with pytest.raises(ValidationError):
            ModelSettings(max_iterations=0)

    def test_prompt_keeps_literal_braces(self):
        definition = AgentDefinition(name="coder", system_prompt='Reply as {"json": true}')
        assert definition.render_system_prompt("u1") == 'Reply as {"json": true}'

    def test_approval_policy(self):
        assert ApprovalPolicy(required=True).requires_approval("anything")
        assert ApprovalPolicy(tools=["delete"]).requires_approval("delete")
        assert not ApprovalPolicy(tools=["delete"]).requires_approval("read")

    def test_completion_params(self):
        settings = ModelSettings(model="fast", temperature=0.5, max_tokens=100)
        assert settings.completion_params() == {
            "model": "fast",
            "temperature": 0.5,
            "max_tokens": 100,
        }

    def test_history_size_must_be_positive(self):
        assert AgentDefinition(name="a", history_size=4).history_size == 4
        assert AgentDefinition(name="a").history_size is None
        with pytest.raises(ValidationError):
            AgentDefinition(name="a", history_size=0)
