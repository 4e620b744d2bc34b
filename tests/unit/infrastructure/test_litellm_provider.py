"""
Unit Tests for LiteLLMProvider

litellm.acompletion is patched; no network calls are made.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from taskweave.infrastructure.llm.litellm_provider import LiteLLMProvider, RetryPolicy

ACOMPLETION = "taskweave.infrastructure.llm.litellm_provider.litellm.acompletion"
SLEEP = "taskweave.infrastructure.llm.litellm_provider.asyncio.sleep"


class RateLimitError(Exception):
    pass


def completion(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(total_tokens=12, prompt_tokens=8, completion_tokens=4),
    )


def native_tool_call(call_id, name, arguments):
    return SimpleNamespace(
        id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


def stream_chunk(content=None, tool_calls=None):
    delta = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(delta=delta)])


def stream_tool_delta(index, call_id=None, name=None, arguments=None):
    return SimpleNamespace(
        index=index, id=call_id, function=SimpleNamespace(name=name, arguments=arguments)
    )


async def stream_of(*chunks):
    for chunk in chunks:
        yield chunk


@pytest.fixture
def provider():
    return LiteLLMProvider(
        {
            "default_model": "main",
            "models": {"main": "gpt-4o-mini", "powerful": "gpt-4-turbo-preview"},
            "default_params": {"max_tokens": 2000},
            "model_params": {"gpt-4-turbo": {"temperature": 0.1}},
            "retry": {
                "max_attempts": 3,
                "backoff_multiplier": 2.0,
                "retry_on_errors": ["RateLimitError"],
            },
        }
    )


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy.from_config(None)
        assert policy.max_attempts == 3
        assert policy.retry_on_errors == []


class TestComplete:
    @pytest.mark.asyncio
    async def test_resolves_alias_and_merges_params(self, provider):
        with patch(ACOMPLETION, new=AsyncMock(return_value=completion("hi"))) as mocked:
            result = await provider.complete(
                [{"role": "user", "content": "hello"}], model="main", temperature=0.5
            )

        request = mocked.await_args.kwargs
        assert request["model"] == "gpt-4o-mini"
        assert request["max_tokens"] == 2000
        assert request["temperature"] == 0.5
        assert "tools" not in request
        assert result["success"] is True
        assert result["content"] == "hi"
        assert result["usage"]["total_tokens"] == 12

    @pytest.mark.asyncio
    async def test_model_family_params(self, provider):
        with patch(ACOMPLETION, new=AsyncMock(return_value=completion("hi"))) as mocked:
            await provider.complete([], model="powerful")

        request = mocked.await_args.kwargs
        assert request["model"] == "gpt-4-turbo-preview"
        assert request["temperature"] == 0.1
        assert "max_tokens" not in request

    @pytest.mark.asyncio
    async def test_tool_choice_dropped_without_tools(self, provider):
        with patch(ACOMPLETION, new=AsyncMock(return_value=completion("hi"))) as mocked:
            await provider.complete([], tool_choice="auto", unknown_param=1)

        assert "tool_choice" not in mocked.await_args.kwargs
        assert "unknown_param" not in mocked.await_args.kwargs

    @pytest.mark.asyncio
    async def test_returns_tool_calls(self, provider):
        tools = [{"type": "function", "function": {"name": "search"}}]
        response = completion(tool_calls=[native_tool_call("c1", "search", '{"q": "x"}')])

        with patch(ACOMPLETION, new=AsyncMock(return_value=response)) as mocked:
            result = await provider.complete([], tools=tools, tool_choice="auto")

        assert mocked.await_args.kwargs["tools"] == tools
        assert mocked.await_args.kwargs["tool_choice"] == "auto"
        assert result["tool_calls"] == [
            {"id": "c1", "name": "search", "arguments": '{"q": "x"}'}
        ]

    @pytest.mark.asyncio
    async def test_retries_matching_errors_with_backoff(self, provider):
        mocked = AsyncMock(side_effect=[RateLimitError("slow down"), completion("ok")])

        with patch(ACOMPLETION, new=mocked), patch(SLEEP, new=AsyncMock()) as sleep:
            result = await provider.complete([])

        assert result["success"] is True
        assert mocked.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, provider):
        mocked = AsyncMock(side_effect=RateLimitError("slow down"))

        with patch(ACOMPLETION, new=mocked), patch(SLEEP, new=AsyncMock()) as sleep:
            result = await provider.complete([])

        assert result == {
            "success": False,
            "error": "slow down",
            "error_type": "RateLimitError",
            "model": "gpt-4o-mini",
        }
        assert mocked.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, provider):
        mocked = AsyncMock(side_effect=ValueError("bad request"))

        with patch(ACOMPLETION, new=mocked):
            result = await provider.complete([])

        assert result["success"] is False
        assert result["error_type"] == "ValueError"
        assert mocked.await_count == 1


class TestCompleteStream:
    @pytest.mark.asyncio
    async def test_yields_tokens_and_tool_calls(self, provider):
        response = stream_of(
            stream_chunk(content="Hel"),
            stream_chunk(content="lo"),
            stream_chunk(tool_calls=[stream_tool_delta(0, "c1", "search", '{"q": ')]),
            stream_chunk(tool_calls=[stream_tool_delta(0, arguments='"tea"}')]),
            SimpleNamespace(choices=[]),
        )

        with patch(ACOMPLETION, new=AsyncMock(return_value=response)) as mocked:
            chunks = [c async for c in provider.complete_stream([])]

        assert mocked.await_args.kwargs["stream"] is True
        assert [c["type"] for c in chunks] == [
            "token",
            "token",
            "tool_call_start",
            "tool_call_delta",
            "tool_call_delta",
            "tool_call_end",
        ]
        assert chunks[2]["name"] == "search"
        assert chunks[-1] == {
            "type": "tool_call_end",
            "index": 0,
            "id": "c1",
            "arguments": '{"q": "tea"}',
        }

    @pytest.mark.asyncio
    async def test_failure_becomes_error_chunk(self, provider):
        with patch(ACOMPLETION, new=AsyncMock(side_effect=RuntimeError("boom"))):
            chunks = [c async for c in provider.complete_stream([])]

        assert chunks == [{"type": "error", "message": "boom"}]
