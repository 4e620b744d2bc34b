"""Shared fixtures: a scripted model provider and an in-memory engine."""

import asyncio
import json
from typing import Any

import pytest

from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.engine import AgentEngine
from taskweave.infrastructure.persistence.memory_stores import in_memory_stores


def text(content: str) -> dict[str, Any]:
    """Model response with plain content."""
    return {"success": True, "content": content, "tool_calls": []}


def tool_call(name: str, arguments: dict[str, Any] | None = None, call_id: str = "call-1"):
    return {"id": call_id, "name": name, "arguments": json.dumps(arguments or {})}


def calls(*tool_calls: dict[str, Any], content: str | None = None) -> dict[str, Any]:
    """Model response requesting tool calls."""
    return {"success": True, "content": content, "tool_calls": list(tool_calls)}


class ScriptedLLM:
    """
    Model provider replaying canned responses in order.

    Every call is recorded in ``calls``. With ``blocking=True`` each call
    waits until ``release`` is set, which lets tests observe a running task.
    When the script is exhausted the provider answers ``"done"``.
    """

    def __init__(
        self,
        responses: list[dict[str, Any]] | None = None,
        supports_streaming: bool = False,
        blocking: bool = False,
    ):
        self.responses = list(responses or [])
        self.supports_streaming = supports_streaming
        self.blocking = blocking
        self.release = asyncio.Event()
        self.calls: list[dict[str, Any]] = []

    async def complete(self, messages, tools=None, **params):
        self.calls.append(
            {"messages": [dict(m) for m in messages], "tools": tools, "params": params}
        )
        if self.blocking:
            await self.release.wait()
        if not self.responses:
            return text("done")
        return self.responses.pop(0)

    async def complete_stream(self, messages, tools=None, **params):
        result = await self.complete(messages, tools, **params)
        if not result.get("success"):
            yield {"type": "error", "message": result.get("error", "failed")}
            return

        content = result.get("content") or ""
        for start in range(0, len(content), 4):
            yield {"type": "token", "content": content[start : start + 4]}

        for index, call in enumerate(result.get("tool_calls") or []):
            yield {
                "type": "tool_call_start",
                "index": index,
                "id": call["id"],
                "name": call["name"],
            }
            yield {"type": "tool_call_delta", "index": index, "arguments_delta": call["arguments"]}
            yield {
                "type": "tool_call_end",
                "index": index,
                "id": call["id"],
                "arguments": call["arguments"],
            }


async def wait_for_calls(llm: ScriptedLLM, count: int = 1) -> None:
    """Yield to the loop until the provider has been called ``count`` times."""
    for _ in range(1000):
        if len(llm.calls) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"provider was called {len(llm.calls)} times, expected {count}")


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def stores():
    return in_memory_stores([AgentDefinition(name="assistant")])


@pytest.fixture
def engine(llm, stores):
    return AgentEngine(llm_provider=llm, stores=stores)
