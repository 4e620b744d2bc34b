"""
Agent Instance

Binds an ``AgentDefinition`` to a model provider and a set of lifecycle
hooks. An instance performs one model call per ``invoke``; the engine owns
the loop around it.
"""

from dataclasses import dataclass, field
from typing import Any

import structlog

from taskweave.core.domain.context import ExecutionContext
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.errors import ModelError
from taskweave.core.domain.events import AgentEventType
from taskweave.core.domain.models import ExecutionResult, ToolCall, ToolResponse
from taskweave.core.interfaces.llm import LLMProviderProtocol
from taskweave.infrastructure.tools.tool_converter import tool_call_from_provider


@dataclass
class ModelTurn:
    """Interpreted model response: plain content and/or tool calls."""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


class AgentHooks:
    """
    Lifecycle hooks with pass-through defaults.

    Subclass and override the hooks you need. Hooks that return a value may
    rewrite what flows through them.
    """

    async def before_task(self, context: ExecutionContext, task_input: str) -> str:
        return task_input

    async def after_task(self, context: ExecutionContext, final_answer: str) -> str:
        return final_answer

    async def before_model_call(
        self, context: ExecutionContext, messages: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return messages

    async def after_model_call(
        self, context: ExecutionContext, turn: ModelTurn
    ) -> ModelTurn:
        return turn

    async def before_tool_call(
        self, context: ExecutionContext, call: ToolCall
    ) -> ToolCall:
        return call

    async def after_tool_call(
        self, context: ExecutionContext, call: ToolCall, response: ToolResponse
    ) -> ToolResponse:
        return response

    async def on_finish(self, context: ExecutionContext, result: ExecutionResult) -> None:
        return None


class AgentInstance:
    """Definition + model provider + hooks."""

    def __init__(
        self,
        definition: AgentDefinition,
        llm_provider: LLMProviderProtocol,
        hooks: AgentHooks | None = None,
    ):
        self._definition = definition
        self.llm_provider = llm_provider
        self.hooks = hooks or AgentHooks()
        self.logger = structlog.get_logger().bind(
            component="agent_instance", agent=definition.name
        )

    @property
    def definition(self) -> AgentDefinition:
        return self._definition

    def _params(self, overrides: dict[str, Any] | None) -> dict[str, Any]:
        params = self._definition.model_settings.completion_params()
        for key in ("model", "temperature", "max_tokens"):
            if overrides and overrides.get(key) is not None:
                params[key] = overrides[key]
        return params

    async def invoke(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> ModelTurn:
        """
        Perform one non-streaming model call.

        Raises:
            ModelError: If the provider reports a failure or raises
        """
        params = self._params(overrides)
        if tools:
            params["tool_choice"] = "auto"
        try:
            result = await self.llm_provider.complete(
                messages=messages, tools=tools or None, **params
            )
        except ModelError:
            raise
        except Exception as e:
            self.logger.error("llm_call_failed", error=str(e))
            raise ModelError(f"Model call failed: {e}") from e

        if not result.get("success"):
            self.logger.error("llm_call_failed", error=result.get("error"))
            raise ModelError(f"Model call failed: {result.get('error', 'unknown error')}")

        tool_calls = [tool_call_from_provider(tc) for tc in result.get("tool_calls") or []]
        if tool_calls:
            self.logger.info(
                "tool_calls_received",
                count=len(tool_calls),
                tools=[tc.name for tc in tool_calls],
            )
        return ModelTurn(content=result.get("content") or None, tool_calls=tool_calls)

    async def invoke_stream(
        self,
        messages: list[dict[str, Any]],
        context: ExecutionContext,
        tools: list[dict[str, Any]] | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> ModelTurn:
        """
        Perform one streaming model call, emitting ``text_delta`` events.

        Tool calls are accumulated from start/delta/end chunks by index.

        Raises:
            ModelError: If the stream reports an error or raises
        """
        params = self._params(overrides)
        if tools:
            params["tool_choice"] = "auto"

        content = ""
        accumulated: dict[int, dict[str, Any]] = {}

        try:
            async for chunk in self.llm_provider.complete_stream(
                messages=messages, tools=tools or None, **params
            ):
                chunk_type = chunk.get("type")

                if chunk_type == "token":
                    token = chunk.get("content", "")
                    if token:
                        content += token
                        await context.emit(AgentEventType.TEXT_DELTA, content=token)

                elif chunk_type == "tool_call_start":
                    accumulated[chunk.get("index", 0)] = {
                        "id": chunk.get("id", ""),
                        "name": chunk.get("name", ""),
                        "arguments": "",
                    }

                elif chunk_type == "tool_call_delta":
                    index = chunk.get("index", 0)
                    if index in accumulated:
                        accumulated[index]["arguments"] += chunk.get("arguments_delta", "")

                elif chunk_type == "tool_call_end":
                    index = chunk.get("index", 0)
                    if index in accumulated:
                        accumulated[index]["arguments"] = chunk.get(
                            "arguments", accumulated[index]["arguments"]
                        )

                elif chunk_type == "error":
                    raise ModelError(
                        f"Model stream failed: {chunk.get('message', 'unknown error')}"
                    )
        except ModelError:
            raise
        except Exception as e:
            self.logger.error("stream_error", error=str(e))
            raise ModelError(f"Model stream failed: {e}") from e

        tool_calls = [
            tool_call_from_provider(accumulated[index]) for index in sorted(accumulated)
        ]
        if tool_calls:
            self.logger.info(
                "stream_tool_calls_received",
                count=len(tool_calls),
                tools=[tc.name for tc in tool_calls],
            )
        return ModelTurn(content=content or None, tool_calls=tool_calls)
