"""
Reflection Subsystem

After an agent produces a final answer, an internal reflection agent reviews
the execution history and the draft. Its verdict may request exactly one
more attempt. Failures never change the original answer; the engine logs
them and emits a warning event.
"""

import json
from typing import Any

import structlog
from pydantic import BaseModel, Field, ValidationError

from taskweave.core.domain.agent import AgentInstance
from taskweave.core.domain.definitions import AgentDefinition, ModelSettings
from taskweave.core.domain.errors import ModelError, ReflectionError
from taskweave.core.interfaces.llm import LLMProviderProtocol
from taskweave.core.prompts.agent_prompts import (
    REFLECTION_FEEDBACK_TEMPLATE,
    REFLECTION_PROMPT,
)
from taskweave.infrastructure.tools.tool_converter import function_schema

REFLECT_TOOL = "reflect"
HISTORY_ENTRY_MAX_CHARS = 1000

logger = structlog.get_logger().bind(component="reflection")


class ReflectionVerdict(BaseModel):
    insights: str = ""
    quality_assessment: str = ""
    should_continue: bool = False
    reasons_if_continue: list[str] = Field(default_factory=list)

    def feedback(self) -> str:
        reasons = "\n".join(f"- {r}" for r in self.reasons_if_continue)
        return REFLECTION_FEEDBACK_TEMPLATE.format(
            quality_assessment=self.quality_assessment or "n/a",
            insights=self.insights or "n/a",
            reasons=reasons or "- Complete the task.",
        )


REFLECT_TOOL_SCHEMA = function_schema(
    REFLECT_TOOL,
    "Submit your verdict on the draft answer.",
    {
        "type": "object",
        "properties": {
            "insights": {"type": "string"},
            "quality_assessment": {"type": "string"},
            "should_continue": {"type": "boolean"},
            "reasons_if_continue": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["quality_assessment", "should_continue"],
    },
)


def reflection_agent(settings: ModelSettings) -> AgentDefinition:
    """Internal reviewer running on the reviewed agent's model settings."""
    return AgentDefinition(
        name="reflection",
        description="Reviews draft answers",
        system_prompt=REFLECTION_PROMPT,
        model_settings=settings.model_copy(update={"temperature": 0.0}),
    )


def format_history(messages: list[dict[str, Any]]) -> str:
    """Render chat messages (without the system prompt) as plain text."""
    lines = []
    for message in messages:
        role = message.get("role")
        if role == "system":
            continue
        content = message.get("content") or ""
        if message.get("tool_calls"):
            calls = ", ".join(
                f"{tc['function']['name']}({tc['function']['arguments']})"
                for tc in message["tool_calls"]
            )
            content = f"{content} [calls: {calls}]".strip()
        if role == "tool":
            role = f"tool:{message.get('name', '')}"
        lines.append(f"{role}: {content[:HISTORY_ENTRY_MAX_CHARS]}")
    return "\n".join(lines)


def _parse_verdict(arguments: dict[str, Any] | str) -> ReflectionVerdict:
    try:
        if isinstance(arguments, str):
            arguments = json.loads(arguments)
        return ReflectionVerdict.model_validate(arguments)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ReflectionError(f"Invalid reflection verdict: {e}") from e


async def run_reflection(
    llm_provider: LLMProviderProtocol,
    settings: ModelSettings,
    task_input: str,
    messages: list[dict[str, Any]],
    draft: str,
) -> ReflectionVerdict:
    """
    Ask the reflection agent for a verdict on ``draft``.

    The verdict is taken from the ``reflect`` tool call; a JSON object in
    plain content is accepted as a fallback.

    Raises:
        ReflectionError: If the model call fails or no verdict can be parsed
    """
    agent = AgentInstance(reflection_agent(settings), llm_provider)
    prompt = (
        f"## Task\n{task_input}\n\n"
        f"## Execution history\n{format_history(messages) or '(none)'}\n\n"
        f"## Draft answer\n{draft}"
    )
    review_messages = [
        {"role": "system", "content": agent.definition.system_prompt},
        {"role": "user", "content": prompt},
    ]

    try:
        turn = await agent.invoke(review_messages, tools=[REFLECT_TOOL_SCHEMA])
    except ModelError as e:
        raise ReflectionError(f"Reflection model call failed: {e.message}") from e

    for call in turn.tool_calls:
        if call.name == REFLECT_TOOL:
            verdict = _parse_verdict(call.arguments)
            break
    else:
        if not turn.content:
            raise ReflectionError("Reflection returned no verdict")
        verdict = _parse_verdict(turn.content)

    logger.info(
        "reflection_verdict",
        should_continue=verdict.should_continue,
        reasons=len(verdict.reasons_if_continue),
    )
    return verdict
