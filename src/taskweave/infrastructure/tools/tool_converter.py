"""
Tool Converter - OpenAI function calling format conversion.

This module converts tool definitions and tool responses to and from the
format used by OpenAI-style native function calling.
"""

import json
from typing import Any

import structlog

from taskweave.core.domain.models import ToolCall, ToolResponse
from taskweave.core.interfaces.tools import ToolProtocol

logger = structlog.get_logger().bind(component="tool_converter")

OPEN_PARAMETERS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "additionalProperties": True,
}


def tool_to_openai_format(tool: ToolProtocol) -> dict[str, Any]:
    return function_schema(tool.name, tool.description, tool.parameters_schema)


def function_schema(
    name: str, description: str, parameters: dict[str, Any] | None = None
) -> dict[str, Any]:
    """
    Build one entry of the ``tools`` list sent to the model.

    Returns:
        {
            "type": "function",
            "function": {
                "name": "tool_name",
                "description": "Tool description",
                "parameters": { JSON Schema }
            }
        }
    """
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters or OPEN_PARAMETERS_SCHEMA,
        },
    }


def tools_to_openai_format(tools: dict[str, ToolProtocol]) -> list[dict[str, Any]]:
    """
    Convert internal tool definitions to OpenAI function calling format.

    Args:
        tools: Dictionary mapping tool names to ToolProtocol instances

    Returns:
        List of tool definitions in OpenAI format, in insertion order.
    """
    return [tool_to_openai_format(tool) for tool in tools.values()]


def parse_tool_arguments(raw: Any, tool_name: str = "") -> dict[str, Any]:
    """
    Parse tool-call arguments that may arrive as a JSON string or a dict.

    Malformed JSON yields an empty argument dict; the tool then reports the
    missing arguments to the model.
    """
    if isinstance(raw, dict):
        return dict(raw)
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("tool_args_parse_failed", tool=tool_name, raw_args=str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


def tool_call_from_provider(raw: dict[str, Any]) -> ToolCall:
    """
    Normalize a provider tool call.

    Accepts the flat form ``{"id", "name", "arguments"}`` as well as the
    OpenAI form ``{"id", "function": {"name", "arguments"}}``.
    """
    function = raw.get("function") or {}
    name = raw.get("name") or function.get("name") or ""
    arguments = raw.get("arguments", function.get("arguments"))
    return ToolCall(
        id=raw.get("id") or "",
        name=name,
        arguments=parse_tool_arguments(arguments, name),
    )


def tool_response_to_content(
    response: ToolResponse,
    max_output_chars: int = 20000,
) -> str:
    """
    Serialize a tool response as the content of a ``tool`` message.

    IMPORTANT: Large outputs are automatically truncated to prevent token
    overflow errors. The default limit is 20,000 chars (~5,000 tokens).

    Args:
        response: Tool response to serialize
        max_output_chars: Max characters for large fields (default: 20000)

    Returns:
        JSON string of the observation dict.
    """
    truncated = _truncate_tool_result(response.to_observation(), max_output_chars)
    return json.dumps(truncated, ensure_ascii=False, default=str)


def _truncate_tool_result(
    result: dict[str, Any],
    max_chars: int,
) -> dict[str, Any]:
    """
    Truncate large fields in a tool observation.

    Args:
        result: Original observation dictionary
        max_chars: Maximum characters per large field

    Returns:
        Observation dictionary with truncated fields
    """
    truncated = result.copy()

    # Fields that commonly contain large outputs
    large_fields = ["output", "result", "content", "stdout", "stderr", "data"]

    for field in large_fields:
        if field in truncated:
            value = truncated[field]
            if isinstance(value, str) and len(value) > max_chars:
                overflow = len(value) - max_chars
                truncated[field] = (
                    value[:max_chars]
                    + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
                )
            elif isinstance(value, (list, dict)):
                value_str = json.dumps(value, ensure_ascii=False, default=str)
                if len(value_str) > max_chars:
                    overflow = len(value_str) - max_chars
                    truncated[field] = (
                        value_str[:max_chars]
                        + f"\n\n[... TRUNCATED - {overflow} more chars ...]"
                    )

    return truncated
