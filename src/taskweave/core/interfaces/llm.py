"""
LLM Provider Protocol

Contract for the model-calling collaborator. Providers report failures in
the result dict (``success: False``) the same way for every backend; the
engine decides whether a failure aborts the task.
"""

from collections.abc import AsyncIterator
from typing import Any, Protocol


class LLMProviderProtocol(Protocol):
    """
    Chat completion with native tool calling.

    ``complete`` returns::

        {
            "success": bool,
            "content": str | None,
            "tool_calls": [{"id": str, "name": str, "arguments": dict | str}, ...],
            "error": str,          # only if success is False
        }

    Providers that set ``supports_streaming`` also implement
    ``complete_stream`` yielding chunks with ``type`` in ``token``,
    ``tool_call_start``, ``tool_call_delta``, ``tool_call_end`` or ``error``.
    """

    supports_streaming: bool

    async def complete(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> dict[str, Any]:
        ...

    def complete_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        **params: Any,
    ) -> AsyncIterator[dict[str, Any]]:
        ...
