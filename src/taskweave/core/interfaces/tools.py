"""
Tool Protocols

Built-in tools run inside the engine process and receive a ``ToolContext``.
External tools are resolved by a collaborator outside the engine (a UI, an
MCP-style tool server) and may answer later.
"""

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from taskweave.core.domain.context import ToolContext


class _Pending:
    """Sentinel returned by external resolvers that answer out of band."""

    def __repr__(self) -> str:
        return "PENDING"


PENDING = _Pending()


class ToolProtocol(Protocol):
    """
    Built-in tool handler.

    ``execute`` returns any JSON-serializable result. Raising marks the call
    as failed; when ``halt_on_error`` is True the failure aborts the task.
    """

    @property
    def name(self) -> str:
        ...

    @property
    def description(self) -> str:
        ...

    @property
    def parameters_schema(self) -> dict[str, Any]:
        ...

    @property
    def halt_on_error(self) -> bool:
        ...

    async def execute(self, context: "ToolContext", **kwargs: Any) -> Any:
        ...


class ExternalToolResolver(Protocol):
    """Resolves external tools; returns ``PENDING`` to defer the result."""

    def has_tool(self, agent_name: str, tool_name: str) -> bool:
        ...

    async def resolve(
        self, tool_name: str, arguments: dict[str, Any], context: "ToolContext"
    ) -> Any:
        ...


class CodeSandboxProtocol(Protocol):
    """Sandboxed script runtime used by code-writing agents."""

    async def run(self, script: str, injected_tools: dict[str, Any]) -> dict[str, Any]:
        """Return ``{"output": ..., "error": str | None}``."""
        ...
