"""
External Tool Registry

Process-wide resolver for tools that live outside the engine. A tool may be
registered with a local handler, which runs inline, or without one, in which
case every call is deferred and the execution pauses until the result is
supplied through ``resume_with_tool_responses``.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from taskweave.core.domain.context import ToolContext
from taskweave.core.domain.definitions import EXTERNAL_WILDCARD
from taskweave.core.interfaces.tools import PENDING
from taskweave.infrastructure.tools.tool_converter import function_schema

ExternalHandler = Callable[[dict[str, Any], ToolContext], Any | Awaitable[Any]]


@dataclass
class ExternalTool:
    name: str
    description: str = ""
    parameters: dict[str, Any] | None = None
    handler: ExternalHandler | None = None
    agent: str = EXTERNAL_WILDCARD

    def schema(self) -> dict[str, Any]:
        return function_schema(
            self.name, self.description or f"External tool {self.name}", self.parameters
        )


class ExternalToolRegistry:
    """
    Tools keyed by ``(agent, name)``; agent ``"*"`` applies to every agent.

    Agent-specific registrations win over wildcard ones.
    """

    def __init__(self) -> None:
        self._tools: dict[tuple[str, str], ExternalTool] = {}
        self.logger = structlog.get_logger().bind(component="external_tools")

    def register(
        self,
        name: str,
        handler: ExternalHandler | None = None,
        agent: str = EXTERNAL_WILDCARD,
        description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> None:
        self._tools[(agent, name)] = ExternalTool(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
            agent=agent,
        )
        self.logger.info(
            "external_tool_registered", tool=name, agent=agent, local=handler is not None
        )

    def unregister(self, name: str, agent: str = EXTERNAL_WILDCARD) -> None:
        self._tools.pop((agent, name), None)

    def lookup(self, agent_name: str, tool_name: str) -> ExternalTool | None:
        return self._tools.get((agent_name, tool_name)) or self._tools.get(
            (EXTERNAL_WILDCARD, tool_name)
        )

    def has_tool(self, agent_name: str, tool_name: str) -> bool:
        return self.lookup(agent_name, tool_name) is not None

    def tools_for(self, agent_name: str) -> list[ExternalTool]:
        found: dict[str, ExternalTool] = {}
        for (agent, name), tool in self._tools.items():
            if agent == EXTERNAL_WILDCARD:
                found.setdefault(name, tool)
        for (agent, name), tool in self._tools.items():
            if agent == agent_name:
                found[name] = tool
        return list(found.values())

    async def resolve(
        self, tool_name: str, arguments: dict[str, Any], context: ToolContext
    ) -> Any:
        """Run the local handler, or return ``PENDING`` when there is none."""
        tool = self.lookup(context.agent.name, tool_name)
        if tool is None or tool.handler is None:
            return PENDING

        result = tool.handler(arguments, context)
        if inspect.isawaitable(result):
            result = await result
        return result
