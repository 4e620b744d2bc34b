"""
Tool Registry

Name-indexed table of built-in tool handlers. Registries are populated at
startup; per-agent views are derived from the agent's enabled tool names.
"""

from typing import Any

import structlog

from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.interfaces.tools import ToolProtocol
from taskweave.infrastructure.tools.builtin import (
    FINAL_TOOL,
    TRANSFER_TOOL,
    ExecuteCodeTool,
    FinalTool,
    SearchMemoriesTool,
    StoreMemoryTool,
    TransferToAgentTool,
)
from taskweave.infrastructure.tools.tool_converter import tools_to_openai_format

ALWAYS_AVAILABLE = (FINAL_TOOL, TRANSFER_TOOL)


class ToolRegistry:
    def __init__(self, tools: list[ToolProtocol] | None = None):
        self._tools: dict[str, ToolProtocol] = {}
        self.logger = structlog.get_logger().bind(component="tool_registry")
        for tool in tools or []:
            self.register(tool)

    @classmethod
    def with_builtins(cls, include_code: bool = False) -> "ToolRegistry":
        """Registry holding the engine's built-in tools."""
        registry = cls(
            [FinalTool(), TransferToAgentTool(), StoreMemoryTool(), SearchMemoriesTool()]
        )
        if include_code:
            registry.register(ExecuteCodeTool(registry))
        return registry

    def register(self, tool: ToolProtocol) -> None:
        if tool.name in self._tools:
            self.logger.warning("tool_replaced", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> ToolProtocol | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def is_enabled(self, agent: AgentDefinition, name: str) -> bool:
        return name in self._tools and (name in ALWAYS_AVAILABLE or name in agent.tools)

    def tools_for(self, agent: AgentDefinition) -> dict[str, ToolProtocol]:
        """Built-in tools the agent may call, in registration order."""
        return {
            name: tool for name, tool in self._tools.items() if self.is_enabled(agent, name)
        }

    def schemas_for(self, agent: AgentDefinition) -> list[dict[str, Any]]:
        return tools_to_openai_format(self.tools_for(agent))
