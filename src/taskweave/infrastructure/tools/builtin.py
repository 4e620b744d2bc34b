"""
Built-in Tools

Tools that run inside the engine process. ``final`` and ``transfer_to_agent``
are available to every agent; the others must be enabled in the agent's
``tools`` list.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import structlog

from taskweave.core.domain.context import ToolContext
from taskweave.core.domain.models import SessionMemory

if TYPE_CHECKING:
    from taskweave.infrastructure.tools.registry import ToolRegistry

FINAL_TOOL = "final"
TRANSFER_TOOL = "transfer_to_agent"
STORE_MEMORY_TOOL = "store_memory"
SEARCH_MEMORIES_TOOL = "search_memories"
EXECUTE_CODE_TOOL = "execute_code"


class BuiltinTool(ABC):
    """Base class for built-in tools."""

    halt_on_error: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        pass


class FinalTool(BuiltinTool):
    """Ends the loop with an explicit final answer."""

    @property
    def name(self) -> str:
        return FINAL_TOOL

    @property
    def description(self) -> str:
        return "Finish the task and return the final answer to the user."

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "answer": {"type": "string", "description": "The final answer"},
            },
            "required": ["answer"],
        }

    async def execute(self, context: ToolContext, answer: str = "", **kwargs: Any) -> Any:
        context.set_final_result(str(answer))
        return {"answer": answer}


class TransferToAgentTool(BuiltinTool):
    """Hands the conversation over to another registered agent."""

    @property
    def name(self) -> str:
        return TRANSFER_TOOL

    @property
    def description(self) -> str:
        return (
            "Transfer the conversation to another agent that is better suited "
            "for the task. The target agent sees the full history."
        )

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "agent_name": {
                    "type": "string",
                    "description": "Name of the agent to transfer to",
                },
                "reason": {
                    "type": "string",
                    "description": "Why the transfer is needed",
                },
            },
            "required": ["agent_name"],
        }

    async def execute(
        self,
        context: ToolContext,
        agent_name: str = "",
        reason: str | None = None,
        **kwargs: Any,
    ) -> Any:
        if not agent_name:
            raise ValueError("agent_name is required")
        if agent_name == context.agent.name:
            raise ValueError(f"Agent '{agent_name}' is already active")
        if context.agent.sub_agents and agent_name not in context.agent.sub_agents:
            raise ValueError(
                f"Agent '{context.agent.name}' may only transfer to: "
                f"{', '.join(context.agent.sub_agents)}"
            )
        if await context.stores.agents.get(agent_name) is None:
            raise ValueError(f"Agent not found: {agent_name}")

        context.request_handover(agent_name, reason)
        return {"transferred_to": agent_name, "reason": reason}


class StoreMemoryTool(BuiltinTool):
    """Persists a durable fact about the current user."""

    @property
    def name(self) -> str:
        return STORE_MEMORY_TOOL

    @property
    def description(self) -> str:
        return (
            "Remember information about the user across conversations. "
            "Store a short summary and optional individual facts."
        )

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "summary": {"type": "string", "description": "Short summary"},
                "facts": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Individual facts worth remembering",
                },
            },
            "required": ["summary"],
        }

    async def execute(
        self,
        context: ToolContext,
        summary: str = "",
        facts: list[str] | None = None,
        **kwargs: Any,
    ) -> Any:
        user_id = context.execution.user_id
        if not user_id:
            raise ValueError("Memory requires a user_id")
        if not summary:
            raise ValueError("summary is required")

        memory = SessionMemory(
            user_id=user_id,
            summary=summary,
            facts=list(facts or []),
            agent_id=context.agent.name,
            thread_id=context.execution.thread_id,
        )
        await context.stores.memories.store_memory(user_id, memory)
        return {"memory_id": memory.id, "stored": True}


class SearchMemoriesTool(BuiltinTool):
    """Searches the current user's memories across all threads."""

    @property
    def name(self) -> str:
        return SEARCH_MEMORIES_TOOL

    @property
    def description(self) -> str:
        return "Search what you remember about the user from earlier conversations."

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search terms"},
                "limit": {"type": "integer", "description": "Maximum results (default: 5)"},
            },
            "required": ["query"],
        }

    async def execute(
        self, context: ToolContext, query: str = "", limit: int = 5, **kwargs: Any
    ) -> Any:
        user_id = context.execution.user_id
        if not user_id:
            raise ValueError("Memory requires a user_id")

        memories = await context.stores.memories.search_memories(user_id, query, limit)
        return [
            {"summary": m.summary, "facts": m.facts, "timestamp": m.timestamp}
            for m in memories
        ]


class ExecuteCodeTool(BuiltinTool):
    """
    Runs a script in the configured sandbox.

    The agent's other enabled built-in tools are injected into the script
    namespace as async callables.
    """

    def __init__(self, registry: "ToolRegistry"):
        self.registry = registry
        self.logger = structlog.get_logger().bind(component="execute_code")

    @property
    def name(self) -> str:
        return EXECUTE_CODE_TOOL

    @property
    def description(self) -> str:
        return "Execute a Python script in a sandbox and return its output."

    @property
    def parameters_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "script": {"type": "string", "description": "Python source to run"},
            },
            "required": ["script"],
        }

    async def execute(self, context: ToolContext, script: str = "", **kwargs: Any) -> Any:
        if context.sandbox is None:
            raise RuntimeError("No code sandbox configured")

        injected: dict[str, Any] = {}
        for tool_name, tool in self.registry.tools_for(context.agent).items():
            if tool_name in (EXECUTE_CODE_TOOL, FINAL_TOOL, TRANSFER_TOOL):
                continue
            injected[tool_name] = _bind(tool, context)

        self.logger.info("sandbox_run", injected=sorted(injected), script_chars=len(script))
        outcome = await context.sandbox.run(script, injected)
        if outcome.get("error"):
            raise RuntimeError(outcome["error"])
        return {"output": outcome.get("output")}


def _bind(tool: Any, context: ToolContext):
    async def call(**kwargs: Any) -> Any:
        return await tool.execute(context, **kwargs)

    return call
