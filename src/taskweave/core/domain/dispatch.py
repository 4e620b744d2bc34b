"""
Tool Dispatch Pipeline

Dispatches the tool calls of one model response, in emitted order:

1. Resolve the name to a built-in handler, an external tool or nothing.
2. Approval gate: a call that needs approval stops the batch before it
   runs. The already produced responses and the remaining calls are
   returned so a later resume never replays side effects.
3. Built-in tools run with a ``ToolContext``; exceptions become error
   observations unless the tool halts on error.
4. External tools run through a local handler when one exists, otherwise
   the response is marked pending.
5. Unknown tools produce an error observation so the model can recover.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from taskweave.core.domain.agent import AgentHooks
from taskweave.core.domain.context import ExecutionContext, StoreBundle, ToolContext
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.errors import ExecutionCanceledError, ToolError, UnknownToolError
from taskweave.core.domain.events import AgentEventType
from taskweave.core.domain.models import ApprovalRequest, ToolCall, ToolResponse
from taskweave.core.interfaces.tools import PENDING, CodeSandboxProtocol, ToolProtocol
from taskweave.infrastructure.tools.external import ExternalToolRegistry
from taskweave.infrastructure.tools.registry import ToolRegistry
from taskweave.infrastructure.tools.tool_converter import function_schema

PENDING_RESULT = "[pending external result]"


class ToolKind(str, Enum):
    BUILTIN = "builtin"
    EXTERNAL = "external"
    UNKNOWN = "unknown"


@dataclass
class ResolvedTool:
    kind: ToolKind
    handler: ToolProtocol | None = None


@dataclass
class BatchOutcome:
    """
    Result of dispatching (part of) a batch.

    Attributes:
        responses: Responses produced, in emitted order
        remaining: Calls held back by the approval gate (gated call first)
        approval: Approval request that stopped the batch, if any
    """

    responses: list[ToolResponse] = field(default_factory=list)
    remaining: list[ToolCall] = field(default_factory=list)
    approval: ApprovalRequest | None = None

    @property
    def awaiting_external(self) -> list[str]:
        return [r.tool_call_id for r in self.responses if r.pending]


def _truncate(value: Any, max_length: int = 200) -> str:
    text = value if isinstance(value, str) else json.dumps(value, default=str)
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class ToolDispatcher:
    def __init__(
        self,
        registry: ToolRegistry,
        stores: StoreBundle,
        external: ExternalToolRegistry | None = None,
        sandbox: CodeSandboxProtocol | None = None,
    ):
        self.registry = registry
        self.stores = stores
        self.external = external
        self.sandbox = sandbox
        self.logger = structlog.get_logger().bind(component="tool_dispatcher")

    def resolve(self, agent: AgentDefinition, name: str) -> ResolvedTool:
        if self.registry.is_enabled(agent, name):
            return ResolvedTool(ToolKind.BUILTIN, self.registry.get(name))
        if agent.is_external(name):
            return ResolvedTool(ToolKind.EXTERNAL)
        if name not in self.registry and (
            agent.accepts_any_external()
            or (self.external is not None and self.external.has_tool(agent.name, name))
        ):
            return ResolvedTool(ToolKind.EXTERNAL)
        return ResolvedTool(ToolKind.UNKNOWN)

    def tool_schemas(self, agent: AgentDefinition) -> list[dict[str, Any]]:
        """Function schemas offered to the model for ``agent``."""
        schemas = self.registry.schemas_for(agent)
        offered = {s["function"]["name"] for s in schemas}

        if self.external is not None:
            for tool in self.external.tools_for(agent.name):
                if tool.name not in offered and tool.name not in self.registry:
                    schemas.append(tool.schema())
                    offered.add(tool.name)

        for name in agent.external_tools:
            if name not in offered and name != "*":
                schemas.append(function_schema(name, f"External tool {name}"))
                offered.add(name)
        return schemas

    async def dispatch(
        self,
        calls: list[ToolCall],
        agent: AgentDefinition,
        context: ExecutionContext,
        hooks: AgentHooks | None = None,
        approved: frozenset[str] | set[str] = frozenset(),
    ) -> BatchOutcome:
        """
        Dispatch ``calls`` in order.

        Raises:
            ToolError: If a tool with ``halt_on_error`` fails
            ExecutionCanceledError: If the execution is cancelled
        """
        hooks = hooks or AgentHooks()
        outcome = BatchOutcome()

        for index, call in enumerate(calls):
            context.raise_if_cancelled()
            resolved = self.resolve(agent, call.name)

            if (
                resolved.kind != ToolKind.UNKNOWN
                and agent.approval.requires_approval(call.name)
                and call.id not in approved
            ):
                request = ApprovalRequest(
                    tool_call_id=call.id, tool_name=call.name, arguments=dict(call.arguments)
                )
                self.logger.info(
                    "approval_requested",
                    tool=call.name,
                    tool_call_id=call.id,
                    task_id=context.task_id,
                )
                await context.emit(
                    AgentEventType.APPROVAL_REQUESTED,
                    tool_call_id=call.id,
                    tool=call.name,
                    arguments=call.arguments,
                )
                outcome.approval = request
                outcome.remaining = list(calls[index:])
                return outcome

            call = await hooks.before_tool_call(context, call)
            await context.emit(
                AgentEventType.TOOL_CALL_STARTED,
                tool_call_id=call.id,
                tool=call.name,
                arguments=call.arguments,
                kind=resolved.kind.value,
            )

            response = await self._execute(call, resolved, agent, context)
            response = await hooks.after_tool_call(context, call, response)
            outcome.responses.append(response)

            await context.emit(
                AgentEventType.TOOL_CALL_FINISHED,
                tool_call_id=call.id,
                tool=call.name,
                success=response.success,
                pending=response.pending,
                error=response.error,
                output=_truncate(response.result) if response.success else None,
            )

            if response.error is not None:
                self.logger.warning("tool_failed", tool=call.name, error=response.error)
                if resolved.handler is not None and resolved.handler.halt_on_error:
                    raise ToolError(call.name, response.error)

            context.raise_if_cancelled()

        return outcome

    async def _execute(
        self,
        call: ToolCall,
        resolved: ResolvedTool,
        agent: AgentDefinition,
        context: ExecutionContext,
    ) -> ToolResponse:
        if resolved.kind == ToolKind.UNKNOWN:
            return ToolResponse(
                tool_call_id=call.id, name=call.name, error=UnknownToolError(call.name).message
            )

        tool_context = ToolContext(
            agent=agent,
            execution=context,
            stores=self.stores,
            sandbox=self.sandbox,
            tool_call_id=call.id,
        )

        if resolved.kind == ToolKind.EXTERNAL and (
            self.external is None or not self.external.has_tool(agent.name, call.name)
        ):
            self.logger.info("tool_deferred", tool=call.name, tool_call_id=call.id)
            return ToolResponse(
                tool_call_id=call.id, name=call.name, result=PENDING_RESULT, pending=True
            )

        try:
            self.logger.info("tool_execute", tool=call.name, args_keys=list(call.arguments))
            if resolved.kind == ToolKind.BUILTIN:
                result = await context.run_cancellable(
                    resolved.handler.execute(tool_context, **call.arguments)
                )
            else:
                result = await context.run_cancellable(
                    self.external.resolve(call.name, call.arguments, tool_context)
                )
        except ExecutionCanceledError:
            raise
        except Exception as e:
            self.logger.error("tool_exception", tool=call.name, error=str(e))
            return ToolResponse(
                tool_call_id=call.id, name=call.name, error=str(e) or type(e).__name__
            )

        if result is PENDING:
            self.logger.info("tool_deferred", tool=call.name, tool_call_id=call.id)
            return ToolResponse(
                tool_call_id=call.id, name=call.name, result=PENDING_RESULT, pending=True
            )

        self.logger.info("tool_complete", tool=call.name)
        return ToolResponse(tool_call_id=call.id, name=call.name, result=result)
