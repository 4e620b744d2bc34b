"""
Agent Execution Engine

Drives the think/act loop for registered agents:

1. Resolve or create the thread and append the incoming user message
2. Loop: model call -> dispatch tool calls -> append steps, until the model
   answers with plain content or calls ``final``
3. Optionally reflect on the answer and retry once
4. Return the final answer, a terminal failure or cancellation, or a paused
   state awaiting approvals or external tool results

At most one task per thread is working at any time; a second execution for
a busy thread is rejected with ``ThreadBusyError``.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from taskweave.core.domain.agent import AgentHooks, AgentInstance
from taskweave.core.domain.context import (
    ExecutionContext,
    FanOutSink,
    QueueSink,
    StoreBundle,
)
from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.dispatch import ToolDispatcher
from taskweave.core.domain.errors import (
    AgentNotFoundError,
    ApprovalRejectedError,
    ExecutionCanceledError,
    IterationLimitExceededError,
    ReflectionError,
    TaskweaveError,
)
from taskweave.core.domain.events import AgentEvent, AgentEventType
from taskweave.core.domain.lifecycle import ThreadLockManager, can_transition, transition
from taskweave.core.domain.models import (
    ApprovalStatus,
    ExecutionResult,
    MessageRole,
    PausedExecution,
    Step,
    Task,
    TaskState,
    Thread,
    ToolCall,
    ToolResponse,
    new_id,
)
from taskweave.core.domain.reflection import run_reflection
from taskweave.core.interfaces.events import EventSinkProtocol
from taskweave.core.interfaces.llm import LLMProviderProtocol
from taskweave.core.interfaces.tools import CodeSandboxProtocol
from taskweave.core.prompts.agent_prompts import EMPTY_RESPONSE_NUDGE
from taskweave.infrastructure.tools.external import ExternalToolRegistry
from taskweave.infrastructure.tools.registry import ToolRegistry
from taskweave.infrastructure.tools.tool_converter import tool_response_to_content

_PAUSED = object()


@dataclass
class _RunState:
    """Mutable loop state of one engine call."""

    agent: AgentDefinition
    messages: list[dict[str, Any]]
    budget: int
    iterations: int = 0
    streaming: bool = False
    history: list[dict[str, Any]] = field(default_factory=list)


class AgentEngine:
    """
    Executes tasks against registered agents.

    Args:
        llm_provider: Model provider shared by all agents
        stores: Session, memory, thread, task and agent stores
        tool_registry: Built-in tools (defaults to the engine built-ins)
        external_tools: Process-wide external tool resolver
        sandbox: Code sandbox backing the ``execute_code`` tool
        event_sink: Process-wide sink receiving every event (e.g. a broadcaster)
    """

    def __init__(
        self,
        llm_provider: LLMProviderProtocol,
        stores: StoreBundle,
        tool_registry: ToolRegistry | None = None,
        external_tools: ExternalToolRegistry | None = None,
        sandbox: CodeSandboxProtocol | None = None,
        event_sink: EventSinkProtocol | None = None,
    ):
        self.llm_provider = llm_provider
        self.stores = stores
        self.tool_registry = tool_registry or ToolRegistry.with_builtins(
            include_code=sandbox is not None
        )
        self.external_tools = external_tools
        self.dispatcher = ToolDispatcher(self.tool_registry, stores, external_tools, sandbox)
        self.event_sink = event_sink
        self.thread_locks = ThreadLockManager()
        self._hooks: dict[str, AgentHooks] = {}
        self._running: dict[str, ExecutionContext] = {}
        self.logger = structlog.get_logger().bind(component="agent_engine")

    # ------------------------------------------------------------------
    # Agent registry
    # ------------------------------------------------------------------

    async def register_agent(
        self, definition: AgentDefinition, hooks: AgentHooks | None = None
    ) -> None:
        await self.stores.agents.register(definition)
        if hooks is not None:
            self._hooks[definition.name] = hooks
        self.logger.info("agent_registered", agent=definition.name)

    async def update_agent(
        self, definition: AgentDefinition, hooks: AgentHooks | None = None
    ) -> None:
        """Replace a registered definition; running executions keep the old one."""
        if await self.stores.agents.get(definition.name) is None:
            raise AgentNotFoundError(definition.name)
        await self.stores.agents.update(definition)
        if hooks is not None:
            self._hooks[definition.name] = hooks
        self.logger.info("agent_updated", agent=definition.name)

    async def get_agent(self, name: str) -> AgentDefinition:
        definition = await self.stores.agents.get(name)
        if definition is None:
            raise AgentNotFoundError(name)
        return definition

    async def list_agents(
        self, cursor: str | None = None, limit: int | None = None
    ) -> tuple[list[AgentDefinition], str | None]:
        return await self.stores.agents.list(cursor=cursor, limit=limit)

    def _hooks_for(self, agent_name: str) -> AgentHooks:
        return self._hooks.get(agent_name) or AgentHooks()

    # ------------------------------------------------------------------
    # Execution entry points
    # ------------------------------------------------------------------

    async def execute(
        self,
        agent_name: str,
        task: str,
        params: dict[str, Any] | None = None,
        context_id: str | None = None,
        user_id: str | None = None,
        task_id: str | None = None,
    ) -> ExecutionResult:
        """
        Execute ``task`` with the named agent.

        Without ``context_id`` the execution is stateless: no thread is
        created and no steps are persisted, but the task is still recorded.

        Returns:
            ExecutionResult with status completed, canceled or input_required

        Raises:
            AgentNotFoundError: If the agent is not registered
            ThreadBusyError: If the thread already has a working task
            IterationLimitExceededError: If the iteration budget is exhausted
            ToolError: If a halting tool fails
            ModelError: If the model call fails
        """
        return await self._start(
            agent_name, task, params, context_id, user_id, task_id, None, False
        )

    async def execute_stream(
        self,
        agent_name: str,
        task: str,
        event_sink: EventSinkProtocol,
        params: dict[str, Any] | None = None,
        context_id: str | None = None,
        user_id: str | None = None,
        task_id: str | None = None,
    ) -> ExecutionResult:
        """Same as ``execute``; every event is pushed to ``event_sink`` as it happens."""
        return await self._start(
            agent_name, task, params, context_id, user_id, task_id, event_sink, True
        )

    async def stream(
        self,
        agent_name: str,
        task: str,
        params: dict[str, Any] | None = None,
        context_id: str | None = None,
        user_id: str | None = None,
        task_id: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """
        Yield events of an execution as an async iterator.

        Errors of the execution are re-raised after the last event.
        """
        sink = QueueSink()
        runner = asyncio.create_task(
            self.execute_stream(
                agent_name,
                task,
                sink,
                params=params,
                context_id=context_id,
                user_id=user_id,
                task_id=task_id,
            )
        )
        runner.add_done_callback(lambda _: sink.queue.put_nowait(None))
        try:
            while True:
                event = await sink.queue.get()
                if event is None:
                    break
                yield event
        finally:
            if not runner.done():
                runner.cancel()
        await runner

    async def _start(
        self,
        agent_name: str,
        task_input: str,
        params: dict[str, Any] | None,
        context_id: str | None,
        user_id: str | None,
        task_id: str | None,
        sink: EventSinkProtocol | None,
        streaming: bool,
    ) -> ExecutionResult:
        definition = await self.get_agent(agent_name)
        task = Task(
            id=task_id or new_id(),
            agent_id=definition.name,
            input=task_input,
            thread_id=context_id,
            user_id=user_id,
        )
        ctx = self._acquire(task, definition.name, sink, params)

        self.logger.info(
            "execute_start",
            task_id=task.id,
            thread_id=context_id,
            agent=definition.name,
            task=task_input[:100],
        )

        try:
            hooks = self._hooks_for(definition.name)
            task_input = await hooks.before_task(ctx, task_input)
            history = await self._prepare_thread(task, definition, task_input)
            await self.stores.tasks.create_task(task)
            transition(task, TaskState.WORKING)
            await self.stores.tasks.save_task(task)
        except BaseException:
            self._release(task)
            raise

        state = _RunState(
            agent=definition,
            messages=[{"role": "system", "content": ""}, *history],
            budget=definition.max_iterations,
            streaming=streaming,
        )
        await ctx.emit(
            AgentEventType.EXECUTION_STARTED,
            input=task_input,
            agent=definition.name,
            resumed=False,
        )
        return await self._drive(task, ctx, state)

    async def _prepare_thread(
        self, task: Task, definition: AgentDefinition, task_input: str
    ) -> list[dict[str, Any]]:
        """Create the thread if needed and record the incoming message."""
        if not task.thread_id:
            return [{"role": MessageRole.USER.value, "content": task_input}]

        thread = await self.stores.threads.get_thread(task.thread_id)
        if thread is None:
            await self.stores.threads.create_thread(
                Thread(id=task.thread_id, agent_id=definition.name, user_id=task.user_id)
            )
            self.logger.info("thread_created", thread_id=task.thread_id, agent=definition.name)

        await self.stores.threads.update_thread_with_message(task.thread_id, task_input)
        await self.stores.sessions.append_step(
            task.thread_id,
            Step(role=MessageRole.USER, content=task_input, agent_id=definition.name),
        )
        messages = await self.stores.sessions.list_messages(task.thread_id)
        return trim_history(messages, definition.history_size)

    def _acquire(
        self,
        task: Task,
        agent_id: str,
        sink: EventSinkProtocol | None,
        params: dict[str, Any] | None = None,
    ) -> ExecutionContext:
        if task.thread_id:
            self.thread_locks.acquire(task.thread_id, task.id)
        ctx = ExecutionContext(
            task_id=task.id,
            thread_id=task.thread_id,
            agent_id=agent_id,
            user_id=task.user_id,
            sink=FanOutSink(sink, self.event_sink),
            params=dict(params or {}),
        )
        self._running[task.id] = ctx
        return ctx

    def _release(self, task: Task) -> None:
        if task.thread_id:
            self.thread_locks.release(task.thread_id, task.id)
        self._running.pop(task.id, None)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _drive(
        self,
        task: Task,
        ctx: ExecutionContext,
        state: _RunState,
        resume: PausedExecution | None = None,
    ) -> ExecutionResult:
        try:
            while True:
                answer = await self._run_loop(task, ctx, state, resume)
                resume = None
                if answer is None:
                    result = self._paused_result(task, ctx, state.history)
                    break
                if await self._reflect(task, ctx, state, answer):
                    continue
                result = await self._complete(task, ctx, state, answer)
                break

        except ExecutionCanceledError:
            result = await self._cancelled(task, ctx, state)

        except asyncio.CancelledError:
            self.logger.warning("execute_interrupted", task_id=task.id)
            if can_transition(task, TaskState.CANCELED):
                transition(task, TaskState.CANCELED)
                await self.stores.tasks.save_task(task)
            raise

        except Exception as e:
            task.error = str(e)
            if can_transition(task, TaskState.FAILED):
                transition(task, TaskState.FAILED)
            await self.stores.tasks.save_task(task)
            error = (
                e.to_dict()
                if isinstance(e, TaskweaveError)
                else {"code": "INTERNAL_ERROR", "message": str(e)}
            )
            self.logger.error(
                "execute_failed",
                task_id=task.id,
                thread_id=task.thread_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            await ctx.emit(AgentEventType.EXECUTION_ERRORED, error=error)
            raise

        finally:
            self._release(task)

        await self._hooks_for(ctx.agent_id).on_finish(ctx, result)
        return result

    async def _run_loop(
        self,
        task: Task,
        ctx: ExecutionContext,
        state: _RunState,
        resume: PausedExecution | None = None,
    ) -> str | None:
        """Run until a final answer (returned) or a pause (None)."""
        if resume is not None:
            ctx.final_result = resume.final_result
            outcome = await self._dispatch_batch(
                task, ctx, state, resume.assistant_step, resume.pending_calls, resume
            )
            if outcome is _PAUSED:
                return None
            if outcome is not None:
                return outcome

        while True:
            ctx.raise_if_cancelled()
            if state.iterations >= state.budget:
                raise IterationLimitExceededError(state.budget)
            state.iterations += 1
            task.iterations += 1

            agent = state.agent
            instance = AgentInstance(agent, self.llm_provider, self._hooks_for(agent.name))
            state.messages[0] = {
                "role": MessageRole.SYSTEM.value,
                "content": agent.render_system_prompt(task.user_id),
            }
            messages = await instance.hooks.before_model_call(ctx, list(state.messages))
            tools = self.dispatcher.tool_schemas(agent)

            self.logger.info(
                "loop_step", task_id=task.id, step=state.iterations, agent=agent.name
            )
            await ctx.emit(
                AgentEventType.MODEL_CALL_STARTED,
                iteration=state.iterations,
                model=agent.model_settings.model,
            )

            provider_streams = bool(getattr(self.llm_provider, "supports_streaming", False))
            if state.streaming and provider_streams:
                turn = await ctx.run_cancellable(
                    instance.invoke_stream(messages, ctx, tools, ctx.params)
                )
            else:
                turn = await ctx.run_cancellable(instance.invoke(messages, tools, ctx.params))
                if state.streaming and turn.content:
                    await ctx.emit(AgentEventType.TEXT_DELTA, content=turn.content)
            turn = await instance.hooks.after_model_call(ctx, turn)

            if turn.tool_calls:
                step = Step(
                    role=MessageRole.ASSISTANT,
                    content=turn.content,
                    tool_calls=turn.tool_calls,
                    agent_id=agent.name,
                )
                state.messages.append(step.to_message())
                outcome = await self._dispatch_batch(task, ctx, state, step, turn.tool_calls)
                if outcome is _PAUSED:
                    return None
                if outcome is not None:
                    return outcome
                continue

            if turn.content:
                self.logger.info(
                    "final_answer_received", task_id=task.id, step=state.iterations
                )
                return turn.content

            self.logger.warning("empty_response", task_id=task.id, step=state.iterations)
            state.messages.append(
                {"role": MessageRole.USER.value, "content": EMPTY_RESPONSE_NUDGE}
            )

    async def _dispatch_batch(
        self,
        task: Task,
        ctx: ExecutionContext,
        state: _RunState,
        step: Step | None,
        calls: list[ToolCall],
        prior: PausedExecution | None = None,
    ) -> Any:
        """
        Dispatch a batch and append its steps.

        Returns ``_PAUSED`` if the execution paused, the final answer if the
        ``final`` tool was called, otherwise None.
        """
        approved = set()
        approvals = {}
        responses: list[ToolResponse] = []
        if prior is not None:
            approvals = dict(prior.approvals)
            approved = {
                call_id
                for call_id, request in approvals.items()
                if request.status == ApprovalStatus.APPROVED
            }
            responses = list(prior.responses)

        outcome = await self.dispatcher.dispatch(
            calls, state.agent, ctx, self._hooks_for(state.agent.name), approved
        )
        responses.extend(outcome.responses)
        if outcome.approval is not None:
            approvals[outcome.approval.tool_call_id] = outcome.approval

        for response in outcome.responses:
            state.history.append(
                {
                    "type": "tool_call",
                    "step": state.iterations,
                    "agent": state.agent.name,
                    "tool": response.name,
                    "tool_call_id": response.tool_call_id,
                    "result": response.to_observation(),
                    "pending": response.pending,
                }
            )

        awaiting = [r.tool_call_id for r in responses if r.pending]
        if outcome.remaining or awaiting:
            if ctx.handover is not None:
                await self._apply_handover(ctx, state)
            await self._pause(
                task,
                ctx,
                PausedExecution(
                    agent_name=state.agent.name,
                    messages=list(state.messages),
                    pending_calls=outcome.remaining,
                    responses=responses,
                    approvals=approvals,
                    awaiting_external=awaiting,
                    iterations=state.iterations,
                    assistant_step=step,
                    final_result=ctx.final_result,
                ),
            )
            return _PAUSED

        tool_steps = [
            Step(
                role=MessageRole.TOOL,
                content=tool_response_to_content(r),
                tool_call_id=r.tool_call_id,
                name=r.name,
                agent_id=state.agent.name,
            )
            for r in responses
        ]
        state.messages.extend(s.to_message() for s in tool_steps)
        await self._persist(task, [step, *tool_steps] if step else tool_steps)

        if ctx.final_result is not None:
            return ctx.final_result
        if ctx.handover is not None:
            await self._apply_handover(ctx, state)
        return None

    async def _apply_handover(self, ctx: ExecutionContext, state: _RunState) -> None:
        handover = ctx.handover
        ctx.handover = None
        target = await self.get_agent(handover.to_agent)

        await ctx.emit(
            AgentEventType.AGENT_HANDOVER,
            from_agent=handover.from_agent,
            to_agent=target.name,
            reason=handover.reason,
        )
        self.logger.info(
            "agent_handover",
            task_id=ctx.task_id,
            from_agent=handover.from_agent,
            to_agent=target.name,
        )
        state.history.append(
            {"type": "handover", "from": handover.from_agent, "to": target.name}
        )
        state.agent = target
        ctx.agent_id = target.name

    async def _persist(self, task: Task, steps: list[Step]) -> None:
        if task.thread_id and steps:
            await self.stores.sessions.append_steps(task.thread_id, steps)

    # ------------------------------------------------------------------
    # Reflection
    # ------------------------------------------------------------------

    async def _reflect(
        self, task: Task, ctx: ExecutionContext, state: _RunState, answer: str
    ) -> bool:
        """Return True when the verdict asks for another attempt."""
        if not state.agent.enable_reflection or task.retry_performed:
            return False

        await ctx.emit(AgentEventType.REFLECTION_STARTED, draft=answer)
        try:
            verdict = await ctx.run_cancellable(
                run_reflection(
                    self.llm_provider,
                    state.agent.model_settings,
                    task.input,
                    state.messages,
                    answer,
                )
            )
        except ReflectionError as e:
            self.logger.warning("reflection_failed", task_id=task.id, error=e.message)
            await ctx.emit(AgentEventType.WARNING, code=e.code, message=e.message)
            return False

        await ctx.emit(AgentEventType.REFLECTION_VERDICT, **verdict.model_dump())
        if not verdict.should_continue:
            return False

        transition(task, TaskState.WORKING)
        await self.stores.tasks.save_task(task)

        feedback = Step(
            role=MessageRole.SYSTEM, content=verdict.feedback(), agent_id=state.agent.name
        )
        await self._persist(task, [feedback])
        state.messages.append(feedback.to_message())
        state.history.append(
            {"type": "reflection_retry", "reasons": verdict.reasons_if_continue}
        )
        state.iterations = 0
        ctx.final_result = None
        self.logger.info("reflection_retry", task_id=task.id)
        return True

    # ------------------------------------------------------------------
    # Terminal and paused outcomes
    # ------------------------------------------------------------------

    async def _complete(
        self, task: Task, ctx: ExecutionContext, state: _RunState, answer: str
    ) -> ExecutionResult:
        answer = await self._hooks_for(state.agent.name).after_task(ctx, answer)
        await self._persist(
            task,
            [Step(role=MessageRole.ASSISTANT, content=answer, agent_id=state.agent.name)],
        )
        state.history.append(
            {"type": "final_answer", "step": state.iterations, "content": answer}
        )

        task.final_result = answer
        task.paused = None
        transition(task, TaskState.COMPLETED)
        await self.stores.tasks.save_task(task)

        await ctx.emit(
            AgentEventType.EXECUTION_FINISHED,
            status=TaskState.COMPLETED.value,
            final_message=answer,
        )
        self.logger.info("execute_complete", task_id=task.id, iterations=task.iterations)
        return ExecutionResult(
            task_id=task.id,
            thread_id=task.thread_id,
            status=TaskState.COMPLETED.value,
            final_message=answer,
            agent_id=ctx.agent_id,
            execution_history=state.history,
        )

    async def _cancelled(
        self, task: Task, ctx: ExecutionContext, state: _RunState
    ) -> ExecutionResult:
        task.paused = None
        transition(task, TaskState.CANCELED)
        await self.stores.tasks.save_task(task)
        await ctx.emit(AgentEventType.EXECUTION_FINISHED, status=TaskState.CANCELED.value)
        self.logger.info("execute_canceled", task_id=task.id)
        return ExecutionResult(
            task_id=task.id,
            thread_id=task.thread_id,
            status=TaskState.CANCELED.value,
            final_message="Execution canceled",
            agent_id=ctx.agent_id,
            execution_history=state.history,
        )

    async def _pause(
        self, task: Task, ctx: ExecutionContext, paused: PausedExecution
    ) -> None:
        task.paused = paused
        transition(task, TaskState.INPUT_REQUIRED)
        await self.stores.tasks.save_task(task)
        await ctx.emit(
            AgentEventType.EXECUTION_PAUSED,
            pending_approvals=[a.to_dict() for a in paused.pending_approvals()],
            pending_tool_calls=_pending_calls(paused),
        )
        self.logger.info(
            "execution_paused",
            task_id=task.id,
            approvals=len(paused.pending_approvals()),
            external=len(paused.awaiting_external),
        )

    def _paused_result(
        self, task: Task, ctx: ExecutionContext | None, history: list[dict[str, Any]]
    ) -> ExecutionResult:
        paused = task.paused
        approvals = [a.to_dict() for a in paused.pending_approvals()]
        pending_calls = _pending_calls(paused)
        return ExecutionResult(
            task_id=task.id,
            thread_id=task.thread_id,
            status=TaskState.INPUT_REQUIRED.value,
            final_message=(
                f"Waiting for {len(approvals)} approval(s) and "
                f"{len(pending_calls)} external tool result(s)"
            ),
            agent_id=ctx.agent_id if ctx else paused.agent_name,
            execution_history=history,
            pending_approvals=approvals,
            pending_tool_calls=pending_calls,
        )

    # ------------------------------------------------------------------
    # Resumption and cancellation
    # ------------------------------------------------------------------

    async def resume_with_approval(
        self,
        tool_call_id: str,
        decision: bool,
        reason: str | None = None,
        event_sink: EventSinkProtocol | None = None,
    ) -> ExecutionResult:
        """
        Resolve a pending approval and continue the paused execution.

        Approved calls run and the interrupted batch continues. A rejection
        fails the task and the gated tool never runs.

        Raises:
            ValueError: If no pending approval exists for ``tool_call_id``
            ApprovalRejectedError: If the approval was rejected
            ThreadBusyError: If the thread has another working task
        """
        task = await self.stores.tasks.find_task_by_tool_call(tool_call_id)
        if (
            task is None
            or task.paused is None
            or task.state != TaskState.INPUT_REQUIRED
            or tool_call_id not in task.paused.approvals
        ):
            raise ValueError(f"No pending approval for tool call '{tool_call_id}'")

        approval = task.paused.approvals[tool_call_id]
        ctx = self._acquire(task, task.paused.agent_name, event_sink)
        try:
            approval.resolve(decision, reason)
        except ValueError:
            self._release(task)
            raise

        self.logger.info(
            "approval_resolved",
            task_id=task.id,
            tool_call_id=tool_call_id,
            approved=decision,
        )

        if not decision:
            error = ApprovalRejectedError(approval.tool_name, tool_call_id, reason)
            try:
                task.error = error.message
                transition(task, TaskState.FAILED)
                await self.stores.tasks.save_task(task)
                await ctx.emit(AgentEventType.EXECUTION_ERRORED, error=error.to_dict())
            finally:
                self._release(task)
            raise error

        return await self._resume(task, ctx, streaming=event_sink is not None)

    async def resume_with_tool_responses(
        self,
        task_id: str,
        responses: list[ToolResponse] | dict[str, Any],
        event_sink: EventSinkProtocol | None = None,
    ) -> ExecutionResult:
        """
        Record results of delegated tool calls.

        The execution continues once every delegated call has a result and
        no approval is pending; otherwise the task stays paused.

        Raises:
            ValueError: If the task is not paused or a response id is unknown
        """
        task = await self.stores.tasks.get_task(task_id)
        if task is None:
            raise ValueError(f"Task not found: {task_id}")
        if task.state != TaskState.INPUT_REQUIRED or task.paused is None:
            raise ValueError(f"Task '{task_id}' is not waiting for input")

        paused = task.paused
        if isinstance(responses, dict):
            responses = [
                ToolResponse(tool_call_id=call_id, name="", result=result)
                for call_id, result in responses.items()
            ]

        waiting = set(paused.awaiting_external)
        unknown = [r.tool_call_id for r in responses if r.tool_call_id not in waiting]
        if unknown:
            raise ValueError(f"Unknown tool call id(s): {', '.join(unknown)}")

        received = {r.tool_call_id: r for r in responses}
        paused.responses = [
            ToolResponse(
                tool_call_id=existing.tool_call_id,
                name=existing.name,
                result=received[existing.tool_call_id].result,
                error=received[existing.tool_call_id].error,
            )
            if existing.tool_call_id in received
            else existing
            for existing in paused.responses
        ]
        paused.awaiting_external = [
            call_id for call_id in paused.awaiting_external if call_id not in received
        ]
        self.logger.info(
            "tool_responses_received",
            task_id=task_id,
            received=len(received),
            still_waiting=len(paused.awaiting_external),
        )

        if paused.awaiting_external or paused.pending_approvals():
            await self.stores.tasks.save_task(task)
            return self._paused_result(task, None, [])

        ctx = self._acquire(task, paused.agent_name, event_sink)
        return await self._resume(task, ctx, streaming=event_sink is not None)

    async def _resume(
        self, task: Task, ctx: ExecutionContext, streaming: bool
    ) -> ExecutionResult:
        paused = task.paused
        try:
            agent = await self.get_agent(paused.agent_name)
            entry = await self.stores.agents.get(task.agent_id)
            task.paused = None
            transition(task, TaskState.WORKING)
            await self.stores.tasks.save_task(task)
        except BaseException:
            self._release(task)
            raise

        state = _RunState(
            agent=agent,
            messages=list(paused.messages),
            budget=(entry or agent).max_iterations,
            iterations=paused.iterations,
            streaming=streaming,
        )
        await ctx.emit(
            AgentEventType.EXECUTION_STARTED,
            input=task.input,
            agent=agent.name,
            resumed=True,
        )
        return await self._drive(task, ctx, state, resume=paused)

    async def cancel(self, task_id: str) -> bool:
        """
        Cancel a running or paused task.

        Returns:
            True if a cancellation was requested or applied, False if the
            task is unknown or already terminal.
        """
        ctx = self._running.get(task_id)
        if ctx is not None:
            ctx.cancel()
            self.logger.info("cancel_requested", task_id=task_id)
            return True

        task = await self.stores.tasks.get_task(task_id)
        if task is None or task.state != TaskState.INPUT_REQUIRED:
            return False

        task.paused = None
        transition(task, TaskState.CANCELED)
        await self.stores.tasks.save_task(task)
        ctx = ExecutionContext(
            task_id=task.id,
            thread_id=task.thread_id,
            agent_id=task.agent_id,
            user_id=task.user_id,
            sink=FanOutSink(self.event_sink),
        )
        await ctx.emit(AgentEventType.EXECUTION_FINISHED, status=TaskState.CANCELED.value)
        self.logger.info("paused_task_canceled", task_id=task_id)
        return True

    def is_running(self, task_id: str) -> bool:
        return task_id in self._running


def _pending_calls(paused: PausedExecution) -> list[dict[str, Any]]:
    waiting = set(paused.awaiting_external)
    calls = paused.assistant_step.tool_calls if paused.assistant_step else []
    return [call.to_dict() for call in calls if call.id in waiting]


def trim_history(
    messages: list[dict[str, Any]], history_size: int | None
) -> list[dict[str, Any]]:
    """
    Keep the last ``history_size`` messages of a thread.

    The window never opens on a ``tool`` message: replies whose assistant
    tool-call message fell outside the window are dropped with it.
    """
    if history_size is None or len(messages) <= history_size:
        return messages
    start = len(messages) - history_size
    tool_role = MessageRole.TOOL.value
    while start < len(messages) - 1 and messages[start].get("role") == tool_role:
        start += 1
    return messages[start:]
