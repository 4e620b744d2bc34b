"""Run command - Execute a single task."""

import asyncio
from typing import Optional

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from taskweave.api.cli.output_formatter import ConsoleEventSink, TaskweaveConsole
from taskweave.application.executor import TaskExecutor
from taskweave.application.factory import EngineFactory
from taskweave.core.domain.errors import ApprovalRejectedError, TaskweaveError
from taskweave.core.domain.models import ExecutionResult, TaskState


def build_executor(ctx: typer.Context) -> TaskExecutor:
    opts = ctx.obj or {}
    return TaskExecutor(
        factory=EngineFactory(opts.get("config_dir")),
        profile=opts.get("profile", "dev"),
    )


async def settle_approvals(
    executor: TaskExecutor, result: ExecutionResult, tw_console: TaskweaveConsole
) -> ExecutionResult:
    """Ask the user about every pending approval until the task stops pausing on one."""
    while result.status == TaskState.INPUT_REQUIRED.value and result.pending_approvals:
        approval = result.pending_approvals[0]
        tw_console.print_warning(f"Approval required: {approval['tool_name']}")
        tw_console.print_json(approval.get("arguments") or {})
        approved = typer.confirm("Allow this tool call?", default=False)
        try:
            result = await executor.resolve_approval(approval["tool_call_id"], approved)
        except ApprovalRejectedError as e:
            tw_console.print_error(e.message)
            return ExecutionResult(
                task_id=result.task_id,
                thread_id=result.thread_id,
                status=TaskState.FAILED.value,
                final_message=e.message,
                agent_id=result.agent_id,
            )
    return result


def run_task(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task description"),
    agent: str = typer.Option("assistant", "--agent", "-a", help="Agent to run"),
    thread_id: Optional[str] = typer.Option(
        None, "--thread", "-t", help="Continue (or start) a conversation thread"
    ),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="User id for memories"),
    stream: bool = typer.Option(False, "--stream", "-s", help="Stream tokens and tool calls"),
):
    """Execute a task with an agent.

    Examples:
        # Stateless run
        taskweave run "Summarize the README"

        # Continue a thread with streaming output
        taskweave run "And now in German" --thread t1 --stream
    """
    debug = (ctx.obj or {}).get("verbose", False)
    tw_console = TaskweaveConsole(debug=debug)
    tw_console.print_banner()
    tw_console.print_system_message(f"Task: {task}", "system")
    tw_console.print_system_message(f"Agent: {agent}", "info")
    if thread_id:
        tw_console.print_system_message(f"Thread: {thread_id}", "info")
    tw_console.print_divider()

    executor = build_executor(ctx)

    async def _run() -> ExecutionResult:
        if stream:
            engine = await executor.get_engine()
            result = await engine.execute_stream(
                agent,
                task,
                ConsoleEventSink(tw_console),
                context_id=thread_id,
                user_id=user_id,
            )
            tw_console.console.print()
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=tw_console.console,
                transient=True,
            ) as progress:
                progress_task = progress.add_task("[>] Working...", total=None)

                def progress_callback(update):
                    progress.update(progress_task, description=f"[>] {update.message}")

                result = await executor.execute_task(
                    agent,
                    task,
                    thread_id=thread_id,
                    user_id=user_id,
                    progress_callback=progress_callback,
                )
        return await settle_approvals(executor, result, tw_console)

    try:
        result = asyncio.run(_run())
    except TaskweaveError as e:
        tw_console.print_error(e.message, exception=e)
        raise typer.Exit(1)

    tw_console.print_divider()
    tw_console.print_result(result)
    if result.status == TaskState.FAILED.value:
        raise typer.Exit(1)

