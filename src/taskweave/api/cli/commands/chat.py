"""Chat command - Interactive multi-turn session with an agent."""

import asyncio
import uuid
from typing import Optional

import typer

from taskweave.api.cli.commands.run import build_executor, settle_approvals
from taskweave.api.cli.output_formatter import TaskweaveConsole
from taskweave.core.domain.errors import TaskweaveError

EXIT_COMMANDS = ("exit", "quit", "bye")


def chat(
    ctx: typer.Context,
    agent: str = typer.Option("assistant", "--agent", "-a", help="Agent to chat with"),
    thread_id: Optional[str] = typer.Option(
        None, "--thread", "-t", help="Resume an existing thread"
    ),
    user_id: Optional[str] = typer.Option(None, "--user", "-u", help="User id for memories"),
):
    """Start an interactive chat session.

    Every message is executed against the same thread, so the agent sees the
    full conversation history.

    Examples:
        taskweave chat --agent assistant --user alice
        taskweave --profile file chat --thread my-thread
    """
    debug = (ctx.obj or {}).get("verbose", False)
    tw_console = TaskweaveConsole(debug=debug)
    tw_console.print_banner()

    thread_id = thread_id or str(uuid.uuid4())
    tw_console.print_system_message(f"Agent: {agent}  Thread: {thread_id}", "info")
    tw_console.print_system_message("Type 'exit', 'quit', or press Ctrl+C to end session", "info")
    tw_console.print_divider()

    executor = build_executor(ctx)

    async def run_chat_loop():
        while True:
            try:
                user_input = tw_console.prompt()
            except (KeyboardInterrupt, EOFError):
                break

            if user_input.strip().lower() in EXIT_COMMANDS:
                break
            if not user_input.strip():
                continue

            try:
                result = await executor.execute_task(
                    agent, user_input, thread_id=thread_id, user_id=user_id
                )
                result = await settle_approvals(executor, result, tw_console)
                tw_console.print_result(result)
            except TaskweaveError as e:
                tw_console.print_error(e.message, exception=e)

    asyncio.run(run_chat_loop())
    tw_console.print_divider()
    tw_console.print_system_message("Goodbye!", "info")
