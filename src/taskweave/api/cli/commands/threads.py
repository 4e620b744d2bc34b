"""Threads command - Inspect conversation threads."""

import asyncio
from typing import Optional

import typer

from taskweave.api.cli.commands.run import build_executor
from taskweave.api.cli.output_formatter import TaskweaveConsole

app = typer.Typer(help="Thread management")


@app.command("list")
def list_threads(
    ctx: typer.Context,
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Only threads of this agent"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum number of threads"),
):
    """List threads, most recently updated first."""
    tw_console = TaskweaveConsole()
    executor = build_executor(ctx)

    async def _list():
        engine = await executor.get_engine()
        return await engine.stores.threads.list_threads(agent_id=agent, limit=limit)

    tw_console.print_threads(asyncio.run(_list()))


@app.command("show")
def show_thread(
    ctx: typer.Context,
    thread_id: str = typer.Argument(..., help="Thread ID"),
    as_json: bool = typer.Option(False, "--json", help="Print raw records"),
):
    """Show thread metadata and its step history."""
    tw_console = TaskweaveConsole()
    executor = build_executor(ctx)

    async def _load():
        engine = await executor.get_engine()
        thread = await engine.stores.threads.get_thread(thread_id)
        steps = await engine.stores.sessions.list_steps(thread_id) if thread else []
        return thread, steps

    thread, steps = asyncio.run(_load())
    if thread is None:
        tw_console.print_error(f"Thread '{thread_id}' not found")
        raise typer.Exit(1)

    if as_json:
        tw_console.print_json({"thread": thread.to_dict(), "steps": [s.to_dict() for s in steps]})
        return

    tw_console.console.print(f"\n[bold]Thread:[/bold] {thread.id}")
    tw_console.console.print(f"[bold]Title:[/bold] {thread.title}")
    tw_console.console.print(f"[bold]Agent:[/bold] {thread.agent_id}")
    tw_console.console.print(f"[bold]Messages:[/bold] {thread.message_count}")
    tw_console.print_divider()
    tw_console.print_steps(steps)
