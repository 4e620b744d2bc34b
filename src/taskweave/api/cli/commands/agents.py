"""Agents command - Inspect registered agents."""

import asyncio

import typer

from taskweave.api.cli.commands.run import build_executor
from taskweave.api.cli.output_formatter import TaskweaveConsole
from taskweave.core.domain.errors import AgentNotFoundError

app = typer.Typer(help="Agent management")


@app.command("list")
def list_agents(ctx: typer.Context):
    """List agents registered for the current profile."""
    tw_console = TaskweaveConsole()
    executor = build_executor(ctx)

    async def _list():
        engine = await executor.get_engine()
        agents, _ = await engine.list_agents()
        return agents

    tw_console.print_agents(asyncio.run(_list()))


@app.command("show")
def show_agent(ctx: typer.Context, name: str = typer.Argument(..., help="Agent name")):
    """Show an agent definition."""
    tw_console = TaskweaveConsole()
    executor = build_executor(ctx)

    async def _get():
        engine = await executor.get_engine()
        return await engine.get_agent(name)

    try:
        definition = asyncio.run(_get())
    except AgentNotFoundError as e:
        tw_console.print_error(e.message)
        raise typer.Exit(1)

    tw_console.print_json(definition.model_dump(mode="json"))
