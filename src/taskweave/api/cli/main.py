"""Taskweave CLI entry point."""

import logging
from typing import Optional

import structlog
import typer
from rich.console import Console

from taskweave.api.cli.commands import agents, chat, run, serve, threads

app = typer.Typer(
    name="taskweave",
    help="Taskweave - agent execution runtime",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.command("run", help="Execute a task")(run.run_task)
app.command("chat", help="Interactive chat mode")(chat.chat)
app.command("serve", help="Start the HTTP/SSE API")(serve.serve)
app.add_typer(threads.app, name="threads", help="Thread management")
app.add_typer(agents.app, name="agents", help="Agent management")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


@app.callback()
def main(
    ctx: typer.Context,
    profile: str = typer.Option("dev", "--profile", "-p", help="Configuration profile"),
    config_dir: Optional[str] = typer.Option(
        None, "--config-dir", help="Profile directory (default: $TASKWEAVE_CONFIG_DIR or configs)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """Taskweave Agent CLI."""
    configure_logging(verbose)
    # Store global options in context for subcommands
    ctx.obj = {"profile": profile, "config_dir": config_dir, "verbose": verbose}


@app.command()
def version():
    """Show Taskweave version."""
    from taskweave import __version__

    console.print(f"[bold blue]Taskweave[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
