"""
Console output for the CLI.
"""

import json
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table

from taskweave.core.domain.definitions import AgentDefinition
from taskweave.core.domain.events import AgentEvent, AgentEventType
from taskweave.core.domain.models import ExecutionResult, Step, Thread


class TaskweaveConsole:
    """Rich-based console with message panels and a debug channel."""

    def __init__(self, debug: bool = False, console: Console | None = None):
        self.debug = debug
        self.console = console or Console()

    def print_banner(self) -> None:
        self.console.print("[bold blue]Taskweave[/bold blue] [dim]agent runtime[/dim]")

    def print_divider(self) -> None:
        self.console.print(Rule(style="dim"))

    def print_system_message(self, message: str, level: str = "info") -> None:
        style = {
            "info": "cyan",
            "success": "green",
            "system": "bold magenta",
            "warning": "yellow",
        }.get(level, "white")
        self.console.print(f"[{style}]{escape(message)}[/{style}]")

    def print_user_message(self, message: str) -> None:
        self.console.print(Panel(message, title="You", border_style="blue", title_align="left"))

    def print_agent_message(self, message: str, agent: str | None = None) -> None:
        self.console.print(
            Panel(
                Markdown(message or ""),
                title=agent or "Agent",
                border_style="green",
                title_align="left",
            )
        )

    def print_success(self, message: str) -> None:
        self.console.print(f"[bold green]{escape(message)}[/bold green]")

    def print_warning(self, message: str) -> None:
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def print_error(self, message: str, exception: Exception | None = None) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {escape(message)}")
        if exception is not None and self.debug:
            self.console.print_exception()

    def print_debug(self, message: str) -> None:
        if self.debug:
            self.console.print(f"[dim]{escape(message)}[/dim]")

    def prompt(self, label: str = "You") -> str:
        return self.console.input(f"[bold blue]{label}>[/bold blue] ")

    def print_event(self, event: AgentEvent) -> None:
        """Render one streamed event; text deltas are written inline."""
        data = event.data
        if event.type == AgentEventType.TEXT_DELTA:
            self.console.print(data.get("content", ""), end="", highlight=False, markup=False)
        elif event.type == AgentEventType.TOOL_CALL_STARTED:
            arguments = escape(json.dumps(data.get("arguments"), default=str))
            self.console.print(f"\n[yellow]> {data.get('tool')}[/yellow] [dim]{arguments}[/dim]")
        elif event.type == AgentEventType.TOOL_CALL_FINISHED:
            error = escape(str(data.get("error")))
            mark = "[green]ok[/green]" if data.get("success") else f"[red]{error}[/red]"
            self.console.print(f"  {mark}")
        elif event.type == AgentEventType.AGENT_HANDOVER:
            self.console.print(
                f"\n[magenta]handover {data.get('from_agent')} -> {data.get('to_agent')}[/magenta]"
            )
        elif event.type == AgentEventType.WARNING:
            self.print_warning(f"\n{data.get('message')}")
        elif self.debug:
            self.console.print(f"\n[dim]{event.sequence:>3} {event.type.value}[/dim]")

    def print_result(self, result: ExecutionResult) -> None:
        if result.status == "completed":
            self.print_agent_message(result.final_message, result.agent_id)
        else:
            self.print_warning(f"Status: {result.status} - {result.final_message}")
        for call in result.pending_tool_calls:
            self.print_warning(
                f"Waiting for external result of {call['name']} (id {call['id']})"
            )
        self.print_debug(f"Task: {result.task_id}  Thread: {result.thread_id}")

    def print_threads(self, threads: list[Thread]) -> None:
        table = Table(title="Threads")
        table.add_column("Thread ID", style="cyan", no_wrap=True)
        table.add_column("Agent", style="green")
        table.add_column("Title", style="white")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", style="dim")
        for thread in threads:
            table.add_row(
                thread.id,
                thread.agent_id,
                thread.title,
                str(thread.message_count),
                thread.updated_at,
            )
        self.console.print(table)

    def print_steps(self, steps: list[Step]) -> None:
        for step in steps:
            role = step.role.value
            content = escape(step.content or "")
            if step.tool_calls:
                calls = ", ".join(f"{c.name}({json.dumps(c.arguments)})" for c in step.tool_calls)
                content = f"{content}\n[yellow]calls: {escape(calls)}[/yellow]".strip()
            label = f"{role}:{step.name}" if step.name else role
            self.console.print(f"[bold]{label}[/bold] [dim]({step.agent_id})[/dim] {content}")

    def print_agents(self, agents: list[AgentDefinition]) -> None:
        table = Table(title="Agents")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Model", style="green")
        table.add_column("Tools", style="yellow")
        table.add_column("Description", style="white")
        for agent in agents:
            description = agent.description
            if len(description) > 50:
                description = description[:47] + "..."
            table.add_row(
                agent.name,
                agent.model_settings.model,
                ", ".join([*agent.tools, *agent.external_tools]),
                description,
            )
        self.console.print(table)

    def print_json(self, data: Any) -> None:
        self.console.print_json(data=data)


class ConsoleEventSink:
    """Event sink rendering every event on a TaskweaveConsole as it arrives."""

    def __init__(self, tw_console: TaskweaveConsole):
        self.tw_console = tw_console

    async def emit(self, event: AgentEvent) -> None:
        self.tw_console.print_event(event)
