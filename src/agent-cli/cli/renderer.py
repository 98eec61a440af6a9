"""Terminal rendering of agent events with rich."""

import json
import logging

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Confirm
from rich.syntax import Syntax

from application.agents import AgentEvent, AgentEventType, LlmToolCall

logger = logging.getLogger(__name__)

MAX_RESULT_LINES = 20


def format_arguments(arguments: str) -> str:
    """Pretty-print JSON arguments, falling back to the raw text."""
    try:
        return json.dumps(json.loads(arguments or "{}"), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return arguments


def truncate_lines(text: str, max_lines: int = MAX_RESULT_LINES) -> str:
    lines = text.rstrip("\n").splitlines()
    if len(lines) <= max_lines:
        return "\n".join(lines)
    hidden = len(lines) - max_lines
    return "\n".join(lines[:max_lines] + [f"... ({hidden} more lines)"])


class ChatRenderer:
    """Prints agent events to a rich Console.

    Assistant text is written as it streams; tool activity and errors are
    shown as panels and markup lines around it.
    """

    def __init__(self, console: Console | None = None, max_result_lines: int = MAX_RESULT_LINES) -> None:
        self.console = console or Console()
        self._max_result_lines = max_result_lines
        self._streamed_text = False

    def welcome(self, model: str, api_url: str, tool_names: list[str]) -> None:
        self.console.print(
            Panel(
                f"[bold]Agent CLI[/bold]\n"
                f"Model [bold]{escape(model)}[/bold] at {escape(api_url)}\n"
                f"Tools: {escape(', '.join(tool_names)) or 'none'}\n"
                "Type your request, [bold]/clear[/bold] to start over, or [bold]exit[/bold] / [bold]quit[/bold] to stop.\n"
                "Press [bold]Ctrl+C[/bold] to interrupt a running turn.",
                border_style="cyan",
            )
        )

    def render(self, event: AgentEvent) -> None:
        handler = getattr(self, f"_on_{event.type.value}", None)
        if handler is not None:
            handler(event)

    def _on_stream_started(self, event: AgentEvent) -> None:
        self._streamed_text = False

    def _on_content_chunk(self, event: AgentEvent) -> None:
        if not self._streamed_text:
            self.console.print("[bold green]Assistant[/bold green]")
            self._streamed_text = True
        self.console.print(event.data.get("content", ""), end="", markup=False, highlight=False, soft_wrap=True)

    def _on_stream_ended(self, event: AgentEvent) -> None:
        if self._streamed_text:
            self.console.print()
        self._streamed_text = False

    def _on_confirmation_required(self, event: AgentEvent) -> None:
        call = event.data.get("tool_call", {})
        self.console.print(
            Panel(
                Syntax(format_arguments(call.get("arguments", "")), "json", word_wrap=True),
                title=f"[bold yellow]{escape(call.get('name', '?'))}[/bold yellow] requires confirmation",
                border_style="yellow",
            )
        )

    def _on_tool_execution_started(self, event: AgentEvent) -> None:
        arguments = " ".join(event.data.get("arguments", "").split())
        self.console.print(f"[dim]→ {escape(event.data.get('name', '?'))} {escape(arguments)}[/dim]")

    def _on_tool_execution_requested(self, event: AgentEvent) -> None:
        self.console.print(f"[dim]→ {escape(event.data.get('name', '?'))} handed to the caller[/dim]")

    def _on_tool_result_added(self, event: AgentEvent) -> None:
        data = event.data
        if data.get("denied"):
            self.console.print(f"[yellow]✗ {escape(data.get('content', ''))}[/yellow]")
            return
        border = "green" if data.get("success", True) else "red"
        self.console.print(
            Panel(
                escape(truncate_lines(data.get("content", ""), self._max_result_lines)) or "[dim](no output)[/dim]",
                title=escape(data.get("tool_name", "tool")),
                border_style=border,
            )
        )

    def _on_error(self, event: AgentEvent) -> None:
        if self._streamed_text:
            self.console.print()
            self._streamed_text = False
        error = event.data.get("error", {})
        self.console.print(f"[bold red]Error:[/bold red] {escape(error.get('message', 'unknown error'))}")

    def interrupted(self) -> None:
        if self._streamed_text:
            self.console.print()
            self._streamed_text = False
        self.console.print("[yellow]Interrupted.[/yellow]")

    def ask_confirmation(self, tool_call: LlmToolCall) -> bool:
        """Ask the user whether the call may run."""
        return Confirm.ask(f"Run [bold]{escape(tool_call.name)}[/bold]?", console=self.console, default=False)
