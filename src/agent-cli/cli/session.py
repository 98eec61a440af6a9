"""Interactive chat session.

Runs each stretch of a turn on a private event loop and performs the
blocking terminal prompts (user input, confirmations) between them, so a
Ctrl+C while the model or a tool is working cancels only that turn.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable

from rich.prompt import Prompt

from application.agents import AgentError, AgentEvent, AgentState, ConversationAgent, LlmProvider, LlmToolCall
from cli.renderer import ChatRenderer

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit")
CLEAR_COMMAND = "/clear"


class ChatSession:
    """Drives a ConversationAgent from the terminal."""

    def __init__(
        self,
        agent: ConversationAgent,
        renderer: ChatRenderer,
        provider: LlmProvider | None = None,
        confirm: Callable[[LlmToolCall], bool] | None = None,
    ) -> None:
        self._agent = agent
        self._renderer = renderer
        self._provider = provider
        self._confirm = confirm or renderer.ask_confirmation
        self._runner = asyncio.Runner()

    @property
    def agent(self) -> ConversationAgent:
        return self._agent

    def run_turn(self, text: str) -> bool:
        """Run one turn to completion, asking for confirmations as needed.

        Ctrl+C, or end of input at a confirmation prompt, cancels the turn.

        Returns:
            True if the turn ended without error or interruption
        """
        try:
            completed = self._runner.run(self._consume(self._agent.submit_user_input(text)))
            while completed and self._agent.state is AgentState.AWAITING_CONFIRMATION:
                tool_call = self._agent.get_view_state().confirming_tool_call
                approved = self._confirm(tool_call)
                completed = self._runner.run(self._consume(self._agent.resolve_confirmation(approved)))
        except (KeyboardInterrupt, EOFError):
            self._agent.cancel()
            self._renderer.interrupted()
            return False
        return completed and self._agent.last_error is None

    async def _consume(self, events: AsyncIterator[AgentEvent]) -> bool:
        try:
            async for event in events:
                self._renderer.render(event)
        except asyncio.CancelledError:
            logger.info("Turn interrupted from the terminal")
            self._agent.cancel()
            self._renderer.interrupted()
            return False
        return True

    def loop(self, read_input: Callable[[], str] | None = None) -> None:
        """Read user input until exit, running a turn for each line."""
        read = read_input or (lambda: Prompt.ask("\n[bold cyan]You[/bold cyan]", console=self._renderer.console))
        while True:
            try:
                text = read()
            except (KeyboardInterrupt, EOFError):
                self._renderer.console.print("\n[dim]Goodbye![/dim]")
                break

            command = text.strip()
            if not command:
                continue
            if command.lower() in EXIT_COMMANDS:
                self._renderer.console.print("[dim]Goodbye![/dim]")
                break
            if command.lower() == CLEAR_COMMAND:
                try:
                    self._agent.clear_history()
                    self._renderer.console.print("[dim]Conversation cleared.[/dim]")
                except AgentError as e:
                    self._renderer.console.print(f"[red]{e.message}[/red]")
                continue

            self.run_turn(text)

    def close(self) -> None:
        """Close the provider and the event loop."""
        try:
            if self._provider is not None:
                self._runner.run(self._provider.close())
        finally:
            self._runner.close()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
