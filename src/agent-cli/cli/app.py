"""
cli.app - Command line entry point for the Agent CLI.

Usage
-----
  agent-cli                         Interactive chat with tool use
  agent-cli -p "explain main.py"    One-shot question, answer printed to stdout
  agent-cli explain main.py         Same as -p with the words joined
  agent-cli --yes                   Run confirmation-gated tools without asking

Configuration comes from AGENT_CLI_* environment variables, a .env file or
.agent-cli.yaml (see application.settings); options below override them.
"""

import asyncio
import logging
from typing import Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from application.agents import AgentConfig, ConversationAgent, LlmConfig, LlmMessage, LlmProvider, LlmProviderError
from application.services import configure_logging
from application.settings import CONFIG_FILE_NAME, Settings, load_settings
from application.tools import create_default_registry
from cli import __version__
from cli.renderer import ChatRenderer
from cli.session import ChatSession
from infrastructure.adapters import OpenAiLlmProvider

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(
    help="Chat with an OpenAI-compatible model that can use local tools.",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_provider(settings: Settings) -> LlmProvider:
    config = LlmConfig(
        model=settings.model,
        base_url=settings.api_url,
        api_key=settings.api_key,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.request_timeout,
        extra=dict(settings.extra_body),
    )
    return OpenAiLlmProvider(config)


def build_agent(settings: Settings, provider: LlmProvider) -> ConversationAgent:
    config = AgentConfig(auto_confirm=settings.auto_confirm)
    if settings.system_prompt is not None:
        config = config.with_system_prompt(settings.system_prompt or None)
    return ConversationAgent(provider, create_default_registry(), config=config)


async def run_prompt(provider: LlmProvider, prompt: str, system_prompt: Optional[str] = None) -> str:
    """Send a single non-streaming request and return the answer text."""
    messages = [LlmMessage.system(system_prompt)] if system_prompt else []
    messages.append(LlmMessage.user(prompt))
    try:
        response = await provider.chat(messages)
    finally:
        await provider.close()
    return response.content


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"agent-cli v{__version__}")
        raise typer.Exit()


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


@app.command()
def chat(
    words: Optional[list[str]] = typer.Argument(None, help="Prompt for a one-shot question (same as --prompt)."),
    prompt: Optional[str] = typer.Option(None, "--prompt", "-p", help="Ask a single question and print the answer."),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model identifier."),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Base URL of the OpenAI-compatible API."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Run tools that need confirmation without asking."),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level."),
    version: Optional[bool] = typer.Option(None, "--version", "-v", callback=_version_callback, is_eager=True, help="Show the version and exit."),
) -> None:
    """Start an interactive session, or answer a single prompt."""
    try:
        settings = load_settings(
            model=model,
            api_url=api_url,
            auto_confirm=True if yes else None,
            log_level="DEBUG" if debug else None,
        )
    except (ValidationError, yaml.YAMLError) as e:
        err_console.print(f"[bold red]Invalid configuration:[/bold red] {escape(str(e))}")
        raise typer.Exit(code=1)

    configure_logging(
        log_level=settings.log_level,
        console=settings.log_to_console,
        file=settings.log_to_file,
        filename=settings.log_file,
    )

    if not settings.has_api_key:
        err_console.print(
            "[bold red]API key is not configured.[/bold red] "
            f"Set [bold]AGENT_CLI_API_KEY[/bold] or [bold]api_key[/bold] in {CONFIG_FILE_NAME}."
        )
        raise typer.Exit(code=1)

    provider = build_provider(settings)
    one_shot = prompt or " ".join(words or []).strip()

    if one_shot:
        logger.info(f"One-shot prompt with model {settings.model}")
        try:
            answer = asyncio.run(run_prompt(provider, one_shot, settings.system_prompt))
        except LlmProviderError as e:
            err_console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
            raise typer.Exit(code=1)
        console.print(answer, markup=False, highlight=False)
        return

    agent = build_agent(settings, provider)
    renderer = ChatRenderer(console)
    renderer.welcome(settings.model, settings.api_url, agent.tools.names())
    logger.info(f"Interactive session started with model {settings.model} at {settings.api_url}")

    with ChatSession(agent, renderer, provider=provider) as session:
        session.loop()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
