"""Agent configuration for the Agent CLI.

This module defines the configuration dataclass for the conversation agent:
the optional system prompt and how tool calls are carried out.
"""

from dataclasses import dataclass, replace

DEFAULT_SYSTEM_PROMPT = """You are a helpful coding assistant running in the user's terminal.
You can inspect and change the local file system and run shell commands through the provided tools.
Prefer reading before writing, keep changes minimal, and explain what you did."""


@dataclass
class AgentConfig:
    """Configuration for the conversation agent.

    Attributes:
        name: Human-readable name for the agent
        system_prompt: Prepended to a fresh conversation (None = no system message)
        execute_tools: Run tools locally; when False every approved call is handed
            to the caller, which must answer with `supply_tool_result`
        auto_confirm: Skip the confirmation step for tools that require it
    """

    name: str = "agent-cli"
    system_prompt: str | None = DEFAULT_SYSTEM_PROMPT
    execute_tools: bool = True
    auto_confirm: bool = False

    def with_system_prompt(self, system_prompt: str | None) -> "AgentConfig":
        """Create a copy with a different system prompt."""
        return replace(self, system_prompt=system_prompt)

    @classmethod
    def default(cls) -> "AgentConfig":
        """Create a default agent configuration."""
        return cls()

    @classmethod
    def minimal(cls) -> "AgentConfig":
        """Create a configuration without a system prompt."""
        return cls(name="minimal", system_prompt=None)
