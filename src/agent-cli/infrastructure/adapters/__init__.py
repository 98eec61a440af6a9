"""Infrastructure adapters for the Agent CLI."""

from infrastructure.adapters.openai_llm_provider import OpenAiLlmProvider

__all__ = [
    "OpenAiLlmProvider",
]
