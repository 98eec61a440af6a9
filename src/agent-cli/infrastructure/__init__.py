"""Infrastructure layer for the Agent CLI.

Contains:
- adapters/: External service adapters (OpenAI-compatible completion endpoint)
"""

from infrastructure.adapters.openai_llm_provider import OpenAiLlmProvider

__all__ = [
    "OpenAiLlmProvider",
]
