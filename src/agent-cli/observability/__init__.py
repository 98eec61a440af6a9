"""Observability utilities and metrics for the Agent CLI."""

from .metrics import (
    chat_messages_received,
    chat_turn_duration,
    llm_request_count,
    llm_request_time,
    llm_tool_calls,
    tool_confirmations,
    tool_execution_count,
    tool_execution_errors,
    tool_execution_time,
)

__all__ = [
    # Chat metrics
    "chat_messages_received",
    "chat_turn_duration",
    # LLM metrics
    "llm_request_count",
    "llm_request_time",
    "llm_tool_calls",
    # Tool metrics
    "tool_confirmations",
    "tool_execution_count",
    "tool_execution_errors",
    "tool_execution_time",
]
