"""Agent abstractions for the Agent CLI.

This package contains:
- Agent interface, events, turn and view state
- LLM provider abstractions and the streaming completion protocol
- The conversation agent that orchestrates model responses and tool calls
"""

from application.agents.agent_config import AgentConfig
from application.agents.base_agent import Agent, AgentError, AgentEvent, AgentEventType, AgentState, ToolExecutionResult, TurnState, ViewState
from application.agents.conversation_agent import ConversationAgent
from application.agents.llm_provider import (
    CompletionStream,
    LlmConfig,
    LlmMessage,
    LlmMessageRole,
    LlmProvider,
    LlmProviderError,
    LlmResponse,
    LlmStreamEvent,
    LlmStreamEventType,
    LlmToolCall,
    LlmToolCallDelta,
    LlmToolDefinition,
    ToolCallAccumulator,
)

__all__ = [
    # Agent
    "Agent",
    "AgentConfig",
    "AgentError",
    "AgentEvent",
    "AgentEventType",
    "AgentState",
    "ConversationAgent",
    "ToolExecutionResult",
    "TurnState",
    "ViewState",
    # LLM Provider
    "CompletionStream",
    "LlmConfig",
    "LlmMessage",
    "LlmMessageRole",
    "LlmProvider",
    "LlmProviderError",
    "LlmResponse",
    "LlmStreamEvent",
    "LlmStreamEventType",
    "LlmToolCall",
    "LlmToolCallDelta",
    "LlmToolDefinition",
    "ToolCallAccumulator",
]
