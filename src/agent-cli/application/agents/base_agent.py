"""Base Agent abstraction for the Agent CLI.

This module defines the agent interface and the types exchanged with the
presentation layer: outbound events, turn bookkeeping, the read-only view
state and the agent error.

A turn runs from user input until the agent is idle again. Within a turn the
agent alternates between streaming a model response and resolving the tool
calls it requested, one call at a time.
"""

import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from application.agents.llm_provider import LlmMessage, LlmToolCall

logger = logging.getLogger(__name__)

DENIAL_MESSAGE_TEMPLATE = "User denied execution of tool: {name}"
TOOL_ERROR_MESSAGE_TEMPLATE = "Error executing tool {name}: {error}"
INTERRUPTED_MESSAGE = "Interrupted by user"


class AgentState(str, Enum):
    """Orchestrator states."""

    IDLE = "idle"
    STREAMING = "streaming"
    AWAITING_TOOL_RESULT = "awaiting_tool_result"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class AgentEventType(str, Enum):
    """Types of events emitted by the agent during a turn."""

    # Model response events
    STREAM_STARTED = "stream_started"
    CONTENT_CHUNK = "content_chunk"
    TOOL_CALLS_REQUESTED = "tool_calls_requested"
    STREAM_ENDED = "stream_ended"

    # Tool events
    CONFIRMATION_REQUIRED = "confirmation_required"
    TOOL_EXECUTION_STARTED = "tool_execution_started"
    TOOL_EXECUTION_REQUESTED = "tool_execution_requested"
    TOOL_RESULT_ADDED = "tool_result_added"

    # Lifecycle events
    ERROR = "error"
    TURN_COMPLETED = "turn_completed"


@dataclass
class AgentEvent:
    """Notification delivered to the event sink.

    `turn_id` identifies the submission that produced it and `iteration`
    counts model requests within that turn, when one applies.
    """

    type: AgentEventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    turn_id: int | None = None
    iteration: int | None = None


@dataclass
class ToolExecutionResult:
    """Outcome of resolving one tool call.

    Attributes:
        call_id: Id of the answered tool call
        tool_name: Name of the tool
        content: Text handed back to the model
        success: Whether the tool completed without error
        denied: Whether the user refused the call
        execution_time_ms: Wall time spent in the tool
    """

    call_id: str
    tool_name: str
    content: str
    success: bool = True
    denied: bool = False
    execution_time_ms: float = 0.0

    def to_llm_message(self) -> LlmMessage:
        """Convert to a tool-role message for the conversation."""
        return LlmMessage.tool_result(tool_call_id=self.call_id, content=self.content)

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "tool_name": self.tool_name,
            "content": self.content,
            "success": self.success,
            "denied": self.denied,
            "execution_time_ms": self.execution_time_ms,
        }


class AgentError(Exception):
    """Turn-level failure surfaced to the presentation layer."""

    def __init__(
        self,
        message: str,
        error_code: str = "agent_error",
        is_retryable: bool = False,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.is_retryable = is_retryable
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display or logging."""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "is_retryable": self.is_retryable,
            "details": self.details,
        }


@dataclass
class TurnState:
    """Bookkeeping for the turn in progress.

    Attributes:
        pending_tool_calls: Calls still to resolve, consumed strictly from the head
        confirming: Call waiting for the user's decision
        in_flight: Call currently executing (or handed to the caller)
        streaming_buffer: Text streamed since the current response started
        iteration: Number of model requests made in this turn
    """

    pending_tool_calls: deque[LlmToolCall] = field(default_factory=deque)
    confirming: LlmToolCall | None = None
    in_flight: LlmToolCall | None = None
    streaming_buffer: str = ""
    iteration: int = 0


@dataclass(frozen=True)
class ViewState:
    """Read-only snapshot of the conversation for rendering.

    Messages are copies; mutating them does not affect the agent.
    """

    messages: tuple[LlmMessage, ...]
    live_streamed_content: str
    is_confirming: bool
    confirming_tool_call: LlmToolCall | None
    state: AgentState
    last_error: str | None = None


def tool_call_to_dict(tool_call: LlmToolCall) -> dict[str, Any]:
    return {"id": tool_call.id, "name": tool_call.name, "arguments": tool_call.arguments}


class Agent(ABC):
    """Interface of an interactive, turn-based agent.

    Each entry point returns an async iterator of events that drives the turn
    until the agent is idle again or waits for the caller (a confirmation or
    an externally produced tool result).
    """

    @abstractmethod
    def submit_user_input(self, text: str) -> AsyncIterator[AgentEvent]:
        """Start a turn with the user's text."""
        ...

    @abstractmethod
    def resolve_confirmation(self, confirmed: bool) -> AsyncIterator[AgentEvent]:
        """Answer the pending confirmation request."""
        ...

    @abstractmethod
    def supply_tool_result(self, tool_call_id: str, text: str) -> AsyncIterator[AgentEvent]:
        """Provide the result of a call handed to the caller."""
        ...

    @abstractmethod
    def cancel(self) -> None:
        """Abort the turn in progress."""
        ...

    @abstractmethod
    def get_view_state(self) -> ViewState:
        """Snapshot of the conversation for rendering."""
        ...
