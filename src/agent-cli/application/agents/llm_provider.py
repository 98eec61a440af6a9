"""LLM Provider abstraction for the Agent CLI.

This module defines the provider-agnostic message model, the streaming
completion event protocol and the abstract interface the conversation agent
talks to.

A streaming completion is exposed as a `CompletionStream`: the network read
runs in a worker task that pushes `LlmStreamEvent`s into a single-consumer
queue, and the agent pulls them one at a time. Event order within one stream:

    STREAM_START, CONTENT_CHUNK*, [ERROR], [TOOL_CALL_REQUEST], STREAM_END

or, when the request could not be set up, a single ERROR event.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class LlmProviderError(Exception):
    """Failure of a completion request, raised by `chat` and carried by ERROR stream events.

    `error_code` is a stable machine-readable tag such as "openai_rate_limit";
    `is_retryable` marks failures worth retrying unchanged (timeouts, 429, 5xx).
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        provider: str,
        is_retryable: bool = False,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.is_retryable = is_retryable
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in ("message", "error_code", "provider", "is_retryable", "details")}

    def __repr__(self) -> str:
        return f"LlmProviderError({self.error_code!r}, provider={self.provider!r}, message={self.message!r})"


# =============================================================================
# Conversation Model
# =============================================================================


class LlmMessageRole(str, Enum):
    """Chat completion message roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class LlmToolCall:
    """A fully assembled tool call requested by the LLM.

    Attributes:
        id: Call id, echoed back by the matching tool result message
        name: Registered tool name
        arguments: Raw JSON text of the arguments, as sent by the model
        type: Call type, always "function" for OpenAI-compatible endpoints
    """

    id: str
    name: str
    arguments: str = ""
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format of an assistant message."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.name,
                "arguments": self.arguments,
            },
        }


@dataclass
class LlmToolCallDelta:
    """A partial tool call fragment from one streamed chunk.

    Fragments sharing the same index belong to the same call.
    """

    index: int
    id: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


@dataclass
class LlmMessage:
    """One entry of the conversation history.

    Assistant messages may carry `tool_calls`; tool messages carry the
    `tool_call_id` of the call they answer.
    """

    role: LlmMessageRole
    content: str
    tool_calls: Optional[list[LlmToolCall]] = None
    tool_call_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Wire format used in the request `messages` array."""
        wire: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            wire["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            wire["tool_call_id"] = self.tool_call_id
        return wire

    def copy(self) -> "LlmMessage":
        """Return a detached copy (tool calls are immutable and shared)."""
        return LlmMessage(
            role=self.role,
            content=self.content,
            tool_calls=list(self.tool_calls) if self.tool_calls is not None else None,
            tool_call_id=self.tool_call_id,
        )

    @classmethod
    def system(cls, content: str) -> "LlmMessage":
        return cls(role=LlmMessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "LlmMessage":
        return cls(role=LlmMessageRole.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str,
        tool_calls: Optional[list[LlmToolCall]] = None,
    ) -> "LlmMessage":
        return cls(role=LlmMessageRole.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> "LlmMessage":
        """Result text answering the call with id `tool_call_id`."""
        return cls(role=LlmMessageRole.TOOL, content=content, tool_call_id=tool_call_id)


@dataclass
class LlmResponse:
    """Result of a non-streaming completion. `usage` holds the server token counts when reported."""

    content: str
    tool_calls: Optional[list[LlmToolCall]] = None
    finish_reason: str = "stop"
    usage: Optional[dict[str, int]] = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@dataclass
class LlmToolDefinition:
    """Tool advertised to the model; `parameters` is the JSON Schema of its arguments."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_openai_format(self) -> dict[str, Any]:
        function = {"name": self.name, "description": self.description, "parameters": self.parameters}
        return {"type": "function", "function": function}


@dataclass
class LlmConfig:
    """Endpoint, model and sampling settings of a provider.

    Attributes:
        model: Model identifier (e.g., "gpt-3.5-turbo")
        base_url: Base URL for the API, without the /chat/completions suffix
        api_key: Bearer token sent with every request
        temperature: Sampling temperature (None = server default)
        max_tokens: Maximum tokens to generate (None = server default)
        timeout: Request timeout in seconds (None = no timeout)
        extra: Additional request body fields, merged over the generated ones
    """

    model: str
    base_url: str = "http://localhost:3000/v1"
    api_key: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Streaming Protocol
# =============================================================================


class LlmStreamEventType(str, Enum):
    """Kinds of events produced by a streaming completion."""

    STREAM_START = "stream_start"
    CONTENT_CHUNK = "content_chunk"
    TOOL_CALL_REQUEST = "tool_call_request"
    ERROR = "error"
    STREAM_END = "stream_end"


@dataclass
class LlmStreamEvent:
    """One event of a streaming completion.

    Attributes:
        type: Event kind
        content: Text fragment (CONTENT_CHUNK only)
        message: Assistant message carrying the assembled tool calls (TOOL_CALL_REQUEST only)
        error: The failure (ERROR only)
    """

    type: LlmStreamEventType
    content: str = ""
    message: Optional[LlmMessage] = None
    error: Optional[LlmProviderError] = None

    @classmethod
    def start(cls) -> "LlmStreamEvent":
        return cls(type=LlmStreamEventType.STREAM_START)

    @classmethod
    def content_chunk(cls, content: str) -> "LlmStreamEvent":
        return cls(type=LlmStreamEventType.CONTENT_CHUNK, content=content)

    @classmethod
    def tool_call_request(cls, message: LlmMessage) -> "LlmStreamEvent":
        return cls(type=LlmStreamEventType.TOOL_CALL_REQUEST, message=message)

    @classmethod
    def failure(cls, error: LlmProviderError) -> "LlmStreamEvent":
        return cls(type=LlmStreamEventType.ERROR, error=error)

    @classmethod
    def end(cls) -> "LlmStreamEvent":
        return cls(type=LlmStreamEventType.STREAM_END)


@dataclass
class _ToolCallBuilder:
    id: str = ""
    type: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """Folds streamed tool call fragments into complete calls.

    Builders are addressed by the fragment's index and the list grows on
    demand. A non-empty id or type overwrites the previous value; name and
    argument fragments are appended in arrival order.
    """

    def __init__(self) -> None:
        self._builders: list[_ToolCallBuilder] = []

    def add(self, delta: LlmToolCallDelta) -> None:
        if delta.index < 0:
            logger.debug(f"Ignoring tool call fragment with negative index {delta.index}")
            return
        while len(self._builders) <= delta.index:
            self._builders.append(_ToolCallBuilder())

        builder = self._builders[delta.index]
        if delta.id:
            builder.id = delta.id
        if delta.type:
            builder.type = delta.type
        if delta.name:
            builder.name += delta.name
        if delta.arguments:
            builder.arguments += delta.arguments

    def __len__(self) -> int:
        return len(self._builders)

    @property
    def has_tool_calls(self) -> bool:
        """True when at least one builder has received a function name."""
        return any(b.name for b in self._builders)

    def build(self) -> list[LlmToolCall]:
        """Return the populated calls in index order.

        Slots that never received a function name are dropped. A call the
        server sent without an id gets a generated one so its result can
        still be correlated.
        """
        calls: list[LlmToolCall] = []
        for builder in self._builders:
            if not builder.name:
                continue
            calls.append(
                LlmToolCall(
                    id=builder.id or f"call_{uuid.uuid4().hex[:24]}",
                    name=builder.name,
                    arguments=builder.arguments,
                    type=builder.type or "function",
                )
            )
        return calls


_STREAM_CLOSED = object()


class CompletionStream:
    """Single-consumer channel of `LlmStreamEvent`s fed by a worker task.

    Must be created from within a running event loop; the worker starts
    immediately. Iterate with ``async for``. ``cancel()`` stops the worker
    (cancelling any in-flight network read) and ends the iteration.
    """

    def __init__(self, source: AsyncGenerator[LlmStreamEvent, None], provider: str = "llm") -> None:
        self._source = source
        self._provider = provider
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = False
        self._worker = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self) -> None:
        try:
            async with aclosing(self._source) as events:
                async for event in events:
                    await self._queue.put(event)
        except asyncio.CancelledError:
            logger.debug("Completion stream worker cancelled")
            raise
        except Exception as e:
            logger.exception(f"Completion stream worker failed: {e}")
            error = LlmProviderError(
                message=f"Unexpected streaming failure: {e}",
                error_code="stream_worker_error",
                provider=self._provider,
            )
            await self._queue.put(LlmStreamEvent.failure(error))
        finally:
            self._queue.put_nowait(_STREAM_CLOSED)

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> LlmStreamEvent:
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _STREAM_CLOSED:
            self._finished = True
            raise StopAsyncIteration
        return item

    @property
    def done(self) -> bool:
        return self._finished

    def cancel(self) -> None:
        """Stop the worker and end iteration for the consumer."""
        self._finished = True
        if not self._worker.done():
            self._worker.cancel()
        self._queue.put_nowait(_STREAM_CLOSED)

    async def aclose(self) -> None:
        """Cancel the worker and wait for it to unwind."""
        self.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)


# =============================================================================
# Provider Interface
# =============================================================================


class LlmProvider(ABC):
    """Interface the conversation agent uses to reach a completion endpoint.

    Implementations provide the non-streaming `chat` call and the raw event
    generator `_stream_events`; `stream_completion` wraps the latter in a
    `CompletionStream` so the read runs concurrently with the consumer.

    Usage:
        provider = OpenAiLlmProvider(config)
        stream = provider.stream_completion(messages, tools=registry.definitions())
        async for event in stream:
            ...
    """

    provider_name = "llm"

    def __init__(self, config: LlmConfig) -> None:
        self._config = config

    @property
    def config(self) -> LlmConfig:
        return self._config

    @property
    def model(self) -> str:
        return self._config.model

    @abstractmethod
    async def chat(
        self,
        messages: list[LlmMessage],
        tools: Optional[list[LlmToolDefinition]] = None,
    ) -> LlmResponse:
        """Request a whole completion in one round trip.

        Raises:
            LlmProviderError: When the request fails or returns no choices
        """
        pass

    @abstractmethod
    def _stream_events(
        self,
        messages: list[LlmMessage],
        tools: Optional[list[LlmToolDefinition]] = None,
    ) -> AsyncGenerator[LlmStreamEvent, None]:
        """Produce the events of one streaming completion.

        Implementations are async generators and must never raise for
        request or transport failures; those are reported as ERROR events.
        """
        raise NotImplementedError

    def stream_completion(
        self,
        messages: list[LlmMessage],
        tools: Optional[list[LlmToolDefinition]] = None,
    ) -> CompletionStream:
        """Start a streaming completion and return its event channel.

        The message list is snapshotted so later history appends do not
        leak into the in-flight request.
        """
        snapshot = [m.copy() for m in messages]
        return CompletionStream(self._stream_events(snapshot, tools), provider=self.provider_name)

    @abstractmethod
    async def close(self) -> None:
        """Release the HTTP client."""

    async def __aenter__(self) -> "LlmProvider":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
