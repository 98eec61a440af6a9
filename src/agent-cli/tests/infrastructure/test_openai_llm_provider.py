"""Tests for OpenAiLlmProvider.

Tests cover:
- Request shape (URL, headers, body) of streaming requests
- Content streaming and the [DONE] terminator
- Tool call fragments assembled across chunks
- Malformed and non-data lines being skipped
- Setup failures (missing key, unserializable body, connect error, non-2xx)
- Mid-stream read failures
- Non-streaming chat completions

All HTTP traffic goes through httpx.MockTransport.
"""

import json
from typing import Any, AsyncIterator, Callable

import httpx
import pytest

from application.agents import LlmConfig, LlmMessage, LlmProviderError, LlmStreamEvent, LlmStreamEventType, LlmToolCall, LlmToolDefinition
from infrastructure.adapters import OpenAiLlmProvider

BASE_URL = "http://llm.test/v1"
API_KEY = "sk-test"  # pragma: allowlist secret

# =============================================================================
# Helpers
# =============================================================================


def sse(*payloads: Any, done: bool = True) -> bytes:
    """Encode payloads as an SSE body."""
    lines = [f"data: {p if isinstance(p, str) else json.dumps(p)}\n\n" for p in payloads]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def content_chunk(text: str) -> dict[str, Any]:
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {"content": text}, "finish_reason": None}]}


def tool_chunk(index: int, id: str | None = None, name: str | None = None, arguments: str | None = None) -> dict[str, Any]:
    delta: dict[str, Any] = {"index": index, "function": {}}
    if id is not None:
        delta["id"] = id
        delta["type"] = "function"
    if name is not None:
        delta["function"]["name"] = name
    if arguments is not None:
        delta["function"]["arguments"] = arguments
    return {"id": "chatcmpl-1", "choices": [{"index": 0, "delta": {"tool_calls": [delta]}, "finish_reason": None}]}


class FailingByteStream(httpx.AsyncByteStream):
    """Response body that breaks after the given chunks."""

    def __init__(self, *chunks: bytes) -> None:
        self._chunks = chunks

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        raise httpx.ReadError("connection reset by peer")


def make_provider(handler: Callable[[httpx.Request], httpx.Response], **config: Any) -> OpenAiLlmProvider:
    settings = {"model": "test-model", "base_url": BASE_URL, "api_key": API_KEY, **config}
    return OpenAiLlmProvider(LlmConfig(**settings), transport=httpx.MockTransport(handler))


async def collect(provider: OpenAiLlmProvider, messages: list[LlmMessage] | None = None, tools: list[LlmToolDefinition] | None = None) -> list[LlmStreamEvent]:
    stream = provider.stream_completion(messages or [LlmMessage.user("hi")], tools=tools)
    events = [event async for event in stream]
    await provider.close()
    return events


def types(events: list[LlmStreamEvent]) -> list[LlmStreamEventType]:
    return [e.type for e in events]


# =============================================================================
# Request shape
# =============================================================================


class TestStreamingRequest:
    """Tests for the outgoing streaming request."""

    @pytest.mark.asyncio
    async def test_posts_to_chat_completions_with_stream_headers(self) -> None:
        """The request targets the completions endpoint with SSE headers and bearer auth."""
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, content=sse(content_chunk("ok")), headers={"Content-Type": "text/event-stream"})

        await collect(make_provider(handler, base_url=BASE_URL + "/"))

        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/chat/completions"
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Accept"] == "text/event-stream"
        assert request.headers["Cache-Control"] == "no-cache"

    @pytest.mark.asyncio
    async def test_body_carries_model_messages_and_tools(self) -> None:
        """Messages and tool definitions are sent in OpenAI format."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=sse(content_chunk("ok")))

        tool = LlmToolDefinition(name="read_file", description="Read a file", parameters={"type": "object", "properties": {}})
        await collect(make_provider(handler), messages=[LlmMessage.system("sys"), LlmMessage.user("hi")], tools=[tool])

        body = bodies[0]
        assert body["model"] == "test-model"
        assert body["stream"] is True
        assert body["messages"] == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
        assert body["tools"] == [tool.to_openai_format()]
        assert "temperature" not in body
        assert "max_tokens" not in body

    @pytest.mark.asyncio
    async def test_tools_omitted_when_empty(self) -> None:
        """No tools key is sent when no tools are available."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=sse(content_chunk("ok")))

        await collect(make_provider(handler), tools=[])

        assert "tools" not in bodies[0]

    @pytest.mark.asyncio
    async def test_optional_sampling_settings_are_sent_when_set(self) -> None:
        """Temperature, max tokens and extra fields are forwarded."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=sse(content_chunk("ok")))

        await collect(make_provider(handler, temperature=0.2, max_tokens=256, extra={"user": "tester"}))

        assert bodies[0]["temperature"] == 0.2
        assert bodies[0]["max_tokens"] == 256
        assert bodies[0]["user"] == "tester"

    @pytest.mark.asyncio
    async def test_tool_history_is_serialized(self) -> None:
        """Assistant tool calls and tool results keep their wire shape."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=sse(content_chunk("ok")))

        history = [
            LlmMessage.user("list"),
            LlmMessage.assistant("", tool_calls=[LlmToolCall(id="call_1", name="list_directory", arguments='{"path":"."}')]),
            LlmMessage.tool_result("call_1", "Contents of .:\n"),
        ]
        await collect(make_provider(handler), messages=history)

        sent = bodies[0]["messages"]
        assert sent[1]["tool_calls"] == [{"id": "call_1", "type": "function", "function": {"name": "list_directory", "arguments": '{"path":"."}'}}]
        assert sent[2] == {"role": "tool", "content": "Contents of .:\n", "tool_call_id": "call_1"}


# =============================================================================
# Stream decoding
# =============================================================================


class TestStreamDecoding:
    """Tests for turning SSE lines into stream events."""

    @pytest.mark.asyncio
    async def test_content_chunks_in_order(self) -> None:
        """Each non-empty content delta becomes one CONTENT_CHUNK."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse(content_chunk("Hel"), content_chunk(""), content_chunk("lo")))

        events = await collect(make_provider(handler))

        assert types(events) == [
            LlmStreamEventType.STREAM_START,
            LlmStreamEventType.CONTENT_CHUNK,
            LlmStreamEventType.CONTENT_CHUNK,
            LlmStreamEventType.STREAM_END,
        ]
        assert "".join(e.content for e in events) == "Hello"

    @pytest.mark.asyncio
    async def test_done_marker_stops_reading(self) -> None:
        """Lines after [DONE] are ignored."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = sse(content_chunk("before")) + sse(content_chunk("after"), done=False)
            return httpx.Response(200, content=body)

        events = await collect(make_provider(handler))

        assert [e.content for e in events if e.type is LlmStreamEventType.CONTENT_CHUNK] == ["before"]
        assert events[-1].type is LlmStreamEventType.STREAM_END

    @pytest.mark.asyncio
    async def test_end_of_body_without_done_ends_normally(self) -> None:
        """A body that ends without [DONE] still produces STREAM_END."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse(content_chunk("only"), done=False))

        events = await collect(make_provider(handler))

        assert types(events) == [LlmStreamEventType.STREAM_START, LlmStreamEventType.CONTENT_CHUNK, LlmStreamEventType.STREAM_END]

    @pytest.mark.asyncio
    async def test_malformed_and_foreign_lines_are_skipped(self) -> None:
        """Bad JSON, comments and other SSE fields do not break the stream."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = b": keep-alive\n\nevent: ping\n\ndata: {not json}\n\ndata: [1, 2]\n\n" + sse(content_chunk("fine"))
            return httpx.Response(200, content=body)

        events = await collect(make_provider(handler))

        assert types(events) == [LlmStreamEventType.STREAM_START, LlmStreamEventType.CONTENT_CHUNK, LlmStreamEventType.STREAM_END]
        assert events[1].content == "fine"

    @pytest.mark.asyncio
    async def test_chunks_without_choices_are_ignored(self) -> None:
        """Usage-only chunks carry no events."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse({"id": "x", "choices": [], "usage": {"total_tokens": 3}}, content_chunk("a")))

        events = await collect(make_provider(handler))

        assert [e.content for e in events if e.type is LlmStreamEventType.CONTENT_CHUNK] == ["a"]

    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_assembled(self) -> None:
        """Fragments sharing an index become one call; calls keep index order."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = sse(
                tool_chunk(0, id="call_a", name="read_", arguments='{"pa'),
                tool_chunk(1, id="call_b", name="glob", arguments='{"pattern": "*.py"}'),
                tool_chunk(0, name="file", arguments='th": "main.py"}'),
            )
            return httpx.Response(200, content=body)

        events = await collect(make_provider(handler))

        assert types(events) == [LlmStreamEventType.STREAM_START, LlmStreamEventType.TOOL_CALL_REQUEST, LlmStreamEventType.STREAM_END]
        calls = events[1].message.tool_calls
        assert [(c.id, c.name, c.arguments) for c in calls] == [
            ("call_a", "read_file", '{"path": "main.py"}'),
            ("call_b", "glob", '{"pattern": "*.py"}'),
        ]
        assert all(c.type == "function" for c in calls)

    @pytest.mark.asyncio
    async def test_tool_calls_are_reported_after_content(self) -> None:
        """Content chunks come first, the tool call request right before the end."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse(content_chunk("Checking."), tool_chunk(0, id="call_1", name="glob", arguments="{}")))

        events = await collect(make_provider(handler))

        assert types(events) == [
            LlmStreamEventType.STREAM_START,
            LlmStreamEventType.CONTENT_CHUNK,
            LlmStreamEventType.TOOL_CALL_REQUEST,
            LlmStreamEventType.STREAM_END,
        ]


# =============================================================================
# Failures
# =============================================================================


class TestStreamingFailures:
    """Tests for failures before and during the stream."""

    @pytest.mark.asyncio
    async def test_missing_api_key_yields_single_error(self) -> None:
        """No request is made without a key."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=sse(content_chunk("x")))

        events = await collect(make_provider(handler, api_key=None))

        assert types(events) == [LlmStreamEventType.ERROR]
        assert events[0].error.error_code == "openai_auth_config_error"
        assert calls == []

    @pytest.mark.asyncio
    async def test_unserializable_body_yields_single_error(self) -> None:
        """A body that cannot be encoded is reported before sending."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=sse(content_chunk("x")))

        events = await collect(make_provider(handler, extra={"bad": object()}))

        assert types(events) == [LlmStreamEventType.ERROR]
        assert events[0].error.error_code == "openai_request_build_error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,error_code",
        [
            (401, "openai_auth_error"),
            (403, "openai_forbidden"),
            (404, "openai_model_not_found"),
            (429, "openai_rate_limit"),
            (500, "openai_server_error"),
            (400, "openai_api_error"),
        ],
    )
    async def test_non_success_status_yields_single_error(self, status_code: int, error_code: str) -> None:
        """The status and body end up in the error; nothing else is emitted."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json={"error": {"message": "nope"}})

        events = await collect(make_provider(handler))

        assert types(events) == [LlmStreamEventType.ERROR]
        error = events[0].error
        assert error.error_code == error_code
        assert error.message.startswith(f"API request failed with status {status_code}")
        assert error.details["status_code"] == status_code

    @pytest.mark.asyncio
    async def test_connection_failure_yields_single_error(self) -> None:
        """An unreachable server is retryable and produces no stream start."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        events = await collect(make_provider(handler))

        assert types(events) == [LlmStreamEventType.ERROR]
        assert events[0].error.error_code == "openai_unavailable"
        assert events[0].error.is_retryable is True

    @pytest.mark.asyncio
    async def test_read_failure_mid_stream(self) -> None:
        """A broken stream reports the error, then the calls collected so far, then ends."""

        def handler(request: httpx.Request) -> httpx.Response:
            stream = FailingByteStream(sse(content_chunk("par"), tool_chunk(0, id="call_1", name="glob", arguments="{}"), done=False))
            return httpx.Response(200, stream=stream)

        events = await collect(make_provider(handler))

        assert types(events) == [
            LlmStreamEventType.STREAM_START,
            LlmStreamEventType.CONTENT_CHUNK,
            LlmStreamEventType.ERROR,
            LlmStreamEventType.TOOL_CALL_REQUEST,
            LlmStreamEventType.STREAM_END,
        ]
        assert events[2].error.error_code == "openai_stream_read_error"
        assert events[3].message.tool_calls[0].id == "call_1"

    @pytest.mark.asyncio
    async def test_read_failure_without_tool_calls(self) -> None:
        """Without populated calls the error is followed directly by the end."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, stream=FailingByteStream(sse(content_chunk("par"), done=False)))

        events = await collect(make_provider(handler))

        assert types(events)[-2:] == [LlmStreamEventType.ERROR, LlmStreamEventType.STREAM_END]


# =============================================================================
# Non-streaming chat
# =============================================================================


class TestChat:
    """Tests for the non-streaming chat call."""

    @pytest.mark.asyncio
    async def test_returns_content_and_usage(self) -> None:
        """The first choice is returned with finish reason and usage."""
        bodies: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "id": "chatcmpl-1",
                    "choices": [{"index": 0, "message": {"role": "assistant", "content": "Hi there"}, "finish_reason": "stop"}],
                    "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
                },
            )

        provider = make_provider(handler)
        response = await provider.chat([LlmMessage.user("hi")])
        await provider.close()

        assert response.content == "Hi there"
        assert response.finish_reason == "stop"
        assert response.usage == {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5}
        assert response.has_tool_calls is False
        assert bodies[0]["stream"] is False

    @pytest.mark.asyncio
    async def test_returns_tool_calls(self) -> None:
        """Tool calls of the first choice are converted."""

        def handler(request: httpx.Request) -> httpx.Response:
            message = {"role": "assistant", "content": None, "tool_calls": [{"id": "call_1", "type": "function", "function": {"name": "glob", "arguments": "{}"}}]}
            return httpx.Response(200, json={"choices": [{"index": 0, "message": message, "finish_reason": "tool_calls"}]})

        provider = make_provider(handler)
        response = await provider.chat([LlmMessage.user("hi")])
        await provider.close()

        assert response.content == ""
        assert response.tool_calls[0].name == "glob"
        assert response.finish_reason == "tool_calls"

    @pytest.mark.asyncio
    async def test_no_choices_raises(self) -> None:
        """An empty choice list is an error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "chatcmpl-1", "choices": []})

        provider = make_provider(handler)
        with pytest.raises(LlmProviderError) as exc_info:
            await provider.chat([LlmMessage.user("hi")])
        await provider.close()

        assert exc_info.value.message == "no response choices found"

    @pytest.mark.asyncio
    async def test_http_error_raises_with_status(self) -> None:
        """A failed status is mapped to a provider error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="invalid key")

        provider = make_provider(handler)
        with pytest.raises(LlmProviderError) as exc_info:
            await provider.chat([LlmMessage.user("hi")])
        await provider.close()

        assert exc_info.value.error_code == "openai_auth_error"
        assert "invalid key" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_api_key_raises(self) -> None:
        """The key is required before sending."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        provider = make_provider(handler, api_key="")
        with pytest.raises(LlmProviderError) as exc_info:
            await provider.chat([LlmMessage.user("hi")])
        await provider.close()

        assert exc_info.value.error_code == "openai_auth_config_error"
