"""OpenAI-compatible completion client.

Talks to `POST {base_url}/chat/completions` of any server that implements the
OpenAI chat completions API (OpenAI, vLLM, LiteLLM, llama.cpp server, ...).

Features:
- Streamed completions decoded from server-sent events
- Incremental assembly of streamed tool calls
- Non-streaming completions for one-shot prompts
- Bearer API key authentication
- OpenTelemetry span and metrics per request

Streaming failure handling:
- Failures before a successful response (missing key, unserializable body,
  connection errors, non-2xx status) produce a single ERROR event.
- A read failure once the stream has started produces an ERROR event; the
  accumulated tool calls are still evaluated and STREAM_END is still emitted.
- Payloads that are not valid chunks are skipped.
"""

import json
import logging
import time
from typing import Any, AsyncGenerator, Optional

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from application.agents.llm_provider import (
    LlmConfig,
    LlmMessage,
    LlmProvider,
    LlmProviderError,
    LlmResponse,
    LlmStreamEvent,
    LlmToolDefinition,
    ToolCallAccumulator,
)
from integration.models import ChatCompletionChunkDto, ChatCompletionDto
from observability import llm_request_count, llm_request_time, llm_tool_calls

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

COMPLETIONS_ENDPOINT = "chat/completions"
SSE_DATA_PREFIX = "data:"
SSE_DONE_MARKER = "[DONE]"

# status code -> (error code, retryable, summary)
HTTP_STATUS_ERRORS: dict[int, tuple[str, bool, str]] = {
    401: ("openai_auth_error", False, "authentication failed, check your API key"),
    403: ("openai_forbidden", False, "access denied"),
    404: ("openai_model_not_found", False, "model '{model}' not found or endpoint not available"),
    429: ("openai_rate_limit", True, "rate limit exceeded"),
}


def _error_detail(body: str) -> str:
    """Message of an OpenAI-style `{"error": {"message": ...}}` body, else the raw text."""
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return body[:200]
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return str(payload["error"].get("message", body[:200]))
    return body[:200]


class OpenAiLlmProvider(LlmProvider):
    """Completion client for OpenAI-compatible endpoints.

    Configuration:
        - base_url: API root such as "http://localhost:3000/v1" or "https://api.openai.com/v1"
        - model: Model name sent with every request
        - api_key: Bearer token (required)
        - timeout: Seconds per request, None to wait indefinitely

    Usage:
        provider = OpenAiLlmProvider(LlmConfig(model="gpt-3.5-turbo", api_key=key))
        async for event in provider.stream_completion([LlmMessage.user("Hello!")]):
            ...
        await provider.close()
    """

    PROVIDER_NAME = "openai"
    provider_name = PROVIDER_NAME

    def __init__(self, config: LlmConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        """
        Args:
            config: Endpoint, model and sampling settings
            transport: httpx transport override (tests pass a MockTransport)
        """
        super().__init__(config)
        self._base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # =========================================================================
    # Request building
    # =========================================================================

    def _http(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._config.timeout, transport=self._transport)
        return self._client

    def _error(self, message: str, error_code: str, is_retryable: bool = False, **details: Any) -> LlmProviderError:
        return LlmProviderError(message=message, error_code=error_code, provider=self.PROVIDER_NAME, is_retryable=is_retryable, details=details or None)

    def _headers(self, stream: bool) -> dict[str, str]:
        """Request headers with bearer auth.

        Raises:
            LlmProviderError: If no API key is configured
        """
        if not self._config.api_key:
            raise self._error("API key authentication requires api_key", "openai_auth_config_error")
        headers = {"Authorization": f"Bearer {self._config.api_key}", "Content-Type": "application/json"}
        if stream:
            headers["Accept"] = "text/event-stream"
            headers["Cache-Control"] = "no-cache"
        return headers

    def _payload(self, messages: list[LlmMessage], tools: Optional[list[LlmToolDefinition]], stream: bool) -> bytes:
        """Serialize the request body.

        Optional sampling fields are only sent when configured, and tools only
        when there are any. `config.extra` is merged last.

        Raises:
            LlmProviderError: If the body cannot be encoded as JSON
        """
        body: dict[str, Any] = {"model": self.model, "messages": [m.to_dict() for m in messages], "stream": stream}
        if tools:
            body["tools"] = [tool.to_openai_format() for tool in tools]
        if self._config.temperature is not None:
            body["temperature"] = self._config.temperature
        if self._config.max_tokens:
            body["max_tokens"] = self._config.max_tokens
        body.update(self._config.extra)

        try:
            return json.dumps(body).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise self._error(f"Failed to serialize request body: {e}", "openai_request_build_error")

    @property
    def completions_url(self) -> str:
        return f"{self._base_url}/{COMPLETIONS_ENDPOINT}"

    def _record_request(self, stream: bool, has_tools: bool) -> None:
        llm_request_count.add(1, {"model": self.model, "has_tools": str(has_tools), "provider": self.PROVIDER_NAME, "stream": str(stream).lower()})

    def _record_duration(self, started_at: float) -> float:
        duration_ms = (time.time() - started_at) * 1000
        llm_request_time.record(duration_ms, {"model": self.model, "provider": self.PROVIDER_NAME})
        return duration_ms

    # =========================================================================
    # Non-streaming
    # =========================================================================

    async def chat(self, messages: list[LlmMessage], tools: Optional[list[LlmToolDefinition]] = None) -> LlmResponse:
        """Request a complete response in one round trip.

        Raises:
            LlmProviderError: On transport failure, a non-2xx status, an
                unparseable body or a response without choices
        """
        started_at = time.time()
        try:
            headers = self._headers(stream=False)
            payload = self._payload(messages, tools, stream=False)
            logger.debug(f"OpenAI chat request: model={self.model}, messages={len(messages)}")
            response = await self._http().post(self.completions_url, content=payload, headers=headers)
        except httpx.HTTPError as e:
            raise self._error_from_transport(e)

        self._record_request(stream=False, has_tools=bool(tools))
        self._record_duration(started_at)

        if not response.is_success:
            logger.error(f"OpenAI HTTP error: {response.status_code} - {response.text}")
            raise self._error_from_status(response.status_code, response.text)

        try:
            completion = ChatCompletionDto.model_validate_json(response.content)
        except ValidationError as e:
            raise self._error(f"Invalid completion response: {e.error_count()} validation error(s)", "openai_api_error")
        if not completion.choices:
            raise self._error("no response choices found", "openai_empty_response", is_retryable=True)

        choice = completion.choices[0]
        tool_calls = choice.message.to_tool_calls()
        for tc in tool_calls or []:
            llm_tool_calls.add(1, {"model": self.model, "tool_name": tc.name, "provider": self.PROVIDER_NAME})

        return LlmResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=completion.usage,
        )

    # =========================================================================
    # Streaming
    # =========================================================================

    async def _stream_events(
        self,
        messages: list[LlmMessage],
        tools: Optional[list[LlmToolDefinition]] = None,
    ) -> AsyncGenerator[LlmStreamEvent, None]:
        started_at = time.time()
        self._record_request(stream=True, has_tools=bool(tools))

        with tracer.start_as_current_span("openai.stream_completion") as span:
            span.set_attribute("llm.provider", self.PROVIDER_NAME)
            span.set_attribute("llm.model", self.model)
            span.set_attribute("llm.message_count", len(messages))

            try:
                headers = self._headers(stream=True)
                payload = self._payload(messages, tools, stream=True)
            except LlmProviderError as e:
                span.set_attribute("error", True)
                logger.error(f"OpenAI request setup failed: {e.message}")
                yield LlmStreamEvent.failure(e)
                return

            logger.info(f"🔧 OpenAI stream request: model={self.model}, messages={len(messages)}, tools={len(tools or [])}")
            accumulator = ToolCallAccumulator()
            started = False
            chunk_count = 0

            try:
                async with self._http().stream("POST", self.completions_url, content=payload, headers=headers) as response:
                    if not response.is_success:
                        body = (await response.aread()).decode("utf-8", errors="replace")
                        logger.error(f"OpenAI HTTP error: {response.status_code} - {body}")
                        span.set_attribute("error", True)
                        yield LlmStreamEvent.failure(self._error_from_status(response.status_code, body))
                        return

                    started = True
                    yield LlmStreamEvent.start()

                    try:
                        async for line in response.aiter_lines():
                            if not line.startswith(SSE_DATA_PREFIX):
                                continue
                            data = line[len(SSE_DATA_PREFIX) :].strip()
                            if data == SSE_DONE_MARKER:
                                break

                            chunk = self._parse_chunk(data)
                            if chunk is None or chunk.first_choice is None:
                                continue
                            chunk_count += 1

                            delta = chunk.first_choice.delta
                            if delta.content:
                                yield LlmStreamEvent.content_chunk(delta.content)
                            for fragment in delta.tool_calls or []:
                                accumulator.add(fragment.to_delta())
                    except (httpx.HTTPError, httpx.StreamError) as e:
                        span.set_attribute("error", True)
                        logger.error(f"OpenAI stream read failed after {chunk_count} chunks: {e}")
                        yield LlmStreamEvent.failure(self._error(f"Error reading stream: {e}", "openai_stream_read_error", is_retryable=True))
            except httpx.HTTPError as e:
                span.set_attribute("error", True)
                yield LlmStreamEvent.failure(self._error_from_transport(e))
                if not started:
                    return

            span.set_attribute("llm.duration_ms", self._record_duration(started_at))

            tool_calls = accumulator.build()
            span.set_attribute("llm.tool_call_count", len(tool_calls))
            if tool_calls:
                for tc in tool_calls:
                    llm_tool_calls.add(1, {"model": self.model, "tool_name": tc.name, "provider": self.PROVIDER_NAME})
                logger.info(f"✅ OpenAI returned {len(tool_calls)} tool_calls")
                yield LlmStreamEvent.tool_call_request(LlmMessage.assistant("", tool_calls=tool_calls))

            logger.info(f"🏁 OpenAI stream completed: {chunk_count} chunks")
            yield LlmStreamEvent.end()

    def _parse_chunk(self, data: str) -> Optional[ChatCompletionChunkDto]:
        try:
            return ChatCompletionChunkDto.model_validate_json(data)
        except ValidationError:
            logger.debug(f"Skipping malformed OpenAI chunk: {data[:200]}")
            return None

    # =========================================================================
    # Error mapping
    # =========================================================================

    def _error_from_transport(self, e: httpx.HTTPError) -> LlmProviderError:
        if isinstance(e, httpx.ConnectError):
            logger.error(f"Cannot connect to OpenAI at {self._base_url}: {e}")
            return self._error(f"Cannot connect to completion service at {self._base_url}", "openai_unavailable", is_retryable=True, url=self._base_url)
        if isinstance(e, httpx.TimeoutException):
            logger.error(f"OpenAI request timed out: {e}")
            return self._error("Completion request timed out", "openai_timeout", is_retryable=True)
        logger.error(f"OpenAI request error: {e}")
        return self._error(f"Failed to communicate with completion service: {e}", "openai_request_error", is_retryable=True)

    def _error_from_status(self, status_code: int, body: str) -> LlmProviderError:
        """Map a non-2xx response to an error whose message starts with the status."""
        details: dict[str, Any] = {"status_code": status_code, "body": body[:1000]}

        if status_code in HTTP_STATUS_ERRORS:
            error_code, retryable, summary = HTTP_STATUS_ERRORS[status_code]
            if status_code == 404:
                details["model"] = self.model
                reason = summary.format(model=self.model)
            else:
                reason = f"{summary} ({_error_detail(body)})"
        elif status_code >= 500:
            error_code, retryable, reason = "openai_server_error", True, _error_detail(body)
        else:
            error_code, retryable, reason = "openai_api_error", False, _error_detail(body)

        return self._error(f"API request failed with status {status_code}: {reason}", error_code, retryable, **details)

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None
