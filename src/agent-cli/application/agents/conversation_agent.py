"""Conversation agent for the Agent CLI.

This module implements the turn-based orchestration between the user, the
streaming completion client and the local tools.

Turn loop:
1. User input is appended to the history and a model response is streamed
2. Content chunks grow the trailing assistant message as they arrive
3. If the response requested tool calls, they are resolved one at a time in
   the order the model listed them:
   a. an unknown tool ends the turn with an error
   b. a tool that requires confirmation pauses the turn until the caller
      answers with `resolve_confirmation`
   c. otherwise the tool runs and its result text is appended
4. Once every call has a result, the model is asked again (step 1 without
   new user input); a response without tool calls ends the turn

Every entry point returns an async iterator of `AgentEvent`s that drives
the turn forward; the turn only advances while the caller iterates.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator
from contextlib import aclosing
from enum import Enum
from typing import TYPE_CHECKING, Any

from application.agents.agent_config import AgentConfig
from application.agents.base_agent import (
    DENIAL_MESSAGE_TEMPLATE,
    INTERRUPTED_MESSAGE,
    TOOL_ERROR_MESSAGE_TEMPLATE,
    Agent,
    AgentError,
    AgentEvent,
    AgentEventType,
    AgentState,
    ToolExecutionResult,
    TurnState,
    ViewState,
    tool_call_to_dict,
)
from application.agents.llm_provider import CompletionStream, LlmMessage, LlmProvider, LlmStreamEventType, LlmToolCall
from observability import chat_messages_received, chat_turn_duration, tool_confirmations, tool_execution_count, tool_execution_errors, tool_execution_time

if TYPE_CHECKING:
    from application.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class _Phase(Enum):
    STREAM = "stream"
    TOOLS = "tools"


class ConversationAgent(Agent):
    """Interactive agent driving one conversation.

    The agent owns the conversation history. It accepts a new turn only when
    idle, resolves tool calls strictly in order with at most one in flight,
    and re-invokes the model in a loop (not by recursion) until a response
    arrives without tool calls.

    Usage:
        agent = ConversationAgent(provider, create_default_registry())
        async for event in agent.submit_user_input("list files"):
            ...
        if agent.state is AgentState.AWAITING_CONFIRMATION:
            async for event in agent.resolve_confirmation(True):
                ...
    """

    def __init__(
        self,
        llm_provider: LlmProvider,
        tools: "ToolRegistry",
        config: AgentConfig | None = None,
        history: list[LlmMessage] | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            llm_provider: Streaming completion client
            tools: Registry of tools the model may call
            config: Agent configuration (defaults to AgentConfig.default())
            history: Prior conversation; the system prompt is only added to an empty history
        """
        self._llm = llm_provider
        self._tools = tools
        self._tool_definitions = tools.definitions()
        self._config = config or AgentConfig.default()
        self._messages: list[LlmMessage] = [m.copy() for m in history or []]
        if not self._messages and self._config.system_prompt:
            self._messages.append(LlmMessage.system(self._config.system_prompt))

        self._state = AgentState.IDLE
        self._turn: TurnState | None = None
        self._turn_id = 0
        self._turn_started_at = 0.0
        self._streaming_target: LlmMessage | None = None
        self._stream: CompletionStream | None = None
        self._tool_task: asyncio.Task[str] | None = None
        self._last_error: str | None = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def tools(self) -> "ToolRegistry":
        return self._tools

    @property
    def messages(self) -> tuple[LlmMessage, ...]:
        """Copies of the conversation history."""
        return tuple(m.copy() for m in self._messages)

    @property
    def last_error(self) -> str | None:
        return self._last_error

    # =========================================================================
    # Entry points
    # =========================================================================

    def submit_user_input(self, text: str) -> AsyncIterator[AgentEvent]:
        """Start a new turn with the user's text.

        Raises:
            AgentError: If a turn is already in progress
        """
        if self._state is not AgentState.IDLE:
            raise AgentError(
                "Cannot start a new turn while another one is in progress",
                error_code="turn_in_progress",
                details={"state": self._state.value},
            )

        self._turn_id += 1
        self._turn = TurnState()
        self._turn_started_at = time.time()
        self._last_error = None
        self._messages.append(LlmMessage.user(text))
        self._state = AgentState.STREAMING

        chat_messages_received.add(1, {"agent": self._config.name})
        logger.info(f"Turn {self._turn_id} started ({len(text)} chars of user input)")
        return self._drive(self._turn_id, _Phase.STREAM)

    def resolve_confirmation(self, confirmed: bool) -> AsyncIterator[AgentEvent]:
        """Answer the confirmation request for the call at the head of the queue.

        The call is consumed either way. A denial becomes the call's result
        text so the model learns about it on the next request.

        Raises:
            AgentError: If no call is awaiting confirmation
        """
        turn = self._turn
        if self._state is not AgentState.AWAITING_CONFIRMATION or turn is None or turn.confirming is None:
            raise AgentError("No tool call is awaiting confirmation", error_code="not_confirming", details={"state": self._state.value})

        call = turn.pending_tool_calls.popleft()
        turn.confirming = None
        self._state = AgentState.AWAITING_TOOL_RESULT
        tool_confirmations.add(1, {"tool_name": call.name, "decision": "approved" if confirmed else "denied"})

        if confirmed:
            logger.info(f"User approved tool call {call.id} ({call.name})")
            return self._drive(self._turn_id, _Phase.TOOLS, approved_call=call)

        logger.info(f"User denied tool call {call.id} ({call.name})")
        denial = ToolExecutionResult(call_id=call.id, tool_name=call.name, content=DENIAL_MESSAGE_TEMPLATE.format(name=call.name), success=False, denied=True)
        return self._drive(self._turn_id, _Phase.TOOLS, result=denial)

    def supply_tool_result(self, tool_call_id: str, text: str) -> AsyncIterator[AgentEvent]:
        """Provide the result of the call handed out with TOOL_EXECUTION_REQUESTED.

        Only used when the agent runs with `execute_tools=False`.

        Raises:
            AgentError: If that call is not the one awaiting a result
        """
        turn = self._turn
        in_flight = turn.in_flight if turn else None
        if self._state is not AgentState.AWAITING_TOOL_RESULT or in_flight is None or in_flight.id != tool_call_id or self._tool_task is not None:
            raise AgentError(
                f"No tool call with id {tool_call_id} is awaiting a result",
                error_code="unexpected_tool_result",
                details={"state": self._state.value, "tool_call_id": tool_call_id},
            )

        turn.in_flight = None
        result = ToolExecutionResult(call_id=in_flight.id, tool_name=in_flight.name, content=text)
        return self._drive(self._turn_id, _Phase.TOOLS, result=result)

    def cancel(self) -> None:
        """Abort the turn in progress.

        Cancels the open completion stream and any running tool, returns to
        idle and records the interruption. Output still produced by the
        aborted work is discarded. Every requested call that has no result
        yet is answered with the interruption notice, so the history stays
        valid for the next request.
        """
        if self._turn is None and self._state is AgentState.IDLE:
            return

        logger.info(f"Turn {self._turn_id} cancelled in state {self._state.value}")
        self._turn_id += 1
        if self._stream is not None:
            self._stream.cancel()
            self._stream = None
        if self._tool_task is not None and not self._tool_task.done():
            self._tool_task.cancel()
        self._tool_task = None
        if self._turn is not None:
            self._answer_unresolved_calls(self._turn)
        self._reset_turn()
        self._last_error = INTERRUPTED_MESSAGE

    def clear_history(self) -> None:
        """Forget the conversation, keeping the system prompt.

        Raises:
            AgentError: If a turn is in progress
        """
        if self._state is not AgentState.IDLE:
            raise AgentError("Cannot clear the conversation during a turn", error_code="turn_in_progress")
        self._messages = [m for m in self._messages[:1] if m.role.value == "system"]
        self._last_error = None

    def get_view_state(self) -> ViewState:
        turn = self._turn
        return ViewState(
            messages=self.messages,
            live_streamed_content=turn.streaming_buffer if turn else "",
            is_confirming=self._state is AgentState.AWAITING_CONFIRMATION,
            confirming_tool_call=turn.confirming if turn else None,
            state=self._state,
            last_error=self._last_error,
        )

    # =========================================================================
    # Turn driver
    # =========================================================================

    async def _drive(
        self,
        turn_id: int,
        phase: _Phase,
        approved_call: LlmToolCall | None = None,
        result: ToolExecutionResult | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Advance the turn until it ends or waits for the caller."""
        try:
            if result is not None:
                yield self._add_tool_result(turn_id, result)
            if approved_call is not None:
                async with aclosing(self._resolve_call(turn_id, approved_call)) as events:
                    async for event in events:
                        yield event

            while self._is_active(turn_id) and not self._is_waiting(turn_id):
                if phase is _Phase.STREAM:
                    async with aclosing(self._stream_response(turn_id)) as events:
                        async for event in events:
                            yield event
                    phase = _Phase.TOOLS
                else:
                    async with aclosing(self._process_tool_calls(turn_id)) as events:
                        async for event in events:
                            yield event
                    phase = _Phase.STREAM
        except asyncio.CancelledError:
            if self._is_active(turn_id):
                self.cancel()
            raise

    async def _stream_response(self, turn_id: int) -> AsyncIterator[AgentEvent]:
        """Request one model response and fold its events into the history."""
        turn = self._require_turn()
        turn.iteration += 1
        turn.streaming_buffer = ""
        self._state = AgentState.STREAMING
        self._streaming_target = None

        logger.debug(f"Turn {turn_id}: model request {turn.iteration} with {len(self._messages)} messages")
        stream = self._llm.stream_completion(self._messages, tools=self._tool_definitions or None)
        self._stream = stream

        try:
            async for event in stream:
                if not self._is_active(turn_id):
                    return

                if event.type is LlmStreamEventType.STREAM_START:
                    self._streaming_target = LlmMessage.assistant("")
                    self._messages.append(self._streaming_target)
                    turn.streaming_buffer = ""
                    yield self._event(AgentEventType.STREAM_STARTED, turn_id)

                elif event.type is LlmStreamEventType.CONTENT_CHUNK:
                    if self._streaming_target is None:
                        self._streaming_target = LlmMessage.assistant("")
                        self._messages.append(self._streaming_target)
                    self._streaming_target.content += event.content
                    turn.streaming_buffer += event.content
                    yield self._event(AgentEventType.CONTENT_CHUNK, turn_id, content=event.content)

                elif event.type is LlmStreamEventType.TOOL_CALL_REQUEST:
                    message = event.message
                    tool_calls = list(message.tool_calls or []) if message else []
                    if not tool_calls:
                        continue
                    trailing = self._messages[-1] if self._messages else None
                    if trailing is not None and trailing is self._streaming_target and not trailing.tool_calls:
                        trailing.tool_calls = tool_calls
                    else:
                        self._messages.append(LlmMessage.assistant(message.content, tool_calls=tool_calls))
                    turn.pending_tool_calls = deque(tool_calls)
                    turn.streaming_buffer = ""
                    logger.info(f"Turn {turn_id}: model requested {len(tool_calls)} tool call(s): {', '.join(tc.name for tc in tool_calls)}")
                    yield self._event(AgentEventType.TOOL_CALLS_REQUESTED, turn_id, tool_calls=[tool_call_to_dict(tc) for tc in tool_calls])

                elif event.type is LlmStreamEventType.ERROR:
                    error = event.error
                    message_text = error.message if error else "Unknown completion error"
                    details = error.to_dict() if error else {}
                    yield self._fail(turn_id, AgentError(message_text, error_code="completion_error", is_retryable=bool(error and error.is_retryable), details=details))
                    return

                elif event.type is LlmStreamEventType.STREAM_END:
                    self._streaming_target = None
                    yield self._event(AgentEventType.STREAM_ENDED, turn_id)
                    if turn.pending_tool_calls:
                        self._state = AgentState.AWAITING_TOOL_RESULT
                    else:
                        yield self._complete_turn(turn_id)
                    return

            if self._is_active(turn_id):
                yield self._fail(turn_id, AgentError("Completion stream ended without a stream end event", error_code="completion_error"))
        finally:
            if self._stream is stream:
                self._stream = None
            await stream.aclose()

    async def _process_tool_calls(self, turn_id: int) -> AsyncIterator[AgentEvent]:
        """Resolve queued calls from the head until the queue is empty or the turn pauses."""
        turn = self._require_turn()
        self._state = AgentState.AWAITING_TOOL_RESULT

        while self._is_active(turn_id) and turn.pending_tool_calls:
            call = turn.pending_tool_calls[0]
            tool = self._tools.get(call.name)

            if tool is None:
                logger.warning(f"Turn {turn_id}: tool {call.name} not found in registry")
                yield self._fail(
                    turn_id,
                    AgentError(f"tool {call.name} not found in registry", error_code="tool_not_found", details={"tool_call": tool_call_to_dict(call)}),
                )
                return

            if tool.requires_confirmation and not self._config.auto_confirm:
                turn.confirming = call
                self._state = AgentState.AWAITING_CONFIRMATION
                logger.info(f"Turn {turn_id}: waiting for confirmation of {call.name} ({call.id})")
                yield self._event(AgentEventType.CONFIRMATION_REQUIRED, turn_id, tool_call=tool_call_to_dict(call))
                return

            turn.pending_tool_calls.popleft()
            async with aclosing(self._resolve_call(turn_id, call)) as events:
                async for event in events:
                    yield event
            if self._is_waiting(turn_id):
                return

    async def _resolve_call(self, turn_id: int, call: LlmToolCall) -> AsyncIterator[AgentEvent]:
        """Run a consumed call locally, or hand it to the caller."""
        turn = self._require_turn()
        self._state = AgentState.AWAITING_TOOL_RESULT

        if not self._config.execute_tools:
            turn.in_flight = call
            yield self._event(AgentEventType.TOOL_EXECUTION_REQUESTED, turn_id, **tool_call_to_dict(call))
            return

        yield self._event(AgentEventType.TOOL_EXECUTION_STARTED, turn_id, **tool_call_to_dict(call))
        result = await self._execute_tool(turn_id, call)
        if result is not None:
            yield self._add_tool_result(turn_id, result)

    async def _execute_tool(self, turn_id: int, call: LlmToolCall) -> ToolExecutionResult | None:
        """Execute a call in its own task; None when the turn was cancelled meanwhile."""
        turn = self._require_turn()
        tool = self._tools.get(call.name)
        if tool is None:
            return ToolExecutionResult(call_id=call.id, tool_name=call.name, content=TOOL_ERROR_MESSAGE_TEMPLATE.format(name=call.name, error="tool not found"), success=False)

        turn.in_flight = call
        start_time = time.time()
        task = asyncio.create_task(tool.execute(call.arguments), name=f"tool:{call.name}:{call.id}")
        self._tool_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            raise
        finally:
            if self._tool_task is task:
                self._tool_task = None

        if task.cancelled() or not self._is_active(turn_id):
            logger.info(f"Discarding result of {call.name} ({call.id}): turn was cancelled")
            return None

        turn.in_flight = None
        execution_time_ms = (time.time() - start_time) * 1000
        tool_execution_count.add(1, {"tool_name": call.name})
        tool_execution_time.record(execution_time_ms, {"tool_name": call.name})

        error = task.exception()
        if error is None:
            logger.info(f"Tool {call.name} ({call.id}) completed in {execution_time_ms:.0f}ms")
            return ToolExecutionResult(call_id=call.id, tool_name=call.name, content=task.result(), execution_time_ms=execution_time_ms)

        tool_execution_errors.add(1, {"tool_name": call.name, "error_type": type(error).__name__})
        logger.warning(f"Tool {call.name} ({call.id}) failed: {error}")
        return ToolExecutionResult(
            call_id=call.id,
            tool_name=call.name,
            content=TOOL_ERROR_MESSAGE_TEMPLATE.format(name=call.name, error=error),
            success=False,
            execution_time_ms=execution_time_ms,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _add_tool_result(self, turn_id: int, result: ToolExecutionResult) -> AgentEvent:
        self._messages.append(result.to_llm_message())
        return self._event(AgentEventType.TOOL_RESULT_ADDED, turn_id, **result.to_dict())

    def _answer_unresolved_calls(self, turn: TurnState) -> None:
        unresolved = [turn.in_flight] if turn.in_flight is not None else []
        unresolved.extend(turn.pending_tool_calls)
        for call in unresolved:
            self._messages.append(LlmMessage.tool_result(call.id, INTERRUPTED_MESSAGE))
        if unresolved:
            logger.info(f"Answered {len(unresolved)} unresolved tool call(s) as interrupted")

    def _complete_turn(self, turn_id: int) -> AgentEvent:
        duration_ms = (time.time() - self._turn_started_at) * 1000
        chat_turn_duration.record(duration_ms, {"agent": self._config.name})
        trailing = self._messages[-1] if self._messages else None
        content = trailing.content if trailing is not None and trailing.role.value == "assistant" else ""
        event = self._event(AgentEventType.TURN_COMPLETED, turn_id, content=content, duration_ms=duration_ms)
        logger.info(f"Turn {turn_id} completed in {duration_ms:.0f}ms")
        self._reset_turn()
        return event

    def _fail(self, turn_id: int, error: AgentError) -> AgentEvent:
        logger.error(f"Turn {turn_id} failed: {error.message} ({error.error_code})")
        event = self._event(AgentEventType.ERROR, turn_id, error=error.to_dict())
        if self._stream is not None:
            self._stream.cancel()
        self._reset_turn()
        self._last_error = error.message
        return event

    def _reset_turn(self) -> None:
        self._turn = None
        self._streaming_target = None
        self._state = AgentState.IDLE

    def _require_turn(self) -> TurnState:
        if self._turn is None:
            raise AgentError("No turn in progress", error_code="no_turn")
        return self._turn

    def _is_active(self, turn_id: int) -> bool:
        return self._turn is not None and turn_id == self._turn_id

    def _is_waiting(self, turn_id: int) -> bool:
        """True when the turn is paused for a confirmation or a caller-supplied result."""
        if not self._is_active(turn_id):
            return False
        if self._state is AgentState.AWAITING_CONFIRMATION:
            return True
        return self._turn.in_flight is not None and self._tool_task is None

    def _event(self, event_type: AgentEventType, turn_id: int, **data: Any) -> AgentEvent:
        iteration = self._turn.iteration if self._turn is not None else None
        return AgentEvent(type=event_type, data=data, turn_id=turn_id, iteration=iteration)
