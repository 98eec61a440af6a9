"""Wire models for OpenAI-compatible chat completion payloads.

Only the fields the client consumes are declared; anything else in the
payload is ignored. A payload that does not fit these shapes fails
validation and is treated as malformed by the caller.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from application.agents.llm_provider import LlmToolCall, LlmToolCallDelta


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Streaming chunks
# =============================================================================


class FunctionDeltaDto(_WireModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class ToolCallDeltaDto(_WireModel):
    index: int = 0
    id: Optional[str] = None
    type: Optional[str] = None
    function: Optional[FunctionDeltaDto] = None

    def to_delta(self) -> LlmToolCallDelta:
        return LlmToolCallDelta(
            index=self.index,
            id=self.id,
            type=self.type,
            name=self.function.name if self.function else None,
            arguments=self.function.arguments if self.function else None,
        )


class ChoiceDeltaDto(_WireModel):
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCallDeltaDto]] = None


class StreamChoiceDto(_WireModel):
    index: int = 0
    delta: ChoiceDeltaDto = Field(default_factory=ChoiceDeltaDto)
    finish_reason: Optional[str] = None


class ChatCompletionChunkDto(_WireModel):
    """One `data:` payload of a streamed completion."""

    id: Optional[str] = None
    model: Optional[str] = None
    choices: list[StreamChoiceDto] = Field(default_factory=list)

    @property
    def first_choice(self) -> Optional[StreamChoiceDto]:
        return self.choices[0] if self.choices else None


# =============================================================================
# Non-streaming responses
# =============================================================================


class FunctionCallDto(_WireModel):
    name: str
    arguments: str = ""


class ToolCallDto(_WireModel):
    id: str = ""
    type: str = "function"
    function: FunctionCallDto


class ResponseMessageDto(_WireModel):
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCallDto]] = None

    def to_tool_calls(self) -> Optional[list[LlmToolCall]]:
        if not self.tool_calls:
            return None
        return [LlmToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments, type=tc.type or "function") for tc in self.tool_calls]


class ChoiceDto(_WireModel):
    index: int = 0
    message: ResponseMessageDto = Field(default_factory=ResponseMessageDto)
    finish_reason: Optional[str] = None


class ChatCompletionDto(_WireModel):
    """Body of a non-streaming completion response."""

    id: Optional[str] = None
    model: Optional[str] = None
    choices: list[ChoiceDto] = Field(default_factory=list)
    usage: Optional[dict[str, int]] = None
