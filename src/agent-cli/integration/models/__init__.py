"""Integration models for the Agent CLI."""

from integration.models.chat_completion_dto import ChatCompletionChunkDto, ChatCompletionDto, ChoiceDeltaDto, StreamChoiceDto, ToolCallDeltaDto

__all__ = [
    "ChatCompletionChunkDto",
    "ChatCompletionDto",
    "ChoiceDeltaDto",
    "StreamChoiceDto",
    "ToolCallDeltaDto",
]
