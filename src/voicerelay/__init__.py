"""Streaming conversation engine for voice calls backed by a chat model."""

from voicerelay.config import ConversationConfig, configure_logging
from voicerelay.controller import RunResult, StreamController
from voicerelay.conversation import Conversation
from voicerelay.events import InterruptEvent, SpeechEvent, TranscriptEvent
from voicerelay.executor import ToolExecutor, ToolOutcome
from voicerelay.instrumentation import instrument, uninstrument
from voicerelay.interrupt import InterruptHandler, InterruptResult
from voicerelay.message import (
    AssistantMessage,
    AssistantStatus,
    FinishReason,
    MessageRole,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from voicerelay.provider import ModelProvider, OpenAICompatibleProvider, OpenAIProvider
from voicerelay.store import MessageStore
from voicerelay.streaming import ChunkAccumulator, CompletionStream, StreamChunk, merge_append
from voicerelay.tools import Tool, ToolRegistry, tool

__all__ = [
    "AssistantMessage",
    "AssistantStatus",
    "ChunkAccumulator",
    "CompletionStream",
    "Conversation",
    "ConversationConfig",
    "FinishReason",
    "InterruptEvent",
    "InterruptHandler",
    "InterruptResult",
    "MessageRole",
    "MessageStore",
    "ModelProvider",
    "OpenAICompatibleProvider",
    "OpenAIProvider",
    "RunResult",
    "SpeechEvent",
    "StreamChunk",
    "StreamController",
    "SystemMessage",
    "Tool",
    "ToolExecutor",
    "ToolMessage",
    "ToolOutcome",
    "ToolRegistry",
    "TranscriptEvent",
    "UserMessage",
    "configure_logging",
    "instrument",
    "merge_append",
    "tool",
    "uninstrument",
]
