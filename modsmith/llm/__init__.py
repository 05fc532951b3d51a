"""LLM subsystem -- providers, failover, retry, and streaming tool-call accumulation."""

from modsmith.llm.types import (
    ChatMessage,
    CompletionRequest,
    FileEdit,
    Message,
    ProviderDescriptor,
    StreamEnd,
    StructuredResult,
    TextDelta,
    ToolCallDelta,
    ToolInvocation,
)
from modsmith.llm.chain import ProviderChain
from modsmith.llm.errors import CompletionError
from modsmith.llm.retry import RetryExecutor
from modsmith.llm.token_counter import TokenCounter
from modsmith.llm.tool_call_accumulator import ToolCallAccumulator

__all__ = [
    "ChatMessage",
    "CompletionError",
    "CompletionRequest",
    "FileEdit",
    "Message",
    "ProviderChain",
    "ProviderDescriptor",
    "RetryExecutor",
    "StreamEnd",
    "StructuredResult",
    "TextDelta",
    "TokenCounter",
    "ToolCallAccumulator",
    "ToolCallDelta",
    "ToolInvocation",
]
