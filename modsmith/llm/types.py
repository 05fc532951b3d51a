"""Core types for the LLM subsystem."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from modsmith.llm.providers.base import Provider


class OutputMode:
    CHAT = "chat"
    STRUCTURED_JSON = "structured-json"

    ALL = (CHAT, STRUCTURED_JSON)


class FinishReason:
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    SAFETY = "safety"
    OTHER = "other"


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system"
    content: str


@dataclass
class ToolDeclaration:
    """A function the model may call, described by a JSON schema."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class ProjectInfo:
    name: str
    platform: str = ""
    minecraft_version: str = ""
    description: str = ""


@dataclass
class Attachment:
    """A document the user attached as extra context for one request."""

    name: str
    text: str


@dataclass
class CompletionRequest:
    """
    One logical "generate a response" request.

    *files* is a snapshot of the project (path -> text) that is rendered into
    the prompt.  *history* carries prior turns when the caller wants a
    multi-turn conversation; the orchestrator itself is stateless.
    """

    prompt: str
    instructions: str = ""
    tools: list[ToolDeclaration] = field(default_factory=list)
    temperature: float = 0.7
    deterministic: bool = False
    mode: str = OutputMode.CHAT
    history: list[Message] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    project: ProjectInfo | None = None
    attachment: Attachment | None = None


@dataclass(frozen=True)
class ProviderDescriptor:
    """
    A configured completion backend.

    Descriptors are built once at startup and shared read-only by every
    request; the orchestrator tries them in the order they are given.
    """

    id: str
    provider: Provider
    model: str
    supports_tools: bool = True
    supports_streaming: bool = True


@dataclass
class ProviderCall:
    """The uniform payload handed to ``Provider.invoke``."""

    model: str
    system_instruction: str
    messages: list[Message]
    tools: list[ToolDeclaration] = field(default_factory=list)
    temperature: float = 0.7
    deterministic: bool = False
    json_output: bool = False
    stream: bool = True


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallDelta:
    """
    An incremental fragment of a streaming tool call.

    Fragments sharing an *index* belong to the same call; the
    ``ToolCallAccumulator`` concatenates them in arrival order.
    """

    index: int
    id: str | None = None
    name_part: str = ""
    args_fragment: str = ""


@dataclass
class StreamEnd:
    reason: str = FinishReason.STOP
    detail: str = ""


StreamEvent = Union[TextDelta, ToolCallDelta, StreamEnd]


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass
class ToolInvocation:
    """A finalized tool call with parsed arguments."""

    id: str
    name: str
    arguments: dict


@dataclass
class FileEdit:
    path: str
    content: str


@dataclass
class ChatMessage:
    text: str
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    provider: str | None = None
    model: str | None = None


@dataclass
class StructuredResult:
    files: list[FileEdit]
    provider: str | None = None
    model: str | None = None


Outcome = Union[ChatMessage, StructuredResult]
