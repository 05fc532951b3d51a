"""Abstract base class for completion providers."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from modsmith.llm.errors import ProviderError, StreamConsumedError
from modsmith.llm.types import ProviderCall, StreamEvent, ToolDeclaration


class ProviderStream:
    """
    Opaque handle returned by ``Provider.invoke``.

    Wraps either an open ``httpx.Response`` (streaming) or an already-decoded
    response body (non-streaming).  A handle can be normalized exactly once.
    """

    def __init__(self, native: Any, *, streaming: bool) -> None:
        self.native = native
        self.streaming = streaming
        self.consumed = False

    def claim(self) -> None:
        """Mark the handle as being iterated; a second claim raises."""
        if self.consumed:
            raise StreamConsumedError("provider stream has already been consumed")
        self.consumed = True

    async def aclose(self) -> None:
        if isinstance(self.native, httpx.Response):
            await self.native.aclose()


class Provider(ABC):
    """
    A provider encapsulates access to a single LLM completion endpoint.

    Implementations must support:
      - Starting a completion (``invoke``), streaming or not.
      - Converting their native response into ``StreamEvent`` objects
        (``normalize``).
      - Mapping ``ToolDeclaration`` objects to their own schema shape
        (``translate_tools``).
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name (e.g. ``"gemini"``)."""
        ...

    @abstractmethod
    async def invoke(self, call: ProviderCall) -> ProviderStream:
        """
        Start a completion and return a handle for ``normalize``.

        Raises ``ProviderError`` when the endpoint answers with an error
        status, so callers can classify and retry before any event is read.
        """
        ...

    @abstractmethod
    def normalize(self, handle: ProviderStream) -> AsyncIterator[StreamEvent]:
        """
        Yield ``StreamEvent`` objects for *handle*, in provider order.

        The last event is always a ``StreamEnd``.
        """
        ...

    @abstractmethod
    def translate_tools(self, tools: list[ToolDeclaration]) -> list[dict]:
        """Convert tool declarations to this provider's wire schema."""
        ...

    async def aclose(self) -> None:
        """Release any pooled connections."""
        return None


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def error_message_from_body(body: bytes | str) -> str:
    """
    Pull a readable message out of an error response body.

    Handles the common ``{"error": {"message": ...}}`` and
    ``{"error": "..."}`` shapes and falls back to the raw text.
    """
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text.strip()[:500]

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        err = data.get("error", data)
        if isinstance(err, dict):
            message = err.get("message") or err.get("status") or ""
            if message:
                return str(message)
        elif isinstance(err, str):
            return err
    return text.strip()[:500]


async def raise_for_status(response: httpx.Response, provider: str) -> None:
    """Read and close an error response, then raise ``ProviderError``."""
    if response.status_code < 400:
        return
    try:
        body = await response.aread()
    finally:
        await response.aclose()
    message = error_message_from_body(body)
    raise ProviderError(
        f"{provider}: HTTP {response.status_code}: {message}",
        status_code=response.status_code,
        provider=provider,
    )


def mask_key(api_key: str) -> str:
    """Short, log-safe rendering of an API key."""
    return f"{api_key[:4]}..." if api_key else "(none)"
