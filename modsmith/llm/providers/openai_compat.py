"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- Groq, OpenRouter, OpenAI itself, vLLM, LM Studio, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from modsmith.llm.errors import MalformedResponseError, ProviderError
from modsmith.llm.providers.base import (
    Provider,
    ProviderStream,
    error_message_from_body,
    mask_key,
    raise_for_status,
)
from modsmith.llm.providers.sse import iter_sse_data
from modsmith.llm.types import (
    FinishReason,
    ProviderCall,
    StreamEnd,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.SAFETY,
}


def _finish_reason(raw: str) -> str:
    return _FINISH_REASONS.get(raw, FinishReason.OTHER)


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.groq.com/openai/v1"`` or
        ``"https://openrouter.ai/api/v1"``.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    name:
        Identifier used in logs and error messages.
    timeout:
        HTTP request timeout in seconds.
    max_output:
        Maximum output tokens.  Defaults to 4096.
    headers:
        Extra headers sent with every request (OpenRouter's ``HTTP-Referer``
        and ``X-Title``, for example).
    client:
        Pre-built ``httpx.AsyncClient``; one is created lazily otherwise.
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        api_key: str = "",
        name: str = "openai-compat",
        timeout: float = 120.0,
        max_output: int = 4096,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._name = name
        self._timeout = timeout
        self._max_output = max_output
        self._extra_headers = dict(headers or {})
        self._client = client

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    def translate_tools(self, tools: list[ToolDeclaration]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in tools
        ]

    async def invoke(self, call: ProviderCall) -> ProviderStream:
        body = self._build_body(call)
        headers = self._build_headers()
        url = f"{self._url}/chat/completions"
        client = self._get_client()

        if call.stream:
            request = client.build_request("POST", url, json=body, headers=headers)
            response = await client.send(request, stream=True)
            await raise_for_status(response, self._name)
            return ProviderStream(response, streaming=True)

        response = await client.post(url, json=body, headers=headers)
        await raise_for_status(response, self._name)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{self._name}: response body is not JSON", provider=self._name
            ) from exc
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"{self._name}: response body is not a JSON object", provider=self._name
            )
        return ProviderStream(data, streaming=False)

    async def normalize(self, handle: ProviderStream) -> AsyncIterator[StreamEvent]:
        handle.claim()
        if not handle.streaming:
            for event in self._events_from_response(handle.native):
                yield event
            return

        saw_tools = False
        try:
            async for data_str in iter_sse_data(handle.native):
                if data_str.strip() == "[DONE]":
                    break

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse SSE data: %s", data_str[:200])
                    continue
                if not isinstance(data, dict):
                    logger.warning("Skipping non-object SSE data: %s", data_str[:200])
                    continue

                if data.get("error"):
                    raise self._stream_error(data, data_str)

                for event in self._events_from_chunk(data):
                    if isinstance(event, ToolCallDelta):
                        saw_tools = True
                    elif isinstance(event, StreamEnd):
                        if event.reason == FinishReason.STOP and saw_tools:
                            event.reason = FinishReason.TOOL_CALLS
                        yield event
                        return
                    yield event

            # The stream ended without a finish_reason.
            yield StreamEnd(FinishReason.TOOL_CALLS if saw_tools else FinishReason.STOP)
        finally:
            await handle.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        headers.update(self._extra_headers)
        return headers

    def _build_body(self, call: ProviderCall) -> dict:
        wire_messages: list[dict] = []
        if call.system_instruction:
            wire_messages.append({"role": "system", "content": call.system_instruction})
        for msg in call.messages:
            wire_messages.append({"role": msg.role, "content": msg.content})

        body: dict = {
            "model": call.model,
            "messages": wire_messages,
            "stream": call.stream,
            "max_tokens": self._max_output,
            "temperature": 0.0 if call.deterministic else call.temperature,
        }
        if call.deterministic:
            body["seed"] = 0
        if call.tools:
            body["tools"] = self.translate_tools(call.tools)
            body["tool_choice"] = "auto"
        if call.json_output:
            body["response_format"] = {"type": "json_object"}

        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d api_key=%s",
            self._name,
            call.model,
            len(call.tools),
            len(wire_messages),
            mask_key(self._api_key),
        )
        return body

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _stream_error(self, data: dict, raw: str) -> ProviderError:
        err = data.get("error")
        code = err.get("code") if isinstance(err, dict) else None
        return ProviderError(
            f"{self._name}: {error_message_from_body(raw)}",
            status_code=code if isinstance(code, int) else None,
            provider=self._name,
        )

    def _events_from_chunk(self, data: dict) -> list[StreamEvent]:
        """Convert one parsed SSE ``data`` payload into stream events."""
        choices = data.get("choices")
        if not choices:
            return []

        choice = choices[0]
        delta = choice.get("delta") or {}
        events: list[StreamEvent] = []

        text = delta.get("content")
        if text:
            events.append(TextDelta(text))

        for raw_tc in delta.get("tool_calls") or []:
            func = raw_tc.get("function") or {}
            events.append(
                ToolCallDelta(
                    index=raw_tc.get("index", 0),
                    id=raw_tc.get("id"),
                    name_part=func.get("name") or "",
                    args_fragment=func.get("arguments") or "",
                )
            )

        finish = choice.get("finish_reason")
        if finish is not None:
            events.append(StreamEnd(_finish_reason(finish), detail=finish))
        return events

    def _events_from_response(self, data: dict) -> list[StreamEvent]:
        """Convert a non-streaming response body into stream events."""
        if data.get("error"):
            raise self._stream_error(data, json.dumps(data))

        choices = data.get("choices") or []
        if not choices:
            return [StreamEnd(FinishReason.STOP)]

        choice = choices[0]
        message = choice.get("message") or {}
        events: list[StreamEvent] = []

        content = message.get("content")
        if content:
            events.append(TextDelta(content))

        raw_tcs = message.get("tool_calls") or []
        for idx, raw_tc in enumerate(raw_tcs):
            func = raw_tc.get("function") or {}
            args = func.get("arguments") or ""
            if not isinstance(args, str):
                args = json.dumps(args)
            events.append(
                ToolCallDelta(
                    index=idx,
                    id=raw_tc.get("id"),
                    name_part=func.get("name") or "",
                    args_fragment=args,
                )
            )

        finish = choice.get("finish_reason") or "stop"
        reason = _finish_reason(finish)
        if raw_tcs and reason == FinishReason.STOP:
            reason = FinishReason.TOOL_CALLS
        events.append(StreamEnd(reason, detail=finish))
        return events
