"""
Google Gemini provider.

Talks to the Generative Language REST API directly:

  - ``POST {url}/models/{model}:streamGenerateContent?alt=sse`` for streaming
  - ``POST {url}/models/{model}:generateContent`` otherwise

Gemini never fragments a function call: each ``functionCall`` part carries
the complete name and argument object, so every part becomes one
``ToolCallDelta`` with its own index.

Dependencies: ``httpx``.
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

_SAFETY_FINISH = frozenset({
    "SAFETY",
    "RECITATION",
    "BLOCKLIST",
    "PROHIBITED_CONTENT",
    "SPII",
    "IMAGE_SAFETY",
})

# JSON-schema keywords the Gemini function-declaration schema rejects.
_UNSUPPORTED_SCHEMA_KEYS = frozenset({"$schema", "additionalProperties", "default", "$id"})


def _finish_reason(raw: str, saw_tools: bool) -> str:
    if raw in _SAFETY_FINISH:
        return FinishReason.SAFETY
    if raw == "MAX_TOKENS":
        return FinishReason.LENGTH
    if raw == "STOP":
        return FinishReason.TOOL_CALLS if saw_tools else FinishReason.STOP
    return FinishReason.OTHER


def _clean_schema(schema):
    """Strip JSON-schema keywords that Gemini does not accept, recursively."""
    if isinstance(schema, dict):
        return {
            key: _clean_schema(value)
            for key, value in schema.items()
            if key not in _UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [_clean_schema(item) for item in schema]
    return schema


class GeminiProvider(Provider):
    """
    Provider for Google's Gemini models.

    Parameters
    ----------
    api_key:
        Generative Language API key, sent as ``x-goog-api-key``.
    url:
        API base URL.
    name:
        Identifier used in logs and error messages.
    timeout:
        HTTP request timeout in seconds.
    max_output:
        ``maxOutputTokens`` for every request.
    client:
        Pre-built ``httpx.AsyncClient``; one is created lazily otherwise.
    """

    def __init__(
        self,
        api_key: str = "",
        url: str = "https://generativelanguage.googleapis.com/v1beta",
        name: str = "gemini",
        timeout: float = 120.0,
        max_output: int = 8192,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = url.rstrip("/")
        self._name = name
        self._timeout = timeout
        self._max_output = max_output
        self._client = client

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    def translate_tools(self, tools: list[ToolDeclaration]) -> list[dict]:
        if not tools:
            return []
        declarations = []
        for tool in tools:
            decl: dict = {"name": tool.name, "description": tool.description}
            properties = tool.parameters.get("properties") if tool.parameters else None
            if properties:
                decl["parameters"] = _clean_schema(tool.parameters)
            declarations.append(decl)
        return [{"functionDeclarations": declarations}]

    async def invoke(self, call: ProviderCall) -> ProviderStream:
        body = self._build_body(call)
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["x-goog-api-key"] = self._api_key
        client = self._get_client()

        if call.stream:
            url = f"{self._url}/models/{call.model}:streamGenerateContent"
            request = client.build_request(
                "POST", url, params={"alt": "sse"}, json=body, headers=headers
            )
            response = await client.send(request, stream=True)
            await raise_for_status(response, self._name)
            return ProviderStream(response, streaming=True)

        url = f"{self._url}/models/{call.model}:generateContent"
        response = await client.post(url, json=body, headers=headers)
        await raise_for_status(response, self._name)
        try:
            data = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"{self._name}: response body is not JSON", provider=self._name
            ) from exc
        if not isinstance(data, (dict, list)):
            raise MalformedResponseError(
                f"{self._name}: response body is not a JSON object", provider=self._name
            )
        return ProviderStream(data, streaming=False)

    async def normalize(self, handle: ProviderStream) -> AsyncIterator[StreamEvent]:
        handle.claim()
        state = {"next_index": 0, "saw_tools": False}

        if not handle.streaming:
            for event in self._events_from_payload(handle.native, state):
                yield event
                if isinstance(event, StreamEnd):
                    return
            yield self._implicit_end(state)
            return

        try:
            async for data_str in iter_sse_data(handle.native):
                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse SSE data: %s", data_str[:200])
                    continue

                for event in self._events_from_payload(data, state):
                    yield event
                    if isinstance(event, StreamEnd):
                        return

            yield self._implicit_end(state)
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

    def _build_body(self, call: ProviderCall) -> dict:
        contents = [
            {
                "role": "model" if msg.role == "assistant" else "user",
                "parts": [{"text": msg.content}],
            }
            for msg in call.messages
            if msg.role != "system"
        ]

        generation: dict = {
            "temperature": 0.0 if call.deterministic else call.temperature,
            "maxOutputTokens": self._max_output,
        }
        if call.deterministic:
            generation["topK"] = 1
        if call.json_output:
            generation["responseMimeType"] = "application/json"

        body: dict = {"contents": contents, "generationConfig": generation}
        if call.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": call.system_instruction}]}
        if call.tools:
            body["tools"] = self.translate_tools(call.tools)

        logger.info(
            "REQUEST: provider=%s model=%s tools=%d contents=%d api_key=%s",
            self._name,
            call.model,
            len(call.tools),
            len(contents),
            mask_key(self._api_key),
        )
        return body

    # ------------------------------------------------------------------
    # Response parsing
    # ------------------------------------------------------------------

    def _implicit_end(self, state: dict) -> StreamEnd:
        return StreamEnd(
            FinishReason.TOOL_CALLS if state["saw_tools"] else FinishReason.STOP
        )

    def _events_from_payload(self, data: dict, state: dict) -> list[StreamEvent]:
        """Convert one ``GenerateContentResponse`` into stream events."""
        if isinstance(data, list):
            events: list[StreamEvent] = []
            for item in data:
                events.extend(self._events_from_payload(item, state))
            return events
        if not isinstance(data, dict):
            logger.warning("Skipping non-object payload: %s", json.dumps(data)[:200])
            return []

        if data.get("error"):
            err = data["error"]
            code = err.get("code") if isinstance(err, dict) else None
            raise ProviderError(
                f"{self._name}: {error_message_from_body(json.dumps(data))}",
                status_code=code if isinstance(code, int) else None,
                provider=self._name,
            )

        feedback = data.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason")
        if block_reason:
            return [StreamEnd(FinishReason.SAFETY, detail=f"block reason {block_reason}")]

        candidates = data.get("candidates") or []
        if not candidates:
            return []

        candidate = candidates[0]
        events = []
        parts = (candidate.get("content") or {}).get("parts") or []
        for part in parts:
            if "text" in part and not part.get("thought"):
                if part["text"]:
                    events.append(TextDelta(part["text"]))
            elif "functionCall" in part:
                fc = part["functionCall"]
                events.append(
                    ToolCallDelta(
                        index=state["next_index"],
                        id=fc.get("id"),
                        name_part=fc.get("name", ""),
                        args_fragment=json.dumps(fc.get("args") or {}),
                    )
                )
                state["next_index"] += 1
                state["saw_tools"] = True

        finish = candidate.get("finishReason")
        if finish and finish != "FINISH_REASON_UNSPECIFIED":
            reason = _finish_reason(finish, state["saw_tools"])
            detail = f"finish reason {finish}"
            events.append(StreamEnd(reason, detail=detail))
        return events
