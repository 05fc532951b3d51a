"""Tests for the OpenAI-compatible provider against a mocked HTTP transport."""

from __future__ import annotations

import json

import httpx
import pytest

from modsmith.llm.errors import MalformedResponseError, ProviderError, StreamConsumedError
from modsmith.llm.providers.openai_compat import OpenAICompatProvider
from modsmith.llm.tool_call_accumulator import ToolCallAccumulator
from modsmith.llm.types import (
    FinishReason,
    Message,
    ProviderCall,
    StreamEnd,
    TextDelta,
    ToolCallDelta,
    ToolDeclaration,
)


def sse_body(*chunks: dict, done: bool = True) -> bytes:
    body = "".join(f"data: {json.dumps(c)}\n\n" for c in chunks)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


def delta_chunk(content=None, tool_calls=None, finish=None) -> dict:
    delta: dict = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {"choices": [{"index": 0, "delta": delta, "finish_reason": finish}]}


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def make_provider(response: httpx.Response, **kwargs):
    recorder = Recorder(response)
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    provider = OpenAICompatProvider(
        url="https://api.groq.test/openai/v1/",
        api_key="gsk-secret",
        name="groq",
        client=client,
        **kwargs,
    )
    return provider, recorder


def make_call(**kwargs) -> ProviderCall:
    kwargs.setdefault("model", "llama-3.3-70b-versatile")
    kwargs.setdefault("system_instruction", "You are helpful.")
    kwargs.setdefault("messages", [Message("user", "hi")])
    return ProviderCall(**kwargs)


async def events_of(provider, call):
    handle = await provider.invoke(call)
    return [e async for e in provider.normalize(handle)]


class TestRequest:
    async def test_body_and_headers(self):
        provider, rec = make_provider(httpx.Response(200, content=sse_body(delta_chunk(finish="stop"))))
        await events_of(provider, make_call(temperature=0.4))

        request = rec.requests[0]
        assert str(request.url) == "https://api.groq.test/openai/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer gsk-secret"
        body = rec.body
        assert body["model"] == "llama-3.3-70b-versatile"
        assert body["stream"] is True
        assert body["temperature"] == 0.4
        assert body["messages"][0] == {"role": "system", "content": "You are helpful."}
        assert body["messages"][1] == {"role": "user", "content": "hi"}
        assert "tools" not in body
        assert "response_format" not in body

    async def test_deterministic_and_json_mode(self):
        provider, rec = make_provider(httpx.Response(200, content=sse_body(delta_chunk(finish="stop"))))
        await events_of(provider, make_call(deterministic=True, json_output=True))
        body = rec.body
        assert body["temperature"] == 0.0
        assert body["seed"] == 0
        assert body["response_format"] == {"type": "json_object"}

    async def test_extra_headers(self):
        provider, rec = make_provider(
            httpx.Response(200, content=sse_body(delta_chunk(finish="stop"))),
            headers={"X-Title": "modsmith"},
        )
        await events_of(provider, make_call())
        assert rec.requests[0].headers["X-Title"] == "modsmith"

    def test_translate_tools(self):
        provider = OpenAICompatProvider()
        params = {"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]}
        wire = provider.translate_tools([ToolDeclaration("read_file", "Read a file", params)])
        assert wire == [
            {
                "type": "function",
                "function": {"name": "read_file", "description": "Read a file", "parameters": params},
            }
        ]

    async def test_tools_sent_with_auto_choice(self):
        provider, rec = make_provider(httpx.Response(200, content=sse_body(delta_chunk(finish="stop"))))
        await events_of(provider, make_call(tools=[ToolDeclaration("ping")]))
        assert rec.body["tools"][0]["function"]["name"] == "ping"
        assert rec.body["tool_choice"] == "auto"


class TestStreaming:
    async def test_text_in_order(self):
        body = sse_body(delta_chunk("Hel"), delta_chunk("lo"), delta_chunk(finish="stop"))
        provider, _ = make_provider(httpx.Response(200, content=body))
        events = await events_of(provider, make_call())
        assert events == [TextDelta("Hel"), TextDelta("lo"), StreamEnd(FinishReason.STOP, "stop")]

    async def test_tool_call_fragments(self):
        body = sse_body(
            delta_chunk(tool_calls=[{"index": 0, "id": "call_1", "function": {"name": "get", "arguments": ""}}]),
            delta_chunk(tool_calls=[{"index": 0, "function": {"arguments": '{"a":'}}]),
            delta_chunk(tool_calls=[{"index": 0, "function": {"arguments": "1}"}}]),
            delta_chunk(finish="tool_calls"),
        )
        provider, _ = make_provider(httpx.Response(200, content=body))
        events = await events_of(provider, make_call())

        assert events[0] == ToolCallDelta(index=0, id="call_1", name_part="get", args_fragment="")
        assert events[-1].reason == FinishReason.TOOL_CALLS
        acc = ToolCallAccumulator()
        for e in events:
            acc.consume(e)
        assert acc.finalize()[0].arguments == {"a": 1}

    async def test_stop_after_tool_calls_reports_tool_calls(self):
        body = sse_body(
            delta_chunk(tool_calls=[{"index": 0, "id": "c", "function": {"name": "x", "arguments": "{}"}}]),
            delta_chunk(finish="stop"),
        )
        provider, _ = make_provider(httpx.Response(200, content=body))
        events = await events_of(provider, make_call())
        assert events[-1].reason == FinishReason.TOOL_CALLS

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("length", FinishReason.LENGTH),
            ("content_filter", FinishReason.SAFETY),
            ("something_new", FinishReason.OTHER),
        ],
    )
    async def test_finish_reasons(self, raw, expected):
        provider, _ = make_provider(httpx.Response(200, content=sse_body(delta_chunk(finish=raw))))
        events = await events_of(provider, make_call())
        assert events[-1].reason == expected

    async def test_missing_finish_reason_gets_implicit_end(self):
        provider, _ = make_provider(httpx.Response(200, content=sse_body(delta_chunk("hi"), done=False)))
        events = await events_of(provider, make_call())
        assert events == [TextDelta("hi"), StreamEnd(FinishReason.STOP)]

    async def test_unparsable_chunk_skipped(self):
        body = b"data: {not json\n\n" + sse_body(delta_chunk("ok"), delta_chunk(finish="stop"))
        provider, _ = make_provider(httpx.Response(200, content=body))
        events = await events_of(provider, make_call())
        assert events[0] == TextDelta("ok")

    @pytest.mark.parametrize("payload", [b'"keepalive"', b"42", b"[]", b"null"])
    async def test_non_object_chunk_skipped(self, payload):
        body = b"data: " + payload + b"\n\n" + sse_body(delta_chunk("ok"), delta_chunk(finish="stop"))
        provider, _ = make_provider(httpx.Response(200, content=body))
        events = await events_of(provider, make_call())
        assert events == [TextDelta("ok"), StreamEnd(FinishReason.STOP, "stop")]

    async def test_error_mid_stream(self):
        body = sse_body(delta_chunk("par"), {"error": {"message": "Rate limit reached", "code": 429}})
        provider, _ = make_provider(httpx.Response(200, content=body))
        handle = await provider.invoke(make_call())
        seen = []
        with pytest.raises(ProviderError) as exc_info:
            async for e in provider.normalize(handle):
                seen.append(e)
        assert seen == [TextDelta("par")]
        assert exc_info.value.status_code == 429
        assert "Rate limit reached" in str(exc_info.value)

    async def test_handle_cannot_be_restarted(self):
        body = sse_body(delta_chunk("x"), delta_chunk(finish="stop"))
        provider, _ = make_provider(httpx.Response(200, content=body))
        handle = await provider.invoke(make_call())
        [e async for e in provider.normalize(handle)]
        with pytest.raises(StreamConsumedError):
            [e async for e in provider.normalize(handle)]


class TestErrors:
    async def test_http_429(self):
        provider, _ = make_provider(
            httpx.Response(429, json={"error": {"message": "Rate limit reached for model"}})
        )
        with pytest.raises(ProviderError) as exc_info:
            await provider.invoke(make_call())
        assert exc_info.value.status_code == 429
        assert exc_info.value.provider == "groq"
        assert "Rate limit reached for model" in str(exc_info.value)

    async def test_http_401(self):
        provider, _ = make_provider(httpx.Response(401, text="invalid api key"))
        with pytest.raises(ProviderError) as exc_info:
            await provider.invoke(make_call())
        assert exc_info.value.status_code == 401
        assert "gsk-secret" not in str(exc_info.value)


class TestNonStreaming:
    async def test_message_with_tool_calls(self):
        data = {
            "choices": [
                {
                    "message": {
                        "content": "calling",
                        "tool_calls": [
                            {"id": "c1", "function": {"name": "ping", "arguments": '{"h": "x"}'}}
                        ],
                    },
                    "finish_reason": "stop",
                }
            ]
        }
        provider, rec = make_provider(httpx.Response(200, json=data))
        events = await events_of(provider, make_call(stream=False))
        assert rec.body["stream"] is False
        assert events[0] == TextDelta("calling")
        assert events[1] == ToolCallDelta(index=0, id="c1", name_part="ping", args_fragment='{"h": "x"}')
        assert events[2].reason == FinishReason.TOOL_CALLS

    async def test_body_not_json(self):
        provider, _ = make_provider(httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedResponseError):
            await provider.invoke(make_call(stream=False))

    async def test_body_not_an_object(self):
        provider, _ = make_provider(httpx.Response(200, json=["not", "an", "object"]))
        with pytest.raises(MalformedResponseError):
            await provider.invoke(make_call(stream=False))
