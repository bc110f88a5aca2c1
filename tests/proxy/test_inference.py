import json

import httpx
import pytest

from pocketllm.proxy.inference import (
    EngineFragment,
    InferenceClient,
    InferenceError,
    MalformedLine,
    build_prompt,
    parse_line,
)
from pocketllm.proxy.types import DoneEvent, GenerationParams, TokenEvent


def _ndjson(*objs) -> bytes:
    return b"".join((o if isinstance(o, bytes) else json.dumps(o).encode()) + b"\n" for o in objs)


def _client(handler) -> InferenceClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InferenceClient(base_url="http://engine.test/", model="llama3.2", http_client=http)


async def _collect(client: InferenceClient, **kwargs):
    return [e async for e in client.astream_generate("hi", "", GenerationParams(), **kwargs)]


def test_parse_line_variants():
    assert parse_line('{"response": "he", "done": false}') == EngineFragment(text="he", done=False)
    assert parse_line('{"done": true}') == EngineFragment(text="", done=True)
    assert parse_line('{"response": 5}') == EngineFragment(text="", done=False)
    assert isinstance(parse_line("{oops"), MalformedLine)
    assert isinstance(parse_line("[1, 2]"), MalformedLine)


def test_build_prompt_prefixes_system():
    assert build_prompt("hi", "") == "hi"
    assert build_prompt("hi", None) == "hi"
    assert build_prompt("hi", "be brief") == "System: be brief\n\nhi"


def test_build_payload_maps_params():
    client = InferenceClient(base_url="http://engine.test", model="m", http_client=httpx.AsyncClient())
    payload = client.build_payload("hi", "s", GenerationParams(temperature=0.1, top_p=0.2, max_tokens=3))
    assert payload == {
        "model": "m",
        "prompt": "System: s\n\nhi",
        "stream": True,
        "options": {"temperature": 0.1, "top_p": 0.2, "num_predict": 3},
    }


@pytest.mark.anyio
async def test_streams_tokens_then_done():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            content=_ndjson({"response": "Hel"}, {"response": "lo"}, {"response": "", "done": True}),
        )

    events = await _collect(_client(handler))
    assert events == [TokenEvent("Hel"), TokenEvent("lo"), DoneEvent()]
    assert seen["url"] == "http://engine.test/api/generate"
    assert seen["body"]["stream"] is True
    assert seen["body"]["model"] == "llama3.2"


@pytest.mark.anyio
async def test_done_line_may_carry_final_text():
    def handler(request):
        return httpx.Response(200, content=_ndjson({"response": "a"}, {"response": "b", "done": True}))

    assert await _collect(_client(handler)) == [TokenEvent("a"), TokenEvent("b"), DoneEvent()]


@pytest.mark.anyio
async def test_lines_after_done_are_ignored():
    def handler(request):
        return httpx.Response(200, content=_ndjson({"response": "a", "done": True}, {"response": "late"}))

    assert await _collect(_client(handler)) == [TokenEvent("a"), DoneEvent()]


@pytest.mark.anyio
async def test_malformed_lines_are_skipped_and_reported():
    malformed = []

    def handler(request):
        return httpx.Response(
            200,
            content=_ndjson({"response": "a"}, b"{garbage", b"", {"response": "b"}, {"done": True}),
        )

    events = await _collect(_client(handler), on_malformed=malformed.append)
    assert events == [TokenEvent("a"), TokenEvent("b"), DoneEvent()]
    assert len(malformed) == 1
    assert malformed[0].raw == "{garbage"


@pytest.mark.anyio
async def test_non_2xx_raises():
    def handler(request):
        return httpx.Response(404, text='{"error":"model not found"}')

    with pytest.raises(InferenceError, match="HTTP 404"):
        await _collect(_client(handler))


@pytest.mark.anyio
async def test_connect_failure_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(InferenceError):
        await _collect(_client(handler))


@pytest.mark.anyio
async def test_stream_without_done_raises_after_tokens():
    def handler(request):
        return httpx.Response(200, content=_ndjson({"response": "a"}))

    client = _client(handler)
    events = []
    with pytest.raises(InferenceError, match="without a completion signal"):
        async for e in client.astream_generate("hi", "", GenerationParams()):
            events.append(e)
    assert events == [TokenEvent("a")]


@pytest.mark.anyio
async def test_health_probe():
    def ok(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": []})

    def down(request):
        raise httpx.ConnectError("refused", request=request)

    assert await _client(ok).health() is True
    assert await _client(down).health() is False
