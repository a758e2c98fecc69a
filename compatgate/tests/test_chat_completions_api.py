import json

import httpx
import pytest
from fastapi import FastAPI

from compatgate.adapters.openai_compat.stream_utils import _extract_sse_data_payload
from compatgate.core.gateway import create_app
from compatgate.core.models import FinishEvent, TextDeltaEvent, ToolCall, ToolCallEvent, Usage
from compatgate.providers.mock import MockLanguageModel


USAGE = Usage(input_tokens=54784, output_tokens=485144785, total_tokens=485144785 + 54784)


async def _post(app, body, headers: dict[str, str] | None = None, path: str = "/v1/chat/completions") -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        if isinstance(body, (dict, list)):
            return await client.post(path, json=body, headers=headers)
        return await client.post(path, content=body, headers=headers)


def _sse_payloads(text: str) -> list[str]:
    frames = [f"{frame}\n\n" for frame in text.split("\n\n") if frame]
    return [_extract_sse_data_payload(frame.encode("utf-8")) for frame in frames]


@pytest.mark.asyncio
async def test_simple_conversation_round_trip():
    model = MockLanguageModel("test", text="Hi there", usage=USAGE)
    app = create_app({"m": model})

    response = await _post(app, {"model": "m", "messages": [{"role": "user", "content": "Hello"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    body = response.json()
    assert body["model"] == "test"
    assert body["choices"][0]["message"]["content"] == "Hi there"
    assert body["choices"][0]["message"]["role"] == "assistant"
    assert body["choices"][0]["finish_reason"] == "stop"
    assert body["usage"] == {"completion_tokens": 485144785, "prompt_tokens": 54784, "total_tokens": 485199569}
    assert model.requests[0].messages[0].content == "Hello"


@pytest.mark.asyncio
async def test_usage_is_omitted_when_provider_reports_none():
    app = create_app({"m": MockLanguageModel("test", text="ok")})
    response = await _post(app, {"model": "m", "messages": [{"role": "user", "content": "Hello"}]})
    assert response.status_code == 200
    assert "usage" not in response.json()


@pytest.mark.asyncio
async def test_non_streaming_tool_calls():
    model = MockLanguageModel(
        "test",
        text="",
        finish_reason="tool-calls",
        tool_calls=[ToolCall(tool_call_id="call_1", tool_name="get_weather", args='{"city":"Oslo"}')],
    )
    app = create_app({"m": model})
    response = await _post(
        app,
        {
            "model": "m",
            "messages": [{"role": "user", "content": "weather?"}],
            "tools": [{"type": "function", "function": {"name": "get_weather", "parameters": {"type": "object"}}}],
            "tool_choice": {"type": "function", "function": {"name": "get_weather"}},
        },
    )
    choice = response.json()["choices"][0]
    assert choice["finish_reason"] == "tool_calls"
    assert choice["message"]["tool_calls"][0]["function"] == {"name": "get_weather", "arguments": '{"city":"Oslo"}'}
    assert model.requests[0].tool_choice.tool_name == "get_weather"
    assert set(model.requests[0].tools) == {"get_weather"}


@pytest.mark.asyncio
async def test_streaming_round_trip():
    chunks = ["Hello", ", ", "how ", "ar", "e ", "you", "?"]
    model = MockLanguageModel(
        "test",
        events=[*(TextDeltaEvent(text_delta=c) for c in chunks), FinishEvent(finish_reason="stop", usage=USAGE)],
    )
    app = create_app({"m": model})

    response = await _post(app, {"model": "m", "stream": True, "messages": [{"role": "user", "content": "Hello"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    payloads = _sse_payloads(response.text)
    assert payloads[-1] == "[DONE]"
    events = [json.loads(p) for p in payloads[:-1]]
    assert "".join(e["choices"][0]["delta"]["content"] for e in events[:-1]) == "".join(chunks)
    assert events[-1]["choices"][0]["finish_reason"] == "stop"
    assert events[-1]["usage"] == {"completion_tokens": 485144785, "prompt_tokens": 54784, "total_tokens": 485199569}
    assert {e["model"] for e in events} == {"test"}


@pytest.mark.asyncio
async def test_streaming_first_tool_call_terminates_by_default():
    model = MockLanguageModel(
        "test",
        events=[
            ToolCallEvent(tool_call_id="call_1", tool_name="a", args="{}"),
            ToolCallEvent(tool_call_id="call_2", tool_name="b", args="{}"),
            FinishEvent(finish_reason="tool-calls"),
        ],
    )
    response = await _post(create_app({"m": model}), {"model": "m", "stream": True, "messages": [{"role": "user", "content": "x"}]})
    payloads = _sse_payloads(response.text)
    assert len(payloads) == 2
    assert json.loads(payloads[0])["choices"][0]["finish_reason"] == "stop"
    assert payloads[1] == "[DONE]"


@pytest.mark.asyncio
async def test_streaming_all_tool_calls_policy():
    model = MockLanguageModel(
        "test",
        events=[
            ToolCallEvent(tool_call_id="call_1", tool_name="a", args="{}"),
            ToolCallEvent(tool_call_id="call_2", tool_name="b", args="{}"),
            FinishEvent(finish_reason="tool-calls"),
        ],
    )
    app = create_app({"m": model}, stream_tool_calls="all")
    response = await _post(app, {"model": "m", "stream": True, "messages": [{"role": "user", "content": "x"}]})
    events = [json.loads(p) for p in _sse_payloads(response.text)[:-1]]
    assert [e["choices"][0]["finish_reason"] for e in events] == [None, None, "tool_calls"]


@pytest.mark.asyncio
async def test_unregistered_model_returns_400():
    app = create_app({"m": MockLanguageModel("test")})
    response = await _post(app, {"model": "missing", "messages": [{"role": "user", "content": "Hello"}]})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_model"


@pytest.mark.asyncio
async def test_async_resolver_miss_returns_400():
    async def lookup(model_id):
        return None

    response = await _post(create_app(lookup), {"model": "m", "messages": [{"role": "user", "content": "Hello"}]})
    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"", b"{not json", {}, {"model": "m"}, {"model": "m", "messages": [{"role": "narrator", "content": "x"}]}])
async def test_malformed_request_returns_400(body):
    app = create_app({"m": MockLanguageModel("test")})
    response = await _post(app, body, headers={"content-type": "application/json"})
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "malformed_request"


@pytest.mark.asyncio
async def test_malformed_image_url_fails_before_provider():
    model = MockLanguageModel("test", text="never")
    app = create_app({"m": model})
    response = await _post(
        app,
        {
            "model": "m",
            "messages": [{"role": "user", "content": [{"type": "image_url", "image_url": {"url": "not a url"}}]}],
        },
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "malformed_url"
    assert model.requests == []


@pytest.mark.asyncio
async def test_non_streaming_provider_failure_is_server_error():
    app = create_app({"m": MockLanguageModel("test", error=RuntimeError("upstream down"))})
    response = await _post(app, {"model": "m", "messages": [{"role": "user", "content": "Hello"}]})
    assert response.status_code == 502
    body = response.json()
    assert body["error"]["code"] == "provider_error"
    assert "upstream down" in body["error"]["message"]


@pytest.mark.asyncio
async def test_app_can_be_mounted_under_a_prefix():
    host = FastAPI()
    host.mount("/my-ai-endpoint", create_app({"m": MockLanguageModel("test", text="mounted")}))
    response = await _post(
        host,
        {"model": "m", "messages": [{"role": "user", "content": "Hello"}]},
        path="/my-ai-endpoint/v1/chat/completions",
    )
    assert response.status_code == 200
    assert response.json()["choices"][0]["message"]["content"] == "mounted"


def test_unknown_stream_tool_call_policy_is_rejected():
    with pytest.raises(ValueError):
        create_app({}, stream_tool_calls="sometimes")


@pytest.mark.asyncio
async def test_mounted_health_skips_auth():
    host = FastAPI()
    host.mount("/ai", create_app({"m": MockLanguageModel("test")}, verify_api_key=lambda key: False))
    transport = httpx.ASGITransport(app=host)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        health = await client.get("/ai/health")
        chat = await client.post("/ai/v1/chat/completions", json={"model": "m", "messages": []})
    assert health.status_code == 200
    assert chat.status_code == 403
