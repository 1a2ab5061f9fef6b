from __future__ import annotations

import json

import allure
import httpx
import pytest

from watchy.agent.client import OllamaChatClient, resolve_ollama_host
from watchy.agent.errors import InferenceError, InferenceTimeout
from watchy.agent.messages import Message, ToolCall
from watchy.agent.tools import TOOL_SCHEMAS

pytestmark = [
    allure.epic("Agent"),
    allure.feature("Inference Client"),
]


def _client(handler, **kwargs) -> OllamaChatClient:
    return OllamaChatClient(
        host="http://ollama.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_chat_posts_history_and_tools() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        captured["auth"] = request.headers.get("authorization")
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "hi"}})

    client = _client(handler, api_key="secret")
    history = [
        Message(role="system", content="sys"),
        Message(role="assistant", tool_calls=[ToolCall("get_task_info", {"task_id": 1})]),
        Message(role="tool", content="{}", tool_name="get_task_info"),
    ]

    reply = client.chat(model="m", messages=history, tools=TOOL_SCHEMAS)

    assert reply == Message(role="assistant", content="hi")
    assert captured["url"] == "http://ollama.test/api/chat"
    assert captured["auth"] == "Bearer secret"
    body = captured["body"]
    assert body["model"] == "m"
    assert body["stream"] is False
    assert body["tools"] == TOOL_SCHEMAS
    assert body["messages"][1]["tool_calls"] == [
        {"function": {"name": "get_task_info", "arguments": {"task_id": 1}}},
    ]
    assert body["messages"][2]["tool_name"] == "get_task_info"


@pytest.mark.parametrize("arguments", [{"path": "/var/log/x"}, '{"path": "/var/log/x"}'])
def test_chat_parses_tool_calls(arguments) -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "message": {
                    "role": "assistant",
                    "content": "",
                    "tool_calls": [{"function": {"name": "read_file", "arguments": arguments}}],
                },
            },
        )

    reply = _client(handler).chat(model="m", messages=[], tools=[])

    assert reply.tool_calls == [ToolCall(name="read_file", arguments={"path": "/var/log/x"})]


def test_http_error_status_raises_inference_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "model 'nope' not found"})

    with pytest.raises(InferenceError, match="HTTP 404: model 'nope' not found"):
        _client(handler).chat(model="nope", messages=[], tools=[])


def test_transport_error_raises_inference_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(InferenceError, match="chat request failed"):
        _client(handler).chat(model="m", messages=[], tools=[])


def test_timeout_raises_inference_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(InferenceTimeout):
        _client(handler).chat(model="m", messages=[], tools=[], timeout=1.0)


def test_malformed_body_raises_inference_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    with pytest.raises(InferenceError, match="malformed response"):
        _client(handler).chat(model="m", messages=[], tools=[])


def test_resolve_host(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_ollama_host() == "http://localhost:11434"
    assert resolve_ollama_host("https://ollama.com/") == "https://ollama.com"

    monkeypatch.setenv("OLLAMA_HOST", "0.0.0.0:9999")
    assert resolve_ollama_host() == "http://0.0.0.0:9999"

    monkeypatch.setenv("OLLAMA_HOST", ":11439")
    assert resolve_ollama_host() == "http://127.0.0.1:11439"
