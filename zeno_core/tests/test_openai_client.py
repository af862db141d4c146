import json

import httpx
import pytest

from zeno_core.domain.exceptions import ApiError, MalformedResponseError, NetworkError, RateLimitError, ValidationError
from zeno_core.domain.models import ChatMessage, ChatRequest
from zeno_core.providers.openai_client import OpenAIClient


class SettingsStub:
    openai_api_key = "sk-test-123456"
    openai_base_url = "https://api.example.com/v1"
    http_timeout = 1.0


def _req():
    return ChatRequest(
        provider="openai",
        model="zeno-chat",
        messages=[ChatMessage(role="system", content="sys"), ChatMessage(role="user", content="hi")],
        temperature=0.7,
        max_tokens=128,
    )


class Resp:
    def __init__(self, status_code=200, data=None, text=None, lines=None):
        self.status_code = status_code
        self._data = data
        self.text = text if text is not None else json.dumps(data)
        self._lines = lines or []

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data

    def read(self):
        return self.text.encode()

    def iter_lines(self):
        yield from self._lines


def _fake_client(resp, captured=None):
    class StreamCtx:
        def __enter__(self):
            return resp

        def __exit__(self, *a):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **kw):
            if captured is not None:
                captured.update(url=url, json=json, headers=headers)
            return resp

        def stream(self, method, url, json=None, headers=None, **kw):
            if captured is not None:
                captured.update(url=url, json=json, headers=headers)
            return StreamCtx()

    return Client


def test_openai_client_parse_basic(monkeypatch):
    captured = {}
    resp = Resp(
        data={
            "choices": [{"message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
        }
    )
    monkeypatch.setattr("httpx.Client", _fake_client(resp, captured))
    res = OpenAIClient(SettingsStub()).chat(_req())

    assert res.choices[0].message.content == "ok"
    assert res.usage.total_tokens == 2
    assert captured["url"] == "https://api.example.com/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer sk-test-123456"
    assert captured["json"]["model"] == "gpt-4o-mini"
    assert captured["json"]["messages"][0] == {"role": "system", "content": "sys"}
    assert captured["json"]["presence_penalty"] == 0.1
    assert "stream" not in captured["json"]


def test_openai_client_rate_limit(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=429, text="slow down")))
    with pytest.raises(RateLimitError):
        OpenAIClient(SettingsStub()).chat(_req())


def test_openai_client_http_error_keeps_body_out_of_message(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=500, text='{"secret":"internal"}')))
    with pytest.raises(ApiError) as ei:
        OpenAIClient(SettingsStub()).chat(_req())
    assert "secret" not in ei.value.message
    assert "secret" in ei.value.extra["body"]


def test_openai_client_no_choices_is_malformed(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(data={"choices": []})))
    with pytest.raises(MalformedResponseError):
        OpenAIClient(SettingsStub()).chat(_req())


def test_openai_client_network_error(monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            raise httpx.ConnectError("refused")

    monkeypatch.setattr("httpx.Client", Client)
    with pytest.raises(NetworkError):
        OpenAIClient(SettingsStub()).chat(_req())


def test_openai_client_missing_key():
    class NoKey(SettingsStub):
        openai_api_key = None

    with pytest.raises(ValidationError):
        OpenAIClient(NoKey()).chat(_req())


def test_openai_client_stream_parses_deltas(monkeypatch):
    captured = {}
    lines = [
        'data: {"choices":[{"delta":{"role":"assistant","content":"Hel"}}]}',
        "",
        ": keep-alive",
        'data: {"choices":[{"delta":{"content":"lo"}}]}',
        "data: not-json",
        "data: [DONE]",
        'data: {"choices":[{"delta":{"content":"ignored"}}]}',
    ]
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(lines=lines, text=""), captured))
    chunks = list(OpenAIClient(SettingsStub()).chat_stream(_req()))

    assert [c.choices[0].delta.content for c in chunks] == ["Hel", "lo"]
    assert captured["json"]["stream"] is True
    assert "presence_penalty" not in captured["json"]


def test_openai_client_stream_http_error(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(status_code=503, text="unavailable")))
    with pytest.raises(ApiError):
        list(OpenAIClient(SettingsStub()).chat_stream(_req()))


def test_openai_client_stream_error_chunk(monkeypatch):
    lines = ['data: {"error":{"message":"overloaded"}}']
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(lines=lines, text="")))
    with pytest.raises(ApiError):
        list(OpenAIClient(SettingsStub()).chat_stream(_req()))


def test_openai_client_empty_stream_is_malformed(monkeypatch):
    monkeypatch.setattr("httpx.Client", _fake_client(Resp(lines=["data: [DONE]"], text="")))
    with pytest.raises(MalformedResponseError):
        list(OpenAIClient(SettingsStub()).chat_stream(_req()))
