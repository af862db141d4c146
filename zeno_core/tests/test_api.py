import json
import tempfile
from pathlib import Path
from typing import List

import pytest
from fastapi.testclient import TestClient

from fakes import FakeProvider, SettingsStub
from zeno_core.api.app import create_app
from zeno_core.api.service import ChatService
from zeno_core.chat.engine import CompletionEngine
from zeno_core.infrastructure.storage.json_store import JsonConversationStore, JsonFileStore


def parse_sse_events(text: str) -> List[dict]:
    """Parse SSE response body into a list of event dicts."""
    events = []
    for line in text.strip().split("\n"):
        line = line.strip()
        if line.startswith("data: "):
            events.append(json.loads(line[6:]))
    return events


def _client(root, primary=None, fallback=None, **kw):
    engine = CompletionEngine(
        primary=primary or FakeProvider("openai", reply="hello", deltas=["Hel", "lo"]),
        fallback=fallback or FakeProvider("gemini"),
        system_prompt="sys",
    )
    service = ChatService(
        engine=engine,
        store=JsonConversationStore(root=root),
        file_store=JsonFileStore(root=root),
        cfg=SettingsStub(),
    )
    return TestClient(create_app(service), **kw)


@pytest.fixture
def client():
    with tempfile.TemporaryDirectory() as d:
        yield _client(Path(d))


def test_post_chat_and_fetch_history(client):
    resp = client.post("/api/chat", json={"message": "hi", "isVoice": True})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["message"]["content"] == "hello"

    history = client.get("/api/chat", params={"sessionId": body["sessionId"]}).json()
    assert history["title"] == "hi"
    assert [m["role"] for m in history["messages"]] == ["user", "assistant"]


def test_get_chat_unknown_session_returns_empty(client):
    body = client.get("/api/chat", params={"sessionId": "nope"}).json()
    assert body == {"success": True, "sessionId": "nope", "messages": []}


def test_get_chat_requires_session_id(client):
    resp = client.get("/api/chat")
    assert resp.status_code == 400
    assert resp.json()["code"] == "MISSING_PARAM"


def test_post_chat_rejects_empty_message(client):
    resp = client.post("/api/chat", json={"message": "   "})
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "Message is required and must be a non-empty string",
        "code": "EMPTY_MESSAGE",
    }


def test_post_chat_rejects_malformed_body(client):
    resp = client.post("/api/chat", json={"message": "hi", "isVoice": {"nested": True}})
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"


def test_chat_all_providers_failed_returns_500():
    with tempfile.TemporaryDirectory() as d:
        client = _client(
            Path(d),
            primary=FakeProvider("openai", fail_chat=RuntimeError("boom")),
            fallback=FakeProvider("gemini", fail_chat=RuntimeError("boom")),
        )
        resp = client.post("/api/chat", json={"message": "hi"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "ALL_PROVIDERS_FAILED"
    assert "boom" not in body["error"]


def test_stream_emits_content_then_done(client):
    resp = client.post("/api/chat/stream", json={"message": "hi", "sessionId": "s1"})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["cache-control"] == "no-cache"

    events = parse_sse_events(resp.text)
    assert events == [{"content": "Hel"}, {"content": "lo"}, {"done": True, "sessionId": "s1"}]
    history = client.get("/api/chat", params={"sessionId": "s1"}).json()
    assert history["messages"][-1]["content"] == "Hello"


def test_stream_mid_failure_emits_single_error():
    with tempfile.TemporaryDirectory() as d:
        client = _client(Path(d), primary=FakeProvider("openai", deltas=["Hel", "lo"], fail_after=2))
        resp = client.post("/api/chat/stream", json={"message": "hi", "sessionId": "s2"})
        events = parse_sse_events(resp.text)
        history = client.get("/api/chat", params={"sessionId": "s2"}).json()

    assert events[:2] == [{"content": "Hel"}, {"content": "lo"}]
    assert len(events) == 3
    assert events[2]["incomplete"] is True
    assert "done" not in events[2]
    assert history["messages"] == []


def test_stream_validation_error_is_plain_json(client):
    resp = client.post("/api/chat/stream", json={"message": ""})
    assert resp.status_code == 400
    assert resp.json()["code"] == "EMPTY_MESSAGE"


def test_conversations_list_and_delete(client):
    client.post("/api/chat", json={"message": "first", "sessionId": "a"})
    body = client.get("/api/conversations").json()
    assert body["success"] is True
    assert body["conversations"][0]["sessionId"] == "a"
    assert body["conversations"][0]["messageCount"] == 2

    assert client.delete("/api/conversations", params={"sessionId": "a"}).json()["success"] is True
    missing = client.delete("/api/conversations", params={"sessionId": "a"})
    assert missing.status_code == 404
    assert missing.json()["success"] is False


def test_image_endpoint(client):
    resp = client.post("/api/image", json={"message": "a quiet forest", "style": "landscape"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["image"]["width"] == 1280
    assert body["image"]["url"].startswith("https://image.pollinations.ai/prompt/")
    assert body["message"]["role"] == "assistant"


def test_upload_list_and_delete(client):
    resp = client.post(
        "/api/upload",
        files={"file": ("notes.md", b"# Title\n\nsome notes", "text/markdown")},
        data={"sessionId": "s9"},
    )
    assert resp.status_code == 200
    info = resp.json()["file"]
    assert info["status"] == "ready"
    assert info["sessionId"] == "s9"

    files = client.get("/api/upload", params={"sessionId": "s9"}).json()["files"]
    assert [f["fileId"] for f in files] == [info["fileId"]]

    assert client.delete("/api/upload", params={"fileId": info["fileId"]}).status_code == 200
    assert client.delete("/api/upload", params={"fileId": info["fileId"]}).status_code == 404


def test_upload_rejects_unsupported_type(client):
    resp = client.post("/api/upload", files={"file": ("a.png", b"\x89PNG", "image/png")})
    assert resp.status_code == 400
    assert resp.json()["code"] == "UNSUPPORTED_TYPE"


def test_upload_requires_file(client):
    resp = client.post("/api/upload", data={"sessionId": "s9"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "NO_FILE"
