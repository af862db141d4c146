from datetime import datetime, timezone

from zeno_core.domain.conversation import Conversation, MessageRecord, format_ts, parse_ts, title_from_message
from zeno_core.domain.models import ChatMessage, StreamEvent


def test_models_exist():
    cm = ChatMessage(role="user", content="hi")
    assert cm.role == "user"
    now = datetime.now(timezone.utc)
    conv = Conversation(session_id="s1", title="t", messages=[], created_at=now, updated_at=now)
    assert conv.last_message is None
    mr = MessageRecord(role="user", content="x", timestamp=now)
    conv.messages.append(mr)
    assert conv.last_message is mr
    assert mr.id.startswith("m-")


def test_message_record_dict_roundtrip_keeps_voice_flag():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    mr = MessageRecord(role="user", content="hello", timestamp=now, is_voice=True, id="m1")
    data = mr.to_dict()
    assert data["timestamp"] == "2024-05-01T12:00:00Z"
    assert data["isVoice"] is True
    back = MessageRecord.from_dict(data)
    assert back.id == "m1"
    assert back.is_voice is True
    assert back.timestamp == now


def test_parse_ts_accepts_z_suffix():
    ts = parse_ts("2024-01-02T03:04:05Z")
    assert format_ts(ts) == "2024-01-02T03:04:05Z"


def test_title_from_message():
    assert title_from_message("  short  ") == "short"
    long = "x" * 61
    assert title_from_message(long) == "x" * 60 + "..."
    assert title_from_message("y" * 60) == "y" * 60


def test_stream_event_wire_shapes():
    assert StreamEvent.content_event("Hel").to_dict() == {"content": "Hel"}
    assert StreamEvent.done_event("s1").to_dict() == {"done": True, "sessionId": "s1"}
    err = StreamEvent.error_event("boom", code="X", incomplete=True)
    assert err.to_dict() == {"error": "boom", "incomplete": True, "code": "X"}
    assert err.terminal
    assert not StreamEvent.content_event("a").terminal
    assert StreamEvent.content_event("你好").to_sse() == 'data: {"content": "你好"}\n\n'
