from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Protocol, Sequence
from datetime import datetime, timezone
from uuid import uuid4

from .models import Role


TITLE_MAX_CHARS = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def title_from_message(message: str) -> str:
    """取第一条用户消息的前 60 个字符作为会话标题。"""
    text = message.strip()
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


@dataclass
class MessageRecord:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    is_voice: bool = False
    id: str = field(default_factory=lambda: f"m-{uuid4().hex}")
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": format_ts(self.timestamp),
            "isVoice": self.is_voice,
            "meta": self.meta,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageRecord":
        return cls(
            id=data.get("id") or f"m-{uuid4().hex}",
            role=data["role"],
            content=data.get("content") or "",
            timestamp=parse_ts(data["timestamp"]),
            is_voice=bool(data.get("isVoice", False)),
            meta=data.get("meta") or {},
        )


@dataclass
class Conversation:
    session_id: str
    title: str
    messages: List[MessageRecord]
    created_at: datetime
    updated_at: datetime

    @property
    def last_message(self) -> Optional[MessageRecord]:
        return self.messages[-1] if self.messages else None


@dataclass
class DocumentRecord:
    """一份上传文件及其抽取出的文本。"""

    file_id: str
    session_id: str
    original_name: str
    mime_type: str
    size_bytes: int
    status: str = "processing"  # processing / ready / error
    extracted_text: str = ""
    word_count: int = 0
    page_count: int = 0
    chunk_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


class ConversationStore(Protocol):
    def find(self, session_id: str) -> Optional[Conversation]:
        ...

    def append_messages(
        self,
        session_id: str,
        messages: Sequence[MessageRecord],
        title: str,
    ) -> Conversation:
        """追加消息；会话不存在时以 title 新建。同一 session 的读改写需串行。"""
        ...

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        ...

    def delete(self, session_id: str) -> bool:
        ...


class FileStore(Protocol):
    def save(self, record: DocumentRecord) -> None:
        ...

    def get(self, file_id: str) -> Optional[DocumentRecord]:
        ...

    def find_ready(self, session_id: str) -> List[DocumentRecord]:
        ...

    def list_for_session(self, session_id: str) -> List[DocumentRecord]:
        ...

    def delete(self, file_id: str) -> Optional[DocumentRecord]:
        ...
