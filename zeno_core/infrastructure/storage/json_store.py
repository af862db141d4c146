import json
import os
import re
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence
from uuid import uuid4

from zeno_core.config.settings import settings
from zeno_core.domain.conversation import (
    Conversation,
    DocumentRecord,
    MessageRecord,
    format_ts,
    parse_ts,
    utcnow,
)
from zeno_core.domain.exceptions import StoreError, ValidationError


_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_id(value: str, kind: str = "sessionId") -> str:
    if not isinstance(value, str) or not _ID_PATTERN.match(value):
        raise ValidationError(code="INVALID_ID", message=f"Invalid {kind}")
    return value


def _write_json(path: Path, obj: Dict[str, Any]) -> None:
    tmp_path = path.parent / f"{path.stem}.{uuid4().hex}.json.tmp"
    try:
        tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise StoreError(code="STORE_WRITE_ERROR", message=str(e))


class _KeyedLocks:
    """按 key 分配的进程内锁，用于串行化同一会话的读改写。"""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, 持有/等待者计数]，计数归零即移除
        self._locks: Dict[str, List[Any]] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class JsonConversationStore:
    """每个会话一个 JSON 文档：<root>/conversations/<session_id>.json。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()

    def find(self, session_id: str) -> Optional[Conversation]:
        path = self._path(session_id)
        if not path.exists():
            return None
        return self._read(path)

    def append_messages(
        self,
        session_id: str,
        messages: Sequence[MessageRecord],
        title: str,
    ) -> Conversation:
        path = self._path(session_id)
        with self._locks.hold(session_id):
            now = utcnow()
            if path.exists():
                conv = self._read(path)
            else:
                conv = Conversation(
                    session_id=session_id,
                    title=title,
                    messages=[],
                    created_at=now,
                    updated_at=now,
                )
            conv.messages.extend(messages)
            conv.updated_at = now
            self._write(path, conv)
        return conv

    def list_conversations(self, limit: int = 50) -> List[Conversation]:
        items: List[Conversation] = []
        for path in self._conv_root.glob("*.json"):
            try:
                items.append(self._read(path))
            except StoreError:
                continue
        items.sort(key=lambda c: c.updated_at, reverse=True)
        return items[:limit]

    def delete(self, session_id: str) -> bool:
        path = self._path(session_id)
        with self._locks.hold(session_id):
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as e:
                raise StoreError(code="STORE_DELETE_ERROR", message=str(e))
        return True

    def _path(self, session_id: str) -> Path:
        return self._conv_root / f"{validate_id(session_id)}.json"

    def _read(self, path: Path) -> Conversation:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Conversation(
                session_id=data["sessionId"],
                title=data.get("title") or "",
                messages=[MessageRecord.from_dict(m) for m in data.get("messages") or []],
                created_at=parse_ts(data["createdAt"]),
                updated_at=parse_ts(data["updatedAt"]),
            )
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))

    def _write(self, path: Path, conv: Conversation) -> None:
        _write_json(
            path,
            {
                "sessionId": conv.session_id,
                "title": conv.title,
                "messages": [m.to_dict() for m in conv.messages],
                "createdAt": format_ts(conv.created_at),
                "updatedAt": format_ts(conv.updated_at),
            },
        )


class JsonFileStore:
    """上传文件记录：<root>/files/<file_id>.json。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._files_root = self._root / "files"
        self._files_root.mkdir(parents=True, exist_ok=True)

    def save(self, record: DocumentRecord) -> None:
        record.updated_at = utcnow()
        _write_json(self._path(record.file_id), self._to_dict(record))

    def get(self, file_id: str) -> Optional[DocumentRecord]:
        path = self._path(file_id)
        if not path.exists():
            return None
        return self._read(path)

    def find_ready(self, session_id: str) -> List[DocumentRecord]:
        return [r for r in self.list_for_session(session_id) if r.status == "ready"]

    def list_for_session(self, session_id: str) -> List[DocumentRecord]:
        items: List[DocumentRecord] = []
        for path in self._files_root.glob("*.json"):
            try:
                record = self._read(path)
            except StoreError:
                continue
            if record.session_id == session_id:
                items.append(record)
        items.sort(key=lambda r: r.created_at)
        return items

    def delete(self, file_id: str) -> Optional[DocumentRecord]:
        record = self.get(file_id)
        if record is None:
            return None
        try:
            self._path(file_id).unlink()
        except OSError as e:
            raise StoreError(code="STORE_DELETE_ERROR", message=str(e))
        return record

    def _path(self, file_id: str) -> Path:
        return self._files_root / f"{validate_id(file_id, 'fileId')}.json"

    def _read(self, path: Path) -> DocumentRecord:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return DocumentRecord(
                file_id=data["fileId"],
                session_id=data["sessionId"],
                original_name=data["originalName"],
                mime_type=data.get("mimeType") or "",
                size_bytes=int(data.get("sizeBytes", 0)),
                status=data.get("status") or "processing",
                extracted_text=data.get("extractedText") or "",
                word_count=int(data.get("wordCount", 0)),
                page_count=int(data.get("pageCount", 0)),
                chunk_count=int(data.get("chunkCount", 0)),
                error_message=data.get("errorMessage"),
                created_at=parse_ts(data["createdAt"]),
                updated_at=parse_ts(data["updatedAt"]),
            )
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))

    @staticmethod
    def _to_dict(record: DocumentRecord) -> Dict[str, Any]:
        return {
            "fileId": record.file_id,
            "sessionId": record.session_id,
            "originalName": record.original_name,
            "mimeType": record.mime_type,
            "sizeBytes": record.size_bytes,
            "status": record.status,
            "extractedText": record.extracted_text,
            "wordCount": record.word_count,
            "pageCount": record.page_count,
            "chunkCount": record.chunk_count,
            "errorMessage": record.error_message,
            "createdAt": format_ts(record.created_at),
            "updatedAt": format_ts(record.updated_at),
        }
