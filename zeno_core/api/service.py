"""对外 API 服务模块。

ChatService 串起一次对话回合：校验输入、分流图像请求、组装上下文、
调用补全引擎、持久化会话，并提供会话与上传文件的查询/删除。
HTTP 层只负责协议转换，业务逻辑都在这里。
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence
from uuid import uuid4

from zeno_core.chat.context import ContextAssembler, ContextDocument
from zeno_core.chat.engine import CompletionEngine, create_engine
from zeno_core.chat.image_router import ImageRequestRouter
from zeno_core.chat.relay import StreamRelay
from zeno_core.config.settings import settings
from zeno_core.domain.conversation import (
    ConversationStore,
    DocumentRecord,
    FileStore,
    MessageRecord,
    format_ts,
    title_from_message,
)
from zeno_core.domain.exceptions import NotFoundError, UploadError, ValidationError
from zeno_core.domain.models import ChatMessage, StreamEvent
from zeno_core.infrastructure.logging.logger import logger
from zeno_core.infrastructure.storage.json_store import (
    JsonConversationStore,
    JsonFileStore,
    validate_id,
)
from zeno_core.tools.file_parser import SUPPORTED_TYPES_LABEL, is_supported_file_type, parse_file
from zeno_core.tools.image_gen import ImageGenerator, ImageResult


IMAGE_TITLE_PROMPT_CHARS = 50
LAST_MESSAGE_PREVIEW_CHARS = 100
CHARS_PER_CHUNK = 2000


def new_trace_id() -> str:
    return f"tr-{uuid4().hex[:12]}"


def image_reply(result: ImageResult) -> str:
    return (
        f'Here\'s the generated image for: **"{result.prompt}"**\n\n'
        f"![Generated Image]({result.url})\n\n"
        f"*Model: {result.model} | Size: {result.width}x{result.height}*\n\n"
        '> Tip: You can say "generate image of..." with styles like "realistic", '
        '"anime", "3d", or "landscape" for different results!'
    )


def _message_payload(record: MessageRecord) -> Dict[str, Any]:
    return {"role": record.role, "content": record.content, "timestamp": format_ts(record.timestamp)}


@dataclass
class StreamTurn:
    """一次流式回合。

    普通对话由 relay 产出事件；图像请求在开流前已经生成完毕，
    直接回放为一个 content 事件加一个带 image 字段的 done 事件。
    """

    session_id: str
    relay: Optional[StreamRelay] = None
    messages: List[ChatMessage] = field(default_factory=list)
    image_content: Optional[str] = None
    image: Optional[Dict[str, Any]] = None

    def events(self) -> Iterator[StreamEvent]:
        if self.relay is not None:
            yield from self.relay.events(self.messages)
            return
        yield StreamEvent.content_event(self.image_content or "")
        yield StreamEvent.done_event(self.session_id, image=self.image)

    def abort(self) -> None:
        if self.relay is not None:
            self.relay.abort()


class ChatService:
    def __init__(
        self,
        engine: CompletionEngine,
        store: ConversationStore,
        file_store: FileStore,
        assembler: Optional[ContextAssembler] = None,
        image_router: Optional[ImageRequestRouter] = None,
        image_generator: Optional[ImageGenerator] = None,
        cfg=settings,
    ):
        self._engine = engine
        self._store = store
        self._file_store = file_store
        self._settings = cfg
        self._assembler = assembler or ContextAssembler(
            max_messages=cfg.max_context_messages,
            max_doc_chars=cfg.file_context_max_chars,
        )
        self._router = image_router or ImageRequestRouter()
        self._image_generator = image_generator or ImageGenerator(cfg)

    # ---- 输入校验 ----

    def validate_message(self, message: Optional[str]) -> str:
        """返回去掉首尾空白后的消息；空消息或超长消息抛 ValidationError。"""

        if not isinstance(message, str) or not message.strip():
            raise ValidationError(
                code="EMPTY_MESSAGE",
                message="Message is required and must be a non-empty string",
            )
        limit = self._settings.max_message_chars
        if len(message) > limit:
            raise ValidationError(
                code="MESSAGE_TOO_LONG",
                message=f"Message is too long. Maximum {limit:,} characters allowed.",
            )
        return message.strip()

    @staticmethod
    def resolve_session_id(session_id: Optional[str]) -> str:
        if not session_id:
            return str(uuid4())
        return validate_id(session_id)

    # ---- 对话 ----

    def send(self, message: str, session_id: Optional[str] = None, is_voice: bool = False) -> Dict[str, Any]:
        """阻塞式对话回合，成功后一次性写入用户消息与助手消息。"""

        text = self.validate_message(message)
        sid = self.resolve_session_id(session_id)
        log_ctx = {"trace_id": new_trace_id(), "session_id": sid}

        if self._router.classify(text):
            self._log(logging.INFO, "Routing chat message to image generation", log_ctx)
            return self._image_turn(text, sid, None, is_voice, log_ctx)

        user_rec, title, chat_messages = self._prepare_turn(text, sid, is_voice, log_ctx)
        reply = self._engine.complete(chat_messages, log_ctx=log_ctx)
        assistant_rec = MessageRecord(role="assistant", content=reply)
        conv = self._store.append_messages(sid, [user_rec, assistant_rec], title)
        self._log(logging.INFO, "Chat turn completed", log_ctx, message_id=assistant_rec.id)
        return {
            "success": True,
            "sessionId": sid,
            "message": _message_payload(assistant_rec),
            "conversationTitle": conv.title,
        }

    def stream(self, message: str, session_id: Optional[str] = None, is_voice: bool = False) -> StreamTurn:
        """准备一次流式回合；校验失败或图像生成失败在开流前抛出。"""

        text = self.validate_message(message)
        sid = self.resolve_session_id(session_id)
        log_ctx = {"trace_id": new_trace_id(), "session_id": sid}

        if self._router.classify(text):
            self._log(logging.INFO, "Routing streamed message to image generation", log_ctx)
            payload = self._image_turn(text, sid, None, is_voice, log_ctx)
            return StreamTurn(
                session_id=sid,
                image_content=payload["message"]["content"],
                image=payload["image"],
            )

        user_rec, title, chat_messages = self._prepare_turn(text, sid, is_voice, log_ctx)
        relay = StreamRelay(
            engine=self._engine,
            store=self._store,
            session_id=sid,
            pending_messages=[user_rec],
            title=title,
            log_ctx=log_ctx,
        )
        return StreamTurn(session_id=sid, relay=relay, messages=chat_messages)

    def generate_image(
        self,
        message: str,
        session_id: Optional[str] = None,
        style: Optional[str] = None,
    ) -> Dict[str, Any]:
        text = self.validate_message(message)
        sid = self.resolve_session_id(session_id)
        log_ctx = {"trace_id": new_trace_id(), "session_id": sid}
        return self._image_turn(text, sid, style, False, log_ctx)

    def _prepare_turn(self, text: str, sid: str, is_voice: bool, log_ctx: Dict[str, Any]):
        existing = self._store.find(sid)
        history: Sequence[MessageRecord] = existing.messages if existing else []
        title = existing.title if existing else title_from_message(text)
        user_rec = MessageRecord(role="user", content=text, is_voice=is_voice)

        documents = [ContextDocument.from_record(r) for r in self._file_store.find_ready(sid)]
        chat_messages = self._assembler.assemble(list(history) + [user_rec], documents)
        self._log(
            logging.INFO,
            "Assembled context",
            log_ctx,
            history=len(history),
            window=len(chat_messages),
            documents=len(documents),
        )
        return user_rec, title, chat_messages

    def _image_turn(
        self,
        text: str,
        sid: str,
        style: Optional[str],
        is_voice: bool,
        log_ctx: Dict[str, Any],
    ) -> Dict[str, Any]:
        prompt = self._router.extract_prompt(text)
        result = self._image_generator.generate(prompt, style)

        user_rec = MessageRecord(role="user", content=text, is_voice=is_voice)
        assistant_rec = MessageRecord(
            role="assistant",
            content=image_reply(result),
            meta={"image": result.to_dict()},
        )
        conv = self._store.append_messages(
            sid,
            [user_rec, assistant_rec],
            f"Image: {result.prompt[:IMAGE_TITLE_PROMPT_CHARS]}",
        )
        self._log(logging.INFO, "Image turn completed", log_ctx, model=result.model)
        return {
            "success": True,
            "sessionId": sid,
            "image": result.to_dict(),
            "message": _message_payload(assistant_rec),
            "conversationTitle": conv.title,
        }

    # ---- 会话 ----

    def list_conversations(self) -> List[Dict[str, Any]]:
        items = []
        for conv in self._store.list_conversations(limit=self._settings.conversation_list_limit):
            last = conv.last_message
            items.append({
                "sessionId": conv.session_id,
                "title": conv.title,
                "messageCount": len(conv.messages),
                "lastMessage": last.content[:LAST_MESSAGE_PREVIEW_CHARS] if last else "",
                "createdAt": format_ts(conv.created_at),
                "updatedAt": format_ts(conv.updated_at),
            })
        return items

    def get_conversation(self, session_id: str) -> Dict[str, Any]:
        """会话不存在时返回空消息列表而不是 404。"""

        sid = validate_id(session_id)
        conv = self._store.find(sid)
        if conv is None:
            return {"success": True, "sessionId": sid, "messages": []}
        return {
            "success": True,
            "sessionId": conv.session_id,
            "title": conv.title,
            "messages": [m.to_dict() for m in conv.messages],
        }

    def delete_conversation(self, session_id: str) -> None:
        sid = validate_id(session_id)
        if not self._store.delete(sid):
            raise NotFoundError(code="NOT_FOUND", message="Conversation not found")
        logger.info("Conversation deleted", extra={"extra": {"session_id": sid}})

    # ---- 上传文件 ----

    def upload_file(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        sid = self.resolve_session_id(session_id)
        if not is_supported_file_type(mime_type, filename):
            raise UploadError(
                code="UNSUPPORTED_TYPE",
                message=(
                    f'Unsupported file type: "{filename}" ({mime_type or "unknown type"}). '
                    f"Supported formats: {', '.join(SUPPORTED_TYPES_LABEL)}"
                ),
            )

        record = DocumentRecord(
            file_id=str(uuid4()),
            session_id=sid,
            original_name=filename,
            mime_type=mime_type,
            size_bytes=len(data),
        )
        self._file_store.save(record)
        log_ctx = {"session_id": sid, "file_id": record.file_id, "size_bytes": record.size_bytes}
        self._log(logging.INFO, "Processing uploaded file", log_ctx, name=filename, mime_type=mime_type)

        try:
            parsed = parse_file(data, mime_type, filename, max_bytes=self._settings.max_upload_bytes)
        except UploadError as e:
            record.status = "error"
            record.error_message = e.message
            self._file_store.save(record)
            self._log(logging.WARNING, "File parsing failed", log_ctx, code=e.code)
            raise

        record.extracted_text = parsed.text
        record.word_count = parsed.word_count
        record.page_count = parsed.page_count
        record.chunk_count = math.ceil(len(parsed.text) / CHARS_PER_CHUNK)
        record.status = "ready"
        self._file_store.save(record)
        self._log(logging.INFO, "File parsed", log_ctx, words=parsed.word_count, pages=parsed.page_count)

        return {
            "fileId": record.file_id,
            "sessionId": sid,
            "originalName": record.original_name,
            "mimeType": record.mime_type,
            "sizeBytes": record.size_bytes,
            "wordCount": record.word_count,
            "pageCount": record.page_count,
            "status": record.status,
        }

    def list_files(self, session_id: str) -> List[Dict[str, Any]]:
        sid = validate_id(session_id)
        records = sorted(self._file_store.list_for_session(sid), key=lambda r: r.created_at, reverse=True)
        return [
            {
                "fileId": r.file_id,
                "originalName": r.original_name,
                "mimeType": r.mime_type,
                "sizeBytes": r.size_bytes,
                "status": r.status,
                "chunkCount": r.chunk_count,
                "createdAt": format_ts(r.created_at),
            }
            for r in records
        ]

    def delete_file(self, file_id: str) -> None:
        record = self._file_store.delete(validate_id(file_id, "fileId"))
        if record is None:
            raise NotFoundError(code="NOT_FOUND", message="File not found")
        logger.info("File deleted", extra={"extra": {"file_id": file_id, "name": record.original_name}})

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


def build_chat_service(cfg=None) -> ChatService:
    """按配置组装默认的 ChatService（JSON 文件存储 + 主备 Provider）。"""

    cfg = cfg or settings
    return ChatService(
        engine=create_engine(cfg),
        store=JsonConversationStore(root=cfg.storage_root),
        file_store=JsonFileStore(root=cfg.storage_root),
        cfg=cfg,
    )
