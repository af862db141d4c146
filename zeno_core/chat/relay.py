"""流式中继。

把 CompletionEngine.stream() 的增量转换为发往浏览器的 StreamEvent 序列：
零个或多个 content 事件，然后恰好一个 done 或 error 事件。
成功结束时把用户消息与完整的助手消息一次性写入会话。
"""

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Sequence

from zeno_core.chat.engine import EMPTY_RESPONSE_TEXT, CompletionEngine
from zeno_core.domain.conversation import ConversationStore, MessageRecord
from zeno_core.domain.exceptions import BusinessError
from zeno_core.domain.models import ChatMessage, StreamEvent
from zeno_core.infrastructure.logging.logger import logger


class StreamRelay:
    def __init__(
        self,
        engine: CompletionEngine,
        store: ConversationStore,
        session_id: str,
        pending_messages: Sequence[MessageRecord],
        title: str,
        log_ctx: Optional[Dict[str, Any]] = None,
    ):
        self._engine = engine
        self._store = store
        self._session_id = session_id
        self._pending = list(pending_messages)
        self._title = title
        self._log_ctx = dict(log_ctx or {})
        self._cancel = threading.Event()
        self._pieces: List[str] = []
        self._finished = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def text(self) -> str:
        """目前累积的完整文本。"""
        return "".join(self._pieces)

    @property
    def aborted(self) -> bool:
        return self._cancel.is_set()

    def abort(self) -> None:
        """客户端断开后调用；此后不再发事件，也不再持久化。"""
        if not self._finished:
            self._cancel.set()

    def events(self, messages: Sequence[ChatMessage]) -> Iterator[StreamEvent]:
        try:
            yield from self._run(messages)
        except GeneratorExit:
            self.abort()
            raise
        finally:
            self._finished = True

    def _run(self, messages: Sequence[ChatMessage]) -> Iterator[StreamEvent]:
        try:
            for delta in self._engine.stream(messages, cancel=self._cancel, log_ctx=self._log_ctx):
                if self._cancel.is_set():
                    break
                self._pieces.append(delta)
                yield StreamEvent.content_event(delta)
        except BusinessError as exc:
            if self._cancel.is_set():
                return
            self._log(logging.WARNING, "Stream ended with error", code=exc.code, chunks=len(self._pieces))
            yield StreamEvent.error_event(exc.message, code=exc.code, incomplete=bool(self._pieces))
            return
        except Exception:
            if self._cancel.is_set():
                return
            logger.exception("Unexpected stream failure", extra={"extra": self._log_ctx})
            yield StreamEvent.error_event("Stream error", code="STREAM_ERROR", incomplete=bool(self._pieces))
            return

        if self._cancel.is_set():
            self._log(logging.INFO, "Stream aborted by client", chunks=len(self._pieces))
            return

        if not self._pieces:
            # 与阻塞接口一致：空回复以致歉文本补齐，再持久化
            self._log(logging.WARNING, "Stream produced no content")
            self._pieces.append(EMPTY_RESPONSE_TEXT)
            yield StreamEvent.content_event(EMPTY_RESPONSE_TEXT)

        assistant = MessageRecord(role="assistant", content=self.text)
        try:
            self._store.append_messages(self._session_id, self._pending + [assistant], self._title)
        except BusinessError as exc:
            self._log(logging.ERROR, "Failed to persist streamed response", code=exc.code, error=exc.message)
            yield StreamEvent.error_event(
                "The response could not be saved.",
                code=exc.code,
                incomplete=False,
            )
            return
        self._log(logging.INFO, "Stored assistant message", message_id=assistant.id, chars=len(assistant.content))
        yield StreamEvent.done_event(self._session_id)

    def _log(self, level: int, message: str, **fields: Any) -> None:
        payload = dict(self._log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
