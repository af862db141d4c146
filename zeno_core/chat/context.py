"""上下文组装。

从会话历史中截取最近 N 条消息，并在有上传文档时把文档内容
拼成前缀，注入到窗口内第一条用户消息之前。
"""

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Union

from zeno_core.domain.conversation import DocumentRecord, MessageRecord
from zeno_core.domain.models import ChatMessage


DOCUMENT_CONTEXT_HEADER = (
    "The user has uploaded the following document(s). Use this content to answer "
    "their questions accurately. If they ask about something not in the documents, "
    "let them know."
)


@dataclass(frozen=True)
class ContextDocument:
    name: str
    mime_type: str
    text: str

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "ContextDocument":
        return cls(name=record.original_name, mime_type=record.mime_type, text=record.extracted_text)


def truncate_for_context(text: str, max_chars: int = 8000) -> str:
    """超长文本只保留开头和结尾各一半，中间替换为截断标记。"""

    if len(text) <= max_chars:
        return text
    half = max_chars // 2
    omitted = len(text) - 2 * half
    return (
        f"{text[:half]}\n\n"
        f"[... content truncated for length ({len(text)} chars total, {omitted} omitted) ...]\n\n"
        f"{text[len(text) - half:]}"
    )


class ContextAssembler:
    """生成提交给 CompletionEngine 的有界消息列表，不修改原始会话。"""

    def __init__(self, max_messages: int = 20, max_doc_chars: int = 8000):
        self.max_messages = max_messages
        self.max_doc_chars = max_doc_chars

    def build_prefix(self, documents: Iterable[ContextDocument]) -> str:
        blocks = [
            f'--- FILE: "{doc.name}" ({doc.mime_type}) ---\n'
            f"{truncate_for_context(doc.text, self.max_doc_chars)}\n"
            f"--- END FILE ---"
            for doc in documents
        ]
        if not blocks:
            return ""
        return DOCUMENT_CONTEXT_HEADER + "\n\n" + "\n\n".join(blocks) + "\n\n"

    def window(self, messages: Sequence[Union[MessageRecord, ChatMessage]]) -> List[Union[MessageRecord, ChatMessage]]:
        if self.max_messages <= 0:
            return []
        return list(messages[-self.max_messages:])

    def assemble(
        self,
        messages: Sequence[Union[MessageRecord, ChatMessage]],
        documents: Iterable[ContextDocument] = (),
    ) -> List[ChatMessage]:
        """截取窗口并注入文档上下文。

        文档前缀只跟随用户意图：窗口第一条若是 assistant 消息则不注入。
        """

        retained = self.window(messages)
        result = [ChatMessage(role=m.role, content=m.content) for m in retained]
        if not result:
            return result
        prefix = self.build_prefix(documents)
        if prefix and result[0].role == "user":
            result[0] = ChatMessage(role="user", content=prefix + result[0].content)
        return result
