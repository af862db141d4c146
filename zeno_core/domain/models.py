"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult / ChatStreamChunk: 从 Provider 解析后的统一响应结果。
- StreamEvent: 发往浏览器的流式事件。

所有 Provider 适配器（如 OpenAIClient、GeminiClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import json
from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List


# LLM 消息角色类型
Role = Literal["system", "user", "assistant"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - meta: 附加元数据，不直接发给 Provider，主要用于日志。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    每次调用 Provider 前新建，从不持久化。第一条消息固定为系统提示词。
    """

    provider: str  # 逻辑 Provider 名，如 "openai"
    model: str  # 逻辑模型名，如 "zeno-chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次非流式调用的最终结果。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的增量结果，choice.delta 代表本次增量内容。"""

    provider: str
    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class StreamEvent:
    """发往浏览器的单个流式事件。

    kind:
        - "content": 文本增量，只携带本次 delta。
        - "done": 成功结束，携带 session_id。
        - "error": 失败结束，incomplete 表示此前已经发出过部分内容。
    """

    kind: Literal["content", "done", "error"]
    content: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None
    incomplete: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def content_event(cls, delta: str) -> "StreamEvent":
        return cls(kind="content", content=delta)

    @classmethod
    def done_event(cls, session_id: str, **extra: Any) -> "StreamEvent":
        return cls(kind="done", session_id=session_id, extra=extra)

    @classmethod
    def error_event(cls, message: str, code: Optional[str] = None, incomplete: bool = False) -> "StreamEvent":
        return cls(kind="error", error=message, code=code, incomplete=incomplete)

    @property
    def terminal(self) -> bool:
        return self.kind != "content"

    def to_dict(self) -> Dict[str, Any]:
        if self.kind == "content":
            return {"content": self.content}
        if self.kind == "done":
            payload: Dict[str, Any] = {"done": True, "sessionId": self.session_id}
            payload.update(self.extra)
            return payload
        payload = {"error": self.error, "incomplete": self.incomplete}
        if self.code:
            payload["code"] = self.code
        return payload

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False)}\n\n"
