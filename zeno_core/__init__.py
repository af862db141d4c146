"""ZENO 聊天核心顶层包。

提供多 Provider 对话能力：上下文组装、主备切换的补全引擎、
SSE 流式中继、图像请求路由，以及会话与上传文件的持久化。
"""

from zeno_core.api.service import ChatService, build_chat_service
from zeno_core.chat.engine import CompletionEngine, create_engine

__all__ = ["ChatService", "CompletionEngine", "build_chat_service", "create_engine"]
