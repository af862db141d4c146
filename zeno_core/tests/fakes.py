"""测试用的假 Provider 与配置。"""

from zeno_core.domain.exceptions import ApiError, NetworkError
from zeno_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatResult,
    ChatStreamChoice,
    ChatStreamChunk,
)


class FakeProvider:
    """按预设脚本返回结果的 Provider。

    - reply: chat() 的返回文本。
    - deltas: chat_stream() 依次产出的增量。
    - fail_chat: chat() 时抛出的异常。
    - fail_after: 产出这么多个增量后抛出 stream_error；0 表示首个增量前即失败。
    """

    def __init__(self, name, reply="ok", deltas=("ok",), fail_chat=None, fail_after=None, stream_error=None):
        self.name = name
        self.reply = reply
        self.deltas = list(deltas)
        self.fail_chat = fail_chat
        self.fail_after = fail_after
        self.stream_error = stream_error or NetworkError(code="NETWORK_ERROR", message=f"{name} connection reset")
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.fail_chat is not None:
            raise self.fail_chat
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content=self.reply))],
        )

    def chat_stream(self, req):
        self.requests.append(req)
        for i, d in enumerate(self.deltas):
            if self.fail_after is not None and i == self.fail_after:
                raise self.stream_error
            yield ChatStreamChunk(
                provider=self.name,
                model=req.model,
                choices=[ChatStreamChoice(index=0, delta=ChatMessage(role="assistant", content=d))],
            )
        if self.fail_after is not None and self.fail_after >= len(self.deltas):
            raise self.stream_error


def api_error(name):
    return ApiError(
        code="API_ERROR",
        message=f"{name} returned HTTP 500",
        upstream_status=500,
        body='{"error": "internal stack trace"}',
    )


class SettingsStub:
    max_context_messages = 20
    file_context_max_chars = 8000
    max_message_chars = 10000
    max_upload_bytes = 10 * 1024 * 1024
    conversation_list_limit = 50
    image_base_url = "https://image.pollinations.ai/prompt"
    image_validate = False
    image_validate_timeout = 1.0
