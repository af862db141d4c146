"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获并转换为 JSON 错误响应。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息（会返回给客户端，不得包含上游原始响应体）。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 provider、body 等），仅用于日志。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class NotFoundError(BusinessError):
    """资源不存在。"""

    def __init__(self, code: str, message: str, http_status: int = 404, **extra):
        super().__init__(code, message, http_status, **extra)


class ProviderError(BusinessError):
    """Provider 调用失败的基类，CompletionEngine 据此触发切换。"""

    def __init__(self, code: str, message: str, http_status: int = 502, **extra):
        super().__init__(code, message, http_status, **extra)


class NetworkError(ProviderError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(ProviderError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(ProviderError):
    """Provider 限流错误。"""


class MalformedResponseError(ProviderError):
    """Provider 返回的数据无法解析为统一结构。"""


class AllProvidersFailedError(BusinessError):
    """主备 Provider 均失败。message 面向用户，只包含两侧的简短原因。"""

    def __init__(self, primary_reason: str, fallback_reason: str, **extra):
        message = (
            "All AI services are currently unavailable. Please try again later. "
            f"(primary: {primary_reason}; fallback: {fallback_reason})"
        )
        super().__init__(
            "ALL_PROVIDERS_FAILED",
            message,
            http_status=500,
            primary_reason=primary_reason,
            fallback_reason=fallback_reason,
            **extra,
        )
        self.primary_reason = primary_reason
        self.fallback_reason = fallback_reason


class StreamInterruptedError(BusinessError):
    """流式输出已发出部分内容后 Provider 失败。"""

    def __init__(self, provider: str, reason: str, emitted_chunks: int, partial_text: Optional[str] = None):
        super().__init__(
            "STREAM_INTERRUPTED",
            f"The response was interrupted before it finished ({reason}).",
            http_status=502,
            provider=provider,
            emitted_chunks=emitted_chunks,
        )
        self.provider = provider
        self.reason = reason
        self.emitted_chunks = emitted_chunks
        self.partial_text = partial_text or ""


class StoreError(BusinessError):
    """持久化层读写失败。"""

    def __init__(self, code: str, message: str, http_status: int = 500, **extra):
        super().__init__(code, message, http_status, **extra)


class UploadError(BusinessError):
    """上传文件校验或解析失败，code 为 UNSUPPORTED_TYPE / FILE_TOO_LARGE / EMPTY_FILE / PARSE_FAILED / NO_FILE。"""


def short_reason(exc: BaseException, limit: int = 160) -> str:
    """把异常压缩为一行简短原因，避免把上游原始错误细节暴露给客户端。"""

    if isinstance(exc, BusinessError):
        text = f"{exc.code}: {exc.message}"
    else:
        text = f"unexpected {type(exc).__name__}"
    text = " ".join(text.split())
    if len(text) > limit:
        text = text[: limit - 3] + "..."
    return text
