"""补全引擎。

把主备两个 Provider 包装成统一接口：
- complete(): 阻塞调用，主 Provider 失败时切换一次备用 Provider。
- stream(): 拉取式增量迭代器，只在尚未输出任何增量时才切换备用 Provider。

引擎只依赖 ProviderClient 协议，具体 Provider 由调用方注入。
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from zeno_core.config.settings import settings
from zeno_core.domain.exceptions import (
    AllProvidersFailedError,
    BusinessError,
    StreamInterruptedError,
    short_reason,
)
from zeno_core.domain.models import ChatMessage, ChatRequest, ChatResult
from zeno_core.infrastructure.logging.logger import logger
from zeno_core.prompts import load_system_prompt
from zeno_core.providers import create_provider
from zeno_core.providers.base import ProviderClient


EMPTY_RESPONSE_TEXT = "I apologize, I couldn't generate a response. Please try again."


class CompletionEngine:
    def __init__(
        self,
        primary: ProviderClient,
        fallback: ProviderClient,
        system_prompt: Optional[str] = None,
        model: str = "zeno-chat",
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ):
        self._primary = primary
        self._fallback = fallback
        self._system_prompt = system_prompt if system_prompt is not None else load_system_prompt()
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    def build_request(
        self,
        provider: ProviderClient,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ChatRequest:
        """系统提示词固定为第一条；主备 Provider 收到的消息列表完全一致。"""

        chat_messages = [ChatMessage(role="system", content=self._system_prompt)]
        chat_messages.extend(ChatMessage(role=m.role, content=m.content) for m in messages)
        return ChatRequest(
            provider=provider.name,
            model=self._model,
            messages=chat_messages,
            temperature=self._temperature if temperature is None else temperature,
            max_tokens=self._max_tokens if max_tokens is None else max_tokens,
        )

    def complete(
        self,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> str:
        """阻塞调用。主 Provider 任何失败都会切换到备用 Provider，且只切换一次。"""

        log_ctx = dict(log_ctx or {})
        try:
            return self._complete_with(self._primary, messages, temperature, max_tokens, log_ctx)
        except Exception as primary_exc:
            self._log_failure("Primary provider failed", self._primary, primary_exc, log_ctx)
            primary_error = primary_exc

        self._log(logging.INFO, "Falling back to secondary provider", log_ctx, provider=self._fallback.name)
        try:
            return self._complete_with(self._fallback, messages, temperature, max_tokens, log_ctx)
        except Exception as fallback_exc:
            self._log_failure("Fallback provider failed", self._fallback, fallback_exc, log_ctx)
            raise self._all_failed(primary_error, fallback_exc, log_ctx) from fallback_exc

    def stream(
        self,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
        log_ctx: Optional[Dict[str, Any]] = None,
    ) -> Iterator[str]:
        """流式调用，逐个产出文本增量。

        - 主 Provider 在输出任何增量之前失败：透明切换到备用 Provider。
        - 已输出增量后失败：不切换，抛出 StreamInterruptedError。
        - 主备都在输出前失败：抛出 AllProvidersFailedError。
        - cancel 被置位后静默结束，不再产出任何内容。
        """

        log_ctx = dict(log_ctx or {})
        primary_error: Optional[BaseException] = None
        for provider in (self._primary, self._fallback):
            if provider is self._fallback:
                self._log(logging.INFO, "Falling back to secondary provider (stream)", log_ctx, provider=provider.name)
            req = self.build_request(provider, messages, temperature, max_tokens)
            self._log(
                logging.INFO,
                "Calling provider (stream)",
                log_ctx,
                provider=provider.name,
                model=self._model,
                message_count=len(req.messages),
            )
            pieces: List[str] = []
            try:
                for delta in self._iter_deltas(provider, req):
                    if cancel is not None and cancel.is_set():
                        self._log(logging.INFO, "Stream cancelled", log_ctx, provider=provider.name, emitted=len(pieces))
                        return
                    pieces.append(delta)
                    yield delta
            except Exception as exc:
                if pieces:
                    self._log_failure("Provider failed mid-stream", provider, exc, log_ctx, emitted=len(pieces))
                    raise StreamInterruptedError(
                        provider=provider.name,
                        reason=short_reason(exc),
                        emitted_chunks=len(pieces),
                        partial_text="".join(pieces),
                    ) from exc
                if primary_error is None:
                    self._log_failure("Primary provider failed (stream)", provider, exc, log_ctx)
                    primary_error = exc
                    continue
                self._log_failure("Fallback provider failed (stream)", provider, exc, log_ctx)
                raise self._all_failed(primary_error, exc, log_ctx) from exc
            self._log(logging.INFO, "Stream completed", log_ctx, provider=provider.name, chunks=len(pieces))
            return

    def stream_with_callbacks(
        self,
        messages: Sequence[ChatMessage],
        on_chunk: Callable[[str], None],
        on_done: Callable[[], None],
        on_error: Callable[[BusinessError], None],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        """回调形式的 stream()：on_done 与 on_error 恰好调用其一。"""

        try:
            for delta in self.stream(messages, temperature, max_tokens, cancel=cancel):
                on_chunk(delta)
        except (AllProvidersFailedError, StreamInterruptedError) as exc:
            on_error(exc)
            return
        if cancel is not None and cancel.is_set():
            return
        on_done()

    def _complete_with(
        self,
        provider: ProviderClient,
        messages: Sequence[ChatMessage],
        temperature: Optional[float],
        max_tokens: Optional[int],
        log_ctx: Dict[str, Any],
    ) -> str:
        req = self.build_request(provider, messages, temperature, max_tokens)
        self._log(
            logging.INFO,
            "Calling provider",
            log_ctx,
            provider=provider.name,
            model=self._model,
            message_count=len(req.messages),
        )
        result: ChatResult = provider.chat(req)
        if result.usage:
            self._log(
                logging.INFO,
                "Token usage",
                log_ctx,
                provider=provider.name,
                prompt_tokens=result.usage.prompt_tokens,
                completion_tokens=result.usage.completion_tokens,
                total_tokens=result.usage.total_tokens,
            )
        text = result.choices[0].message.content if result.choices else ""
        return text or EMPTY_RESPONSE_TEXT

    @staticmethod
    def _iter_deltas(provider: ProviderClient, req: ChatRequest) -> Iterator[str]:
        for chunk in provider.chat_stream(req):
            if not chunk.choices:
                continue
            delta_text = chunk.choices[0].delta.content or ""
            if delta_text:
                yield delta_text

    def _all_failed(
        self,
        primary_exc: BaseException,
        fallback_exc: BaseException,
        log_ctx: Dict[str, Any],
    ) -> AllProvidersFailedError:
        err = AllProvidersFailedError(
            primary_reason=f"{self._primary.name} {short_reason(primary_exc)}",
            fallback_reason=f"{self._fallback.name} {short_reason(fallback_exc)}",
        )
        self._log(logging.ERROR, "All providers failed", log_ctx, error=err.message)
        return err

    def _log_failure(
        self,
        message: str,
        provider: ProviderClient,
        exc: BaseException,
        log_ctx: Dict[str, Any],
        **fields: Any,
    ) -> None:
        detail: Dict[str, Any] = {"provider": provider.name, "error": str(exc), "error_type": type(exc).__name__}
        if isinstance(exc, BusinessError):
            detail["code"] = exc.code
            detail.update(exc.extra)
        detail.update(fields)
        self._log(logging.WARNING, message, log_ctx, **detail)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


def create_engine(cfg=None) -> CompletionEngine:
    """按配置构造主备 Provider 并注入引擎。"""

    cfg = cfg or settings
    return CompletionEngine(
        primary=create_provider(cfg.primary_provider, cfg),
        fallback=create_provider(cfg.fallback_provider, cfg),
        model=cfg.default_model,
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
    )
