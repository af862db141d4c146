"""OpenAI Provider 适配器（主 Provider）。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI chat/completions 的 HTTP 请求格式。
3. 调用 HTTP 接口并把网络/API 异常转换为 ProviderError。
4. 将响应 JSON（含 SSE 增量）解析为统一的 ChatResult / ChatStreamChunk。

兼容任何 OpenAI 风格的 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>
"""

import httpx
import json
from typing import Any, Dict, Iterable

from zeno_core.config.settings import settings
from zeno_core.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
    ChatStreamChunk,
    ChatStreamChoice,
)
from zeno_core.domain.exceptions import (
    ApiError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from zeno_core.providers.registry import OPENAI_CONFIG, ModelConfig, resolve_model

# 非流式调用附带的轻度重复惩罚
PRESENCE_PENALTY = 0.1
FREQUENCY_PENALTY = 0.1


class OpenAIClient:
    """OpenAI 提供方客户端实现。"""

    name = "openai"

    def __init__(self, cfg=settings):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 读取模型配置（logical model -> provider model）。
        2. 构造 HTTP 请求 payload。
        3. 发送请求并捕获网络错误/限流/服务端错误。
        4. 使用统一的解析函数构造 ChatResult。
        """

        api_key = self._api_key()
        model_cfg = resolve_model(OPENAI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg, stream=False)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._url(), json=payload, headers=self._headers(api_key))
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=f"OpenAI request failed: {type(e).__name__}", detail=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="OpenAI returned invalid JSON", body=resp.text[:2000])
        return self._parse_response(data, req)

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。"""

        api_key = self._api_key()
        model_cfg = resolve_model(OPENAI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg, stream=True)
        received = 0
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream("POST", self._url(), json=payload, headers=self._headers(api_key)) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    for line in resp.iter_lines():
                        data_str = self._sse_data(line)
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            break
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if payload_chunk.get("error"):
                            raise ApiError(
                                code="API_ERROR",
                                message="OpenAI stream reported an error",
                                body=json.dumps(payload_chunk["error"], ensure_ascii=False)[:2000],
                            )
                        received += 1
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"OpenAI stream failed: {type(e).__name__}", detail=str(e))
        if received == 0:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="OpenAI stream returned no data")

    # ---- 辅助方法 ----

    def _api_key(self) -> str:
        api_key = getattr(self._settings, "openai_api_key", None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        return api_key

    def _url(self) -> str:
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return f"{base.rstrip('/')}/chat/completions"

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        if status_code == 429:
            # 限流错误同样触发 failover
            raise RateLimitError(code="RATE_LIMIT", message="OpenAI rate limit", http_status=429, body=body[:2000])
        if status_code >= 400:
            # 原始响应体只进日志，不进入 message
            raise ApiError(
                code="API_ERROR",
                message=f"OpenAI returned HTTP {status_code}",
                upstream_status=status_code,
                body=body[:2000],
            )

    @staticmethod
    def _sse_data(line: str) -> str:
        if not line:
            return ""
        if line.startswith("data:"):
            return line[5:].strip()
        return line.strip()

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig, stream: bool) -> dict:
        """将 ChatRequest 转成 OpenAI 所需的请求 JSON，系统提示词保持在首位。"""

        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
        }
        if stream:
            payload["stream"] = True
        else:
            payload["presence_penalty"] = PRESENCE_PENALTY
            payload["frequency_penalty"] = FREQUENCY_PENALTY
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        """将 OpenAI 的原始响应 JSON 解析为统一的 ChatResult。"""

        raw_choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(raw_choices, list) or not raw_choices:
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message="OpenAI response has no choices",
                body=json.dumps(data, ensure_ascii=False)[:2000],
            )
        choices: list[ChatChoice] = []
        for i, ch in enumerate(raw_choices):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=self._build_chat_message(msg),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        """解析流式响应中的单条增量。"""

        choices: list[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            delta_payload = ch.get("delta") or {}
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=self._build_chat_message(delta_payload),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usage")),
            raw=data,
        )

    @staticmethod
    def _parse_usage(usage_raw: Any):
        if not usage_raw:
            return None
        return ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )

    @staticmethod
    def _build_chat_message(payload: Dict[str, Any]) -> ChatMessage:
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content") or "",
        )

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        return {"role": message.role, "content": message.content}
