"""Gemini Provider 适配器（备用 Provider）。

Gemini 的请求/响应结构与 OpenAI 风格不同：
- URL: {base_url}/models/{model}:generateContent
  流式为 {base_url}/models/{model}:streamGenerateContent?alt=sse
- 认证: x-goog-api-key: <api_key>
- system 消息放到 systemInstruction，其余消息放到 contents，
  角色 assistant 对应 Gemini 的 "model"。
- 文本在 candidates[0].content.parts[].text 中。
"""

import json
from typing import Any, Dict, Iterable, List

import httpx

from zeno_core.config.settings import settings
from zeno_core.domain.exceptions import (
    ApiError,
    MalformedResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from zeno_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatStreamChunk,
    ChatStreamChoice,
    ChatUsage,
)
from zeno_core.providers.registry import GEMINI_CONFIG, ModelConfig, resolve_model


class GeminiClient:
    """Gemini Provider 客户端实现。"""

    name = "gemini"

    def __init__(self, cfg=settings):
        self._settings = cfg

    # ---- 非流式 ----

    def chat(self, req: ChatRequest) -> ChatResult:
        api_key = self._api_key()
        model_cfg = resolve_model(GEMINI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(
                    self._url(model_cfg, "generateContent"),
                    json=payload,
                    headers=self._headers(api_key),
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Gemini request failed: {type(e).__name__}", detail=str(e))
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="Gemini returned invalid JSON", body=resp.text[:2000])
        return self._parse_response(data, req)

    # ---- 流式 ----

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        api_key = self._api_key()
        model_cfg = resolve_model(GEMINI_CONFIG, req.model)
        payload = self._build_payload(req, model_cfg)
        received = 0
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    self._url(model_cfg, "streamGenerateContent"),
                    params={"alt": "sse"},
                    json=payload,
                    headers=self._headers(api_key),
                ) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self._raise_for_status(resp.status_code, resp.text)
                    for line in resp.iter_lines():
                        if not line or not line.startswith("data:"):
                            continue
                        data_str = line[5:].strip()
                        if not data_str:
                            continue
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if payload_chunk.get("error"):
                            raise ApiError(
                                code="API_ERROR",
                                message="Gemini stream reported an error",
                                body=json.dumps(payload_chunk["error"], ensure_ascii=False)[:2000],
                            )
                        received += 1
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=f"Gemini stream failed: {type(e).__name__}", detail=str(e))
        if received == 0:
            raise MalformedResponseError(code="MALFORMED_RESPONSE", message="Gemini stream returned no data")

    # ---- 辅助方法 ----

    def _api_key(self) -> str:
        api_key = getattr(self._settings, "gemini_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="GEMINI_API_KEY not set")
        return api_key

    def _url(self, model_cfg: ModelConfig, method: str) -> str:
        base = getattr(self._settings, "gemini_base_url", None) or GEMINI_CONFIG.base_url
        return f"{base.rstrip('/')}/models/{model_cfg.provider_model}:{method}"

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {"x-goog-api-key": api_key, "Content-Type": "application/json"}

    @staticmethod
    def _raise_for_status(status_code: int, body: str) -> None:
        if status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Gemini rate limit", http_status=429, body=body[:2000])
        if status_code >= 400:
            raise ApiError(
                code="API_ERROR",
                message=f"Gemini returned HTTP {status_code}",
                upstream_status=status_code,
                body=body[:2000],
            )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        system_parts = [{"text": m.content} for m in req.messages if m.role == "system" and m.content]
        contents = [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in req.messages
            if m.role != "system"
        ]
        if not contents:
            raise ValidationError(code="NO_MESSAGES", message="No messages to send")
        payload: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
                "maxOutputTokens": req.max_tokens or model_cfg.max_tokens,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        return payload

    def _parse_response(self, data: Any, req: ChatRequest) -> ChatResult:
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not isinstance(candidates, list) or not candidates:
            block_reason = ((data or {}).get("promptFeedback") or {}).get("blockReason") if isinstance(data, dict) else None
            message = "Gemini response has no candidates"
            if block_reason:
                message = f"Gemini blocked the prompt ({block_reason})"
            raise MalformedResponseError(
                code="MALFORMED_RESPONSE",
                message=message,
                body=json.dumps(data, ensure_ascii=False)[:2000],
            )
        choices: List[ChatChoice] = []
        for i, cand in enumerate(candidates):
            choices.append(
                ChatChoice(
                    index=cand.get("index", i),
                    message=ChatMessage(role="assistant", content=self._candidate_text(cand)),
                    finish_reason=cand.get("finishReason"),
                )
            )
        return ChatResult(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usageMetadata")),
            raw=data,
        )

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        choices: List[ChatStreamChoice] = []
        for i, cand in enumerate(data.get("candidates") or []):
            choices.append(
                ChatStreamChoice(
                    index=cand.get("index", i),
                    delta=ChatMessage(role="assistant", content=self._candidate_text(cand)),
                    finish_reason=cand.get("finishReason"),
                )
            )
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data.get("usageMetadata")),
            raw=data,
        )

    @staticmethod
    def _candidate_text(candidate: Dict[str, Any]) -> str:
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text") or "" for p in parts if isinstance(p, dict))

    @staticmethod
    def _parse_usage(usage_raw: Any):
        if not usage_raw:
            return None
        return ChatUsage(
            prompt_tokens=usage_raw.get("promptTokenCount", 0),
            completion_tokens=usage_raw.get("candidatesTokenCount", 0),
            total_tokens=usage_raw.get("totalTokenCount", 0),
        )
