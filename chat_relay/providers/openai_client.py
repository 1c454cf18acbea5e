"""OpenAI 兼容补全接口适配器。

本模块负责：

1. 接收统一的 CompletionRequest。
2. 将其转换为 chat/completions 的 HTTP 请求（Bearer 认证）。
3. 调用 HTTP 接口并把网络/API 异常映射为 UpstreamError 家族。
4. 非流式：把响应 JSON 解析为 CompletionResult。
5. 流式：用 SSEFrameDecoder 逐帧解码，产出 ChatStreamChunk。

流式协议中的半截或损坏的 JSON 帧直接丢弃，不当作错误。
"""

import json
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from pydantic import SecretStr

from chat_relay.config.settings import settings
from chat_relay.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from chat_relay.domain.models import ChatStreamChunk, ChatUsage, CompletionRequest, CompletionResult
from chat_relay.providers.registry import OPENAI_CONFIG
from chat_relay.providers.sse import DONE_SENTINEL, SSEFrameDecoder


class OpenAIClient:
    """OpenAI 兼容接口客户端。

    - name: Provider 名称（供日志使用）。
    - complete: 非流式调用，仅用于生成标题。
    - stream_complete: 流式调用，用于主回复。
    """

    name = "openai"

    def __init__(self, cfg=settings):
        # cfg 里包含 base_url、api_key、超时等配置
        self._settings = cfg

    # ---- 非流式 ----

    async def complete(self, req: CompletionRequest) -> CompletionResult:
        """执行一次非流式补全调用（单次尝试，不重试）。"""

        headers = self._headers()
        payload = req.to_payload()
        payload.pop("stream", None)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(self._url(), json=payload, headers=headers)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e), model=req.model)
        self._raise_for_status(resp.status_code, resp.text, req.model)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="BAD_RESPONSE", message=f"Invalid JSON from upstream: {e}", model=req.model)
        return self._parse_response(data, req)

    # ---- 流式 ----

    async def stream_complete(self, req: CompletionRequest) -> AsyncIterator[ChatStreamChunk]:
        """执行一次流式补全调用，逐个产出非空内容增量。

        收到 `[DONE]` 时产出一个 done=True 的增量并结束；
        连接在此之前关闭时迭代直接结束，不产出 done。
        """

        headers = self._headers()
        payload = req.to_payload()
        payload["stream"] = True
        timeout = httpx.Timeout(
            self._settings.http_timeout,
            read=getattr(self._settings, "stream_read_timeout", None) or self._settings.http_timeout,
        )
        decoder = SSEFrameDecoder()
        finish_reason: Optional[str] = None
        try:
            async with httpx.AsyncClient(timeout=timeout, trust_env=False) as client:
                async with client.stream("POST", self._url(), json=payload, headers=headers) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        self._raise_for_status(resp.status_code, body, req.model)
                    async for text in resp.aiter_text():
                        for frame in decoder.feed(text):
                            if frame == DONE_SENTINEL:
                                yield ChatStreamChunk(done=True, finish_reason=finish_reason)
                                return
                            chunk = self._parse_stream_frame(frame)
                            if chunk is None:
                                continue
                            if chunk.finish_reason:
                                finish_reason = chunk.finish_reason
                            if chunk.delta:
                                yield chunk
                    for frame in decoder.flush():
                        if frame == DONE_SENTINEL:
                            yield ChatStreamChunk(done=True, finish_reason=finish_reason)
                            return
                        chunk = self._parse_stream_frame(frame)
                        if chunk is not None and chunk.delta:
                            yield chunk
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), model=req.model)

    # ---- 内部工具 ----

    def _headers(self) -> Dict[str, str]:
        key = getattr(self._settings, "openai_api_key", None)
        if not key:
            # 配置缺失走 ValidationError，在任何网络 I/O 之前失败
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set")
        secret = key.get_secret_value() if isinstance(key, SecretStr) else str(key)
        return {
            "Authorization": f"Bearer {secret}",
            "Content-Type": "application/json",
        }

    def _url(self) -> str:
        base = getattr(self._settings, "openai_base_url", None) or OPENAI_CONFIG.base_url
        return f"{base.rstrip('/')}/chat/completions"

    @staticmethod
    def _raise_for_status(status_code: int, body: str, model: str) -> None:
        if status_code == 429:
            # 限流错误单独区分，调用方不做重试
            raise RateLimitError(code="RATE_LIMIT", message="Upstream rate limit", model=model)
        if status_code >= 400:
            raise ApiError(code="API_ERROR", message=body, http_status=502, upstream_status=status_code, model=model)

    @staticmethod
    def _parse_response(data: Dict[str, Any], req: CompletionRequest) -> CompletionResult:
        """将原始响应 JSON 解析为 CompletionResult（只取第一个候选）。"""

        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ApiError(code="BAD_RESPONSE", message="Upstream response has no choices", model=req.model)
        first = choices[0]
        message = first.get("message") or {}
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return CompletionResult(
            model=req.model,
            content=message.get("content") or "",
            finish_reason=first.get("finish_reason"),
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _parse_stream_frame(frame: str) -> Optional[ChatStreamChunk]:
        """解析单个 data 载荷；半截或结构不符的帧返回 None。"""

        try:
            data = json.loads(frame)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return None
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        return ChatStreamChunk(
            delta=content if isinstance(content, str) else "",
            finish_reason=choices[0].get("finish_reason"),
        )
