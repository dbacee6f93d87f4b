"""基于 httpx 的流式 Provider 公共实现。

子类只需要提供：端点 URL、请求头、请求体构造、单条 payload 的归一化函数。
本模块负责：

1. 以 stream=True 打开 HTTP 响应，按 SSE 行逐条解析 JSON payload。
2. 打开流时的重试与退避：
   - 401/403：认证失败，立即抛出 AuthenticationFailed，不重试。
   - 429：等待 2**attempt * rate_limit_base_delay 秒后重试。
   - 其他 HTTP 错误 / 网络错误：等待 2**attempt * retry_base_delay 秒后重试。
   - 最后一次尝试之后不再等待，直接抛出 RetriesExhausted（链接最后一次错误）。
3. 流已经开始输出后的中断不再重试，包装为 TransientProviderError。
"""

import json
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import httpx

from event_agent.config.settings import settings
from event_agent.domain.exceptions import (
    AuthenticationFailed,
    NetworkError,
    ProviderError,
    RateLimited,
    RetriesExhausted,
    TransientProviderError,
)
from event_agent.domain.models import ChatMessage, ProviderCallConfig, StreamChunk
from event_agent.infrastructure.logging.logger import logger
from event_agent.streaming.normalizer import normalize_stream
from event_agent.tools.definitions import ToolDef


class StreamingHttpProvider:
    name = ""
    default_base_url = ""

    def __init__(
        self,
        api_key: str,
        cfg=settings,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._api_key = api_key
        self._settings = cfg
        self._base_url = (base_url or getattr(cfg, f"{self.name}_base_url", None) or self.default_base_url).rstrip("/")
        self._transport = transport
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return max(1, int(getattr(self._settings, "max_provider_attempts", 3)))

    def create_streaming_chat(
        self,
        messages: Sequence[ChatMessage],
        tools: List[ToolDef],
        config: ProviderCallConfig,
    ) -> Iterator[StreamChunk]:
        payload = self._build_payload(messages, tools, config)
        timeout = getattr(self._settings, "http_timeout", 30.0)
        with httpx.Client(timeout=timeout, trust_env=False, transport=self._transport) as client:
            resp = self._open_stream(client, payload)
            try:
                yield from normalize_stream(self._iter_payloads(resp), self._normalize)
            except (httpx.HTTPError, httpx.StreamError) as e:
                raise TransientProviderError(
                    code="STREAM_INTERRUPTED",
                    message=f"{self.name} stream interrupted: {e}",
                    http_status=502,
                    provider=self.name,
                )
            finally:
                resp.close()

    # ---- 重试 ----

    def _open_stream(self, client: httpx.Client, payload: Dict[str, Any]) -> httpx.Response:
        last_error: Optional[ProviderError] = None
        attempts = self.max_attempts
        for attempt in range(attempts):
            request = client.build_request("POST", self._endpoint(), json=payload, headers=self._headers())
            try:
                resp = client.send(request, stream=True)
            except httpx.RequestError as e:
                last_error = NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
                delay = self._settings.retry_base_delay * (2 ** attempt)
            else:
                if resp.status_code < 400:
                    return resp
                body = self._read_error_body(resp)
                if resp.status_code in (401, 403):
                    logger.error(
                        "Provider authentication failed",
                        extra={"extra": {"provider": self.name, "status": resp.status_code}},
                    )
                    raise AuthenticationFailed(provider=self.name, status_code=resp.status_code)
                if resp.status_code == 429:
                    last_error = RateLimited(
                        code="RATE_LIMIT",
                        message=f"{self.name} rate limit",
                        http_status=429,
                        provider=self.name,
                    )
                    delay = self._settings.rate_limit_base_delay * (2 ** attempt)
                else:
                    last_error = TransientProviderError(
                        code="API_ERROR",
                        message=body or f"HTTP {resp.status_code}",
                        http_status=502,
                        provider=self.name,
                        status_code=resp.status_code,
                    )
                    delay = self._settings.retry_base_delay * (2 ** attempt)

            logger.warning(
                "Provider call failed",
                extra={"extra": {
                    "provider": self.name,
                    "attempt": attempt + 1,
                    "max_attempts": attempts,
                    "code": last_error.code,
                    "error": last_error.message,
                }},
            )
            if attempt < attempts - 1:
                self._sleep(delay)

        raise RetriesExhausted(
            message=f"{self.name} API call failed after {attempts} attempts: {last_error.message}",
            last_error=last_error,
            provider=self.name,
        ) from last_error

    @staticmethod
    def _read_error_body(resp: httpx.Response) -> str:
        try:
            resp.read()
            return resp.text[:500]
        except httpx.HTTPError:
            return ""
        finally:
            resp.close()

    # ---- SSE 解析 ----

    def _iter_payloads(self, resp: httpx.Response) -> Iterator[Dict[str, Any]]:
        for line in resp.iter_lines():
            if not line or line.startswith(":") or line.startswith("event:"):
                continue
            data_str = line[5:].strip() if line.startswith("data:") else line.strip()
            if not data_str or data_str == "[DONE]":
                continue
            try:
                payload = json.loads(data_str)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                self._inspect_payload(payload)
                yield payload

    def _inspect_payload(self, payload: Dict[str, Any]) -> None:
        """流内错误检查钩子，默认不处理。"""

    # ---- 子类实现 ----

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _build_payload(
        self,
        messages: Sequence[ChatMessage],
        tools: List[ToolDef],
        config: ProviderCallConfig,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def _normalize(self, payload: Dict[str, Any]) -> List[StreamChunk]:
        raise NotImplementedError
