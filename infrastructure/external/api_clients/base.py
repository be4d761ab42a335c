"""
JSON API客户端基类（邮件等第三方通知服务）

- 请求体统一为 JSON，认证头不写入日志
- 429/5xx/网络错误视为瞬时错误，可按 `max_retries` 重试
- 默认不重试：通知分发器自己负责退避与重试次数
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from core.logging_config import get_logger

logger = get_logger(__name__)


TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass
class APIResponse:
    """API响应封装"""
    status_code: int
    headers: Dict[str, str]
    data: Any
    elapsed_ms: float
    message_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class APIError(Exception):
    """第三方API调用失败

    Attributes:
        status_code: HTTP 状态码（网络错误时为 None）
        transient: 是否为瞬时错误（限流、服务端错误、网络错误）
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None, transient: bool = False):
        self.message = message
        self.status_code = status_code
        self.transient = transient
        super().__init__(message)

    def __str__(self):
        if self.status_code:
            return f"{self.message} | Status: {self.status_code}"
        return self.message


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, APIError) and exc.transient


def _error_message(status_code: int, data: Any) -> str:
    """提取服务端错误描述（兼容 `{errors: [{message}]}` 与 `{message}` 两种格式）"""
    fallback = f"API request failed with status {status_code}"
    if not isinstance(data, dict):
        return fallback
    errors = data.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0].get("message") or fallback
    return data.get("message") or data.get("error") or fallback


class BaseAPIClient:
    """
    JSON API客户端基类

    子类实现具体接口；HTTP 客户端延迟创建，`close()` 释放。
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        max_retries: int = 0,
        retry_delay: float = 0.5,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API基础URL
            timeout: 单次请求超时时间（秒）
            max_retries: 瞬时错误的最大重试次数
            retry_delay: 重试基础延迟（秒）
            auth_token: Bearer 认证令牌
            transport: 自定义传输层（测试时注入 MockTransport）
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self.default_headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if auth_token:
            self.default_headers["Authorization"] = f"Bearer {auth_token}"
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """关闭HTTP客户端"""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _send_once(self, url: str, body: Optional[Dict[str, Any]]) -> APIResponse:
        started = time.perf_counter()
        try:
            response = await self.client.post(url, json=body, headers=self.default_headers)
        except httpx.TimeoutException as exc:
            raise APIError(f"Request timeout after {self.timeout}s", transient=True) from exc
        except httpx.TransportError as exc:
            raise APIError(f"Network error: {exc}", transient=True) from exc
        elapsed = (time.perf_counter() - started) * 1000

        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = None

        api_response = APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            elapsed_ms=elapsed,
            message_id=response.headers.get("x-message-id") or response.headers.get("x-request-id"),
        )
        logger.debug("api_response", url=url, status_code=response.status_code, elapsed_ms=round(elapsed, 1))

        if api_response.is_error:
            raise APIError(
                _error_message(response.status_code, data),
                status_code=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )
        return api_response

    async def post(self, endpoint: str, json_data: Optional[Union[Dict[str, Any], BaseModel]] = None) -> APIResponse:
        """
        POST JSON 请求

        Raises:
            APIError: 请求失败（瞬时错误在重试用尽后抛出）
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if isinstance(json_data, BaseModel):
            json_data = json_data.model_dump(exclude_unset=True, by_alias=True)
        logger.debug("api_request", method="POST", url=url)

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception(_is_transient),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
        )
        async for attempt in retrying:
            with attempt:
                return await self._send_once(url, json_data)
