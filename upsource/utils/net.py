"""网络工具 — URL 安全校验 + 带退避重试的 HTTP GET

RetryingFetcher 只对两类失败重试:
  - 传输层异常，且异常信息命中瞬时错误关键字（连接重置、超时、网络故障）
  - 响应状态码属于 RETRYABLE_STATUS_CODES
其余失败以及重试耗尽后，原样返回最后一次响应或抛出最后一次异常。
"""

from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable
from urllib.parse import urlparse

from upsource import __version__
from upsource.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = frozenset(("http", "https"))

RETRYABLE_STATUS_CODES = frozenset((408, 425, 429, 500, 502, 503, 504))

_TRANSIENT_ERROR_MARKERS = (
    "socket connection was closed unexpectedly",
    "econnreset",
    "connection reset",
    "timed out",
    "network",
)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 0.15


def validate_url_scheme(url: str, *, context: str = "") -> None:
    """校验 URL 仅使用 http/https，防止 file:// 等非预期协议访问

    Raises:
        ValidationError: URL scheme 不在白名单内
    """
    parsed = urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        label = f" ({context})" if context else ""
        raise ValidationError(
            f"不允许的 URL 协议 '{parsed.scheme}'{label}，"
            f"仅支持 http/https: {url}"
        )


@dataclass
class HttpResponse:
    """HTTP 响应（非 2xx 也以响应形式返回，由调用方判断 ok）"""

    url: str
    status: int
    reason: str = ""
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


Opener = Callable[[str, float], HttpResponse]


def urllib_opener(url: str, timeout: float) -> HttpResponse:
    """默认 opener：urllib GET，HTTPError 转换为响应对象"""
    req = urllib.request.Request(url, headers={"User-Agent": f"upsource/{__version__}"})
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:  # nosec B310
            return HttpResponse(
                url=url, status=resp.status, reason=resp.reason or "",
                body=resp.read(), headers=dict(resp.headers.items()),
            )
    except urllib.error.HTTPError as e:
        headers = dict(e.headers.items()) if e.headers else {}
        e.close()
        return HttpResponse(
            url=url, status=e.code, reason=str(e.reason or ""), headers=headers,
        )


def is_retryable_error(error: BaseException) -> bool:
    """传输层异常是否属于瞬时故障"""
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_ERROR_MARKERS)


class RetryingFetcher:
    """带指数退避的 HTTP GET，调用之间不共享状态"""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        timeout: float = 60.0,
        opener: Opener | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self.timeout = timeout
        self._opener = opener or urllib_opener
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待秒数: base * 2^(attempt-1)"""
        return self.backoff_base * 2 ** (attempt - 1)

    def fetch(self, url: str) -> HttpResponse:
        """GET url；重试耗尽时返回最后一次响应，或抛出最后一次传输异常"""
        validate_url_scheme(url, context="fetch")

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._opener(url, self.timeout)
            except (OSError, http.client.HTTPException) as e:
                if attempt == self.max_attempts or not is_retryable_error(e):
                    raise
                logger.warning(
                    "请求失败，%.2fs 后重试 (%d/%d): %s - %s",
                    self.delay_for(attempt), attempt, self.max_attempts, url, e,
                )
            else:
                if (
                    response.ok
                    or response.status not in RETRYABLE_STATUS_CODES
                    or attempt == self.max_attempts
                ):
                    return response
                logger.warning(
                    "响应 %d，%.2fs 后重试 (%d/%d): %s",
                    response.status, self.delay_for(attempt),
                    attempt, self.max_attempts, url,
                )
            self._sleep(self.delay_for(attempt))

        raise ConnectionError(f"请求失败: {url}")
