"""
速率限制检测器 - 解析 429 响应头，提取 retry-after 与剩余配额

只做解析，不产生副作用，也不参与重试等待的计算：
调用层对 Quota/Auth 的处理固定为轮换凭据，这里的信息仅用于日志与错误详情。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Mapping


class RateLimitType(str, Enum):
    RPM = "rpm"
    CONCURRENT = "concurrent"
    QUOTA = "quota"  # 额度/字符数耗尽，等待无用
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class RateLimitInfo:
    limit_type: RateLimitType
    retry_after: int | None = None  # 秒
    limit_value: int | None = None
    remaining: int | None = None


class RateLimitDetector:
    """
    速率限制检测器

    支持的响应头：
    - retry-after: 秒数或 HTTP 日期
    - x-ratelimit-limit / x-ratelimit-remaining（通用）
    - x-ratelimit-limit-requests / x-ratelimit-remaining-requests
    """

    @staticmethod
    def detect_from_headers(
        headers: Mapping[str, str],
        body_text: str = "",
    ) -> RateLimitInfo:
        headers_lower = {k.lower(): v for k, v in headers.items()}
        retry_after = RateLimitDetector._parse_retry_after(headers_lower)

        limit_value = RateLimitDetector._parse_int(
            headers_lower.get("x-ratelimit-limit")
            or headers_lower.get("x-ratelimit-limit-requests")
        )
        remaining = RateLimitDetector._parse_int(
            headers_lower.get("x-ratelimit-remaining")
            or headers_lower.get("x-ratelimit-remaining-requests")
        )

        lowered_body = body_text.lower()
        # 1. 额度耗尽（按账号计费的上游在 body 中说明）
        if "quota" in lowered_body or "resource_exhausted" in lowered_body:
            return RateLimitInfo(
                limit_type=RateLimitType.QUOTA,
                retry_after=retry_after,
                limit_value=limit_value,
                remaining=remaining,
            )

        # 2. 并发限制
        if "concurrent" in lowered_body:
            return RateLimitInfo(limit_type=RateLimitType.CONCURRENT, retry_after=retry_after)

        # 3. 明确的 RPM 限制：剩余为 0，或至少给出了等待时间/限制值
        if (remaining is not None and remaining == 0) or (
            retry_after is not None or limit_value is not None
        ):
            return RateLimitInfo(
                limit_type=RateLimitType.RPM,
                retry_after=retry_after,
                limit_value=limit_value,
                remaining=remaining,
            )

        # 4. 完全没有信息
        return RateLimitInfo(limit_type=RateLimitType.UNKNOWN, retry_after=retry_after)

    @staticmethod
    def _parse_retry_after(headers: Mapping[str, str]) -> int | None:
        """解析 Retry-After 头"""
        retry_after_str = headers.get("retry-after")
        if not retry_after_str:
            return None

        try:
            # 秒数
            return max(int(retry_after_str), 0)
        except ValueError:
            pass

        # HTTP 日期格式
        try:
            retry_date = parsedate_to_datetime(retry_after_str)
        except (TypeError, ValueError):
            return None
        if retry_date.tzinfo is None:
            retry_date = retry_date.replace(tzinfo=timezone.utc)
        delta = retry_date - datetime.now(timezone.utc)
        return max(int(delta.total_seconds()), 0)

    @staticmethod
    def _parse_int(value: str | None) -> int | None:
        """安全解析整数"""
        if not value:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None


def detect_rate_limit_type(headers: Mapping[str, str], body_text: str = "") -> RateLimitInfo:
    """检测速率限制类型（便捷函数）"""
    return RateLimitDetector.detect_from_headers(headers, body_text)
