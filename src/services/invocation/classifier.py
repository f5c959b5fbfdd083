"""
失败分类器（纯逻辑，无副作用）

把一次传输尝试的结果归入以下类别之一：
- SUCCESS: 2xx
- TRANSIENT: 没拿到响应（超时、连接重置、DNS 失败、断流），原凭据原出口重试
- QUOTA_OR_AUTH: 拿到响应，但当前凭据不可用（限流/额度/认证失败），换凭据
- EGRESS_FAILURE: 网络错误且与当前出口相关（代理连接失败），换出口
- FATAL: 其他非预期状态码或重定向循环，终止本次调用并原样返回错误

上游的错误体格式并不稳定，因此按子串匹配而非精确错误码。
误判为 TRANSIENT / QUOTA_OR_AUTH 只会多一次轮换，误判为 FATAL 会错误地终止可恢复的请求，
所以拿不准的情况一律归入可重试类别。

新增上游或新的错误信号时，通过 register_provider_signals 注册信号表，
不需要改动 Invoker 的控制流。
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from src.core.error_utils import decode_error_body, extract_error_message
from src.services.invocation.models import AttemptOutcome, FailureClass, TransportResult
from src.services.rate_limit.detector import detect_rate_limit_type


@dataclass(frozen=True)
class ProviderSignals:
    """单个上游服务的失败信号表（子串均为小写）"""

    quota_auth_statuses: frozenset[int] = frozenset({401, 429})
    quota_auth_markers: frozenset[str] = frozenset({"quota", "limit exceeded", "rate limit"})
    transient_statuses: frozenset[int] = frozenset({502, 503, 504})
    transient_markers: frozenset[str] = frozenset({"overloaded", "try again later"})
    egress_markers: frozenset[str] = frozenset({"proxyconnect", "proxy", "socks", "tunnel"})


DEFAULT_SIGNALS = ProviderSignals()

_PROVIDER_SIGNALS: dict[str, ProviderSignals] = {
    "gemini": ProviderSignals(
        # 403 PERMISSION_DENIED 多为 key 被限制或所属项目被停用
        quota_auth_statuses=frozenset({401, 403, 429}),
        quota_auth_markers=frozenset(
            {
                "quota",
                "limit exceeded",
                "rate limit",
                "resource_exhausted",
                "api key not valid",
                "api_key_invalid",
                "api key expired",
            }
        ),
        transient_markers=frozenset({"overloaded", "unavailable", "try again later"}),
    ),
    "elevenlabs": ProviderSignals(
        quota_auth_statuses=frozenset({401, 429}),
        quota_auth_markers=frozenset(
            {
                "quota",
                "quota_exceeded",
                "limit exceeded",
                "invalid_api_key",
                "too_many_concurrent_requests",
                "detected_unusual_activity",
            }
        ),
        transient_markers=frozenset({"system_busy", "overloaded", "try again later"}),
    ),
}


def register_provider_signals(provider: str, signals: ProviderSignals) -> None:
    """注册（或覆盖）某个上游的信号表"""
    _PROVIDER_SIGNALS[provider.lower()] = signals


def get_provider_signals(provider: str) -> ProviderSignals:
    """未注册的上游使用默认信号表"""
    return _PROVIDER_SIGNALS.get(provider.lower(), DEFAULT_SIGNALS)


def _contains_any(text: str, markers: frozenset[str]) -> str | None:
    for marker in markers:
        if marker in text:
            return marker
    return None


class FailureClassifier:
    """失败分类器"""

    @staticmethod
    def classify(provider: str, result: TransportResult) -> AttemptOutcome:
        signals = get_provider_signals(provider)
        if result.error is not None or result.status_code is None:
            return FailureClassifier._classify_transport_error(signals, result)
        return FailureClassifier._classify_response(signals, result, result.status_code)

    @staticmethod
    def _classify_transport_error(
        signals: ProviderSignals, result: TransportResult
    ) -> AttemptOutcome:
        error = result.error
        detail = extract_error_message(error)

        # 重定向循环与凭据、出口都无关，换哪个都一样
        if isinstance(error, httpx.TooManyRedirects):
            return AttemptOutcome(kind=FailureClass.FATAL, detail=detail)

        # 未配置出口时，所有网络错误都按 TRANSIENT 处理
        if result.via_egress and FailureClassifier._is_egress_error(signals, error):
            return AttemptOutcome(kind=FailureClass.EGRESS_FAILURE, detail=detail)

        return AttemptOutcome(kind=FailureClass.TRANSIENT, detail=detail)

    @staticmethod
    def _is_egress_error(signals: ProviderSignals, error: BaseException | None) -> bool:
        if error is None:
            return False
        if isinstance(error, httpx.ProxyError):
            return True
        # 走代理时，TCP 连接的对端就是代理本身
        if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
            return True
        text = (str(error) or repr(error)).lower()
        return _contains_any(text, signals.egress_markers) is not None

    @staticmethod
    def _classify_response(
        signals: ProviderSignals, result: TransportResult, status: int
    ) -> AttemptOutcome:
        if 200 <= status < 300:
            return AttemptOutcome(kind=FailureClass.SUCCESS, status_code=status)

        body_text = decode_error_body(result.body)
        lowered = body_text.lower()
        detail = f"HTTP {status}: {body_text}" if body_text else f"HTTP {status}"

        if status in signals.quota_auth_statuses:
            return FailureClassifier._quota_or_auth(result, body_text, detail)

        if status in signals.transient_statuses:
            return AttemptOutcome(kind=FailureClass.TRANSIENT, detail=detail, status_code=status)

        if _contains_any(lowered, signals.quota_auth_markers):
            return FailureClassifier._quota_or_auth(result, body_text, detail)

        if _contains_any(lowered, signals.transient_markers):
            return AttemptOutcome(kind=FailureClass.TRANSIENT, detail=detail, status_code=status)

        return AttemptOutcome(kind=FailureClass.FATAL, detail=detail, status_code=status)

    @staticmethod
    def _quota_or_auth(result: TransportResult, body_text: str, detail: str) -> AttemptOutcome:
        rate_limit_info = detect_rate_limit_type(result.headers, body_text)
        return AttemptOutcome(
            kind=FailureClass.QUOTA_OR_AUTH,
            detail=f"{detail} (limit_type={rate_limit_info.limit_type})",
            status_code=result.status_code,
            retry_after=rate_limit_info.retry_after,
        )


def classify_attempt(provider: str, result: TransportResult) -> AttemptOutcome:
    """分类一次尝试（便捷函数）"""
    return FailureClassifier.classify(provider, result)


__all__ = [
    "ProviderSignals",
    "DEFAULT_SIGNALS",
    "FailureClassifier",
    "classify_attempt",
    "register_provider_signals",
    "get_provider_signals",
]
