"""
异常定义

- ConfigurationError: 启动期配置错误（空凭据池、无有效代理等），快速失败
- InvocationError: 上游调用的终态错误，原样传递给调用方
    - InvocationExhaustedError: 所有凭据/出口组合都已尝试，仍未成功
    - FatalInvocationError: 上游以请求本身为由拒绝，不再尝试其他凭据
    - InvocationCancelledError: 调用方主动取消
- ResponseParseError: 响应体无法解析（由 Invoker 转换为 FatalInvocationError）
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """配置错误，应在进程启动时暴露"""

    def __init__(self, message: str, *, setting: str | None = None):
        super().__init__(message)
        self.message = message
        self.setting = setting


class InvocationError(Exception):
    """上游调用终态错误基类"""

    def __init__(self, message: str, *, provider: str, attempts: int = 0):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.attempts = attempts


class InvocationExhaustedError(InvocationError):
    """凭据（及出口）已全部尝试，调用仍未成功"""

    def __init__(self, provider: str, attempts: int, reason: str | None = None):
        message = f"{provider}: 所有凭据/出口均已尝试仍未成功"
        if reason:
            message = f"{message}（{reason}）"
        super().__init__(message, provider=provider, attempts=attempts)
        self.reason = reason


class FatalInvocationError(InvocationError):
    """上游拒绝了请求本身，不可通过换凭据恢复"""

    def __init__(
        self,
        provider: str,
        detail: str,
        *,
        status_code: int | None = None,
        attempts: int = 0,
    ):
        super().__init__(detail, provider=provider, attempts=attempts)
        self.detail = detail
        self.status_code = status_code
        # 原始上游响应，供 extract_error_message 优先使用
        self.upstream_response = detail


class InvocationCancelledError(InvocationError):
    """调用方取消了本次调用"""

    def __init__(self, provider: str, attempts: int = 0):
        super().__init__(f"{provider}: 调用已取消", provider=provider, attempts=attempts)


class ResponseParseError(ValueError):
    """上游返回成功状态，但响应体不符合预期格式"""


__all__ = [
    "ConfigurationError",
    "InvocationError",
    "InvocationExhaustedError",
    "FatalInvocationError",
    "InvocationCancelledError",
    "ResponseParseError",
]
