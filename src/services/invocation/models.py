"""
调用层数据结构

- RequestDescriptor: 调用方构建的只读请求描述
- TransportResult: 一次传输尝试的原始结果（响应或异常）
- FailureClass / AttemptOutcome: 分类器对一次尝试的判定
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from src.services.rotation.pool import EgressRoute


@dataclass(frozen=True)
class TransportResult:
    """
    一次传输尝试的结果

    error 不为 None 表示没有拿到响应（超时、连接失败、代理断流等），
    此时 status_code 为 None。
    """

    status_code: int | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    error: BaseException | None = None
    egress: EgressRoute | None = None

    @property
    def has_response(self) -> bool:
        return self.error is None and self.status_code is not None

    @property
    def via_egress(self) -> bool:
        return self.egress is not None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


# 成功响应的解析函数：解析失败时抛出 ResponseParseError
ResponseParser = Callable[[TransportResult], Any]


def _raw_body(result: TransportResult) -> bytes:
    return result.body


@dataclass(frozen=True)
class RequestDescriptor:
    """
    上游请求描述

    凭据通过 auth_header 注入；auth_template 决定头部的值，
    例如 "{credential}"（x-goog-api-key / xi-api-key）或 "Bearer {credential}"。
    """

    provider: str
    method: str
    url: str
    auth_header: str
    auth_template: str = "{credential}"
    json_body: Any = None
    content: bytes | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    parser: ResponseParser = _raw_body
    timeout: float | None = None

    def build_headers(self, credential: str) -> dict[str, str]:
        """合并固定头部与凭据头部"""
        headers = dict(self.headers)
        headers[self.auth_header] = self.auth_template.format(credential=credential)
        return headers


class FailureClass(str, Enum):
    """一次尝试的分类"""

    SUCCESS = "success"
    TRANSIENT = "transient"  # 原凭据、原出口重试
    QUOTA_OR_AUTH = "quota_or_auth"  # 换凭据
    EGRESS_FAILURE = "egress_failure"  # 换出口，保留凭据
    FATAL = "fatal"  # 终止本次调用


@dataclass(frozen=True)
class AttemptOutcome:
    """分类结果，每次尝试新建，立即被 Invoker 消费"""

    kind: FailureClass
    detail: str = ""
    status_code: int | None = None
    retry_after: int | None = None

    @property
    def is_success(self) -> bool:
        return self.kind is FailureClass.SUCCESS


__all__ = [
    "TransportResult",
    "ResponseParser",
    "RequestDescriptor",
    "FailureClass",
    "AttemptOutcome",
]
