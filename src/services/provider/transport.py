"""
上游 HTTP 传输

负责:
- 按 RequestDescriptor 构建请求，并把当前凭据注入认证头
- 按出口选择（缓存的）代理客户端
- 把网络层异常收敛为 TransportResult.error，交给分类器判定
- URL 脱敏（用于日志记录）
"""

from __future__ import annotations

import re

import httpx

from src.clients.http_client import HTTPClientPool
from src.core.logger import logger
from src.services.invocation.models import RequestDescriptor, TransportResult
from src.services.rotation.pool import EgressRoute

# URL 中需要脱敏的查询参数（正则模式）
_SENSITIVE_QUERY_PARAMS_PATTERN = re.compile(
    r"([?&])(key|api_key|apikey|token|secret|password|credential)=([^&]*)",
    re.IGNORECASE,
)

_EGRESS_CONNECT_ERRORS = (httpx.ProxyError, httpx.ConnectError, httpx.ConnectTimeout)


def redact_url_for_log(url: str) -> str:
    """
    对 URL 中的敏感查询参数进行脱敏，用于日志记录

    将 ?key=xxx 替换为 ?key=***
    """
    return _SENSITIVE_QUERY_PARAMS_PATTERN.sub(r"\1\2=***", url)


class HttpTransport:
    """基于 httpx 的传输实现"""

    def __init__(self, client_pool: type[HTTPClientPool] = HTTPClientPool) -> None:
        self.client_pool = client_pool

    async def send(
        self,
        request: RequestDescriptor,
        credential: str,
        egress: EgressRoute | None,
    ) -> TransportResult:
        client = await self.client_pool.get_proxy_client(egress)

        kwargs: dict = {"headers": request.build_headers(credential)}
        if request.json_body is not None:
            kwargs["json"] = request.json_body
        elif request.content is not None:
            kwargs["content"] = request.content
        if request.timeout is not None:
            kwargs["timeout"] = request.timeout

        try:
            response = await client.request(request.method, request.url, **kwargs)
        except httpx.RequestError as e:
            # TransportError、DecodingError（压缩流被截断）、TooManyRedirects 都交给分类器
            logger.debug(
                "[{}] 请求 {} 网络错误: {}",
                request.provider,
                redact_url_for_log(request.url),
                type(e).__name__,
            )
            if egress is not None and isinstance(e, _EGRESS_CONNECT_ERRORS):
                # 代理连接失败后丢弃该出口的连接池，轮换回来时重新建连
                await self.client_pool.invalidate(egress)
            return TransportResult(error=e, egress=egress)

        return TransportResult(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            egress=egress,
        )


__all__ = ["HttpTransport", "redact_url_for_log"]
