"""
出站 HTTP 客户端池

- 直连客户端：未配置出口池时所有上游请求共用一个 AsyncClient
- 出口客户端：每条 EgressRoute 一个 AsyncClient（httpx 的代理绑定在客户端上），
  按最近使用顺序缓存，超过 HTTP_MAX_PROXY_CLIENTS 时关闭最久未用的
- invalidate(): 出口失败后丢弃该出口的客户端，下次轮换回来时重新建连

缓存键是代理 URL 的哈希，认证信息不会出现在键或日志中。
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import OrderedDict
from typing import Any

import httpx

from src.config import config
from src.core.logger import logger
from src.services.rotation.pool import EgressRoute

# 类属性上的客户端在首次使用时才创建，用模块级锁避免并发重复创建
_direct_lock = asyncio.Lock()
_egress_lock = asyncio.Lock()


def _client_options() -> dict[str, Any]:
    return {
        "timeout": httpx.Timeout(
            connect=config.http_connect_timeout,
            read=config.http_read_timeout,
            write=config.http_write_timeout,
            pool=config.http_pool_timeout,
        ),
        "limits": httpx.Limits(
            max_connections=config.http_max_connections,
            max_keepalive_connections=config.http_keepalive_connections,
            keepalive_expiry=config.http_keepalive_expiry,
        ),
        "follow_redirects": True,
    }


def _compute_proxy_cache_key(egress: EgressRoute) -> str:
    return f"proxy:{hashlib.md5(egress.url.encode()).hexdigest()[:16]}"


async def _close_quietly(client: httpx.AsyncClient, label: str) -> None:
    try:
        await client.aclose()
    except (httpx.HTTPError, OSError, RuntimeError) as e:
        logger.warning("关闭客户端 {} 失败: {}", label, e)


class HTTPClientPool:
    """进程级客户端池，全部通过类方法访问"""

    _direct_client: httpx.AsyncClient | None = None
    # cache_key -> (出口, 客户端)，按最近使用排序（末尾最新）
    _egress_clients: OrderedDict[str, tuple[EgressRoute, httpx.AsyncClient]] = OrderedDict()
    _max_egress_clients: int = config.http_max_proxy_clients
    _created = 0
    _evicted = 0
    _invalidated = 0

    @classmethod
    async def get_direct_client(cls) -> httpx.AsyncClient:
        client = cls._direct_client
        if client is not None and not client.is_closed:
            return client

        async with _direct_lock:
            if cls._direct_client is None or cls._direct_client.is_closed:
                cls._direct_client = httpx.AsyncClient(**_client_options())
                logger.info(
                    "直连客户端已创建: max_connections={}, keepalive={}",
                    config.http_max_connections,
                    config.http_keepalive_connections,
                )
            return cls._direct_client

    @classmethod
    async def get_proxy_client(cls, egress: EgressRoute | None = None) -> httpx.AsyncClient:
        """
        返回出口对应的客户端；egress 为 None 时返回直连客户端

        同一出口的并发请求共享一个客户端（及其连接池）。
        """
        if egress is None:
            return await cls.get_direct_client()

        cache_key = _compute_proxy_cache_key(egress)
        async with _egress_lock:
            cached = cls._egress_clients.get(cache_key)
            if cached is not None and not cached[1].is_closed:
                cls._egress_clients.move_to_end(cache_key)
                return cached[1]
            if cached is not None:
                del cls._egress_clients[cache_key]

            while len(cls._egress_clients) >= cls._max_egress_clients:
                _, (old_route, old_client) = cls._egress_clients.popitem(last=False)
                cls._evicted += 1
                await _close_quietly(old_client, old_route.display)
                logger.debug("淘汰出口客户端: {}", old_route.display)

            client = httpx.AsyncClient(proxy=egress.url, **_client_options())
            cls._egress_clients[cache_key] = (egress, client)
            cls._created += 1
            logger.debug(
                "创建出口客户端: {} (缓存 {} 个)", egress.display, len(cls._egress_clients)
            )
            return client

    @classmethod
    async def invalidate(cls, egress: EgressRoute) -> bool:
        """丢弃出口的缓存客户端；返回是否确实有客户端被丢弃"""
        async with _egress_lock:
            cached = cls._egress_clients.pop(_compute_proxy_cache_key(egress), None)
        if cached is None:
            return False
        cls._invalidated += 1
        await _close_quietly(cached[1], egress.display)
        logger.debug("出口客户端已失效: {}", egress.display)
        return True

    @classmethod
    async def close_all(cls) -> None:
        if cls._direct_client is not None:
            await _close_quietly(cls._direct_client, "direct")
            cls._direct_client = None

        async with _egress_lock:
            entries = list(cls._egress_clients.values())
            cls._egress_clients.clear()
        for route, client in entries:
            await _close_quietly(client, route.display)
        logger.info("HTTP 客户端已全部关闭 (出口客户端 {} 个)", len(entries))

    @classmethod
    def get_pool_stats(cls) -> dict[str, Any]:
        return {
            "direct_client_active": cls._direct_client is not None,
            "proxy_clients_count": len(cls._egress_clients),
            "max_proxy_clients": cls._max_egress_clients,
            "proxy_clients_created": cls._created,
            "proxy_clients_evicted": cls._evicted,
            "proxy_clients_invalidated": cls._invalidated,
            "cached_egress": [route.display for route, _ in cls._egress_clients.values()],
        }


async def close_http_clients() -> None:
    await HTTPClientPool.close_all()
