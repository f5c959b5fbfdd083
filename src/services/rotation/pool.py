"""
轮换池 - 凭据池与出口（代理）池

两种池形状相同：一个只读的有序条目序列 + 一个进程级游标。
游标被同一上游服务的所有并发调用共享：某个凭据被上游拒绝后，
所有调用方都会立即看到新的当前凭据（轮换是全局信号，不做按调用快照）。

current() 与 advance() 在同一把锁下串行执行，临界区内没有 await，
因此既可被 asyncio 任务调用，也可被普通线程调用。
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar
from urllib.parse import urlparse

from src.core.error_utils import mask_secret
from src.core.exceptions import ConfigurationError
from src.core.logger import logger, register_secrets

T = TypeVar("T")

# 允许的出口代理协议
_SUPPORTED_PROXY_SCHEMES = frozenset({"http", "https", "socks5", "socks5h"})


class RotationPool(Generic[T]):
    """带全局游标的有序轮换池"""

    kind = "entry"

    def __init__(self, name: str, entries: Sequence[T]):
        if not entries:
            raise ConfigurationError(f"{name}: 轮换池不能为空", setting=name)
        self.name = name
        self._entries: tuple[T, ...] = tuple(entries)
        self._index = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, size={len(self._entries)})"

    @property
    def entries(self) -> tuple[T, ...]:
        return self._entries

    @property
    def position(self) -> int:
        """当前游标（0-based）"""
        with self._lock:
            return self._index

    def current(self) -> T:
        """返回游标处的条目，池非空，永不失败"""
        with self._lock:
            return self._entries[self._index]

    def advance(self) -> bool:
        """
        游标原子地前进一位（对长度取模）

        Returns:
            True 表示越过最后一个条目回到了第一个（整个池已被轮过一遍）
        """
        with self._lock:
            old_index = self._index
            self._index = (old_index + 1) % len(self._entries)
            wrapped = self._index == 0
            new_index = self._index

        if wrapped:
            logger.warning(
                "[{}] 所有{}都已尝试过一遍，回到第 1 个 (共 {} 个)",
                self.name,
                self.kind,
                len(self._entries),
            )
        else:
            logger.info(
                "[{}] {} #{} 失败或已耗尽，切换到 #{}",
                self.name,
                self.kind,
                old_index + 1,
                new_index + 1,
            )
        return wrapped

    def describe(self, entry: T) -> str:
        """用于日志的条目描述（子类负责脱敏）"""
        return str(entry)


class CredentialPool(RotationPool[str]):
    """
    凭据池

    构建规则：条目为空，或唯一的条目是空字符串时视为配置错误。
    重复凭据不做去重（只是浪费一个槽位）。
    """

    kind = "凭据"

    def __init__(self, name: str, credentials: Sequence[str]):
        if not credentials or (len(credentials) == 1 and credentials[0] == ""):
            raise ConfigurationError(f"{name}: 未配置任何凭据", setting=name)
        super().__init__(name, credentials)
        register_secrets(credentials)

    def describe(self, entry: str) -> str:
        return mask_secret(entry)


@dataclass(frozen=True)
class EgressRoute:
    """一条出口路由（代理）"""

    url: str
    scheme: str
    host: str
    port: int | None = None

    @property
    def display(self) -> str:
        """不含认证信息的展示形式"""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port:
            return f"{self.scheme}://{host}:{self.port}"
        return f"{self.scheme}://{host}"

    def __str__(self) -> str:
        return self.display


def parse_egress_route(raw: str) -> EgressRoute:
    """
    解析代理 URL

    Raises:
        ValueError: 协议不受支持、缺少主机名或端口非法
    """
    value = raw.strip()
    parsed = urlparse(value)
    scheme = (parsed.scheme or "").lower()
    if scheme not in _SUPPORTED_PROXY_SCHEMES:
        raise ValueError(f"不支持的代理协议: {scheme or '(空)'}")
    if not parsed.hostname:
        raise ValueError("代理 URL 缺少主机名")
    # 端口非法时 urlparse 在访问 .port 时才抛出 ValueError
    port = parsed.port
    return EgressRoute(url=value, scheme=scheme, host=parsed.hostname, port=port)


class EgressPool(RotationPool[EgressRoute]):
    """
    出口池

    与凭据池不同：无法解析的条目会被跳过并记录警告，
    只有全部条目都无效时才构建失败。
    """

    kind = "代理"

    def __init__(self, name: str, routes: Sequence[EgressRoute]):
        if not routes:
            raise ConfigurationError(f"{name}: 没有可用的代理", setting=name)
        super().__init__(name, routes)
        # 只有带认证信息的代理 URL 需要脱敏
        register_secrets(route.url for route in routes if "@" in route.url)

    @classmethod
    def from_urls(
        cls,
        name: str,
        urls: Iterable[str],
        parser: Callable[[str], EgressRoute] = parse_egress_route,
    ) -> "EgressPool":
        raw_urls = list(urls)
        if not raw_urls or (len(raw_urls) == 1 and raw_urls[0] == ""):
            raise ConfigurationError(f"{name}: 未配置任何代理", setting=name)

        routes: list[EgressRoute] = []
        for raw in raw_urls:
            try:
                routes.append(parser(raw))
            except ValueError as e:
                logger.warning("[{}] 无法解析代理 URL，已跳过: {}", name, e)
                continue

        if not routes:
            raise ConfigurationError(f"{name}: 没有任何代理 URL 可以被解析", setting=name)

        logger.info("[{}] 已加载 {}/{} 个代理", name, len(routes), len(raw_urls))
        return cls(name, routes)

    def describe(self, entry: EgressRoute) -> str:
        return entry.display


__all__ = [
    "RotationPool",
    "CredentialPool",
    "EgressPool",
    "EgressRoute",
    "parse_egress_route",
]
