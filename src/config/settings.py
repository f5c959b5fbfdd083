"""
应用配置

启动时先用 python-dotenv 加载 .env（不覆盖已存在的环境变量），
再从环境变量读取。凭据列表与代理列表均为逗号分隔。

凭据是否为空不在这里校验：空列表会在构建凭据池时以 ConfigurationError 失败，
这样只使用其中一个服务的进程不会因为另一个服务未配置而无法启动。
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from dotenv import load_dotenv

from src.config.constants import HTTPDefaults, InvokerDefaults, ProviderDefaults
from src.core.exceptions import ConfigurationError


def split_csv(raw: str | None) -> list[str]:
    """
    拆分逗号分隔的列表并去除空白

    空字符串拆分后是 [""]，由凭据池负责拒绝；
    列表中间的空项（如 "a,,b"）被丢弃。
    """
    if raw is None or not raw.strip():
        return [""]
    items = [item.strip() for item in raw.split(",")]
    return [item for item in items if item] or [""]


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{name} 必须是数字，当前值: {value!r}", setting=name) from None


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} 必须是整数，当前值: {value!r}", setting=name) from None


class Config:
    """进程级配置（只读）"""

    def __init__(self, env: Mapping[str, str]):
        # 上游凭据
        self.gemini_api_keys = split_csv(env.get("GEMINI_API_KEYS"))
        self.gemini_model = env.get("GEMINI_MODEL") or ProviderDefaults.GEMINI_MODEL
        self.gemini_base_url = (
            env.get("GEMINI_BASE_URL") or ProviderDefaults.GEMINI_BASE_URL
        ).rstrip("/")

        self.elevenlabs_api_keys = split_csv(env.get("ELEVENLABS_API_KEYS"))
        self.elevenlabs_model_id = (
            env.get("ELEVENLABS_MODEL_ID") or ProviderDefaults.ELEVENLABS_MODEL_ID
        )
        self.elevenlabs_base_url = (
            env.get("ELEVENLABS_BASE_URL") or ProviderDefaults.ELEVENLABS_BASE_URL
        ).rstrip("/")
        self.elevenlabs_voices_file = (
            env.get("ELEVENLABS_VOICES_FILE") or ProviderDefaults.ELEVENLABS_VOICES_FILE
        )

        # 出口代理（可选）：未配置时为空列表，不启用出口轮换
        raw_proxies = env.get("ELEVENLABS_PROXY_URLS", "")
        self.elevenlabs_proxy_urls = [p for p in split_csv(raw_proxies) if p]

        # 调用层
        self.invoker_retry_delay = _get_float(
            env, "INVOKER_RETRY_DELAY_SECONDS", InvokerDefaults.RETRY_DELAY_SECONDS
        )
        self.invoker_max_transient_retries = _get_int(
            env, "INVOKER_MAX_TRANSIENT_RETRIES", InvokerDefaults.MAX_TRANSIENT_RETRIES
        )
        if self.invoker_retry_delay < 0:
            raise ConfigurationError(
                "INVOKER_RETRY_DELAY_SECONDS 不能为负数", setting="INVOKER_RETRY_DELAY_SECONDS"
            )
        if self.invoker_max_transient_retries < 0:
            raise ConfigurationError(
                "INVOKER_MAX_TRANSIENT_RETRIES 不能为负数",
                setting="INVOKER_MAX_TRANSIENT_RETRIES",
            )

        # HTTP 客户端
        self.http_connect_timeout = _get_float(
            env, "HTTP_CONNECT_TIMEOUT", HTTPDefaults.CONNECT_TIMEOUT
        )
        self.http_read_timeout = _get_float(env, "HTTP_READ_TIMEOUT", HTTPDefaults.READ_TIMEOUT)
        self.http_write_timeout = _get_float(
            env, "HTTP_WRITE_TIMEOUT", HTTPDefaults.WRITE_TIMEOUT
        )
        self.http_pool_timeout = _get_float(env, "HTTP_POOL_TIMEOUT", HTTPDefaults.POOL_TIMEOUT)
        self.http_max_connections = _get_int(
            env, "HTTP_MAX_CONNECTIONS", HTTPDefaults.MAX_CONNECTIONS
        )
        self.http_keepalive_connections = _get_int(
            env, "HTTP_KEEPALIVE_CONNECTIONS", HTTPDefaults.KEEPALIVE_CONNECTIONS
        )
        self.http_keepalive_expiry = _get_float(
            env, "HTTP_KEEPALIVE_EXPIRY", HTTPDefaults.KEEPALIVE_EXPIRY
        )
        self.http_max_proxy_clients = _get_int(
            env, "HTTP_MAX_PROXY_CLIENTS", HTTPDefaults.MAX_PROXY_CLIENTS
        )

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Config":
        """从环境变量构建配置；传入 env 时不读取 .env（测试用）"""
        if env is None:
            load_dotenv(override=False)
            env = os.environ
        return cls(env)

    @property
    def has_elevenlabs_proxies(self) -> bool:
        return bool(self.elevenlabs_proxy_urls)


config = Config.from_env()
