"""
服务装配

进程启动时调用一次：从配置构建凭据池/出口池、调用器与上游服务。
任何配置错误都以 ConfigurationError 立即暴露，而不是推迟到第一次调用。

池在进程内共享：同一上游的所有调用共用同一组池，轮换对所有调用方立即可见。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from src.clients.http_client import close_http_clients
from src.config import Config
from src.core.logger import logger
from src.services.ai.elevenlabs import PROVIDER_NAME as ELEVENLABS
from src.services.ai.elevenlabs import ElevenLabsSpeechService, load_voices
from src.services.ai.gemini import PROVIDER_NAME as GEMINI
from src.services.ai.gemini import GeminiScriptService
from src.services.invocation.cancellation import BackgroundTaskRegistry
from src.services.invocation.invoker import Invoker, Transport
from src.services.provider.transport import HttpTransport
from src.services.rotation.pool import CredentialPool, EgressPool


def build_script_service(cfg: Config, transport: Transport) -> GeminiScriptService:
    credentials = CredentialPool("GEMINI_API_KEYS", cfg.gemini_api_keys)
    invoker = Invoker(
        GEMINI,
        credentials,
        transport,
        retry_delay=cfg.invoker_retry_delay,
        max_transient_retries=cfg.invoker_max_transient_retries,
    )
    logger.info("Gemini 服务已就绪: model={}, keys={}", cfg.gemini_model, len(credentials))
    return GeminiScriptService(invoker, cfg.gemini_model, cfg.gemini_base_url)


def build_speech_service(cfg: Config, transport: Transport) -> ElevenLabsSpeechService:
    credentials = CredentialPool("ELEVENLABS_API_KEYS", cfg.elevenlabs_api_keys)
    egress = (
        EgressPool.from_urls("ELEVENLABS_PROXY_URLS", cfg.elevenlabs_proxy_urls)
        if cfg.has_elevenlabs_proxies
        else None
    )
    invoker = Invoker(
        ELEVENLABS,
        credentials,
        transport,
        egress=egress,
        retry_delay=cfg.invoker_retry_delay,
        max_transient_retries=cfg.invoker_max_transient_retries,
    )
    voices = load_voices(cfg.elevenlabs_voices_file)
    logger.info(
        "ElevenLabs 服务已就绪: model={}, keys={}, proxies={}",
        cfg.elevenlabs_model_id,
        len(credentials),
        len(egress) if egress is not None else 0,
    )
    return ElevenLabsSpeechService(
        invoker, cfg.elevenlabs_model_id, cfg.elevenlabs_base_url, voices
    )


@dataclass
class ServiceContainer:
    """进程级服务集合"""

    script_service: GeminiScriptService
    speech_service: ElevenLabsSpeechService
    tasks: BackgroundTaskRegistry = field(default_factory=BackgroundTaskRegistry)

    async def close(self) -> None:
        cancelled = self.tasks.cancel_all()
        if cancelled:
            logger.info("关闭前取消了 {} 个后台任务", cancelled)
        await close_http_clients()


def build_services(cfg: Config, transport: Transport | None = None) -> ServiceContainer:
    transport = transport or HttpTransport()
    return ServiceContainer(
        script_service=build_script_service(cfg, transport),
        speech_service=build_speech_service(cfg, transport),
    )


__all__ = [
    "ServiceContainer",
    "build_services",
    "build_script_service",
    "build_speech_service",
]
