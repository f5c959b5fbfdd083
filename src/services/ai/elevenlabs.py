"""
ElevenLabs 语音合成服务

通过 Invoker 调用 text-to-speech：额度/认证错误换 key，代理连接错误换出口。
音色列表从本地 JSON 文件加载。
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from src.core.exceptions import ConfigurationError, ResponseParseError
from src.core.logger import logger
from src.models.elevenlabs import (
    DEFAULT_CLARITY,
    DEFAULT_STABILITY,
    MAX_SPEED,
    MIN_SPEED,
    TextToSpeechRequest,
    Voice,
    VoicesFile,
    VoiceSettings,
)
from src.services.invocation.cancellation import CancellationSignal
from src.services.invocation.invoker import Invoker
from src.services.invocation.models import RequestDescriptor, TransportResult

PROVIDER_NAME = "elevenlabs"


def _clamp(name: str, value: float, low: float, high: float) -> float:
    if low <= value <= high:
        return value
    clamped = min(max(value, low), high)
    logger.warning("{}={} 超出接口范围 [{}, {}]，按 {} 发送", name, value, low, high, clamped)
    return clamped


def load_voices(path: str | Path) -> list[Voice]:
    """读取 voices.json；文件缺失或格式错误属于配置错误"""
    voices_path = Path(path)
    try:
        raw = voices_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"无法读取音色文件 {voices_path}: {e}", setting="ELEVENLABS_VOICES_FILE"
        ) from e
    try:
        voices = VoicesFile.model_validate_json(raw).voices
    except ValidationError as e:
        raise ConfigurationError(
            f"音色文件 {voices_path} 格式错误: {e.error_count()} 处", setting="ELEVENLABS_VOICES_FILE"
        ) from e
    logger.info("已加载 {} 个音色: {}", len(voices), voices_path)
    return voices


def parse_audio(result: TransportResult) -> bytes:
    if not result.body:
        raise ResponseParseError("elevenlabs returned an empty audio body")
    return result.body


class ElevenLabsSpeechService:
    """文本 -> 语音"""

    def __init__(
        self,
        invoker: Invoker,
        model_id: str,
        base_url: str,
        voices: list[Voice],
    ) -> None:
        self.invoker = invoker
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self._voices = list(voices)

    def get_voices(self) -> list[Voice]:
        return list(self._voices)

    def get_voice(self, voice_id: str) -> Voice | None:
        for voice in self._voices:
            if voice.voice_id == voice_id:
                return voice
        return None

    def build_request(
        self,
        voice_id: str,
        text: str,
        stability: float = DEFAULT_STABILITY,
        clarity: float = DEFAULT_CLARITY,
        speed: float = 1.0,
    ) -> RequestDescriptor:
        """
        构建合成请求

        用户侧可选的语速范围比接口宽（例如 0.5-2.0），超出接口范围的参数
        被收敛到最近的合法值，而不是在发出请求前报错。
        """
        stability = _clamp("stability", stability, 0.0, 1.0)
        clarity = _clamp("clarity", clarity, 0.0, 1.0)
        speed = _clamp("speed", speed, MIN_SPEED, MAX_SPEED)
        body = TextToSpeechRequest(
            text=text,
            model_id=self.model_id,
            voice_settings=VoiceSettings(
                stability=stability,
                similarity_boost=clarity,
                speed=speed,
            ),
        )
        return RequestDescriptor(
            provider=PROVIDER_NAME,
            method="POST",
            url=f"{self.base_url}/text-to-speech/{voice_id}",
            auth_header="xi-api-key",
            json_body=body.to_payload(),
            headers={"Content-Type": "application/json", "Accept": "audio/mpeg"},
            parser=parse_audio,
        )

    async def text_to_speech(
        self,
        voice_id: str,
        text: str,
        stability: float = DEFAULT_STABILITY,
        clarity: float = DEFAULT_CLARITY,
        speed: float = 1.0,
        cancel: CancellationSignal | None = None,
    ) -> bytes:
        """合成语音，返回 audio/mpeg 字节"""
        request = self.build_request(voice_id, text, stability, clarity, speed)
        return await self.invoker.invoke(request, cancel)
