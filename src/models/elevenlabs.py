"""
ElevenLabs 语音合成相关模型
"""

from typing import Any

from pydantic import BaseModel, Field

DEFAULT_STABILITY = 0.75
DEFAULT_CLARITY = 0.75
# text-to-speech 接口接受的语速范围
MIN_SPEED = 0.7
MAX_SPEED = 1.2


class Voice(BaseModel):
    """可选音色"""

    voice_id: str = Field(..., description="ElevenLabs 音色 ID")
    name: str = Field(..., description="展示名称")


class VoicesFile(BaseModel):
    """voices.json 文件结构"""

    voices: list[Voice] = Field(default_factory=list)


class VoiceSettings(BaseModel):
    """合成参数"""

    stability: float = Field(DEFAULT_STABILITY, ge=0.0, le=1.0)
    # ElevenLabs 的 similarity_boost，界面上称为 clarity
    similarity_boost: float = Field(DEFAULT_CLARITY, ge=0.0, le=1.0)
    style: float = Field(0.5, ge=0.0, le=1.0)
    use_speaker_boost: bool = True
    speed: float = Field(1.0, ge=MIN_SPEED, le=MAX_SPEED)


class TextToSpeechRequest(BaseModel):
    """text-to-speech 请求体"""

    text: str
    model_id: str
    voice_settings: VoiceSettings
    pronunciation_dictionary_locators: list[dict[str, Any]] = Field(default_factory=list)
    seed: int | None = None
    previous_text: str | None = None
    next_text: str | None = None
    previous_request_ids: list[str] = Field(default_factory=list)
    next_request_ids: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
