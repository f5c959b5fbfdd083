"""
上游 AI 服务：Gemini 脚本生成、ElevenLabs 语音合成
"""

from src.services.ai.elevenlabs import ElevenLabsSpeechService, load_voices
from src.services.ai.gemini import GeminiScriptService

__all__ = [
    "GeminiScriptService",
    "ElevenLabsSpeechService",
    "load_voices",
]
