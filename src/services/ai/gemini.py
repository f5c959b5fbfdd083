"""
Gemini 脚本服务

- generate_script_from_video: 分析视频，输出逐场景脚本
- revise_script: 按用户指令修改已有脚本

两者都通过 Invoker 调用 generateContent，凭据额度耗尽时自动轮换。
"""

from __future__ import annotations

import base64

from pydantic import ValidationError

from src.core.exceptions import ResponseParseError
from src.models.gemini import GeminiContent, GeminiRequest, GeminiResponse
from src.services.invocation.cancellation import CancellationSignal
from src.services.invocation.invoker import Invoker
from src.services.invocation.models import RequestDescriptor, TransportResult

PROVIDER_NAME = "gemini"

SCRIPT_LINE_FORMAT = "HH:MM:SS-HH:MM:SS: description"

GENERATE_PROMPT_TEMPLATE = (
    "Analyze this video and create a concise, scene-by-scene script. "
    f"The format must be exactly '{SCRIPT_LINE_FORMAT}'. "
    "The descriptions must be brief and directly correspond to the visual action "
    "in that video segment. Do not add information that is not present in the video. "
    "The requested style is: '{style}'."
)

REVISE_PROMPT_TEMPLATE = (
    "You are a script editor. Below is an original video script. Revise it based on "
    "the user's instructions. Maintain the exact "
    f"'{SCRIPT_LINE_FORMAT}' format for every line. "
    "Keep the descriptions concise and relevant to the original script's context.\n\n"
    "Original Script:\n{script}\n\nUser Instructions:\n{instructions}"
)


def parse_generate_content_text(result: TransportResult) -> str:
    """从 generateContent 响应中取出第一段文本"""
    try:
        response = GeminiResponse.model_validate_json(result.body)
    except ValidationError as e:
        raise ResponseParseError(f"gemini response is not valid JSON: {e.error_count()} errors") from e

    if not response.candidates:
        raise ResponseParseError("gemini returned no content")
    text = response.first_text()
    if text is None:
        raise ResponseParseError("gemini response did not contain text")
    return text


class GeminiScriptService:
    """视频 -> 脚本"""

    def __init__(self, invoker: Invoker, model: str, base_url: str) -> None:
        self.invoker = invoker
        self.model = model
        self.base_url = base_url.rstrip("/")

    @property
    def endpoint_url(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def _build_request(self, contents: list[GeminiContent]) -> RequestDescriptor:
        body = GeminiRequest(contents=contents)
        return RequestDescriptor(
            provider=PROVIDER_NAME,
            method="POST",
            url=self.endpoint_url,
            auth_header="x-goog-api-key",
            json_body=body.to_payload(),
            headers={"Content-Type": "application/json"},
            parser=parse_generate_content_text,
        )

    async def generate_script_from_video(
        self,
        video_data: bytes,
        mime_type: str,
        style: str,
        cancel: CancellationSignal | None = None,
    ) -> str:
        """分析视频并生成指定风格的逐场景脚本"""
        parts = [
            {
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(video_data).decode("ascii"),
                }
            },
            {"text": GENERATE_PROMPT_TEMPLATE.format(style=style)},
        ]
        request = self._build_request([GeminiContent(role="user", parts=parts)])
        return await self.invoker.invoke(request, cancel)

    async def revise_script(
        self,
        original_script: str,
        instructions: str,
        cancel: CancellationSignal | None = None,
    ) -> str:
        """按指令修改脚本，保持行格式不变"""
        prompt = REVISE_PROMPT_TEMPLATE.format(script=original_script, instructions=instructions)
        request = self._build_request([GeminiContent(role="user", parts=[{"text": prompt}])])
        return await self.invoker.invoke(request, cancel)
