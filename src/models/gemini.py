"""
Google Gemini generateContent 请求/响应模型

只定义脚本生成需要的字段，其余字段宽松透传
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BaseModelWithExtras(BaseModel):
    """允许额外字段的基础模型"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# 请求模型
# ---------------------------------------------------------------------------


class GeminiContent(BaseModelWithExtras):
    """
    Gemini 消息内容

    parts 接受任意字典列表：{"text": ...} 或 {"inline_data": {"mime_type", "data"}}
    """

    role: str | None = None
    parts: list[dict[str, Any]]


class GeminiRequest(BaseModelWithExtras):
    """
    generateContent 请求体

    注意: 模型名称在 URL 路径中，不在请求体里
    """

    contents: list[GeminiContent]
    generation_config: dict[str, Any] | None = Field(default=None, alias="generationConfig")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# 响应模型
# ---------------------------------------------------------------------------


class GeminiUsageMetadata(BaseModelWithExtras):
    """Token 使用量"""

    prompt_token_count: int = Field(default=0, alias="promptTokenCount")
    candidates_token_count: int = Field(default=0, alias="candidatesTokenCount")
    total_token_count: int = Field(default=0, alias="totalTokenCount")


class GeminiCandidate(BaseModelWithExtras):
    content: GeminiContent | None = None
    finish_reason: str | None = Field(default=None, alias="finishReason")


class GeminiResponse(BaseModelWithExtras):
    """generateContent 响应体"""

    candidates: list[GeminiCandidate] = Field(default_factory=list)
    usage_metadata: GeminiUsageMetadata | None = Field(default=None, alias="usageMetadata")

    def first_text(self) -> str | None:
        """第一个候选的第一个 part 的文本；没有文本时返回 None"""
        if not self.candidates:
            return None
        content = self.candidates[0].content
        if content is None or not content.parts:
            return None
        text = content.parts[0].get("text")
        return text if isinstance(text, str) else None
