"""
错误消息处理工具函数
"""

from __future__ import annotations


def extract_error_message(error: Exception | None, status_code: int | None = None) -> str:
    """
    从异常中提取错误消息，优先使用上游原始响应（用于日志与 Fatal 透传）

    Args:
        error: 异常对象，仅有状态码时可为 None
        status_code: 可选的 HTTP 状态码，用于构建更详细的错误消息

    Returns:
        错误消息字符串（不会为空）
    """
    if error is None:
        return f"HTTP {status_code}" if status_code is not None else "unknown error"

    # 优先使用 upstream_response 属性（包含上游 Provider 的原始错误）
    upstream_response = getattr(error, "upstream_response", None)
    if upstream_response and isinstance(upstream_response, str) and upstream_response.strip():
        return str(upstream_response)

    # 回退到异常的字符串表示（str 可能为空，如 httpx 超时异常）
    error_str = str(error) or repr(error)
    if status_code is not None:
        return f"HTTP {status_code}: {error_str}"
    return f"{type(error).__name__}: {error_str}"


def decode_error_body(body: bytes | None) -> str:
    """将上游错误响应体完整解码为文本（Fatal 详情原样透传，不截断）"""
    if not body:
        return ""
    return body.decode("utf-8", errors="replace")


def truncate_for_log(text: str, limit: int = 2000) -> str:
    """日志输出用的截断，错误对象里保留完整文本"""
    if len(text) > limit:
        return text[:limit] + "...(truncated)"
    return text


def mask_secret(value: str) -> str:
    """凭据脱敏：只保留首尾 4 位"""
    if len(value) <= 8:
        return "***"
    return f"{value[:4]}...{value[-4:]}"
