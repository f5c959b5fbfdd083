"""
统一日志系统 - 基于 loguru

日志级别策略:
- DEBUG: 每次上游尝试、凭据/出口选择、代理客户端创建
- INFO:  凭据轮换、服务就绪、后台任务取消
- WARNING: 轮换绕回（整个池已被尝试一遍）、出口配置被跳过、网络错误重试
- ERROR: 调用最终失败（Fatal / Exhausted）

凭据脱敏:
    凭据池与出口池构建时把条目登记到 register_secrets()，
    之后任何日志消息里出现的登记值都会被替换为 "abcd...wxyz" 形式，
    即使调用方直接把异常文本或 URL 打进日志也不会泄漏。

输出策略:
- 控制台: 开发环境=DEBUG, Docker=INFO (通过 LOG_LEVEL 控制)
- 文件: LOG_DIR（默认项目根目录 logs/），app.log 全级别 + error.log 仅 ERROR
- 测试: LOG_DISABLE_FILE=true 关闭文件日志

使用方式:
    from src.core.logger import logger

    logger.info("[{}] 凭据已轮换", provider)
    logger.bind(provider="gemini").warning("...")
"""

from __future__ import annotations

import logging
import os
import sys
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from src.core.error_utils import mask_secret

IS_DOCKER = (
    os.path.exists("/.dockerenv")
    or os.environ.get("DOCKER_CONTAINER", "false").lower() == "true"
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

CONSOLE_FORMAT_DEV = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[provider]: <10}</magenta> | "
    "<cyan>{message}</cyan>"
)

CONSOLE_FORMAT_PROD = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[provider]} | {message}"

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[provider]} | "
    "{name}:{function}:{line} | {message}"
)

# 短于此长度的值不登记，避免把 "a"、"key" 这类常见子串替换掉
_MIN_SECRET_LENGTH = 8

_secrets: set[str] = set()
_secrets_lock = threading.Lock()


def register_secrets(values: Iterable[str]) -> None:
    """登记需要在日志中脱敏的值（API key、带认证信息的代理 URL 等）"""
    with _secrets_lock:
        for value in values:
            if value and len(value) >= _MIN_SECRET_LENGTH:
                _secrets.add(value)


def redact(text: str) -> str:
    """把文本中已登记的凭据替换为脱敏形式"""
    with _secrets_lock:
        secrets = sorted(_secrets, key=len, reverse=True)
    for secret in secrets:
        if secret in text:
            text = text.replace(secret, mask_secret(secret))
    return text


def _patch_record(record: Any) -> None:
    # 消息参数在 patcher 执行前已经格式化完成
    record["message"] = redact(record["message"])
    record["extra"].setdefault("provider", "-")


def setup_logging(
    level: str | None = None,
    *,
    disable_file: bool | None = None,
    log_dir: str | Path | None = None,
) -> None:
    """
    (重新)配置日志输出

    模块导入时按环境变量调用一次；测试或命令行工具可以再次调用以覆盖。
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO" if IS_DOCKER else "DEBUG")
    level = level.upper()
    if disable_file is None:
        disable_file = os.getenv("LOG_DISABLE_FILE", "false").lower() == "true"
    if log_dir is None:
        log_dir = os.getenv("LOG_DIR") or PROJECT_ROOT / "logs"

    logger.remove()
    logger.configure(patcher=_patch_record, extra={"provider": "-"})

    if IS_DOCKER:
        # 生产环境禁用 diagnose，避免堆栈变量中的请求头（含凭据）被打印
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT_PROD,
            level=level,
            colorize=False,
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(sys.stdout, format=CONSOLE_FORMAT_DEV, level=level, colorize=True)

    if disable_file:
        return

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    # enqueue=False: 同步写入，避免 multiprocessing 信号量泄漏
    file_options: dict[str, Any] = {
        "format": FILE_FORMAT,
        "retention": "30 days",
        "compression": "gz",
        "enqueue": False,
        "encoding": "utf-8",
        "catch": True,
        "backtrace": not IS_DOCKER,
        "diagnose": False,
    }
    logger.add(directory / "app.log", level="DEBUG", rotation="100 MB", **file_options)
    logger.add(directory / "error.log", level="ERROR", rotation="50 MB", **file_options)


setup_logging()

# httpx 的请求日志包含完整 URL，交给 transport 层自己脱敏后记录
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

__all__ = ["logger", "setup_logging", "register_secrets", "redact"]
