"""
配置模块

使用方式:
    from src.config import config

    config.gemini_api_keys
"""

from src.config.settings import Config, config, split_csv

__all__ = ["Config", "config", "split_csv"]
