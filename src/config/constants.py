"""
默认常量

环境变量未设置时使用这里的值。
"""


class InvokerDefaults:
    """调用层默认参数"""

    # Transient 失败后的固定等待（秒）
    RETRY_DELAY_SECONDS = 1.0
    # 同一凭据/出口组合上允许的 Transient 重试次数
    MAX_TRANSIENT_RETRIES = 3


class HTTPDefaults:
    """出站 HTTP 客户端默认参数"""

    CONNECT_TIMEOUT = 10.0
    # 视频分析与语音合成耗时较长，读超时给足 2 分钟
    READ_TIMEOUT = 120.0
    WRITE_TIMEOUT = 60.0
    POOL_TIMEOUT = 10.0
    MAX_CONNECTIONS = 100
    KEEPALIVE_CONNECTIONS = 20
    KEEPALIVE_EXPIRY = 30.0
    MAX_PROXY_CLIENTS = 50


class ProviderDefaults:
    """上游服务默认参数"""

    GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
    GEMINI_MODEL = "gemini-1.5-flash"
    ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
    ELEVENLABS_MODEL_ID = "eleven_multilingual_v2"
    ELEVENLABS_VOICES_FILE = "voices.json"
