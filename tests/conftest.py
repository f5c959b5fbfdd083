import os

# 测试不写日志文件
os.environ.setdefault("LOG_DISABLE_FILE", "true")
