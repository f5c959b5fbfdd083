"""
上游服务与调用层
"""
