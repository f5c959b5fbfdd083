"""
轮换池

- CredentialPool: 凭据池，空配置快速失败
- EgressPool: 出口（代理）池，无效条目跳过
"""

from src.services.rotation.pool import (
    CredentialPool,
    EgressPool,
    EgressRoute,
    RotationPool,
    parse_egress_route,
)

__all__ = [
    "RotationPool",
    "CredentialPool",
    "EgressPool",
    "EgressRoute",
    "parse_egress_route",
]
