"""
调用层

提供多凭据调用相关的组件：
- FailureClassifier: 失败分类器（纯逻辑，无副作用）
- Invoker: 在 凭据 x 出口 空间内重试/轮换/放弃
- CancellationSignal / BackgroundTaskRegistry: 取消信号与按归属者的后台任务登记
"""

from .cancellation import BackgroundTaskRegistry, CancellationSignal
from .classifier import FailureClassifier, ProviderSignals, register_provider_signals
from .invoker import Invoker, Transport
from .models import AttemptOutcome, FailureClass, RequestDescriptor, TransportResult

__all__ = [
    "AttemptOutcome",
    "BackgroundTaskRegistry",
    "CancellationSignal",
    "FailureClass",
    "FailureClassifier",
    "Invoker",
    "ProviderSignals",
    "RequestDescriptor",
    "Transport",
    "TransportResult",
    "register_provider_signals",
]
