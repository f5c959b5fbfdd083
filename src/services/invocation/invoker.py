"""
多凭据调用器

在 凭据 x 出口 的搜索空间内反复尝试同一个请求，直到成功、空间耗尽或被取消。

状态流转:
    TryAttempt -> EvaluateOutcome
        SUCCESS        -> 解析响应并返回（解析失败按 Fatal 处理）
        FATAL          -> FatalInvocationError，原样返回上游错误
        TRANSIENT      -> 固定等待后用同一凭据/出口重试（不消耗轮换预算）
        EGRESS_FAILURE -> RotateEgress
        QUOTA_OR_AUTH  -> RotateCredential
    RotateEgress: 出口前进一位；当前凭据下所有出口都试过后转入 RotateCredential
    RotateCredential: 凭据前进一位；本次调用已试过所有凭据 -> InvocationExhaustedError
    任一步骤前检测到取消信号 -> InvocationCancelledError

耗尽判定按"本次调用内已尝试的槽位数"计数，而非仅依赖池的全局绕回标志：
游标被所有并发调用共享，从池中间开始的调用也需要把每个凭据都试一遍。

换凭据时不把出口游标重置到第 0 个，只重置本次调用对新凭据的出口预算；
出口搜索从共享游标当前所在的位置继续。

最坏情况下的尝试次数为 len(credentials) * max(1, len(egress))，
另外每个凭据/出口组合上至多 max_transient_retries 次 Transient 重试；
超过上限时以 InvocationExhaustedError 结束，不再改动池状态。
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from src.config.constants import InvokerDefaults
from src.core.error_utils import truncate_for_log
from src.core.exceptions import (
    FatalInvocationError,
    InvocationCancelledError,
    InvocationExhaustedError,
    ResponseParseError,
)
from src.core.logger import logger
from src.services.invocation.cancellation import CancellationSignal
from src.services.invocation.classifier import FailureClassifier
from src.services.invocation.models import (
    AttemptOutcome,
    FailureClass,
    RequestDescriptor,
    TransportResult,
)
from src.services.rotation.pool import CredentialPool, EgressPool, EgressRoute


class Transport(Protocol):
    """传输层：发出一次请求，网络错误以 TransportResult.error 返回而不是抛出"""

    async def send(
        self,
        request: RequestDescriptor,
        credential: str,
        egress: EgressRoute | None,
    ) -> TransportResult: ...


class Classifier(Protocol):
    def classify(self, provider: str, result: TransportResult) -> AttemptOutcome: ...


class Invoker:
    """
    单个上游服务的调用器

    持有凭据池与（可选）出口池的引用，池本身由同一上游的所有调用器/调用共享。
    """

    def __init__(
        self,
        provider: str,
        credentials: CredentialPool,
        transport: Transport,
        *,
        egress: EgressPool | None = None,
        classifier: Classifier | None = None,
        retry_delay: float = InvokerDefaults.RETRY_DELAY_SECONDS,
        max_transient_retries: int = InvokerDefaults.MAX_TRANSIENT_RETRIES,
    ) -> None:
        self.provider = provider
        self.credentials = credentials
        self.egress = egress
        self.transport = transport
        self.classifier: Classifier = classifier or FailureClassifier()
        self.retry_delay = retry_delay
        self.max_transient_retries = max_transient_retries
        self._log = logger.bind(provider=provider)

    @property
    def max_rotation_attempts(self) -> int:
        """不计 Transient 重试时的最大尝试次数"""
        egress_size = len(self.egress) if self.egress is not None else 1
        return len(self.credentials) * max(1, egress_size)

    async def invoke(
        self,
        request: RequestDescriptor,
        cancel: CancellationSignal | None = None,
    ) -> Any:
        """
        执行请求，返回 request.parser 解析后的结果

        Raises:
            InvocationCancelledError: 取消信号已设置
            FatalInvocationError: 上游拒绝请求本身，或成功响应无法解析
            InvocationExhaustedError: 凭据/出口已全部尝试，或 Transient 重试超过上限
        """
        attempts = 0
        credentials_tried = 1
        egress_tried = 1
        transient_retries = 0

        while True:
            if cancel is not None and cancel.is_cancelled:
                self._log.info("调用已取消 (已尝试 {} 次)", attempts)
                raise InvocationCancelledError(self.provider, attempts)

            credential = self.credentials.current()
            route = self.egress.current() if self.egress is not None else None
            attempts += 1
            self._log.debug(
                "第 {} 次尝试: 凭据={} 出口={}",
                attempts,
                self.credentials.describe(credential),
                route.display if route is not None else "direct",
            )

            result = await self._send(request, credential, route, cancel, attempts)
            outcome = self.classifier.classify(self.provider, result)
            kind = outcome.kind
            # 未配置出口池时，出口相关的错误按 Transient 处理
            if kind is FailureClass.EGRESS_FAILURE and self.egress is None:
                kind = FailureClass.TRANSIENT

            if kind is FailureClass.SUCCESS:
                return self._parse(request, result, attempts)

            if kind is FailureClass.FATAL:
                self._log.error(
                    "上游拒绝请求，终止调用 (尝试 {} 次): {}",
                    attempts,
                    truncate_for_log(outcome.detail),
                )
                raise FatalInvocationError(
                    self.provider,
                    outcome.detail,
                    status_code=outcome.status_code,
                    attempts=attempts,
                )

            if kind is FailureClass.TRANSIENT:
                transient_retries += 1
                if transient_retries > self.max_transient_retries:
                    self._log.error(
                        "网络错误重试 {} 次仍失败，放弃: {}",
                        self.max_transient_retries,
                        truncate_for_log(outcome.detail),
                    )
                    raise InvocationExhaustedError(
                        self.provider,
                        attempts,
                        reason=f"transient retries exceeded: {outcome.detail}",
                    )
                self._log.warning(
                    "网络错误，{}s 后重试 ({}/{}): {}",
                    self.retry_delay,
                    transient_retries,
                    self.max_transient_retries,
                    truncate_for_log(outcome.detail),
                )
                await self._pause(cancel)
                continue

            if kind is FailureClass.EGRESS_FAILURE and self.egress is not None:
                self._log.warning(
                    "出口 {} 失败: {}",
                    route.display if route is not None else "direct",
                    truncate_for_log(outcome.detail),
                )
                self.egress.advance()
                egress_tried += 1
                transient_retries = 0
                if egress_tried <= len(self.egress):
                    continue
                self._log.warning("当前凭据下所有出口均已尝试，换下一个凭据")
            else:
                self._log.warning(
                    "凭据 {} 不可用: {}",
                    self.credentials.describe(credential),
                    truncate_for_log(outcome.detail),
                )

            # RotateCredential
            self.credentials.advance()
            credentials_tried += 1
            if credentials_tried > len(self.credentials):
                self._log.error("所有凭据均已尝试仍未成功 (尝试 {} 次)", attempts)
                raise InvocationExhaustedError(self.provider, attempts)
            egress_tried = 1
            transient_retries = 0

    async def _send(
        self,
        request: RequestDescriptor,
        credential: str,
        route: EgressRoute | None,
        cancel: CancellationSignal | None,
        attempts: int,
    ) -> TransportResult:
        """发出一次请求；取消信号触发时中止进行中的请求"""
        if cancel is None:
            return await self.transport.send(request, credential, route)

        send_task = asyncio.ensure_future(self.transport.send(request, credential, route))
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({send_task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
            if not send_task.done():
                send_task.cancel()

        if send_task.done() and not send_task.cancelled():
            return send_task.result()

        # 等待被取消的请求收尾（释放连接），结果丢弃
        await asyncio.gather(send_task, return_exceptions=True)
        self._log.info("进行中的请求已中止 (第 {} 次尝试)", attempts)
        raise InvocationCancelledError(self.provider, attempts)

    async def _pause(self, cancel: CancellationSignal | None) -> None:
        """Transient 重试前的固定等待，可被取消信号提前打断"""
        if self.retry_delay <= 0:
            return
        if cancel is None:
            await asyncio.sleep(self.retry_delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.retry_delay)
        except asyncio.TimeoutError:
            pass

    def _parse(self, request: RequestDescriptor, result: TransportResult, attempts: int) -> Any:
        try:
            payload = request.parser(result)
        except ResponseParseError as e:
            self._log.error("无法解析上游响应: {}", e)
            raise FatalInvocationError(
                self.provider,
                f"unparseable response: {e}",
                status_code=result.status_code,
                attempts=attempts,
            ) from e

        if attempts > 1:
            self._log.info("第 {} 次尝试成功", attempts)
        return payload


__all__ = ["Invoker", "Transport", "Classifier"]
