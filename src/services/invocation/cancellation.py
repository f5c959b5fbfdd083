"""
取消信号与后台任务登记

- CancellationSignal: 每个逻辑请求一个，由调用方设置，Invoker 在每次尝试前、
  重试等待期间以及进行中的上游请求期间观察它
- BackgroundTaskRegistry: 每个归属者（例如一个聊天用户）同时至多一个存活的后台调用；
  为同一归属者启动新调用时，会先取消旧调用
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable
from typing import Any, TypeVar

from src.core.logger import logger

T = TypeVar("T")


class CancellationSignal:
    """协作式取消信号（一次性，设置后不可复位）"""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationSignal(cancelled={self.is_cancelled})"


class BackgroundTaskRegistry:
    """按归属者登记后台调用，保证每个归属者同时至多一个存活调用"""

    def __init__(self) -> None:
        self._active: dict[Hashable, tuple[CancellationSignal, asyncio.Task[Any]]] = {}

    def start(
        self,
        owner_id: Hashable,
        factory: Callable[[CancellationSignal], Awaitable[T]],
        *,
        name: str | None = None,
    ) -> asyncio.Task[T]:
        """
        为归属者启动一个新的后台调用

        旧调用（如果仍在运行）会先收到取消信号。factory 接收新的取消信号，
        返回要执行的协程。
        """
        self.cancel(owner_id)

        signal = CancellationSignal()
        task: asyncio.Task[T] = asyncio.ensure_future(factory(signal))
        if name:
            task.set_name(name)
        self._active[owner_id] = (signal, task)

        def _forget(done: asyncio.Task[Any]) -> None:
            current = self._active.get(owner_id)
            # 只移除自己，避免误删已经替换进来的新任务
            if current is not None and current[1] is done:
                del self._active[owner_id]

        task.add_done_callback(_forget)
        logger.debug("后台任务已启动: owner={}", owner_id)
        return task

    def cancel(self, owner_id: Hashable) -> bool:
        """取消归属者当前的后台调用，返回是否确实取消了一个调用"""
        entry = self._active.pop(owner_id, None)
        if entry is None:
            return False
        signal, task = entry
        if task.done():
            return False
        signal.cancel()
        logger.info("已取消后台任务: owner={}", owner_id)
        return True

    def is_running(self, owner_id: Hashable) -> bool:
        entry = self._active.get(owner_id)
        return entry is not None and not entry[1].done()

    def cancel_all(self) -> int:
        """取消所有后台调用（进程退出时使用），返回取消的数量"""
        cancelled = 0
        for owner_id in list(self._active):
            if self.cancel(owner_id):
                cancelled += 1
        return cancelled

    def __len__(self) -> int:
        return sum(1 for _, task in self._active.values() if not task.done())


__all__ = ["CancellationSignal", "BackgroundTaskRegistry"]
