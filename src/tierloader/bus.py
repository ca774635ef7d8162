"""LifecycleBus: 单订阅者的生命周期事件总线

- 观察者抛出的异常被隔离：记录日志，并通过事件循环的异常处理器延后上报，
  绝不影响层级推进或同层的其他资源
- 终止性错误在通知观察者之后按 ErrorPolicy 升级
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Set

from .errors import ObserverError
from .types import ErrorPolicy, LifecycleEvent

logger = logging.getLogger("tierloader.bus")

Observer = Callable[[LifecycleEvent], Any]


class LifecycleBus:
    """生命周期事件总线

    Attributes:
        policy: 终止性错误的处理策略
        fatal_event: abort 策略下第一个终止性错误事件
        observer_failures: 观察者失败次数
        error_events: 终止性错误事件数量
    """

    def __init__(self, policy: ErrorPolicy = ErrorPolicy.Continue):
        self.policy = policy
        self.fatal_event: Optional[LifecycleEvent] = None
        self.observer_failures = 0
        self.error_events = 0
        self._observer: Optional[Observer] = None
        # 事件循环只弱引用任务，未完成的异步观察者由总线持有
        self._pending: Set[asyncio.Future] = set()

    @property
    def observer(self) -> Optional[Observer]:
        return self._observer

    def subscribe(self, observer: Optional[Observer]) -> None:
        """注册（或替换）唯一的观察者，传入 None 表示取消注册"""
        self._observer = observer

    def notify(self, event: LifecycleEvent) -> None:
        """转发事件给观察者，然后处理终止性错误的升级"""
        observer = self._observer
        if observer is not None:
            self._deliver(observer, event)

        if event.finished and event.error:
            self._escalate(event)

    @property
    def pending_observers(self) -> int:
        """尚未完成的异步观察者数量"""
        return len(self._pending)

    def take_fatal(self) -> Optional[LifecycleEvent]:
        """返回 abort 策略下记录的致命事件（continue 策略下始终为 None）"""
        return self.fatal_event

    def _deliver(self, observer: Observer, event: LifecycleEvent) -> None:
        try:
            result = observer(event)
        except Exception as exc:
            self._report_failure(event, exc)
            return

        # 异步观察者在后台执行，失败同样只走旁路上报
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(lambda f: self._on_async_observer_done(event, f))

    def _on_async_observer_done(self, event: LifecycleEvent, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._report_failure(event, exc)

    def _report_failure(self, event: LifecycleEvent, exc: BaseException) -> None:
        self.observer_failures += 1
        error = ObserverError(event, exc)
        logger.error(
            "观察者处理事件失败 id=%s kind=%s error=%r",
            event.id,
            event.kind.value,
            exc,
            exc_info=exc,
        )

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_soon(
            loop.call_exception_handler,
            {"message": str(error), "exception": error},
        )

    def _escalate(self, event: LifecycleEvent) -> None:
        self.error_events += 1
        if self.policy is ErrorPolicy.Abort:
            if self.fatal_event is None:
                self.fatal_event = event
                logger.error(
                    "终止性错误，当前层级结束后中止 id=%s kind=%s message=%s",
                    event.id,
                    event.kind.value,
                    event.message,
                )
            return

        logger.warning(
            "资源加载失败 id=%s kind=%s message=%s",
            event.id,
            event.kind.value,
            event.message,
        )
