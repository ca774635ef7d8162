"""ResourceLoadTask: 单个资源的一次加载

负责：
- 校验资源设置，无效时直接产生 SETTINGS_ERROR，不调用加载器
- 超时计时器的布置与解除
- 将加载器的信号翻译为生命周期事件
- 保证每个资源恰好一个终止事件，之后到达的信号全部丢弃
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

from .config.settings import ResourceSettings, resolve_resource_settings
from .errors import ConfigurationError, LoadTimeoutError
from .types import LifecycleEvent, LifecycleKind

if TYPE_CHECKING:
    from .loaders import BaseResourceLoader

logger = logging.getLogger("tierloader.task")

EventCallback = Callable[[LifecycleEvent], Any]


class LoadSignals:
    """交给加载器的信号接口

    加载器可以在任意时刻调用这些方法；重复或迟到的信号由任务自行丢弃。
    """

    __slots__ = ("_task",)

    def __init__(self, task: "ResourceLoadTask"):
        self._task = task

    @property
    def resource_id(self) -> str:
        return self._task.resource_id

    def started(self) -> None:
        self._task._on_started()

    def succeeded(self) -> None:
        self._task._finish(LifecycleKind.SUCCESS, source="loader")

    def failed(self, message: Optional[str] = None) -> None:
        self._task._finish(LifecycleKind.NETWORK_ERROR, message, source="loader")


class ResourceLoadTask:
    """包装一次加载器调用

    Attributes:
        resource_id: 资源标识
        raw_settings: 调用方给出的原始设置
        settings: 校验后的设置，设置无效时为 None
        terminal_event: 终止事件，尚未结束时为 None
    """

    def __init__(
        self,
        resource_id: str,
        settings: Any,
        loader: "BaseResourceLoader",
        on_event: EventCallback,
        *,
        default_timeout_ms: int = 0,
        cancel_on_timeout: bool = True,
    ):
        self.resource_id = resource_id
        self.raw_settings = settings
        self.settings: Optional[ResourceSettings] = None
        self.terminal_event: Optional[LifecycleEvent] = None
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

        self._loader = loader
        self._on_event = on_event
        self._default_timeout_ms = default_timeout_ms
        self._cancel_on_timeout = cancel_on_timeout

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._done: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._runner: Optional[asyncio.Future] = None
        self._loading_emitted = False

    @property
    def launched(self) -> bool:
        return self._done is not None

    @property
    def finished(self) -> bool:
        return self.terminal_event is not None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at) * 1000

    def launch(self) -> None:
        """开始加载（只能调用一次，必须在事件循环中调用）"""
        if self._done is not None:
            raise RuntimeError(f"task for '{self.resource_id}' already launched")

        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()
        self.started_at = self._loop.time()

        try:
            settings = resolve_resource_settings(self.raw_settings, self._default_timeout_ms)
        except ConfigurationError as e:
            logger.warning("资源设置无效 id=%s error=%s", self.resource_id, e)
            self._finish(LifecycleKind.SETTINGS_ERROR, str(e))
            return

        self.settings = settings
        if settings.timeout:
            self._timer = self._loop.call_later(settings.timeout / 1000, self._on_timeout)

        signals = LoadSignals(self)
        try:
            result = self._loader.load(self.resource_id, settings, signals)
        except Exception as e:
            logger.warning(
                "加载器调用失败 id=%s loader=%s error=%r",
                self.resource_id,
                self._loader.name,
                e,
            )
            self._finish(LifecycleKind.NETWORK_ERROR, _describe(e))
            return

        if inspect.isawaitable(result):
            self._runner = asyncio.ensure_future(result)
            self._runner.add_done_callback(self._on_runner_done)

    async def wait(self) -> LifecycleEvent:
        """等待终止事件"""
        if self._done is None:
            raise RuntimeError(f"task for '{self.resource_id}' has not been launched")
        return await self._done

    def cancel(self) -> None:
        """停止等待：解除计时器并尽力取消加载器协程，不产生事件"""
        self._disarm()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        if self._done is not None and not self._done.done():
            self._done.cancel()

    def _on_started(self) -> None:
        if self.finished or self._loading_emitted:
            logger.debug("丢弃多余的开始信号 id=%s", self.resource_id)
            return
        self._loading_emitted = True
        self._emit(LifecycleEvent.build(self.resource_id, self.settings, LifecycleKind.LOADING))

    def _on_timeout(self) -> None:
        self._timer = None
        if self.finished:
            return

        timeout_ms = self.settings.timeout if self.settings else 0
        self._finish(
            LifecycleKind.TIMEOUT,
            str(LoadTimeoutError(self.resource_id, timeout_ms)),
        )

        if self._cancel_on_timeout and self._runner is not None and not self._runner.done():
            logger.debug("超时后取消加载器协程 id=%s", self.resource_id)
            self._runner.cancel()

    def _on_runner_done(self, future: asyncio.Future) -> None:
        if future.cancelled():
            self._finish(LifecycleKind.NETWORK_ERROR, "load cancelled", source="runner")
            return

        exc = future.exception()
        if exc is not None:
            self._finish(LifecycleKind.NETWORK_ERROR, _describe(exc), source="runner")
        else:
            self._finish(LifecycleKind.SUCCESS, source="runner")

    def _finish(
        self,
        kind: LifecycleKind,
        message: Optional[str] = None,
        *,
        source: str = "task",
    ) -> None:
        if self.finished:
            logger.debug(
                "丢弃迟到的终止信号 id=%s kind=%s source=%s (已结束: %s)",
                self.resource_id,
                kind.value,
                source,
                self.terminal_event.kind.value,
            )
            return

        if self._done is not None and self._done.cancelled():
            logger.debug(
                "任务已取消，丢弃终止信号 id=%s kind=%s source=%s",
                self.resource_id,
                kind.value,
                source,
            )
            return

        self._disarm()
        settings = self.settings if self.settings is not None else self.raw_settings
        event = LifecycleEvent.build(self.resource_id, settings, kind, message)
        self.terminal_event = event
        if self._loop is not None:
            self.finished_at = self._loop.time()

        logger.debug("资源结束 id=%s kind=%s message=%s", self.resource_id, kind.value, event.message)
        try:
            self._emit(event)
        finally:
            if self._done is not None and not self._done.done():
                self._done.set_result(event)

    def _emit(self, event: LifecycleEvent) -> None:
        self._on_event(event)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __repr__(self) -> str:
        state = self.terminal_event.kind.value if self.terminal_event else "pending"
        return f"ResourceLoadTask(id='{self.resource_id}', state={state})"


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__
