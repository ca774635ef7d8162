"""SchedulerHandle: 调用方使用的入口对象

典型用法::

    handle = SchedulerHandle({"a": 1, "b": 1, "c": 2}, {"timeout": 500}, loader=loader)
    handle.lifecycle(print)
    handle.start(lambda: print("done"))
    await handle.wait()
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from .bus import LifecycleBus, Observer
from .config.settings import LoaderSettings, ResourceSettings, get_settings
from .loaders import BaseResourceLoader, CallableResourceLoader
from .priority_index import build_tiers
from .scheduler import TierScheduler
from .task import ResourceLoadTask
from .types import ErrorPolicy, SchedulerPhase, Tier

logger = logging.getLogger("tierloader.handle")

LoaderLike = Union[BaseResourceLoader, Callable[[str, ResourceSettings], Any]]


class SchedulerHandle:
    """分层资源加载器

    构造时立即解析优先级映射；start() 只会生效一次。

    Attributes:
        config: 全局加载配置（默认超时、错误策略等）
    """

    def __init__(
        self,
        priority_map: Mapping[str, Any],
        settings: Any = None,
        *,
        loader: LoaderLike,
        config: Optional[LoaderSettings] = None,
        overrides: Optional[Mapping[str, Any]] = None,
    ):
        """初始化加载器

        Args:
            priority_map: 资源标识到优先级（整数或数字字符串）的映射
            settings: 所有资源共用的设置（timeout 毫秒、attrs）
            loader: 实际执行加载的协作者，普通函数会被自动适配
            config: 加载配置，默认使用 get_settings()
            overrides: 按资源标识覆盖的设置，与共用设置浅合并

        Raises:
            ConfigurationError: 优先级映射无效
        """
        self._tiers: Tuple[Tier, ...] = build_tiers(priority_map)
        self.config = config or get_settings()
        self._settings = settings
        self._overrides: Dict[str, Any] = dict(overrides or {})
        self._loader = self._adapt_loader(loader)

        self._bus = LifecycleBus(policy=self.config.error_policy)
        self._scheduler = TierScheduler(self._tiers)
        self._started = False
        self._run_task: Optional[asyncio.Task] = None
        self._tasks: Dict[str, ResourceLoadTask] = {}
        self._tier_index: Dict[str, int] = {
            resource_id: index
            for index, tier in enumerate(self._tiers)
            for resource_id in tier.ids
        }

        unknown = sorted(set(self._overrides) - set(self._tier_index))
        if unknown:
            logger.warning("覆盖设置中包含未知资源，将被忽略: %s", unknown)

        logger.debug(
            "加载器初始化完成 resources=%d tiers=%d loader=%s policy=%s",
            len(self._tier_index),
            len(self._tiers),
            self._loader.name,
            self.config.error_policy.value,
        )

    @classmethod
    def load(
        cls,
        priority_map: Mapping[str, Any],
        settings: Any = None,
        **kwargs: Any,
    ) -> "SchedulerHandle":
        """使用指定的优先级映射创建加载器"""
        return cls(priority_map, settings, **kwargs)

    @property
    def tiers(self) -> Tuple[Tier, ...]:
        return self._tiers

    @property
    def started(self) -> bool:
        return self._started

    @property
    def phase(self) -> SchedulerPhase:
        return self._scheduler.phase

    @property
    def bus(self) -> LifecycleBus:
        return self._bus

    def lifecycle(self, observer: Optional[Observer]) -> "SchedulerHandle":
        """注册（或替换）生命周期观察者，返回自身以便链式调用

        start() 之后替换观察者时，正在分发的事件可能由新旧任一观察者接收。
        """
        self._bus.subscribe(observer)
        return self

    def start(self, on_finish: Optional[Callable[[], Any]] = None) -> Optional[asyncio.Task]:
        """开始加载，只有第一次调用生效

        必须在运行中的事件循环里调用。

        Args:
            on_finish: 最后一个层级完成后调用一次，不带参数

        Returns:
            驱动加载的 asyncio.Task；重复调用返回 None
        """
        if self._started:
            logger.warning("加载已经开始，忽略重复的 start() 调用")
            return None

        loop = asyncio.get_running_loop()
        self._started = True
        self._run_task = loop.create_task(self._run(on_finish), name="tierloader.run")
        return self._run_task

    async def wait(self) -> None:
        """等待加载结束

        Raises:
            RuntimeError: 尚未调用 start()
            LoadAbortedError: abort 策略下发生了终止性错误
        """
        if self._run_task is None:
            raise RuntimeError("start() has not been called")
        await self._run_task

    async def run(self, on_finish: Optional[Callable[[], Any]] = None) -> None:
        """start() 并等待结束"""
        self.start(on_finish)
        await self.wait()

    def report(self) -> Dict[str, Any]:
        """获取加载报告

        Returns:
            包含状态、各资源结果与耗时、按类型计数的字典
        """
        resources: Dict[str, Dict[str, Any]] = {}
        counts: Counter = Counter()
        for tier in self._tiers:
            for resource_id in tier.ids:
                task = self._tasks.get(resource_id)
                event = task.terminal_event if task else None
                kind = event.kind.value if event else None
                if kind:
                    counts[kind] += 1
                resources[resource_id] = {
                    "tier": self._tier_index[resource_id],
                    "priority": tier.priority,
                    "kind": kind,
                    "message": event.message if event else None,
                    "duration_ms": task.duration_ms if task else None,
                }

        return {
            "phase": self.phase.value,
            "tiers": len(self._tiers),
            "completed_tiers": self._scheduler.completed_tiers,
            "resources": resources,
            "counts": dict(counts),
            "observer_failures": self._bus.observer_failures,
        }

    async def _run(self, on_finish: Optional[Callable[[], Any]]) -> None:
        def finish() -> None:
            if on_finish is not None:
                on_finish()

        abort_check = None
        if self.config.error_policy is ErrorPolicy.Abort:
            abort_check = self._bus.take_fatal

        await self._scheduler.run(self._launch_tier, finish, abort_check=abort_check)

    async def _launch_tier(self, ids: Tuple[str, ...]) -> None:
        tasks = [
            ResourceLoadTask(
                resource_id,
                self._settings_for(resource_id),
                self._loader,
                self._bus.notify,
                default_timeout_ms=self.config.default_timeout_ms,
                cancel_on_timeout=self.config.cancel_on_timeout,
            )
            for resource_id in ids
        ]
        for task in tasks:
            self._tasks[task.resource_id] = task
            task.launch()

        try:
            await asyncio.gather(*(task.wait() for task in tasks))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            raise

    def _settings_for(self, resource_id: str) -> Any:
        override = self._overrides.get(resource_id)
        if override is None:
            return self._settings
        shared = _as_mapping(self._settings)
        extra = _as_mapping(override)
        # 无法合并的值原样交给任务，由任务产生 SETTINGS_ERROR
        if extra is None:
            return override
        if shared is None:
            return self._settings
        return {**shared, **extra}

    @staticmethod
    def _adapt_loader(loader: LoaderLike) -> BaseResourceLoader:
        if isinstance(loader, BaseResourceLoader):
            return loader
        if callable(loader):
            return CallableResourceLoader(loader)
        raise TypeError(f"loader must be a BaseResourceLoader or callable, got {type(loader).__name__}")


def _as_mapping(settings: Any) -> Optional[Dict[str, Any]]:
    """把设置转换为可浅合并的字典，无法转换时返回 None"""
    if settings is None:
        return {}
    if isinstance(settings, ResourceSettings):
        return settings.model_dump(exclude_unset=True)
    if isinstance(settings, Mapping):
        return dict(settings)
    return None
