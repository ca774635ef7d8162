"""tierloader: 按优先级分层的异步资源加载调度器

包含：
- SchedulerHandle: 对外入口，注册观察者、启动加载、汇报结果
- TierScheduler: 逐层推进的调度状态机
- ResourceLoadTask: 单个资源的加载、超时与终止事件保证
- LifecycleBus: 单订阅者事件总线，隔离观察者故障
- build_tiers: 解析优先级映射为层级序列
- BaseResourceLoader 及其实现: 实际执行加载的协作者

同一优先级的资源并发加载，下一层级在当前层级全部结束（成功或失败）后才开始。
"""

from .bus import LifecycleBus
from .config import LoaderSettings, ResourceSettings, get_settings
from .errors import (
    ConfigurationError,
    LoadAbortedError,
    LoaderError,
    LoadTimeoutError,
    ObserverError,
    TransportError,
)
from .handle import SchedulerHandle
from .loaders import BaseResourceLoader, CallableResourceLoader, ModuleResourceLoader
from .priority_index import build_tiers
from .scheduler import TierScheduler
from .task import LoadSignals, ResourceLoadTask
from .types import (
    ErrorPolicy,
    LifecycleEvent,
    LifecycleKind,
    PriorityEntry,
    SchedulerPhase,
    Tier,
)

__all__ = [
    "SchedulerHandle",
    "TierScheduler",
    "ResourceLoadTask",
    "LoadSignals",
    "LifecycleBus",
    "build_tiers",
    "BaseResourceLoader",
    "CallableResourceLoader",
    "ModuleResourceLoader",
    "LoaderSettings",
    "ResourceSettings",
    "get_settings",
    "ErrorPolicy",
    "LifecycleEvent",
    "LifecycleKind",
    "PriorityEntry",
    "SchedulerPhase",
    "Tier",
    "LoaderError",
    "ConfigurationError",
    "LoadTimeoutError",
    "TransportError",
    "ObserverError",
    "LoadAbortedError",
]
