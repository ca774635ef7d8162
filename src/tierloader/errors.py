"""异常定义

单个资源的失败（超时、加载器失败、设置错误）以生命周期事件的形式上报，
只有构造阶段的配置错误与 abort 策略下的中止会以异常形式抛出。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .types import LifecycleEvent


class LoaderError(Exception):
    """tierloader 基础异常类"""

    pass


class ConfigurationError(LoaderError, ValueError):
    """优先级映射或资源设置无效

    Attributes:
        resource_id: 出错的资源标识（如果能定位到）
        value: 出错的原始值
    """

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        value: Any = None,
    ):
        self.resource_id = resource_id
        self.value = value
        super().__init__(message)


class LoadTimeoutError(LoaderError, TimeoutError):
    """资源在超时时间内没有产生终止信号"""

    def __init__(self, resource_id: str, timeout_ms: int):
        self.resource_id = resource_id
        self.timeout_ms = timeout_ms
        super().__init__(f"resource '{resource_id}' timed out after {timeout_ms}ms")


class TransportError(LoaderError):
    """加载器报告的失败（例如网络错误、模块导入失败）"""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        self.resource_id = resource_id
        super().__init__(message)


class ObserverError(LoaderError):
    """观察者回调在处理事件时抛出异常

    Attributes:
        event: 正在分发的事件
        original: 观察者抛出的原始异常
    """

    def __init__(self, event: "LifecycleEvent", original: BaseException):
        self.event = event
        self.original = original
        super().__init__(
            f"observer failed on {event.kind.value} event for '{event.id}': {original!r}"
        )


class LoadAbortedError(LoaderError):
    """abort 策略下，某个资源的终止性错误导致剩余层级被跳过"""

    def __init__(self, event: "LifecycleEvent", skipped_tiers: int = 0):
        self.event = event
        self.skipped_tiers = skipped_tiers
        super().__init__(
            f"load sequence aborted by '{event.id}' ({event.kind.value}: {event.message}), "
            f"{skipped_tiers} tier(s) skipped"
        )
