"""核心数据类型

- PriorityEntry / Tier: 优先级索引的输入与产物
- LifecycleKind / LifecycleEvent: 单个资源的生命周期事件
- ErrorPolicy: 终止性错误的处理策略
- SchedulerPhase: 层级调度器的状态
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class LifecycleKind(str, Enum):
    """生命周期事件类型，每个成员带有固定的 code。

    - LOADING: 开始加载（非终止）
    - SUCCESS: 加载成功
    - TIMEOUT: 超时
    - NETWORK_ERROR: 加载器报告失败
    - SETTINGS_ERROR: 资源设置无效，未真正开始加载
    """

    LOADING = "loading"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    SETTINGS_ERROR = "settings_error"

    @property
    def code(self) -> int:
        return _KIND_CODES[self]

    @property
    def terminal(self) -> bool:
        return self is not LifecycleKind.LOADING

    @property
    def is_error(self) -> bool:
        return self.terminal and self is not LifecycleKind.SUCCESS


_KIND_CODES: Dict[LifecycleKind, int] = {
    LifecycleKind.LOADING: 1,
    LifecycleKind.SUCCESS: 2,
    LifecycleKind.TIMEOUT: 3,
    LifecycleKind.NETWORK_ERROR: 4,
    LifecycleKind.SETTINGS_ERROR: 5,
}

_DEFAULT_MESSAGES: Dict[LifecycleKind, str] = {
    LifecycleKind.LOADING: "loading started",
    LifecycleKind.SUCCESS: "loaded",
    LifecycleKind.TIMEOUT: "timed out",
    LifecycleKind.NETWORK_ERROR: "load failed",
    LifecycleKind.SETTINGS_ERROR: "invalid settings",
}


class ErrorPolicy(str, Enum):
    """终止性错误的处理策略

    - continue: 错误仅作为事件通知观察者，后续层级照常执行
    - abort: 当前层级全部结束后停止，跳过剩余层级
    """

    Continue = "continue"
    Abort = "abort"


class SchedulerPhase(str, Enum):
    Idle = "idle"
    Running = "running"
    Finished = "finished"
    Aborted = "aborted"


@dataclass(frozen=True)
class PriorityEntry:
    id: str
    priority: int


@dataclass(frozen=True)
class Tier:
    """同一优先级的资源集合，作为一个整体并发加载。"""

    priority: int
    ids: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """单个资源的生命周期事件

    Attributes:
        id: 资源标识
        settings: 该资源加载时使用的设置（原样传递）
        finished: 是否为终止事件
        error: 是否为错误
        code: 与 kind 一一对应的数字编码
        kind: 事件类型
        message: 可读描述
    """

    id: str
    settings: Any
    finished: bool
    error: bool
    code: int
    kind: LifecycleKind
    message: str

    @classmethod
    def build(
        cls,
        resource_id: str,
        settings: Any,
        kind: LifecycleKind,
        message: Optional[str] = None,
    ) -> "LifecycleEvent":
        """根据事件类型推导 finished / error / code 字段"""
        return cls(
            id=resource_id,
            settings=settings,
            finished=kind.terminal,
            error=kind.is_error,
            code=kind.code,
            kind=kind,
            message=message or _DEFAULT_MESSAGES[kind],
        )

    def to_dict(self) -> Dict[str, Any]:
        settings = self.settings
        if hasattr(settings, "model_dump"):
            settings = settings.model_dump()
        elif isinstance(settings, Mapping):
            settings = dict(settings)
        return {
            "id": self.id,
            "settings": settings,
            "finished": self.finished,
            "error": self.error,
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"LifecycleEvent(id={self.id}, kind={self.kind.value}, code={self.code})"
