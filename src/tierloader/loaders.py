"""资源加载器（调度核心之外的协作者）

加载器只需遵守一个很窄的约定：
- load(resource_id, settings, signals) 开始一次加载
- 可选地调用 signals.started()，最终调用一次 signals.succeeded() / signals.failed()
- 也可以直接返回一个 awaitable：正常结束视为成功，抛出异常视为失败

调度核心不关心加载器如何完成实际传输。
"""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Dict, Optional

from .config.settings import ResourceSettings
from .errors import TransportError
from .task import LoadSignals


class BaseResourceLoader(ABC):
    """资源加载器基类

    Attributes:
        name: 加载器名称，用于日志
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def load(
        self,
        resource_id: str,
        settings: ResourceSettings,
        signals: LoadSignals,
    ) -> Optional[Awaitable[Any]]:
        """开始加载一个资源

        Args:
            resource_id: 资源标识
            settings: 校验后的资源设置
            signals: 用于上报开始/成功/失败的信号接口

        Returns:
            None（通过 signals 上报结果）或一个 awaitable
        """
        raise NotImplementedError

    def __str__(self) -> str:
        return f"ResourceLoader(name={self.name})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"


class CallableResourceLoader(BaseResourceLoader):
    """将普通函数或协程函数适配为加载器

    函数签名为 fn(resource_id, settings)，返回值被忽略；
    调用前自动上报开始信号，抛出异常即为失败。
    """

    def __init__(
        self,
        func: Callable[[str, ResourceSettings], Any],
        name: Optional[str] = None,
    ):
        super().__init__(name or getattr(func, "__name__", "callable"))
        self.func = func

    def load(
        self,
        resource_id: str,
        settings: ResourceSettings,
        signals: LoadSignals,
    ) -> Awaitable[None]:
        return self._run(resource_id, settings, signals)

    async def _run(
        self,
        resource_id: str,
        settings: ResourceSettings,
        signals: LoadSignals,
    ) -> None:
        signals.started()
        result = self.func(resource_id, settings)
        if inspect.isawaitable(result):
            await result


class ModuleResourceLoader(BaseResourceLoader):
    """按资源标识导入 Python 模块

    资源标识可以是点分模块名（"package.module"），也可以是 .py 文件路径。
    settings.attrs 支持：
    - package: 相对模块名的锚点包
    - module_name: 文件路径导入时注册到 sys.modules 的名字，默认取文件名

    导入在线程中执行，避免阻塞事件循环。

    Attributes:
        modules: 已成功导入的模块，按资源标识索引
    """

    def __init__(self, name: str = "module"):
        super().__init__(name)
        self.modules: Dict[str, ModuleType] = {}
        self._log = logging.getLogger(f"tierloader.loaders.{name}")

    def load(
        self,
        resource_id: str,
        settings: ResourceSettings,
        signals: LoadSignals,
    ) -> Awaitable[None]:
        return self._import(resource_id, settings, signals)

    async def _import(
        self,
        resource_id: str,
        settings: ResourceSettings,
        signals: LoadSignals,
    ) -> None:
        signals.started()
        self._log.debug("导入模块 id=%s attrs=%s", resource_id, settings.attrs)
        module = await asyncio.to_thread(self._import_module, resource_id, settings.attrs)
        self.modules[resource_id] = module
        self._log.info("模块已加载 id=%s module=%s", resource_id, module.__name__)

    @staticmethod
    def _import_module(resource_id: str, attrs: Dict[str, Any]) -> ModuleType:
        if resource_id.endswith(".py"):
            return ModuleResourceLoader._import_path(Path(resource_id), attrs)

        try:
            return importlib.import_module(resource_id, package=attrs.get("package"))
        except ImportError as e:
            raise TransportError(
                f"cannot import module '{resource_id}': {e}",
                resource_id=resource_id,
            ) from e

    @staticmethod
    def _import_path(path: Path, attrs: Dict[str, Any]) -> ModuleType:
        if not path.is_file():
            raise TransportError(f"module file not found: {path}", resource_id=str(path))

        module_name = attrs.get("module_name") or path.stem
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise TransportError(f"cannot load module from {path}", resource_id=str(path))

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module
