"""配置加载器模块

分离 YAML、环境变量等不同配置源的加载逻辑，
按优先级深度合并后解析为 LoaderSettings。
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import ValidationError

from .settings import LoaderSettings

logger = logging.getLogger("tierloader.config.loaders")

CONFIG_FILE_NAME = "tierloader.yaml"
CONFIG_PATH_ENV = "TIERLOADER_CONFIG"


class ConfigLoader(ABC):
    """配置加载器抽象基类"""

    @abstractmethod
    def load(self) -> Dict[str, Any]:
        """加载配置数据

        Returns:
            配置数据字典
        """
        raise NotImplementedError

    @abstractmethod
    def is_available(self) -> bool:
        """检查配置源是否可用"""
        raise NotImplementedError


class YamlConfigLoader(ConfigLoader):
    """YAML 配置文件加载器

    未指定路径时，优先使用 TIERLOADER_CONFIG 环境变量，
    否则从当前工作目录向上查找 tierloader.yaml。
    """

    def __init__(self, file_path: Path | str | None = None):
        if file_path is None:
            file_path = os.environ.get(CONFIG_PATH_ENV)
        self.file_path = Path(file_path) if file_path else self._discover_config_path()
        logger.debug("YAML配置文件路径: %s", self.file_path)

    def _discover_config_path(self) -> Path:
        start = Path.cwd().resolve()
        for parent in (start, *start.parents):
            candidate = parent / CONFIG_FILE_NAME
            if candidate.exists():
                logger.info("发现配置文件: %s", candidate)
                return candidate
        return start / CONFIG_FILE_NAME

    def is_available(self) -> bool:
        return self.file_path.exists()

    def load(self) -> Dict[str, Any]:
        if not self.is_available():
            logger.debug("配置文件不存在: %s", self.file_path)
            return {}

        try:
            content = self.file_path.read_text(encoding="utf-8")
            data = yaml.safe_load(content) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("加载配置文件失败: %s error=%s", self.file_path, e)
            return {}

        if not isinstance(data, dict):
            logger.error("配置文件顶层必须是映射: %s", self.file_path)
            return {}

        logger.info("成功加载配置文件: %s", self.file_path)
        return data


class EnvironmentConfigLoader(ConfigLoader):
    """环境变量配置加载器

    TIERLOADER_DEFAULT_TIMEOUT_MS=500 -> {"default_timeout_ms": "500"}，
    类型转换交给 pydantic。
    """

    def __init__(self, prefix: str = "TIERLOADER_"):
        self.prefix = prefix

    def _iter_items(self):
        for key, value in os.environ.items():
            if key.startswith(self.prefix) and key != CONFIG_PATH_ENV:
                yield key[len(self.prefix):].lower(), value

    def is_available(self) -> bool:
        return any(True for _ in self._iter_items())

    def load(self) -> Dict[str, Any]:
        config = dict(self._iter_items())
        if config:
            logger.info("从环境变量加载了 %d 个配置项", len(config))
        return config


class DefaultConfigLoader(ConfigLoader):
    """默认配置加载器"""

    def is_available(self) -> bool:
        return True

    def load(self) -> Dict[str, Any]:
        return LoaderSettings().model_dump(mode="json")


class CompositeConfigLoader(ConfigLoader):
    """组合配置加载器

    按优先级顺序合并多个配置源的数据，后面的覆盖前面的。
    """

    def __init__(self, loaders: List[ConfigLoader]):
        self.loaders = loaders

    def is_available(self) -> bool:
        return any(loader.is_available() for loader in self.loaders)

    def load(self) -> Dict[str, Any]:
        merged_config: Dict[str, Any] = {}

        for loader in self.loaders:
            if loader.is_available():
                merged_config = self._deep_merge(merged_config, loader.load())
                logger.debug("合并配置: %s", type(loader).__name__)

        return merged_config

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result


class ConfigParser:
    """配置解析器，负责将原始配置数据转换为 LoaderSettings"""

    @staticmethod
    def parse(config_data: Dict[str, Any]) -> LoaderSettings:
        """解析配置数据

        无效配置不会阻止启动：记录错误并回退到默认配置。

        Args:
            config_data: 原始配置数据

        Returns:
            LoaderSettings 对象
        """
        try:
            settings = LoaderSettings.model_validate(config_data)
        except ValidationError as e:
            logger.error("配置解析失败，使用默认配置: %s", e)
            return LoaderSettings()

        logger.debug(
            "配置解析完成 default_timeout_ms=%d error_policy=%s",
            settings.default_timeout_ms,
            settings.error_policy.value,
        )
        return settings


def create_default_config_loader() -> CompositeConfigLoader:
    """创建默认的配置加载器

    按优先级顺序：默认配置 < YAML文件 < 环境变量
    """
    loaders = [
        DefaultConfigLoader(),
        YamlConfigLoader(),
        EnvironmentConfigLoader(),
    ]

    return CompositeConfigLoader(loaders)
