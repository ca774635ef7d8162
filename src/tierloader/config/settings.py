from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigurationError
from ..types import ErrorPolicy

logger = logging.getLogger("tierloader.config")


class ResourceSettings(BaseModel):
    """单个资源的加载设置

    timeout 单位为毫秒，0 或缺省表示不限时；attrs 原样交给加载器，核心不解释。
    其他未识别的字段保留，同样透传给加载器。
    """

    model_config = ConfigDict(extra="allow")

    timeout: Optional[int] = Field(default=None, ge=0)
    attrs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timeout", mode="before")
    @classmethod
    def reject_bool_timeout(cls, value: Any) -> Any:
        # 宽松模式会把 True 当作 1
        if isinstance(value, bool):
            raise ValueError("timeout must be a number of milliseconds, not a bool")
        return value


class LoaderSettings(BaseModel):
    default_timeout_ms: int = Field(default=0, ge=0)
    error_policy: ErrorPolicy = Field(default=ErrorPolicy.Continue)
    cancel_on_timeout: bool = Field(default=True)
    log_level: str = Field(default="INFO")


_settings: LoaderSettings | None = None


def get_settings() -> LoaderSettings:
    """获取全局配置实例（默认配置 < YAML 文件 < 环境变量）"""
    global _settings
    if _settings is None:
        from .loaders import ConfigParser, create_default_config_loader

        _settings = ConfigParser.parse(create_default_config_loader().load())
        logger.debug("加载全局配置: %s", _settings.model_dump())
    return _settings


def reset_settings() -> None:
    """清除缓存的全局配置，下次 get_settings() 时重新加载"""
    global _settings
    _settings = None


def resolve_resource_settings(raw: Any, default_timeout_ms: int = 0) -> ResourceSettings:
    """校验并补全单个资源的设置

    Args:
        raw: None、映射或 ResourceSettings
        default_timeout_ms: 未显式给出 timeout 时使用的默认值

    Returns:
        校验后的 ResourceSettings（timeout 一定不为 None）

    Raises:
        ConfigurationError: 设置不是映射，或 timeout 无法转换为非负整数
    """
    if raw is None:
        settings = ResourceSettings()
    elif isinstance(raw, ResourceSettings):
        settings = raw
    elif isinstance(raw, Mapping):
        try:
            settings = ResourceSettings.model_validate(dict(raw))
        except ValidationError as e:
            raise ConfigurationError(
                f"invalid resource settings: {_describe_validation_error(e)}",
                value=raw,
            ) from e
    else:
        raise ConfigurationError(
            f"resource settings must be a mapping, got {type(raw).__name__}",
            value=raw,
        )

    if settings.timeout is None:
        settings = settings.model_copy(update={"timeout": default_timeout_ms})
    return settings


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "settings"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
