"""优先级索引

将 `资源标识 -> 优先级` 映射解析为按优先级升序排列的层级序列。
层级在构造时一次性生成，之后不可变。
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from typing import Any, Iterator, List, Tuple

from .errors import ConfigurationError
from .types import PriorityEntry, Tier

logger = logging.getLogger("tierloader.priority_index")

# 与 parseInt(value, 10) 一致：允许前导空白和符号，只取开头的 ASCII 数字部分
_LEADING_INT = re.compile(r"^\s*([+-]?[0-9]+)")


def parse_priority(value: Any, resource_id: str) -> int:
    """把优先级值转换为整数

    Args:
        value: 整数、浮点数或数字字符串
        resource_id: 资源标识，仅用于错误信息

    Returns:
        转换后的整数优先级

    Raises:
        ConfigurationError: 值不是数字或数字字符串，或无法得到有效整数
    """
    if isinstance(value, bool):
        raise ConfigurationError(
            f"priority must be number-like, got bool ({value!r}) for '{resource_id}'",
            resource_id=resource_id,
            value=value,
        )

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ConfigurationError(
                f"priority is not a finite number: {value!r} for '{resource_id}'",
                resource_id=resource_id,
                value=value,
            )
        return int(value)

    if isinstance(value, str):
        match = _LEADING_INT.match(value)
        if match is None:
            raise ConfigurationError(
                f"priority is not number-like: {value!r} for '{resource_id}'",
                resource_id=resource_id,
                value=value,
            )
        try:
            return int(match.group(1))
        except ValueError as e:
            # 超过解释器的整数位数上限
            raise ConfigurationError(
                f"priority is too long to convert: {len(match.group(1))} digits "
                f"for '{resource_id}'",
                resource_id=resource_id,
                value=value,
            ) from e

    raise ConfigurationError(
        f"priority must be number-like, got {type(value).__name__} ({value!r}) "
        f"for '{resource_id}'",
        resource_id=resource_id,
        value=value,
    )


def iter_entries(priority_map: Any) -> Iterator[PriorityEntry]:
    """按插入顺序逐个解析映射中的条目"""
    if priority_map is None or not isinstance(priority_map, Mapping):
        raise ConfigurationError(
            f"priority map must be a mapping, got {type(priority_map).__name__}",
            value=priority_map,
        )

    for resource_id, raw in priority_map.items():
        if not isinstance(resource_id, str):
            raise ConfigurationError(
                f"resource id must be a string, got {type(resource_id).__name__} "
                f"({resource_id!r})",
                value=resource_id,
            )
        yield PriorityEntry(id=resource_id, priority=parse_priority(raw, resource_id))


def build_tiers(priority_map: Any) -> Tuple[Tier, ...]:
    """构建层级序列

    先解析全部条目（任一条目失败则整体失败，不产生任何层级），
    再按优先级稳定排序，最后一次线性扫描切分出连续的同优先级区间。

    Args:
        priority_map: 资源标识到优先级的映射

    Returns:
        按优先级升序排列的层级元组

    Raises:
        ConfigurationError: 映射缺失、类型错误或包含无效优先级
    """
    entries = list(iter_entries(priority_map))
    # sorted 是稳定排序，同优先级保持插入顺序
    entries = sorted(entries, key=lambda entry: entry.priority)

    tiers: List[Tier] = []
    run: List[str] = []
    current = None
    for entry in entries:
        if run and entry.priority != current:
            tiers.append(Tier(priority=current, ids=tuple(run)))
            run = []
        current = entry.priority
        run.append(entry.id)
    if run:
        tiers.append(Tier(priority=current, ids=tuple(run)))

    logger.debug(
        "构建层级完成: resources=%d tiers=%d", len(entries), len(tiers)
    )
    return tuple(tiers)
