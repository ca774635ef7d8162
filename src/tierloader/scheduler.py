"""TierScheduler: 按层级顺序推进的调度器

状态完全由数据表达：
- cursor: 下一个要启动的层级下标
- phase: idle -> running -> finished / aborted

每个层级是一道屏障：launch_tier 返回的 awaitable 完成（该层所有资源都已
产生终止事件）之后才会启动下一层。层级之间严格串行，层内并发且无序。
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Tuple

from .errors import LoadAbortedError
from .types import LifecycleEvent, SchedulerPhase, Tier

LaunchTier = Callable[[Tuple[str, ...]], Awaitable[Any]]
AbortCheck = Callable[[], Optional[LifecycleEvent]]


class TierScheduler:
    """层级调度器"""

    def __init__(self, tiers: Sequence[Tier]):
        """初始化调度器

        Args:
            tiers: 按优先级升序排列的层级序列，构造后不再修改
        """
        self._tiers: Tuple[Tier, ...] = tuple(tiers)
        self._cursor = 0
        self._phase = SchedulerPhase.Idle
        self.completed_tiers = 0

        self._log = logging.getLogger("tierloader.scheduler")

    @property
    def tiers(self) -> Tuple[Tier, ...]:
        return self._tiers

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def phase(self) -> SchedulerPhase:
        return self._phase

    @property
    def remaining(self) -> int:
        return len(self._tiers) - self._cursor

    async def run(
        self,
        launch_tier: LaunchTier,
        on_all_done: Callable[[], Any],
        abort_check: Optional[AbortCheck] = None,
    ) -> None:
        """依次执行全部层级

        Args:
            launch_tier: 启动一个层级并在该层全部结束后完成
            on_all_done: 全部层级完成后调用一次
            abort_check: 每道屏障之后调用，返回非 None 的事件时中止

        Raises:
            RuntimeError: 重复调用
            LoadAbortedError: abort_check 报告了致命事件
        """
        if self._phase is not SchedulerPhase.Idle:
            raise RuntimeError("TierScheduler.run() may only be called once")

        self._phase = SchedulerPhase.Running
        self._log.info("开始分层加载: tiers=%d", len(self._tiers))

        while True:
            index = self._cursor
            tier = self._advance()
            if tier is None:
                self._phase = SchedulerPhase.Finished
                self._log.info("全部层级加载完成: tiers=%d", self.completed_tiers)
                on_all_done()
                return

            self._log.info(
                "启动层级 index=%d priority=%d resources=%d",
                index,
                tier.priority,
                len(tier),
            )
            await launch_tier(tier.ids)
            self.completed_tiers += 1
            self._log.debug("层级结束 index=%d priority=%d", index, tier.priority)

            fatal = abort_check() if abort_check is not None else None
            if fatal is not None:
                self._phase = SchedulerPhase.Aborted
                self._log.error(
                    "分层加载中止 trigger=%s kind=%s skipped_tiers=%d",
                    fatal.id,
                    fatal.kind.value,
                    self.remaining,
                )
                raise LoadAbortedError(fatal, skipped_tiers=self.remaining)

    def _advance(self) -> Optional[Tier]:
        if self._cursor >= len(self._tiers):
            return None
        tier = self._tiers[self._cursor]
        self._cursor += 1
        return tier

    def __repr__(self) -> str:
        return (
            f"TierScheduler(phase={self._phase.value}, cursor={self._cursor}, "
            f"tiers={len(self._tiers)})"
        )
