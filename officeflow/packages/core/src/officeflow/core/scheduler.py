"""DelayedScheduler -- 可取消的延迟任务调度器

UI 节奏（pacing）步骤与正确性路径解耦：每个延迟步骤持有取消令牌，
按 group（通常为 request_id 或适配器实例 ID）归组，
被更快的权威信号取代时整组取消，服务关闭时全部取消。
取消只打断等待；已开始执行的步骤会完整跑完（含其数据库事务），其后的步骤不再执行。
scale=0 时所有延迟压缩为立即执行（无头/测试场景）。
"""

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Sequence

import structlog

log = structlog.get_logger()

Step = Callable[[], Awaitable[None]]


class TimerToken:
    """单个延迟序列的取消令牌"""

    def __init__(self, group: str) -> None:
        self.group = group
        self._task: asyncio.Task | None = None
        self._in_step = False
        self._cancel_requested = False

    def cancel(self) -> bool:
        """取消尚未执行完的序列；已完成时返回 False

        正在执行的步骤不会被打断，序列在该步骤结束后停止。
        """
        if self._task is None or self._task.done() or self._cancel_requested:
            return False
        self._cancel_requested = True
        if not self._in_step:
            self._task.cancel()
        return True

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested


class DelayedScheduler:
    """延迟任务调度器"""

    def __init__(self, scale: float = 1.0) -> None:
        """
        Args:
            scale: 延迟缩放系数，0 表示立即执行
        """
        self._scale = max(scale, 0.0)
        self._groups: dict[str, set[TimerToken]] = defaultdict(set)
        self._closed = False

    @property
    def scale(self) -> float:
        return self._scale

    def schedule(self, delay_s: float, step: Step, *, group: str) -> TimerToken:
        """在 delay_s（乘以缩放系数）之后执行 step"""
        return self.schedule_sequence([(delay_s, step)], group=group)

    def schedule_sequence(
        self,
        steps: Sequence[tuple[float, Step]],
        *,
        group: str,
    ) -> TimerToken:
        """按序执行一组步骤，offset 为相对调度时刻的绝对偏移（秒）

        同一序列中的步骤严格按给定顺序执行，即使缩放后延迟全部为 0。
        """
        if self._closed:
            raise RuntimeError("scheduler is closed")
        ordered = sorted(steps, key=lambda s: s[0])
        token = TimerToken(group)
        task = asyncio.get_running_loop().create_task(self._run(ordered, token))
        token._task = task
        self._groups[group].add(token)
        task.add_done_callback(lambda _t: self._discard(token))
        return token

    async def _run(self, steps: list[tuple[float, Step]], token: TimerToken) -> None:
        elapsed = 0.0
        for offset, step in steps:
            wait = max(offset - elapsed, 0.0) * self._scale
            await asyncio.sleep(wait)
            elapsed = max(offset, elapsed)
            if token._cancel_requested:
                return
            token._in_step = True
            try:
                await step()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(
                    "scheduled_step_failed",
                    group=token.group,
                    step=getattr(step, "__name__", repr(step)),
                    error_type=type(e).__name__,
                    error=str(e),
                )
            finally:
                token._in_step = False
            if token._cancel_requested:
                return

    def _discard(self, token: TimerToken) -> None:
        tokens = self._groups.get(token.group)
        if tokens is None:
            return
        tokens.discard(token)
        if not tokens:
            del self._groups[token.group]

    def cancel_group(self, group: str) -> int:
        """取消指定 group 的全部待执行任务

        Returns:
            实际被取消的任务数
        """
        tokens = list(self._groups.get(group, ()))
        cancelled = sum(1 for token in tokens if token.cancel())
        if cancelled:
            log.debug("scheduler_group_cancelled", group=group, cancelled=cancelled)
        return cancelled

    def cancel_all(self) -> int:
        """取消全部待执行任务（服务关闭时调用）"""
        cancelled = 0
        for group in list(self._groups):
            cancelled += self.cancel_group(group)
        return cancelled

    def pending(self, group: str | None = None) -> int:
        """待执行任务数"""
        if group is not None:
            return len(self._groups.get(group, ()))
        return sum(len(tokens) for tokens in self._groups.values())

    async def drain(self) -> None:
        """等待所有待执行任务结束，包括执行过程中新调度的任务"""
        while True:
            tasks = [token._task for tokens in self._groups.values() for token in tokens]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)
            # 让 done_callback 完成清理
            await asyncio.sleep(0)

    async def close(self) -> None:
        """取消全部任务并拒绝新的调度"""
        self._closed = True
        self.cancel_all()
        await self.drain()
