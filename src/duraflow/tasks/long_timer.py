"""LongTimerTask -- 超过单个定时器最长时长的定时器

宿主的定时器有最长时长限制；更长的定时器拆分为若干段子定时器依次发出，
每段触发后由回放引擎按当前编排时间发出下一段，直到最终触发时间。
"""

from datetime import datetime, timedelta

from ..models.actions import CreateTimerAction
from .base import TimerListener, TimerTask


class LongTimerTask(TimerTask):
    """action 始终是当前这一段子定时器，fire_at 是最终触发时间

    取消作用于整个定时器：当前子定时器以取消状态发出，之后不再发出新的分段。
    """

    def __init__(
        self,
        fire_at: datetime,
        now: datetime,
        maximum_short_timer: timedelta,
        interval: timedelta,
        listener: TimerListener,
    ) -> None:
        self.fire_at = fire_at
        self.maximum_short_timer = maximum_short_timer
        self.interval = interval
        self.segment_count = 1
        super().__init__(self._segment(now), listener)

    def _segment(self, now: datetime) -> CreateTimerAction:
        if self.fire_at - now > self.maximum_short_timer:
            return CreateTimerAction(fire_at=now + self.interval)
        return CreateTimerAction(fire_at=self.fire_at)

    def next_segment(self, now: datetime) -> CreateTimerAction | None:
        """当前子定时器触发后调用，已到最终触发时间时返回 None"""
        if self.is_canceled or self.fire_at <= now:
            return None
        self.action = self._segment(now)
        self.segment_count += 1
        return self.action
