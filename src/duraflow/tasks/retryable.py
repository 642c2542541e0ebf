"""RetryableTask -- 带重试策略的 Activity / 子编排调用

失败后由回放引擎创建内部定时器，定时器触发后以新的序列号重新发出同一调用；
重试状态完全由历史重建，宿主重启后依然有效。
"""

from datetime import datetime, timedelta

from ..models.actions import CallActivityWithRetryAction, CallSubOrchestratorWithRetryAction
from .base import Task


class RetryableTask(Task):
    action: CallActivityWithRetryAction | CallSubOrchestratorWithRetryAction

    def __init__(
        self,
        action: CallActivityWithRetryAction | CallSubOrchestratorWithRetryAction,
        started_at: datetime,
    ) -> None:
        super().__init__(action)
        self.started_at = started_at
        self.attempt_count = 1

    def compute_next_delay(self, now: datetime) -> timedelta | None:
        """当前尝试失败后，返回下一次尝试前的等待；重试耗尽时返回 None"""
        return self.action.retry_options.compute_next_delay(
            self.attempt_count,
            now - self.started_at,
        )

    def next_attempt(self) -> CallActivityWithRetryAction | CallSubOrchestratorWithRetryAction:
        """内部定时器触发后，重新发出的调用"""
        self.attempt_count += 1
        return self.action
