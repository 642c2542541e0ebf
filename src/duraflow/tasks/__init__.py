"""Task / TaskSet 组合"""

from .base import Task, TaskBase, TimerTask
from .http_polling import HTTP_ACTIVITY_NAME, HttpPollingTask
from .long_timer import LongTimerTask
from .retryable import RetryableTask
from .sets import TaskSet, WhenAllTask, WhenAnyTask

__all__ = [
    "HTTP_ACTIVITY_NAME",
    "HttpPollingTask",
    "LongTimerTask",
    "RetryableTask",
    "Task",
    "TaskBase",
    "TaskSet",
    "TimerTask",
    "WhenAllTask",
    "WhenAnyTask",
]
