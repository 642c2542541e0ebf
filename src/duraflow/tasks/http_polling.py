"""HttpPollingTask -- Durable HTTP 调用，支持 202 异步轮询模式

响应为 202 且带 Location 头时，等待 Retry-After（或默认间隔）后
对 Location 发出 GET 轮询，直到返回非 202 响应。
"""

from datetime import timedelta

from ..models.actions import CallHttpAction
from ..models.http import DurableHttpRequest, DurableHttpResponse
from .base import Task

HTTP_ACTIVITY_NAME = "BuiltIn::HttpActivity"


class HttpPollingTask(Task):
    action: CallHttpAction

    def __init__(self, action: CallHttpAction, default_poll_interval: timedelta) -> None:
        super().__init__(action)
        self.default_poll_interval = default_poll_interval
        self._poll_request: DurableHttpRequest | None = None

    def poll_delay(self, response: DurableHttpResponse) -> timedelta | None:
        """判断是否需要继续轮询

        Returns:
            下一次轮询前的等待；无需轮询时返回 None
        """
        if response.status_code != 202 or not self.action.request.async_pattern_enabled:
            return None
        location = response.get_header("Location")
        if not location:
            return None

        self._poll_request = DurableHttpRequest(
            method="GET",
            uri=location,
            headers=self.action.request.headers,
            token_source=self.action.request.token_source,
            async_pattern_enabled=self.action.request.async_pattern_enabled,
        )

        retry_after = response.get_header("Retry-After")
        if retry_after is not None:
            try:
                return timedelta(seconds=int(retry_after))
            except ValueError:
                pass
        return self.default_poll_interval

    def next_attempt(self) -> CallHttpAction:
        """内部定时器触发后，对 Location 发出的 GET 请求"""
        if self._poll_request is None:
            return self.action
        return CallHttpAction(request=self._poll_request)
