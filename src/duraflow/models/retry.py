"""RetryOptions -- Activity / 子编排重试策略"""

from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RetryOptions(BaseModel):
    """重试策略

    第 n 次失败后的等待时长为
    first_retry_interval_ms * backoff_coefficient ** (n - 1)，
    超过 max_retry_interval_ms 时截断。
    """

    model_config = ConfigDict(frozen=True)

    first_retry_interval_ms: int = Field(gt=0, description="首次重试前等待（毫秒），必须大于 0")
    max_number_of_attempts: int = Field(ge=1, description="最大尝试次数（含首次调用）")
    backoff_coefficient: float = Field(default=1.0, gt=0, description="退避系数")
    max_retry_interval_ms: int | None = Field(
        default=None, gt=0, description="单次等待上限（毫秒）"
    )
    retry_timeout_ms: int | None = Field(
        default=None, gt=0, description="从首次调用起的重试总时限（毫秒）"
    )

    @model_validator(mode="after")
    def _check_intervals(self) -> "RetryOptions":
        if (
            self.max_retry_interval_ms is not None
            and self.max_retry_interval_ms < self.first_retry_interval_ms
        ):
            raise ValueError("max_retry_interval_ms 不能小于 first_retry_interval_ms")
        return self

    def compute_next_delay(self, attempt: int, elapsed: timedelta) -> timedelta | None:
        """计算下一次重试前的等待时长

        Args:
            attempt: 已经失败的尝试次数（从 1 开始）
            elapsed: 从首次调用到本次失败经过的编排时间

        Returns:
            等待时长；重试次数或时限耗尽时返回 None
        """
        if attempt >= self.max_number_of_attempts:
            return None

        delay_ms = self.first_retry_interval_ms * self.backoff_coefficient ** (attempt - 1)
        if self.max_retry_interval_ms is not None:
            delay_ms = min(delay_ms, self.max_retry_interval_ms)

        if self.retry_timeout_ms is not None:
            elapsed_ms = elapsed.total_seconds() * 1000
            if elapsed_ms + delay_ms > self.retry_timeout_ms:
                return None

        return timedelta(milliseconds=delay_ms)
