"""EngineConfig -- 回放引擎配置加载

从环境变量加载配置。
"""

import os

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

log = structlog.get_logger()

DEFAULT_HTTP_POLL_INTERVAL_MS = 30_000
DEFAULT_MAXIMUM_SHORT_TIMER_MS = 6 * 24 * 3600 * 1000  # 6 天
DEFAULT_LONG_TIMER_INTERVAL_MS = 3 * 24 * 3600 * 1000  # 3 天

_TIMER_FIELDS = ("maximum_short_timer_ms", "long_running_timer_interval_ms")


class EngineConfig(BaseModel):
    """回放引擎配置 -- 从环境变量加载

    环境变量:
        DURAFLOW_HTTP_POLL_INTERVAL_MS: HTTP 202 轮询默认间隔（毫秒，默认 30000）
        DURAFLOW_LOG_REPLAY: 回放期间是否输出编排日志（默认 false）
        DURAFLOW_MAX_SHORT_TIMER_MS: 单个定时器允许的最长时长（毫秒，默认 6 天）
        DURAFLOW_LONG_TIMER_INTERVAL_MS: 长定时器拆分后每段的时长（毫秒，默认 3 天）
    """

    http_poll_interval_ms: int = Field(
        default=DEFAULT_HTTP_POLL_INTERVAL_MS,
        ge=1,
        description="未返回 Retry-After 时的 HTTP 轮询间隔（毫秒）",
    )
    log_replay_events: bool = Field(
        default=False,
        description="replay-safe logger 在回放阶段是否仍然输出",
    )
    maximum_short_timer_ms: int = Field(
        default=DEFAULT_MAXIMUM_SHORT_TIMER_MS,
        ge=1,
        description="超过该时长的定时器拆分为多段子定时器",
    )
    long_running_timer_interval_ms: int = Field(
        default=DEFAULT_LONG_TIMER_INTERVAL_MS,
        ge=1,
        description="长定时器每段子定时器的时长",
    )

    @model_validator(mode="after")
    def _check_timer_interval(self) -> "EngineConfig":
        if self.long_running_timer_interval_ms > self.maximum_short_timer_ms:
            raise ValueError(
                "long_running_timer_interval_ms 不能大于 maximum_short_timer_ms"
            )
        return self


def _positive_int_env(env_var: str, fallback: int) -> int | None:
    """读取正整数环境变量；未设置返回 None，非法值记录 warning 后返回 None"""
    val = os.environ.get(env_var)
    if not val:
        return None
    try:
        number = int(val)
        if number < 1:
            raise ValueError(val)
        return number
    except ValueError:
        log.warning(
            "invalid_engine_config",
            env_var=env_var,
            value=val,
            fallback=fallback,
        )
        return None


def load_engine_config() -> EngineConfig:
    """从环境变量加载引擎配置

    环境变量映射:
        DURAFLOW_HTTP_POLL_INTERVAL_MS -> http_poll_interval_ms (默认 30000)
        DURAFLOW_LOG_REPLAY -> log_replay_events (默认 false)
        DURAFLOW_MAX_SHORT_TIMER_MS -> maximum_short_timer_ms (默认 6 天)
        DURAFLOW_LONG_TIMER_INTERVAL_MS -> long_running_timer_interval_ms (默认 3 天)

    两个定时器配置组合非法时（每段时长大于最长时长），二者都回退到默认值。

    Returns:
        EngineConfig 实例
    """
    kwargs: dict = {}

    for env_var, field, fallback in (
        ("DURAFLOW_HTTP_POLL_INTERVAL_MS", "http_poll_interval_ms", DEFAULT_HTTP_POLL_INTERVAL_MS),
        ("DURAFLOW_MAX_SHORT_TIMER_MS", "maximum_short_timer_ms", DEFAULT_MAXIMUM_SHORT_TIMER_MS),
        (
            "DURAFLOW_LONG_TIMER_INTERVAL_MS",
            "long_running_timer_interval_ms",
            DEFAULT_LONG_TIMER_INTERVAL_MS,
        ),
    ):
        if (number := _positive_int_env(env_var, fallback)) is not None:
            kwargs[field] = number

    if val := os.environ.get("DURAFLOW_LOG_REPLAY"):
        kwargs["log_replay_events"] = val.strip().lower() in ("1", "true", "yes")

    try:
        return EngineConfig(**kwargs)
    except ValidationError:
        log.warning(
            "invalid_timer_config",
            maximum_short_timer_ms=kwargs.get("maximum_short_timer_ms"),
            long_running_timer_interval_ms=kwargs.get("long_running_timer_interval_ms"),
        )
        for field in _TIMER_FIELDS:
            kwargs.pop(field, None)
        return EngineConfig(**kwargs)
