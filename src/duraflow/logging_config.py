"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出，便于宿主进程采集

回放与实体批处理期间，实例信息（instance_id / orchestrator / entity）
通过 log_context 绑定到 contextvars，编排函数和实体操作内的日志也会带上。
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 配置

    未显式传入时读取环境变量：
    - DURAFLOW_LOG_FORMAT: "json" 为结构化 JSON 输出，"dev"（默认）为可读输出
    - DURAFLOW_LOG_LEVEL: 日志级别（默认 INFO）
    """
    log_format = log_format or os.environ.get("DURAFLOW_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("DURAFLOW_LOG_LEVEL", "INFO")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        # 非确定性错误等异常信息转为字符串字段
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    # CLI 输出走 stdout，日志统一写 stderr
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


@contextmanager
def log_context(**bindings: Any) -> Iterator[None]:
    """在一次回放或实体批处理期间绑定实例信息

    退出时恢复进入前的 contextvars，宿主可在同一线程内依次处理多个实例。
    """
    with structlog.contextvars.bound_contextvars(**bindings):
        yield
