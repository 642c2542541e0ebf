"""日志上下文测试"""

import structlog
from duraflow.logging_config import log_context


class TestLogContext:
    def test_binds_and_restores(self):
        structlog.contextvars.bind_contextvars(host="worker-1")
        try:
            with log_context(instance_id="i-1"):
                bound = structlog.contextvars.get_contextvars()
                assert bound == {"host": "worker-1", "instance_id": "i-1"}
            assert structlog.contextvars.get_contextvars() == {"host": "worker-1"}
        finally:
            structlog.contextvars.clear_contextvars()

    def test_nested_contexts(self):
        with log_context(instance_id="parent"):
            with log_context(instance_id="child", entity="@counter@c1"):
                assert structlog.contextvars.get_contextvars()["instance_id"] == "child"
            assert structlog.contextvars.get_contextvars() == {"instance_id": "parent"}
        assert structlog.contextvars.get_contextvars() == {}
