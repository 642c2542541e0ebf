"""全局 pytest 配置 -- 历史记录构造 fixture"""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

START_TIME = datetime(2024, 1, 1, 8, 0, 0, tzinfo=UTC)


class HistoryBuilder:
    """按宿主的记录方式构造历史事件（dict 列表）

    每个 orchestrator_started() 开启新的一轮，时间按 advance 前进。
    """

    def __init__(self, start: datetime = START_TIME) -> None:
        self.start = start
        self.now = start
        self.events: list[dict[str, Any]] = []

    def _add(self, event_type: str, **fields: Any) -> "HistoryBuilder":
        self.events.append(
            {"event_type": event_type, "timestamp": self.now.isoformat(), **fields}
        )
        return self

    def orchestrator_started(self, advance: timedelta = timedelta(seconds=1)) -> "HistoryBuilder":
        if self.events:
            self.now += advance
        return self._add("OrchestratorStarted")

    def orchestrator_completed(self) -> "HistoryBuilder":
        return self._add("OrchestratorCompleted")

    def execution_started(self, name: str = "orchestrator", input: Any = None) -> "HistoryBuilder":
        payload = None if input is None else json.dumps(input)
        return self._add("ExecutionStarted", name=name, input=payload)

    def task_scheduled(self, event_id: int, name: str) -> "HistoryBuilder":
        return self._add("TaskScheduled", event_id=event_id, name=name)

    def task_completed(self, task_scheduled_id: int, result: Any = None) -> "HistoryBuilder":
        return self._add(
            "TaskCompleted",
            task_scheduled_id=task_scheduled_id,
            result=json.dumps(result),
        )

    def task_failed(
        self, task_scheduled_id: int, reason: str = "boom", details: str | None = None
    ) -> "HistoryBuilder":
        return self._add(
            "TaskFailed",
            task_scheduled_id=task_scheduled_id,
            reason=reason,
            details=details,
        )

    def sub_orchestration_created(
        self, event_id: int, name: str, instance_id: str = ""
    ) -> "HistoryBuilder":
        return self._add(
            "SubOrchestrationInstanceCreated",
            event_id=event_id,
            name=name,
            instance_id=instance_id,
        )

    def sub_orchestration_completed(self, task_scheduled_id: int, result: Any) -> "HistoryBuilder":
        return self._add(
            "SubOrchestrationInstanceCompleted",
            task_scheduled_id=task_scheduled_id,
            result=json.dumps(result),
        )

    def sub_orchestration_failed(
        self, task_scheduled_id: int, reason: str = "child failed"
    ) -> "HistoryBuilder":
        return self._add(
            "SubOrchestrationInstanceFailed",
            task_scheduled_id=task_scheduled_id,
            reason=reason,
        )

    def timer_created(self, event_id: int, fire_at: datetime) -> "HistoryBuilder":
        return self._add("TimerCreated", event_id=event_id, fire_at=fire_at.isoformat())

    def timer_fired(self, timer_id: int, fire_at: datetime) -> "HistoryBuilder":
        return self._add("TimerFired", timer_id=timer_id, fire_at=fire_at.isoformat())

    def event_sent(
        self,
        event_id: int,
        instance_id: str,
        request_id: str,
        operation: str | None = None,
        is_signal: bool = False,
        lock_set: list[dict[str, str]] | None = None,
    ) -> "HistoryBuilder":
        request = {
            "id": request_id,
            "operation": operation,
            "is_signal": is_signal,
            "lock_set": lock_set,
        }
        return self._add(
            "EventSent",
            event_id=event_id,
            instance_id=instance_id,
            name="op",
            input=json.dumps(request),
        )

    def event_raised(self, name: str, input: Any = None) -> "HistoryBuilder":
        payload = None if input is None else json.dumps(input)
        return self._add("EventRaised", name=name, input=payload)

    def entity_response(
        self, request_id: str, result: Any = None, exception_type: str | None = None
    ) -> "HistoryBuilder":
        response = {"result": json.dumps(result), "exception_type": exception_type}
        return self._add("EventRaised", name=request_id, input=json.dumps(response))

    def response_message(self, request_id: str, message_json: str) -> "HistoryBuilder":
        """以序列化好的 ResponseMessage 作为实体响应"""
        return self._add("EventRaised", name=request_id, input=message_json)

    def mark_played(self) -> "HistoryBuilder":
        """将已有事件标记为在之前的调用中回放过"""
        for event in self.events:
            event["is_played"] = True
        return self

    def build(self) -> list[dict[str, Any]]:
        return [dict(event) for event in self.events]


@pytest.fixture
def history() -> HistoryBuilder:
    """提供从 START_TIME 开始的历史构造器"""
    return HistoryBuilder()


@pytest.fixture
def history_factory() -> type[HistoryBuilder]:
    """需要多段历史时（continue-as-new、子编排）使用"""
    return HistoryBuilder
