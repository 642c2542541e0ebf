"""History Event Model

宿主在每次调用时提供的历史记录，append-only，按列表顺序回放。
事件在列表中的位置即 index，跨调用稳定，作为 Task 的 completion_index。
event_id 为产生该事件的 Action 的序列号，不适用时为 -1。
"""

import json
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from ..exceptions import HistoryFormatError
from .enums import HistoryEventType


class HistoryEventBase(BaseModel):
    """历史事件公共字段"""

    model_config = ConfigDict(frozen=True)

    event_id: int = Field(default=-1, description="关联 Action 的序列号，-1 表示不适用")
    timestamp: datetime | None = Field(default=None, description="事件发生时间（UTC）")
    is_played: bool = Field(default=False, description="是否在之前的调用中已被回放过")

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        # 不带时区的时间一律视为 UTC
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class ExecutionStartedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.EXECUTION_STARTED] = HistoryEventType.EXECUTION_STARTED
    name: str = Field(default="", description="编排函数名")
    input: str | None = Field(default=None, description="编排输入（JSON 字符串）")
    parent_instance_id: str | None = Field(default=None, description="父编排实例 ID")


class ExecutionCompletedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.EXECUTION_COMPLETED] = (
        HistoryEventType.EXECUTION_COMPLETED
    )
    result: str | None = None


class ExecutionFailedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.EXECUTION_FAILED] = HistoryEventType.EXECUTION_FAILED
    reason: str = ""
    details: str | None = None


class ExecutionTerminatedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.EXECUTION_TERMINATED] = (
        HistoryEventType.EXECUTION_TERMINATED
    )
    reason: str = ""


class TaskScheduledEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.TASK_SCHEDULED] = HistoryEventType.TASK_SCHEDULED
    name: str = Field(description="Activity 函数名")
    input: str | None = None


class TaskCompletedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.TASK_COMPLETED] = HistoryEventType.TASK_COMPLETED
    task_scheduled_id: int = Field(description="对应 TaskScheduled 的 event_id")
    result: str | None = Field(default=None, description="Activity 返回值（JSON 字符串）")


class TaskFailedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.TASK_FAILED] = HistoryEventType.TASK_FAILED
    task_scheduled_id: int = Field(description="对应 TaskScheduled 的 event_id")
    reason: str = ""
    details: str | None = None


class SubOrchestrationInstanceCreatedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.SUB_ORCHESTRATION_INSTANCE_CREATED] = (
        HistoryEventType.SUB_ORCHESTRATION_INSTANCE_CREATED
    )
    name: str = Field(description="子编排函数名")
    instance_id: str = ""
    input: str | None = None


class SubOrchestrationInstanceCompletedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.SUB_ORCHESTRATION_INSTANCE_COMPLETED] = (
        HistoryEventType.SUB_ORCHESTRATION_INSTANCE_COMPLETED
    )
    task_scheduled_id: int
    result: str | None = None


class SubOrchestrationInstanceFailedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.SUB_ORCHESTRATION_INSTANCE_FAILED] = (
        HistoryEventType.SUB_ORCHESTRATION_INSTANCE_FAILED
    )
    task_scheduled_id: int
    reason: str = ""
    details: str | None = None


class TimerCreatedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.TIMER_CREATED] = HistoryEventType.TIMER_CREATED
    fire_at: datetime


class TimerFiredEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.TIMER_FIRED] = HistoryEventType.TIMER_FIRED
    timer_id: int = Field(description="对应 TimerCreated 的 event_id")
    fire_at: datetime


class OrchestratorStartedEvent(HistoryEventBase):
    """每一轮调用的起点，timestamp 即本轮的 current_utc_datetime"""

    event_type: Literal[HistoryEventType.ORCHESTRATOR_STARTED] = (
        HistoryEventType.ORCHESTRATOR_STARTED
    )


class OrchestratorCompletedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.ORCHESTRATOR_COMPLETED] = (
        HistoryEventType.ORCHESTRATOR_COMPLETED
    )


class EventSentEvent(HistoryEventBase):
    """向实体或其他实例发送消息（实体调用、加锁、信号）"""

    event_type: Literal[HistoryEventType.EVENT_SENT] = HistoryEventType.EVENT_SENT
    instance_id: str = Field(description="目标实例 ID，实体为 @name@key")
    name: str = Field(description="消息名，实体请求固定为 op")
    input: str | None = Field(default=None, description="RequestMessage JSON")


class EventRaisedEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.EVENT_RAISED] = HistoryEventType.EVENT_RAISED
    name: str = Field(description="外部事件名，实体响应为请求 ID")
    input: str | None = None


class ContinueAsNewEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.CONTINUE_AS_NEW] = HistoryEventType.CONTINUE_AS_NEW
    input: str | None = None


class GenericEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.GENERIC_EVENT] = HistoryEventType.GENERIC_EVENT
    data: str | None = None


class HistoryStateEvent(HistoryEventBase):
    event_type: Literal[HistoryEventType.HISTORY_STATE] = HistoryEventType.HISTORY_STATE


HistoryEvent = Annotated[
    ExecutionStartedEvent
    | ExecutionCompletedEvent
    | ExecutionFailedEvent
    | ExecutionTerminatedEvent
    | TaskScheduledEvent
    | TaskCompletedEvent
    | TaskFailedEvent
    | SubOrchestrationInstanceCreatedEvent
    | SubOrchestrationInstanceCompletedEvent
    | SubOrchestrationInstanceFailedEvent
    | TimerCreatedEvent
    | TimerFiredEvent
    | OrchestratorStartedEvent
    | OrchestratorCompletedEvent
    | EventSentEvent
    | EventRaisedEvent
    | ContinueAsNewEvent
    | GenericEvent
    | HistoryStateEvent,
    Field(discriminator="event_type"),
]

_history_adapter: TypeAdapter[list[HistoryEvent]] = TypeAdapter(list[HistoryEvent])


def parse_history(raw: str | list[Any]) -> list[HistoryEvent]:
    """将宿主提供的历史记录解析为事件列表

    Args:
        raw: JSON 字符串、dict 列表或已解析的事件列表

    Returns:
        按原顺序排列的事件列表

    Raises:
        HistoryFormatError: 格式不合法
    """
    try:
        if isinstance(raw, str | bytes):
            return _history_adapter.validate_json(raw)
        return _history_adapter.validate_python(raw)
    except ValidationError as e:
        raise HistoryFormatError(f"历史记录格式错误: {e}") from e


def dump_history(events: list[HistoryEvent]) -> list[dict[str, Any]]:
    """序列化历史记录为 JSON 兼容的 dict 列表"""
    return _history_adapter.dump_python(events, mode="json")


def decode_payload(payload: str | None) -> Any:
    """解码事件中的 JSON payload，空值返回 None"""
    if payload is None or payload == "":
        return None
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        raise HistoryFormatError(f"事件 payload 不是合法 JSON: {payload!r}") from e
