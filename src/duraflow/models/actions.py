"""Action Model -- 编排函数可以向宿主请求的操作

封闭的 tagged union，按 action_type 区分。
每个 Action 构造后不可变，构造时即完成参数校验；
非法参数抛出 pydantic ValidationError，由编排上下文转换为 ActionValidationError。
"""

from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .entities import EntityId
from .enums import ActionType, ExternalEventType
from .http import DurableHttpRequest
from .retry import RetryOptions


class ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)


class CallActivityAction(ActionBase):
    action_type: Literal[ActionType.CALL_ACTIVITY] = ActionType.CALL_ACTIVITY
    function_name: str = Field(min_length=1, description="Activity 函数名")
    input: Any = None


class CallActivityWithRetryAction(ActionBase):
    action_type: Literal[ActionType.CALL_ACTIVITY_WITH_RETRY] = (
        ActionType.CALL_ACTIVITY_WITH_RETRY
    )
    function_name: str = Field(min_length=1, description="Activity 函数名")
    retry_options: RetryOptions
    input: Any = None


class CallSubOrchestratorAction(ActionBase):
    action_type: Literal[ActionType.CALL_SUB_ORCHESTRATOR] = ActionType.CALL_SUB_ORCHESTRATOR
    function_name: str = Field(min_length=1, description="子编排函数名")
    instance_id: str | None = None
    input: Any = None


class CallSubOrchestratorWithRetryAction(ActionBase):
    action_type: Literal[ActionType.CALL_SUB_ORCHESTRATOR_WITH_RETRY] = (
        ActionType.CALL_SUB_ORCHESTRATOR_WITH_RETRY
    )
    function_name: str = Field(min_length=1, description="子编排函数名")
    retry_options: RetryOptions
    instance_id: str | None = None
    input: Any = None


class CreateTimerAction(ActionBase):
    action_type: Literal[ActionType.CREATE_TIMER] = ActionType.CREATE_TIMER
    fire_at: datetime = Field(description="触发时间（UTC）")
    is_canceled: bool = Field(default=False, description="定时器已被取消")

    @field_validator("fire_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class WaitForExternalEventAction(ActionBase):
    action_type: Literal[ActionType.WAIT_FOR_EXTERNAL_EVENT] = (
        ActionType.WAIT_FOR_EXTERNAL_EVENT
    )
    name: str = Field(min_length=1, description="等待的事件名")
    reason: ExternalEventType = ExternalEventType.EXTERNAL_EVENT


class CallEntityAction(ActionBase):
    action_type: Literal[ActionType.CALL_ENTITY] = ActionType.CALL_ENTITY
    entity_id: EntityId
    operation: str = Field(min_length=1, description="实体操作名")
    input: Any = None

    @property
    def instance_id(self) -> str:
        return self.entity_id.scheduler_id


class SignalEntityAction(ActionBase):
    """单向实体消息，不产生 Task"""

    action_type: Literal[ActionType.SIGNAL_ENTITY] = ActionType.SIGNAL_ENTITY
    entity_id: EntityId
    operation: str = Field(min_length=1, description="实体操作名")
    input: Any = None

    @property
    def instance_id(self) -> str:
        return self.entity_id.scheduler_id


def _normalize_lock_set(value: list[EntityId]) -> list[EntityId]:
    unique = {entity.scheduler_id: entity for entity in value}
    return [unique[key] for key in sorted(unique)]


class AcquireLockAction(ActionBase):
    action_type: Literal[ActionType.ACQUIRE_LOCK] = ActionType.ACQUIRE_LOCK
    lock_set: list[EntityId] = Field(min_length=1, description="已排序、去重的锁集合")

    @field_validator("lock_set")
    @classmethod
    def sort_lock_set(cls, value: list[EntityId]) -> list[EntityId]:
        return _normalize_lock_set(value)


class ReleaseLockAction(ActionBase):
    action_type: Literal[ActionType.RELEASE_LOCK] = ActionType.RELEASE_LOCK
    lock_set: list[EntityId] = Field(min_length=1, description="待释放的锁集合")

    @field_validator("lock_set")
    @classmethod
    def sort_lock_set(cls, value: list[EntityId]) -> list[EntityId]:
        return _normalize_lock_set(value)


class CallHttpAction(ActionBase):
    action_type: Literal[ActionType.CALL_HTTP] = ActionType.CALL_HTTP
    request: DurableHttpRequest


class SetCustomStatusAction(ActionBase):
    action_type: Literal[ActionType.SET_CUSTOM_STATUS] = ActionType.SET_CUSTOM_STATUS
    custom_status: Any = None


class ContinueAsNewAction(ActionBase):
    action_type: Literal[ActionType.CONTINUE_AS_NEW] = ActionType.CONTINUE_AS_NEW
    input: Any = None


Action = Annotated[
    CallActivityAction
    | CallActivityWithRetryAction
    | CallSubOrchestratorAction
    | CallSubOrchestratorWithRetryAction
    | CreateTimerAction
    | WaitForExternalEventAction
    | CallEntityAction
    | SignalEntityAction
    | AcquireLockAction
    | ReleaseLockAction
    | CallHttpAction
    | SetCustomStatusAction
    | ContinueAsNewAction,
    Field(discriminator="action_type"),
]

action_list_adapter: TypeAdapter[list[Action]] = TypeAdapter(list[Action])

# 这些 Action 由 TaskScheduled 确认
ACTIVITY_ACTION_TYPES: set[ActionType] = {
    ActionType.CALL_ACTIVITY,
    ActionType.CALL_ACTIVITY_WITH_RETRY,
    ActionType.CALL_HTTP,
}

SUB_ORCHESTRATOR_ACTION_TYPES: set[ActionType] = {
    ActionType.CALL_SUB_ORCHESTRATOR,
    ActionType.CALL_SUB_ORCHESTRATOR_WITH_RETRY,
}

# 这些 Action 由 EventSent 确认
ENTITY_MESSAGE_ACTION_TYPES: set[ActionType] = {
    ActionType.CALL_ENTITY,
    ActionType.SIGNAL_ENTITY,
    ActionType.ACQUIRE_LOCK,
    ActionType.RELEASE_LOCK,
}
