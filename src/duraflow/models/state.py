"""回放与实体批处理的输出记录"""

from typing import Any

from pydantic import BaseModel, Field, TypeAdapter

from .actions import Action, SignalEntityAction, action_list_adapter
from .entities import OperationResult, SchedulerState
from .enums import OrchestrationStatus

_any_adapter: TypeAdapter[Any] = TypeAdapter(Any)


class OrchestratorState(BaseModel):
    """单次回放的结果

    actions 为本轮需要宿主执行的新 Action，按编排函数发出的顺序排列。
    """

    status: OrchestrationStatus = Field(description="编排状态")
    actions: list[Action] = Field(default_factory=list, description="待宿主执行的 Action")
    output: Any = Field(default=None, description="Completed 时为返回值，ContinuedAsNew 时为新输入")
    error: str | None = Field(default=None, description="Failed 时的错误信息")
    error_type: str | None = Field(default=None, description="Failed 时的异常类型名")
    custom_status: Any = Field(default=None, description="编排自定义状态")

    @property
    def is_done(self) -> bool:
        return self.status != OrchestrationStatus.RUNNING

    def to_wire(self) -> dict[str, Any]:
        """宿主可直接持久化的 JSON 结构"""
        return {
            "status": str(self.status),
            "is_done": self.is_done,
            "actions": action_list_adapter.dump_python(self.actions, mode="json"),
            "output": _any_adapter.dump_python(self.output, mode="json"),
            "error": self.error,
            "error_type": self.error_type,
            "custom_status": _any_adapter.dump_python(self.custom_status, mode="json"),
        }


class EntityBatchResult(BaseModel):
    """一批实体操作执行后的结果"""

    entity_exists: bool = Field(description="批处理结束后实体是否存在")
    entity_state: str | None = Field(default=None, description="序列化后的实体状态（JSON）")
    results: list[OperationResult] = Field(
        default_factory=list,
        description="与请求队列一一对应的执行结果",
    )
    signals: list[SignalEntityAction] = Field(
        default_factory=list,
        description="批处理期间发往其他实体的信号",
    )

    def to_scheduler_state(self, previous: SchedulerState) -> SchedulerState:
        """生成新的 SchedulerState 快照，请求队列已被本批次消费"""
        return SchedulerState(
            exists=self.entity_exists,
            state=self.entity_state,
            queue=[],
            locked_by=previous.locked_by,
        )
