"""Entity 数据模型

EntityId 标识一个有状态 actor；SchedulerState 为宿主持有的实体持久记录，
本库只读取一批请求并返回新的快照，不直接修改它。
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EntityId(BaseModel):
    """实体标识（name + key）"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="实体类名")
    key: str = Field(min_length=1, description="同类实体内的唯一键")

    @property
    def scheduler_id(self) -> str:
        """宿主调度使用的实例 ID：@name@key"""
        return f"@{self.name}@{self.key}"

    @classmethod
    def from_scheduler_id(cls, scheduler_id: str) -> "EntityId":
        """从 @name@key 解析 EntityId"""
        pos = scheduler_id.find("@", 1)
        if not scheduler_id.startswith("@") or pos < 0:
            raise ValueError(f"不是合法的实体调度 ID: {scheduler_id!r}")
        return cls(name=scheduler_id[1:pos], key=scheduler_id[pos + 1 :])

    def __str__(self) -> str:
        return self.scheduler_id


class RequestMessage(BaseModel):
    """编排 -> 实体 的请求消息，序列化后作为 EventSent 的 input

    operation 为 None 表示加锁请求。
    """

    id: str = Field(description="请求 ID，实体响应通过同名 EventRaised 返回")
    operation: str | None = Field(default=None, description="操作名")
    is_signal: bool = Field(default=False, description="单向消息，不等待响应")
    input: str | None = Field(default=None, description="操作参数（JSON 字符串）")
    parent_instance_id: str | None = Field(default=None, description="发起请求的编排实例")
    lock_set: list[EntityId] | None = Field(
        default=None,
        description="加锁请求的锁集合（已排序、去重、非空）",
    )
    position: int | None = Field(default=None, description="多锁请求中的消息序号")


class ResponseMessage(BaseModel):
    """实体 -> 编排 的响应消息

    exception_type 非空表示操作失败，result 为错误信息。
    """

    result: str | None = Field(default=None, description="返回值（JSON 字符串）")
    exception_type: str | None = Field(default=None, description="失败时的异常类型名")


class SchedulerState(BaseModel):
    """实体的持久记录"""

    exists: bool = Field(default=False, description="实体是否存在")
    state: str | None = Field(default=None, description="序列化后的实体状态（JSON）")
    queue: list[RequestMessage] = Field(default_factory=list, description="待处理请求队列")
    locked_by: str | None = Field(default=None, description="当前持有锁的编排实例 ID")


class OperationResult(BaseModel):
    """一次实体操作的执行结果"""

    result: str | None = Field(default=None, description="返回值或错误（JSON 字符串）")
    is_error: bool = False
    duration_ms: float = Field(default=0.0, ge=0, description="执行耗时（毫秒）")

    def to_response(self) -> ResponseMessage:
        """转换为发回调用方的响应消息"""
        if not self.is_error:
            return ResponseMessage(result=self.result)
        exception_type = "Error"
        if self.result:
            payload: Any = json.loads(self.result)
            if isinstance(payload, dict):
                exception_type = payload.get("type", exception_type)
        return ResponseMessage(result=self.result, exception_type=exception_type)


class LockState(BaseModel):
    """编排当前的实体锁状态"""

    is_locked: bool = False
    owned_locks: list[EntityId] = Field(default_factory=list)
