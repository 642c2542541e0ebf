"""duraflow -- 持久化编排的确定性回放引擎

宿主提供历史记录，duraflow 重新执行编排函数并返回下一批 Action；
实体批处理循环在同一套 Action 词汇上执行有状态 actor 的操作。
"""

from .config import EngineConfig, load_engine_config
from .entities import DurableEntityContext, Entity
from .exceptions import (
    ActionValidationError,
    AggregatedError,
    DurableError,
    EntityOperationError,
    EntityStateError,
    HistoryFormatError,
    InvalidTaskTransitionError,
    InvalidYieldError,
    NonDeterminismError,
    TaskFailedError,
    TimerAlreadyCompletedError,
    UnknownOperationError,
)
from .models import (
    DurableHttpRequest,
    DurableHttpResponse,
    EntityBatchResult,
    EntityId,
    LockState,
    ManagedIdentityTokenSource,
    OperationResult,
    OrchestrationStatus,
    OrchestratorState,
    RequestMessage,
    ResponseMessage,
    RetryOptions,
    SchedulerState,
    parse_history,
)
from .orchestration import (
    DurableOrchestrationContext,
    EntityLock,
    Orchestrator,
    orchestrator,
)
from .tasks import Task, TaskBase, TaskSet, TimerTask

__all__ = [
    # Config
    "EngineConfig",
    "load_engine_config",
    # Orchestration
    "DurableOrchestrationContext",
    "EntityLock",
    "Orchestrator",
    "OrchestratorState",
    "OrchestrationStatus",
    "orchestrator",
    "parse_history",
    # Tasks
    "Task",
    "TaskBase",
    "TaskSet",
    "TimerTask",
    # Entity
    "DurableEntityContext",
    "Entity",
    "EntityBatchResult",
    "EntityId",
    "LockState",
    "OperationResult",
    "RequestMessage",
    "ResponseMessage",
    "SchedulerState",
    # HTTP / Retry
    "DurableHttpRequest",
    "DurableHttpResponse",
    "ManagedIdentityTokenSource",
    "RetryOptions",
    # Errors
    "ActionValidationError",
    "AggregatedError",
    "DurableError",
    "EntityOperationError",
    "EntityStateError",
    "HistoryFormatError",
    "InvalidTaskTransitionError",
    "InvalidYieldError",
    "NonDeterminismError",
    "TaskFailedError",
    "TimerAlreadyCompletedError",
    "UnknownOperationError",
]
