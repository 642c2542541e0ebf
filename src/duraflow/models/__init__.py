"""duraflow 数据模型"""

from .actions import (
    AcquireLockAction,
    Action,
    CallActivityAction,
    CallActivityWithRetryAction,
    CallEntityAction,
    CallHttpAction,
    CallSubOrchestratorAction,
    CallSubOrchestratorWithRetryAction,
    ContinueAsNewAction,
    CreateTimerAction,
    ReleaseLockAction,
    SetCustomStatusAction,
    SignalEntityAction,
    WaitForExternalEventAction,
)
from .entities import (
    EntityId,
    LockState,
    OperationResult,
    RequestMessage,
    ResponseMessage,
    SchedulerState,
)
from .enums import (
    TERMINAL_TASK_STATES,
    VALID_TASK_TRANSITIONS,
    ActionType,
    ExternalEventType,
    HistoryEventType,
    OrchestrationStatus,
    TaskState,
    validate_transition,
)
from .history import (
    ContinueAsNewEvent,
    EventRaisedEvent,
    EventSentEvent,
    ExecutionCompletedEvent,
    ExecutionFailedEvent,
    ExecutionStartedEvent,
    ExecutionTerminatedEvent,
    GenericEvent,
    HistoryEvent,
    HistoryStateEvent,
    OrchestratorCompletedEvent,
    OrchestratorStartedEvent,
    SubOrchestrationInstanceCompletedEvent,
    SubOrchestrationInstanceCreatedEvent,
    SubOrchestrationInstanceFailedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskScheduledEvent,
    TimerCreatedEvent,
    TimerFiredEvent,
    dump_history,
    parse_history,
)
from .http import DurableHttpRequest, DurableHttpResponse, ManagedIdentityTokenSource
from .retry import RetryOptions
from .state import EntityBatchResult, OrchestratorState

__all__ = [
    # Enums
    "ActionType",
    "ExternalEventType",
    "HistoryEventType",
    "OrchestrationStatus",
    "TaskState",
    "TERMINAL_TASK_STATES",
    "VALID_TASK_TRANSITIONS",
    "validate_transition",
    # History
    "HistoryEvent",
    "ContinueAsNewEvent",
    "EventRaisedEvent",
    "EventSentEvent",
    "ExecutionCompletedEvent",
    "ExecutionFailedEvent",
    "ExecutionStartedEvent",
    "ExecutionTerminatedEvent",
    "GenericEvent",
    "HistoryStateEvent",
    "OrchestratorCompletedEvent",
    "OrchestratorStartedEvent",
    "SubOrchestrationInstanceCompletedEvent",
    "SubOrchestrationInstanceCreatedEvent",
    "SubOrchestrationInstanceFailedEvent",
    "TaskCompletedEvent",
    "TaskFailedEvent",
    "TaskScheduledEvent",
    "TimerCreatedEvent",
    "TimerFiredEvent",
    "dump_history",
    "parse_history",
    # Actions
    "Action",
    "AcquireLockAction",
    "CallActivityAction",
    "CallActivityWithRetryAction",
    "CallEntityAction",
    "CallHttpAction",
    "CallSubOrchestratorAction",
    "CallSubOrchestratorWithRetryAction",
    "ContinueAsNewAction",
    "CreateTimerAction",
    "ReleaseLockAction",
    "SetCustomStatusAction",
    "SignalEntityAction",
    "WaitForExternalEventAction",
    # Entity
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
    # Outcome
    "EntityBatchResult",
    "OrchestratorState",
]
