"""枚举定义

包含 HistoryEventType、ActionType、OrchestrationStatus、TaskState 枚举，
以及 Task 状态机的 VALID_TASK_TRANSITIONS 合法流转映射。
枚举值与宿主交换的 JSON 保持一致，不可随意改名。
"""

from enum import StrEnum


class HistoryEventType(StrEnum):
    """历史事件类型"""

    EXECUTION_STARTED = "ExecutionStarted"
    EXECUTION_COMPLETED = "ExecutionCompleted"
    EXECUTION_FAILED = "ExecutionFailed"
    EXECUTION_TERMINATED = "ExecutionTerminated"
    TASK_SCHEDULED = "TaskScheduled"
    TASK_COMPLETED = "TaskCompleted"
    TASK_FAILED = "TaskFailed"
    SUB_ORCHESTRATION_INSTANCE_CREATED = "SubOrchestrationInstanceCreated"
    SUB_ORCHESTRATION_INSTANCE_COMPLETED = "SubOrchestrationInstanceCompleted"
    SUB_ORCHESTRATION_INSTANCE_FAILED = "SubOrchestrationInstanceFailed"
    TIMER_CREATED = "TimerCreated"
    TIMER_FIRED = "TimerFired"
    ORCHESTRATOR_STARTED = "OrchestratorStarted"
    ORCHESTRATOR_COMPLETED = "OrchestratorCompleted"
    EVENT_SENT = "EventSent"
    EVENT_RAISED = "EventRaised"
    CONTINUE_AS_NEW = "ContinueAsNew"
    GENERIC_EVENT = "GenericEvent"
    HISTORY_STATE = "HistoryState"


class ActionType(StrEnum):
    """编排函数可以请求的操作类型（封闭集合）"""

    CALL_ACTIVITY = "CallActivity"
    CALL_ACTIVITY_WITH_RETRY = "CallActivityWithRetry"
    CALL_SUB_ORCHESTRATOR = "CallSubOrchestrator"
    CALL_SUB_ORCHESTRATOR_WITH_RETRY = "CallSubOrchestratorWithRetry"
    CONTINUE_AS_NEW = "ContinueAsNew"
    CREATE_TIMER = "CreateTimer"
    WAIT_FOR_EXTERNAL_EVENT = "WaitForExternalEvent"
    CALL_ENTITY = "CallEntity"
    CALL_HTTP = "CallHttp"
    SIGNAL_ENTITY = "SignalEntity"
    ACQUIRE_LOCK = "AcquireLock"
    RELEASE_LOCK = "ReleaseLock"
    SET_CUSTOM_STATUS = "SetCustomStatus"


class ExternalEventType(StrEnum):
    """WaitForExternalEvent 的等待原因"""

    EXTERNAL_EVENT = "ExternalEvent"
    LOCK_ACQUISITION_COMPLETED = "LockAcquisitionCompleted"
    ENTITY_RESPONSE = "EntityResponse"


class OrchestrationStatus(StrEnum):
    """单次回放结束后的编排状态"""

    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CONTINUED_AS_NEW = "ContinuedAsNew"


class TaskState(StrEnum):
    """Task 完成状态"""

    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Task 只能完成一次，完成后不可再流转
VALID_TASK_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.RUNNING: {TaskState.COMPLETED, TaskState.FAILED},
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
}

TERMINAL_TASK_STATES: set[TaskState] = {
    TaskState.COMPLETED,
    TaskState.FAILED,
}


def validate_transition(from_state: TaskState, to_state: TaskState) -> bool:
    """校验 Task 状态流转是否合法

    Args:
        from_state: 当前状态
        to_state: 目标状态

    Returns:
        True 表示合法流转
    """
    allowed = VALID_TASK_TRANSITIONS.get(from_state, set())
    return to_state in allowed
