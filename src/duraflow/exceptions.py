"""duraflow 异常体系

recoverable=True 的异常会在挂起点抛回编排函数内部，可被 try/except 处理；
recoverable=False 的异常是致命错误，直接终止本次回放。
"""


class DurableError(Exception):
    """duraflow 基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可由编排函数自行处理
        """
        super().__init__(message)
        self.recoverable = recoverable


class TaskFailedError(DurableError):
    """Activity / 子编排执行失败

    reason 与 details 直接取自 TaskFailed / SubOrchestrationInstanceFailed 事件。
    """

    def __init__(self, reason: str, details: str | None = None) -> None:
        super().__init__(reason, recoverable=True)
        self.reason = reason
        self.details = details


class EntityOperationError(DurableError):
    """实体操作在目标实体内部抛出异常"""

    def __init__(self, exception_type: str, message: str) -> None:
        super().__init__(f"{exception_type}: {message}", recoverable=True)
        self.exception_type = exception_type


class AggregatedError(DurableError):
    """task_all 中一个或多个成员失败

    errors 按输入顺序保存全部成员异常。
    """

    def __init__(self, errors: list[BaseException]) -> None:
        lines = [f"{len(errors)} 个任务失败:"]
        lines.extend(f"  [{type(e).__name__}] {e}" for e in errors)
        super().__init__("\n".join(lines), recoverable=True)
        self.errors = errors


class NonDeterminismError(DurableError):
    """回放结果与历史不一致，该实例无法安全继续"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class ActionValidationError(DurableError):
    """Action 构造参数不合法（例如空操作名、缺少 EntityId）"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class TimerAlreadyCompletedError(DurableError):
    """取消一个已经触发的定时器"""

    def __init__(self, timer_id: int) -> None:
        super().__init__(f"定时器 {timer_id} 已触发，无法取消", recoverable=False)
        self.timer_id = timer_id


class InvalidYieldError(DurableError):
    """编排函数 yield 了非 Task 对象"""

    def __init__(self, value: object) -> None:
        super().__init__(
            f"编排函数只能 yield Task 对象，实际为 {type(value).__name__}",
            recoverable=False,
        )


class InvalidTaskTransitionError(DurableError):
    """Task 状态非法流转（已完成的任务再次被完成）"""

    def __init__(self, task_id: object, from_state: str, to_state: str) -> None:
        super().__init__(
            f"任务 {task_id} 无法从 {from_state} 流转到 {to_state}",
            recoverable=False,
        )


class HistoryFormatError(DurableError):
    """历史记录无法解析"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class UnknownOperationError(DurableError):
    """实体未注册该操作，且没有默认处理器"""

    def __init__(self, entity_name: str, operation: str) -> None:
        super().__init__(f"实体 {entity_name} 不支持操作 '{operation}'", recoverable=True)
        self.entity_name = entity_name
        self.operation = operation


class EntityStateError(DurableError):
    """实体状态不存在且无法初始化"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=True)
