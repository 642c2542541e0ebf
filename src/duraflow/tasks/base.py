"""Task -- 一个待完成或已完成 Action 的占位对象

Task 只能完成一次（RUNNING -> COMPLETED | FAILED），完成后不可再流转；
完成状态只由回放引擎根据历史事件写入，编排函数代码不直接修改。
"""

from typing import TYPE_CHECKING, Any, Protocol

from ..exceptions import InvalidTaskTransitionError, TimerAlreadyCompletedError
from ..models.actions import Action, CreateTimerAction
from ..models.enums import TaskState, validate_transition

if TYPE_CHECKING:
    from .sets import TaskSet


class TaskBase:
    """Task / TaskSet 公共基类"""

    def __init__(self) -> None:
        self.id: int | str | None = None
        self.state: TaskState = TaskState.RUNNING
        self.result: Any = None
        self.exception: BaseException | None = None
        self.completion_index: int | None = None
        self.is_played: bool = False
        self._parents: list["TaskSet"] = []

    @property
    def is_completed(self) -> bool:
        """已完成（成功或失败）"""
        return self.state != TaskState.RUNNING

    @property
    def is_faulted(self) -> bool:
        return self.state == TaskState.FAILED

    def yield_new_actions(self) -> list[Action]:
        """返回尚未交给引擎的 Action，同一 Task 只返回一次"""
        raise NotImplementedError

    def set_result(
        self,
        value: Any,
        completion_index: int | None = None,
        is_played: bool = False,
    ) -> None:
        self._transition(TaskState.COMPLETED)
        self.result = value
        self._finish(completion_index, is_played)

    def set_exception(
        self,
        exception: BaseException,
        completion_index: int | None = None,
        is_played: bool = False,
    ) -> None:
        self._transition(TaskState.FAILED)
        self.exception = exception
        self._finish(completion_index, is_played)

    def _transition(self, to_state: TaskState) -> None:
        if not validate_transition(self.state, to_state):
            raise InvalidTaskTransitionError(self.id, self.state, to_state)
        self.state = to_state

    def _finish(self, completion_index: int | None, is_played: bool) -> None:
        self.completion_index = completion_index
        self.is_played = is_played
        for parent in self._parents:
            parent.on_child_completed(self)

    def _add_parent(self, parent: "TaskSet") -> None:
        self._parents.append(parent)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} state={self.state}>"


class Task(TaskBase):
    """单个 Action 对应的原子 Task"""

    def __init__(self, action: Action) -> None:
        super().__init__()
        self.action = action
        self._actions_yielded = False

    def yield_new_actions(self) -> list[Action]:
        if self._actions_yielded:
            return []
        self._actions_yielded = True
        return [self.action]


class TimerListener(Protocol):
    """TimerTask 取消时的回调方（回放引擎）"""

    def on_timer_canceled(self, timer: "TimerTask") -> None: ...

    def on_fatal_error(self, error: Exception) -> None: ...


class TimerTask(Task):
    """定时器 Task，支持取消

    取消标记随下一批 Action 交给宿主；取消已触发的定时器是致命错误。
    """

    action: CreateTimerAction

    def __init__(self, action: CreateTimerAction, listener: TimerListener) -> None:
        super().__init__(action)
        self._listener = listener
        # 重试 / HTTP 轮询的内部定时器，触发后由 owner 重新发出请求
        self.owner: TaskBase | None = None

    @property
    def is_canceled(self) -> bool:
        return self.action.is_canceled

    def cancel(self) -> None:
        if self.is_completed:
            error = TimerAlreadyCompletedError(self.id)
            self._listener.on_fatal_error(error)
            raise error
        if self.is_canceled:
            return
        self.action = self.action.model_copy(update={"is_canceled": True})
        self._listener.on_timer_canceled(self)
