"""TaskSet -- all / any 组合

TaskSet 与 Task 具有相同的完成/失败/结果形态，可继续嵌套组合。
同一个 Task 可以同时属于多个 TaskSet。
"""

from ..exceptions import ActionValidationError, AggregatedError
from ..models.actions import Action
from .base import TaskBase


class TaskSet(TaskBase):
    """固定成员列表上的聚合 Task"""

    def __init__(self, children: list[TaskBase]) -> None:
        super().__init__()
        self.children: list[TaskBase] = list(children)
        for child in self.children:
            if not isinstance(child, TaskBase):
                raise ActionValidationError(
                    f"TaskSet 成员必须是 Task，实际为 {type(child).__name__}"
                )
            child._add_parent(self)
        self._evaluate()

    def yield_new_actions(self) -> list[Action]:
        actions: list[Action] = []
        for child in self.children:
            actions.extend(child.yield_new_actions())
        return actions

    def on_child_completed(self, child: TaskBase) -> None:
        if not self.is_completed:
            self._evaluate()

    def _evaluate(self) -> None:
        raise NotImplementedError


class WhenAllTask(TaskSet):
    """全部成员完成后完成

    任一成员失败时以 AggregatedError 失败，按输入顺序列出全部成员异常；
    否则结果为按输入顺序排列的成员结果列表。
    """

    def _evaluate(self) -> None:
        if not all(child.is_completed for child in self.children):
            return

        indices = [c.completion_index for c in self.children if c.completion_index is not None]
        completion_index = max(indices, default=-1)
        is_played = all(child.is_played for child in self.children)

        errors = [child.exception for child in self.children if child.is_faulted]
        if errors:
            self.set_exception(AggregatedError(errors), completion_index, is_played)
        else:
            self.set_result([child.result for child in self.children], completion_index, is_played)


class WhenAnyTask(TaskSet):
    """任一成员完成（成功或失败）即完成，结果为获胜的成员 Task 本身

    获胜者取 completion_index 最小者，相同时按输入顺序。
    其余成员保持未完成状态。
    """

    def __init__(self, children: list[TaskBase]) -> None:
        if not children:
            raise ActionValidationError("task_any 至少需要一个 Task")
        super().__init__(children)

    def _evaluate(self) -> None:
        completed = [
            (child.completion_index if child.completion_index is not None else -1, pos, child)
            for pos, child in enumerate(self.children)
            if child.is_completed
        ]
        if not completed:
            return
        index, _, winner = min(completed, key=lambda item: (item[0], item[1]))
        self.set_result(winner, index, winner.is_played)
