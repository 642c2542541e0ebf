"""Orchestrator -- 编排函数的入口包装

宿主每次调用 run() 时传入完整历史，回放引擎从头重新执行编排函数，
返回本轮需要执行的新 Action 与编排状态。
"""

from collections.abc import Callable
from typing import Any

from ..config import EngineConfig, load_engine_config
from ..models.history import HistoryEvent, parse_history
from ..models.state import OrchestratorState
from .context import DurableOrchestrationContext
from .executor import TaskOrchestrationExecutor

OrchestratorFunction = Callable[[DurableOrchestrationContext], Any]


class Orchestrator:
    """包装一个编排函数（generator 函数或普通函数）"""

    def __init__(
        self,
        fn: OrchestratorFunction,
        name: str | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "orchestrator")
        self.config = config or load_engine_config()

    def run(
        self,
        history: str | list[Any],
        input: Any = None,
        *,
        instance_id: str = "",
        parent_instance_id: str | None = None,
    ) -> OrchestratorState:
        """回放一次

        Args:
            history: 宿主持有的历史记录（JSON 字符串、dict 列表或事件列表）
            input: 编排输入；为 None 时取 ExecutionStarted 事件中的 input
            instance_id: 编排实例 ID
            parent_instance_id: 父编排实例 ID

        Returns:
            OrchestratorState

        Raises:
            NonDeterminismError: 编排函数发出的 Action 与历史不一致
            HistoryFormatError: 历史记录无法解析
        """
        events: list[HistoryEvent] = parse_history(history)
        executor = TaskOrchestrationExecutor(self.fn, self.config, name=self.name)
        return executor.execute(
            events,
            input,
            instance_id=instance_id,
            parent_instance_id=parent_instance_id,
        )

    def __call__(self, context: DurableOrchestrationContext) -> Any:
        return self.fn(context)


def orchestrator(
    fn: OrchestratorFunction | None = None,
    *,
    name: str | None = None,
    config: EngineConfig | None = None,
) -> Any:
    """装饰器：将编排函数包装为 Orchestrator

    可直接使用 @orchestrator，也可带参数 @orchestrator(name="...")。
    """

    def wrap(func: OrchestratorFunction) -> Orchestrator:
        return Orchestrator(func, name=name, config=config)

    if fn is not None:
        return wrap(fn)
    return wrap
