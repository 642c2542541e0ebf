"""Entity -- 实体定义与批处理回放循环

实体操作没有持久化的挂起点：每批请求按队列顺序同步执行完毕，
对其他实体的调用只记录为 SignalEntityAction 交给宿主。
"""

import json
import time
from collections.abc import Callable
from typing import Any

import structlog

from ..exceptions import UnknownOperationError
from ..logging_config import log_context
from ..models.entities import EntityId, OperationResult, SchedulerState
from ..models.state import EntityBatchResult
from .context import DurableEntityContext

log = structlog.get_logger()

OperationHandler = Callable[[DurableEntityContext], Any]


class Entity:
    """实体定义

    操作通过 @entity.operation("name") 显式注册；
    未注册的操作交给 @entity.default 处理器，没有默认处理器时该操作失败。
    """

    def __init__(self, name: str, initial_state: Callable[[], Any] | None = None) -> None:
        if not name:
            raise ValueError("实体名不能为空")
        self.name = name
        self.initial_state = initial_state
        self._operations: dict[str, OperationHandler] = {}
        self._default: OperationHandler | None = None

    @property
    def operations(self) -> list[str]:
        return list(self._operations)

    def operation(self, name: str) -> Callable[[OperationHandler], OperationHandler]:
        """注册操作处理器"""
        if not name:
            raise ValueError("操作名不能为空")
        if name in self._operations:
            raise ValueError(f"实体 {self.name} 已注册操作 '{name}'")

        def register(handler: OperationHandler) -> OperationHandler:
            self._operations[name] = handler
            return handler

        return register

    def default(self, handler: OperationHandler) -> OperationHandler:
        """注册未知操作的默认处理器"""
        if self._default is not None:
            raise ValueError(f"实体 {self.name} 已注册默认处理器")
        self._default = handler
        return handler

    def _resolve(self, operation: str) -> OperationHandler:
        handler = self._operations.get(operation, self._default)
        if handler is None:
            raise UnknownOperationError(self.name, operation)
        return handler

    def dispatch(self, entity_id: EntityId, scheduler_state: SchedulerState) -> EntityBatchResult:
        """按队列顺序执行一批请求

        Args:
            entity_id: 目标实体
            scheduler_state: 宿主持有的实体记录（只读）

        Returns:
            EntityBatchResult，results 与 queue 一一对应
        """
        with log_context(entity=str(entity_id)):
            return self._run_batch(entity_id, scheduler_state)

    def _run_batch(self, entity_id: EntityId, scheduler_state: SchedulerState) -> EntityBatchResult:
        ctx = DurableEntityContext(
            entity_id,
            exists=scheduler_state.exists,
            state=scheduler_state.state,
            initial_state=self.initial_state,
        )
        results: list[OperationResult] = []
        failed = 0

        for request in scheduler_state.queue:
            if request.operation is None:
                # 加锁请求由宿主处理，实体只需确认
                results.append(OperationResult())
                continue

            snapshot = ctx._begin(request)
            start = time.monotonic()
            try:
                handler = self._resolve(request.operation)
                value = ctx._response(handler(ctx))
                is_error = False
            except Exception as e:
                ctx._rollback(snapshot)
                value = json.dumps({"type": type(e).__name__, "message": str(e)})
                is_error = True
                failed += 1
                log.warning(
                    "entity_operation_failed",
                    operation=request.operation,
                    request_id=request.id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            duration_ms = (time.monotonic() - start) * 1000
            results.append(
                OperationResult(result=value, is_error=is_error, duration_ms=duration_ms)
            )

        exists, state = ctx._exists, ctx._state
        if ctx._destruct:
            exists, state = False, None

        log.debug(
            "entity_batch_dispatched",
            operations=len(results),
            failed=failed,
            entity_exists=exists,
        )
        return EntityBatchResult(
            entity_exists=exists,
            entity_state=state,
            results=results,
            signals=list(ctx._signals),
        )

