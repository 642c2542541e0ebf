"""DurableEntityContext -- 实体操作处理器的上下文

状态在 set_state 时立即序列化，get_state 每次返回新的反序列化副本；
处理器抛出异常时，回放循环用快照回滚本次操作造成的状态与信号变更。
"""

import json
from collections.abc import Callable
from typing import Any, NamedTuple

from ..exceptions import EntityStateError
from ..models.actions import SignalEntityAction
from ..models.entities import EntityId, RequestMessage

_UNSET = object()


class _Snapshot(NamedTuple):
    exists: bool
    state: str | None
    signal_count: int
    destruct: bool


class DurableEntityContext:
    def __init__(
        self,
        entity_id: EntityId,
        exists: bool,
        state: str | None,
        initial_state: Callable[[], Any] | None = None,
    ) -> None:
        self._entity_id = entity_id
        self._exists = exists
        self._state = state
        self._initial_state = initial_state
        self._signals: list[SignalEntityAction] = []
        self._destruct = False
        self._request: RequestMessage | None = None
        self._return_value: Any = _UNSET
        self._existed_before_operation = exists

    @property
    def entity_id(self) -> EntityId:
        return self._entity_id

    @property
    def entity_name(self) -> str:
        return self._entity_id.name

    @property
    def entity_key(self) -> str:
        return self._entity_id.key

    @property
    def operation_name(self) -> str | None:
        return self._request.operation if self._request else None

    @property
    def is_newly_constructed(self) -> bool:
        """本次操作开始时实体尚不存在"""
        return not self._existed_before_operation

    def get_input(self) -> Any:
        if self._request is None or self._request.input is None:
            return None
        return json.loads(self._request.input)

    def get_state(self, initializer: Callable[[], Any] | None = None) -> Any:
        """读取实体状态

        实体不存在时依次使用 initializer、实体注册时的 initial_state 初始化。

        Raises:
            EntityStateError: 实体不存在且没有可用的初始化函数
        """
        if self._exists and self._state is not None:
            return json.loads(self._state)
        init = initializer or self._initial_state
        if init is None:
            raise EntityStateError(f"实体 {self._entity_id} 尚无状态，且未提供初始化函数")
        return init()

    def set_state(self, state: Any) -> None:
        self._state = json.dumps(state)
        self._exists = True

    def return_value(self, value: Any) -> None:
        """显式指定本次操作的响应，优先于处理器返回值"""
        self._return_value = value

    def destruct_on_exit(self) -> None:
        """批处理结束后删除实体"""
        self._destruct = True

    def signal_entity(self, entity_id: EntityId, operation: str, input: Any = None) -> None:
        self._signals.append(
            SignalEntityAction(entity_id=entity_id, operation=operation, input=input)
        )

    # ============================================================
    # 回放循环使用
    # ============================================================

    def _begin(self, request: RequestMessage) -> _Snapshot:
        self._request = request
        self._return_value = _UNSET
        self._existed_before_operation = self._exists
        return _Snapshot(self._exists, self._state, len(self._signals), self._destruct)

    def _rollback(self, snapshot: _Snapshot) -> None:
        self._exists = snapshot.exists
        self._state = snapshot.state
        del self._signals[snapshot.signal_count :]
        self._destruct = snapshot.destruct

    def _response(self, handler_result: Any) -> str | None:
        value = handler_result if self._return_value is _UNSET else self._return_value
        if value is None:
            return None
        return json.dumps(value)
