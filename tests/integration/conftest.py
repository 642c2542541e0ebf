"""集成测试共享 fixture -- 内存宿主

InMemoryHost 模拟宿主的调度循环：每轮回放编排、执行返回的 Action，
把调度事件与完成事件追加到历史中，直到编排进入终态。
"""

import json
from collections import defaultdict, deque
from datetime import timedelta
from operator import methodcaller
from typing import Any

import pytest
from duraflow.entities import Entity
from duraflow.models import (
    AcquireLockAction,
    Action,
    CallActivityAction,
    CallActivityWithRetryAction,
    CallEntityAction,
    CallSubOrchestratorAction,
    CallSubOrchestratorWithRetryAction,
    ContinueAsNewAction,
    CreateTimerAction,
    EntityId,
    OperationResult,
    OrchestrationStatus,
    OrchestratorState,
    ReleaseLockAction,
    RequestMessage,
    SchedulerState,
    SetCustomStatusAction,
    SignalEntityAction,
    WaitForExternalEventAction,
)
from duraflow.orchestration import Orchestrator


class InMemoryHost:
    """单进程内存宿主

    - Activity 同步执行，结果在下一轮交付
    - 实体请求立即按单条批次执行，实体记录保存在 entity_records
    - 没有其他完成事件时，推进时间并触发最早的定时器
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        history_factory: type,
        *,
        activities: dict[str, Any] | None = None,
        entities: list[Entity] | None = None,
        sub_orchestrators: dict[str, Orchestrator] | None = None,
        instance_id: str = "host-1",
        max_turns: int = 50,
    ) -> None:
        self.orchestrator = orchestrator
        self.history_factory = history_factory
        self.activities = activities or {}
        self.entities = {entity.name: entity for entity in entities or []}
        self.sub_orchestrators = sub_orchestrators or {}
        self.instance_id = instance_id
        self.max_turns = max_turns

        self.entity_records: dict[str, SchedulerState] = {}
        self.external_events: defaultdict[str, deque] = defaultdict(deque)
        self.executed: list[Action] = []
        self.custom_status: Any = None
        self.turns = 0
        self.generations = 0
        self._timers: list[tuple[int, CreateTimerAction]] = []

    def raise_event(self, name: str, value: Any = None) -> None:
        self.external_events[name].append(value)

    def run(self, input: Any = None) -> OrchestratorState:
        history = self._new_history(input)
        next_seq = 0

        for _ in range(self.max_turns):
            self.turns += 1
            state = self.orchestrator.run(history.build(), instance_id=self.instance_id)
            completions: list[methodcaller] = []

            for action in state.actions:
                if self._handle_unsequenced(action, completions):
                    continue
                self.executed.append(action)
                self._execute(next_seq, action, history, completions)
                next_seq += 1

            if state.status == OrchestrationStatus.CONTINUED_AS_NEW:
                self.generations += 1
                history = self._new_history(state.output, start=history.now)
                next_seq = 0
                self._timers.clear()
                continue
            if state.is_done:
                return state

            history.orchestrator_completed()
            if completions:
                history.orchestrator_started()
                for completion in completions:
                    completion(history)
            elif self._timers:
                self._fire_earliest_timers(history)
            else:
                raise AssertionError(f"编排等待的事件无法由宿主提供: {state.actions}")

        raise AssertionError(f"超过最大轮数 {self.max_turns}")

    # ============================================================
    # Action 执行
    # ============================================================

    def _new_history(self, input: Any, start=None):
        history = self.history_factory() if start is None else self.history_factory(start)
        return history.orchestrator_started().execution_started(
            name=self.orchestrator.name, input=input
        )

    def _handle_unsequenced(self, action: Action, completions: list[methodcaller]) -> bool:
        """不占用序列号的 Action"""
        if isinstance(action, WaitForExternalEventAction):
            queued = self.external_events.get(action.name)
            if queued:
                completions.append(methodcaller("event_raised", action.name, queued.popleft()))
            return True
        if isinstance(action, SetCustomStatusAction):
            self.custom_status = action.custom_status
            return True
        if isinstance(action, CreateTimerAction) and action.is_canceled:
            self._timers = [(seq, t) for seq, t in self._timers if t.fire_at != action.fire_at]
            return True
        return isinstance(action, ContinueAsNewAction)

    def _execute(self, seq: int, action: Action, history, completions: list[methodcaller]) -> None:
        if isinstance(action, CallActivityAction | CallActivityWithRetryAction):
            history.task_scheduled(seq, action.function_name)
            activity = self.activities[action.function_name]
            try:
                result = activity(action.input)
            except Exception as e:
                completions.append(methodcaller("task_failed", seq, str(e)))
            else:
                completions.append(methodcaller("task_completed", seq, result))

        elif isinstance(action, CallSubOrchestratorAction | CallSubOrchestratorWithRetryAction):
            history.sub_orchestration_created(seq, action.function_name, action.instance_id)
            child = InMemoryHost(
                self.sub_orchestrators[action.function_name],
                self.history_factory,
                activities=self.activities,
                entities=list(self.entities.values()),
                sub_orchestrators=self.sub_orchestrators,
                instance_id=action.instance_id,
            )
            child.entity_records = self.entity_records
            child_state = child.run(action.input)
            if child_state.status == OrchestrationStatus.COMPLETED:
                completions.append(
                    methodcaller("sub_orchestration_completed", seq, child_state.output)
                )
            else:
                completions.append(methodcaller("sub_orchestration_failed", seq, child_state.error))

        elif isinstance(action, CreateTimerAction):
            history.timer_created(seq, action.fire_at)
            self._timers.append((seq, action))

        elif isinstance(action, CallEntityAction):
            request_id = f"{self.instance_id}:{seq}"
            history.event_sent(seq, action.instance_id, request_id, operation=action.operation)
            result = self._dispatch(action.entity_id, self._request(request_id, action))
            completions.append(
                methodcaller("response_message", request_id, result.to_response().model_dump_json())
            )

        elif isinstance(action, SignalEntityAction):
            request_id = f"{self.instance_id}:{seq}"
            history.event_sent(
                seq, action.instance_id, request_id, operation=action.operation, is_signal=True
            )
            self._dispatch(action.entity_id, self._request(request_id, action, is_signal=True))

        elif isinstance(action, AcquireLockAction):
            request_id = f"{self.instance_id}:{seq}"
            history.event_sent(
                seq,
                action.lock_set[0].scheduler_id,
                request_id,
                lock_set=[entity.model_dump() for entity in action.lock_set],
            )
            self._set_lock_owner(action.lock_set, self.instance_id)
            completions.append(methodcaller("entity_response", request_id))

        elif isinstance(action, ReleaseLockAction):
            request_id = f"{self.instance_id}:{seq}"
            history.event_sent(seq, action.lock_set[0].scheduler_id, request_id)
            self._set_lock_owner(action.lock_set, None)

        else:
            raise AssertionError(f"内存宿主不支持的 Action: {action.action_type}")

    def _fire_earliest_timers(self, history) -> None:
        earliest = min(timer.fire_at for _, timer in self._timers)
        history.orchestrator_started(advance=max(earliest - history.now, timedelta(seconds=1)))
        due = [(seq, t) for seq, t in self._timers if t.fire_at <= history.now]
        self._timers = [(seq, t) for seq, t in self._timers if t.fire_at > history.now]
        for seq, timer in due:
            history.timer_fired(seq, timer.fire_at)

    # ============================================================
    # 实体
    # ============================================================

    def _request(
        self,
        request_id: str,
        action: CallEntityAction | SignalEntityAction,
        is_signal: bool = False,
    ) -> RequestMessage:
        return RequestMessage(
            id=request_id,
            operation=action.operation,
            is_signal=is_signal,
            input=None if action.input is None else json.dumps(action.input),
            parent_instance_id=self.instance_id,
        )

    def _dispatch(self, entity_id: EntityId, request: RequestMessage) -> OperationResult:
        record = self.entity_records.get(entity_id.scheduler_id, SchedulerState())
        batch = record.model_copy(update={"queue": [request]})
        result = self.entities[entity_id.name].dispatch(entity_id, batch)
        self.entity_records[entity_id.scheduler_id] = result.to_scheduler_state(batch)
        for index, signal in enumerate(result.signals):
            self._dispatch(
                signal.entity_id,
                self._request(f"{request.id}:signal:{index}", signal, is_signal=True),
            )
        return result.results[0]

    def _set_lock_owner(self, entities: list[EntityId], owner: str | None) -> None:
        for entity_id in entities:
            record = self.entity_records.get(entity_id.scheduler_id, SchedulerState())
            self.entity_records[entity_id.scheduler_id] = record.model_copy(
                update={"locked_by": owner}
            )


@pytest.fixture
def make_host(history_factory):
    """构造内存宿主：make_host(orchestrator, activities=..., entities=...)"""

    def factory(orchestrator: Orchestrator, **kwargs: Any) -> InMemoryHost:
        return InMemoryHost(orchestrator, history_factory, **kwargs)

    return factory
