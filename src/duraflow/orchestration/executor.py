"""TaskOrchestrationExecutor -- 回放引擎

按历史顺序逐个处理事件：
- 调度确认事件（TaskScheduled / TimerCreated / SubOrchestrationInstanceCreated / EventSent）
  必须与本次执行以相同序列号发出的 Action 一致，否则抛出 NonDeterminismError；
- 完成事件按关联 ID 完成对应 Task，随后尽可能推进编排函数（generator）。
历史处理完后，仍未被确认的 Action 即为本轮交给宿主的新 Action。
"""

import inspect
from collections import defaultdict, deque
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from ..config import EngineConfig
from ..exceptions import (
    DurableError,
    EntityOperationError,
    HistoryFormatError,
    InvalidYieldError,
    NonDeterminismError,
    TaskFailedError,
)
from ..logging_config import log_context
from ..models.actions import (
    ACTIVITY_ACTION_TYPES,
    ENTITY_MESSAGE_ACTION_TYPES,
    SUB_ORCHESTRATOR_ACTION_TYPES,
    AcquireLockAction,
    Action,
    CallEntityAction,
    CallHttpAction,
    ContinueAsNewAction,
    CreateTimerAction,
    ReleaseLockAction,
    SetCustomStatusAction,
    SignalEntityAction,
    WaitForExternalEventAction,
)
from ..models.entities import EntityId, LockState, RequestMessage, ResponseMessage
from ..models.enums import ActionType, HistoryEventType, OrchestrationStatus
from ..models.history import (
    ContinueAsNewEvent,
    EventRaisedEvent,
    EventSentEvent,
    ExecutionStartedEvent,
    HistoryEvent,
    OrchestratorStartedEvent,
    SubOrchestrationInstanceCreatedEvent,
    TaskScheduledEvent,
    TimerCreatedEvent,
    TimerFiredEvent,
    decode_payload,
)
from ..models.http import DurableHttpResponse
from ..models.state import OrchestratorState
from ..tasks import (
    HTTP_ACTIVITY_NAME,
    HttpPollingTask,
    LongTimerTask,
    RetryableTask,
    Task,
    TaskBase,
    TaskSet,
    TimerTask,
)
from .context import DurableOrchestrationContext, EntityLock

log = structlog.get_logger()

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# _pending_actions 中不对应序列号的特殊键
_CUSTOM_STATUS_KEY = "custom_status"
_CONTINUE_AS_NEW_KEY = "continue_as_new"


def _action_name(action: Action) -> str | None:
    """用于与历史事件 name 比对的 Action 名称"""
    if isinstance(action, CallHttpAction):
        return HTTP_ACTIVITY_NAME
    return getattr(action, "function_name", None)


class TaskOrchestrationExecutor:
    """单次调用的回放执行器，每次 run 使用新的实例"""

    def __init__(
        self,
        fn: Callable[[DurableOrchestrationContext], Any],
        config: EngineConfig,
        name: str = "",
    ) -> None:
        self._fn = fn
        self._name = name
        self.config = config
        self._context = self._new_context("", None, None)
        self._explicit_input: Any = None
        self._handlers: dict[HistoryEventType, Callable[[int, Any], None]] = {
            HistoryEventType.ORCHESTRATOR_STARTED: self._on_orchestrator_started,
            HistoryEventType.EXECUTION_STARTED: self._on_execution_started,
            HistoryEventType.CONTINUE_AS_NEW: self._on_continue_as_new,
            HistoryEventType.TASK_SCHEDULED: self._on_task_scheduled,
            HistoryEventType.TASK_COMPLETED: self._on_task_completed,
            HistoryEventType.TASK_FAILED: self._on_task_failed,
            HistoryEventType.SUB_ORCHESTRATION_INSTANCE_CREATED: self._on_sub_orchestration_created,
            HistoryEventType.SUB_ORCHESTRATION_INSTANCE_COMPLETED: self._on_task_completed,
            HistoryEventType.SUB_ORCHESTRATION_INSTANCE_FAILED: self._on_task_failed,
            HistoryEventType.TIMER_CREATED: self._on_timer_created,
            HistoryEventType.TIMER_FIRED: self._on_timer_fired,
            HistoryEventType.EVENT_SENT: self._on_event_sent,
            HistoryEventType.EVENT_RAISED: self._on_event_raised,
        }
        self._reset()

    def _reset(self) -> None:
        self._sequence_number = 0
        self._open_tasks: dict[int, TaskBase] = {}
        # 实体调用 / 加锁请求，键为 RequestMessage.id
        self._open_requests: dict[str, Task] = {}
        # 同名等待者按发出顺序排列，事件交给最近发出的等待者
        self._open_events: defaultdict[str, list[Task]] = defaultdict(list)
        # 尚无等待者的外部事件，按到达顺序交给后续等待者
        self._received_events: defaultdict[str, deque[tuple[int, EventRaisedEvent]]] = (
            defaultdict(deque)
        )
        self._pending_actions: dict[int | str | TaskBase, Action] = {}
        self._deferred: list[tuple[int, EventRaisedEvent, Task]] | None = None

        self._generator: Generator[Any, Any, Any] | None = None
        self._current_task: TaskBase | None = None
        self._started = False
        self._status = OrchestrationStatus.RUNNING
        self._output: Any = None
        self._error: BaseException | None = None
        self._fatal_error: DurableError | None = None
        self._is_continued_as_new = False
        self._new_input: Any = None
        self._custom_status: Any = None
        self._owned_locks: list[EntityId] = []
        self._lock_requested = False

    # ============================================================
    # 入口
    # ============================================================

    def execute(
        self,
        history: list[HistoryEvent],
        input: Any = None,
        *,
        instance_id: str = "",
        parent_instance_id: str | None = None,
    ) -> OrchestratorState:
        """回放历史并返回本轮结果

        Raises:
            NonDeterminismError: 本次执行发出的 Action 与历史不一致
        """
        self._context = self._new_context(instance_id, parent_instance_id, input)
        self._explicit_input = input

        with log_context(instance_id=instance_id, orchestrator=self._name):
            log.debug("orchestration_replay_started", history_length=len(history))
            for index, event in enumerate(history):
                if self._is_done():
                    break
                try:
                    self._process_event(index, event)
                except NonDeterminismError as e:
                    log.error(
                        "non_determinism_detected",
                        event_index=index,
                        event_type=str(event.event_type),
                        error=str(e),
                    )
                    raise
            return self._build_state()

    def _new_context(
        self, instance_id: str, parent_instance_id: str | None, input: Any
    ) -> DurableOrchestrationContext:
        return DurableOrchestrationContext(
            executor=self,
            instance_id=instance_id,
            parent_instance_id=parent_instance_id,
            input=input,
            config=self.config,
        )

    def _process_event(self, index: int, event: HistoryEvent) -> None:
        self._context._is_replaying = event.is_played
        handler = self._handlers.get(event.event_type)
        if handler is not None:
            handler(index, event)

    # ============================================================
    # 事件处理
    # ============================================================

    def _on_orchestrator_started(self, index: int, event: OrchestratorStartedEvent) -> None:
        if event.timestamp is not None and event.timestamp > self._context._current_utc_datetime:
            self._context._current_utc_datetime = event.timestamp

    def _on_execution_started(self, index: int, event: ExecutionStartedEvent) -> None:
        if self._started:
            log.warning("duplicate_execution_started_ignored", event_index=index)
            return
        if event.timestamp is not None and self._context._current_utc_datetime == EPOCH:
            self._context._current_utc_datetime = event.timestamp
        if self._explicit_input is None:
            self._context._input = decode_payload(event.input)
        if self._context._parent_instance_id is None:
            self._context._parent_instance_id = event.parent_instance_id
        self._start()

    def _on_continue_as_new(self, index: int, event: ContinueAsNewEvent) -> None:
        log.debug("continue_as_new_event_reset", event_index=index)
        self._reset()

    def _on_task_scheduled(self, index: int, event: TaskScheduledEvent) -> None:
        self._confirm_action(event, ACTIVITY_ACTION_TYPES, event.name)

    def _on_sub_orchestration_created(
        self, index: int, event: SubOrchestrationInstanceCreatedEvent
    ) -> None:
        self._confirm_action(event, SUB_ORCHESTRATOR_ACTION_TYPES, event.name)

    def _on_timer_created(self, index: int, event: TimerCreatedEvent) -> None:
        self._confirm_action(event, {ActionType.CREATE_TIMER})

    def _on_event_sent(self, index: int, event: EventSentEvent) -> None:
        action = self._confirm_action(event, ENTITY_MESSAGE_ACTION_TYPES)
        if isinstance(action, CallEntityAction | SignalEntityAction):
            if action.instance_id != event.instance_id:
                raise NonDeterminismError(
                    f"序列号 {event.event_id} 的实体目标不一致: "
                    f"历史为 {event.instance_id}，本次执行为 {action.instance_id}"
                )
        if not isinstance(action, CallEntityAction | AcquireLockAction):
            return

        # 实体响应以 RequestMessage.id 为事件名返回
        task = self._open_tasks.pop(event.event_id, None)
        if task is None:
            return
        try:
            request = RequestMessage.model_validate_json(event.input or "")
        except ValidationError as e:
            raise HistoryFormatError(f"EventSent 的 input 不是合法的 RequestMessage: {e}") from e
        self._open_requests[request.id] = task

    def _on_task_completed(self, index: int, event: Any) -> None:
        task = self._pop_open_task(event.task_scheduled_id, event)
        if task is None:
            return
        result = decode_payload(event.result)

        if isinstance(task, HttpPollingTask):
            try:
                response = DurableHttpResponse.model_validate(result)
            except ValidationError as e:
                raise HistoryFormatError(f"HTTP 活动结果格式错误: {e}") from e
            delay = task.poll_delay(response)
            if delay is not None:
                log.debug("http_poll_scheduled", task_id=task.id, delay_s=delay.total_seconds())
                self._create_internal_timer(delay, task)
                return
            result = response

        task.set_result(result, index, event.is_played)
        self._resume()

    def _on_task_failed(self, index: int, event: Any) -> None:
        task = self._pop_open_task(event.task_scheduled_id, event)
        if task is None:
            return
        error = TaskFailedError(event.reason, event.details)

        if isinstance(task, RetryableTask):
            delay = task.compute_next_delay(self._context.current_utc_datetime)
            if delay is not None:
                log.debug(
                    "task_retry_scheduled",
                    function_name=task.action.function_name,
                    attempt=task.attempt_count,
                    delay_s=delay.total_seconds(),
                )
                self._create_internal_timer(delay, task)
                return

        task.set_exception(error, index, event.is_played)
        self._resume()

    def _on_timer_fired(self, index: int, event: TimerFiredEvent) -> None:
        task = self._pop_open_task(event.timer_id, event)
        if task is None:
            return

        if isinstance(task, LongTimerTask):
            action = task.next_segment(self._context.current_utc_datetime)
            if action is not None:
                log.debug(
                    "long_timer_segment_scheduled",
                    segment=task.segment_count,
                    fire_at=action.fire_at.isoformat(),
                )
                self._issue(task, action)
                return

        task.set_result(None, index, event.is_played)

        owner = task.owner if isinstance(task, TimerTask) else None
        if isinstance(owner, RetryableTask | HttpPollingTask):
            # 重新发出请求，owner 以新的序列号继续等待
            self._issue(owner, owner.next_attempt())
            return

        self._resume()

    def _on_event_raised(self, index: int, event: EventRaisedEvent) -> None:
        task = self._open_requests.pop(event.name, None)
        if task is not None:
            self._resolve_entity_message(task, index, event)
            self._resume()
            return

        waiters = self._open_events.get(event.name)
        if waiters:
            task = waiters.pop()
            self._resolve_external_event(task, index, event)
            self._resume()
            return

        self._received_events[event.name].append((index, event))

    def _pop_open_task(self, task_id: int, event: Any) -> TaskBase | None:
        task = self._open_tasks.pop(task_id, None)
        if task is None and not event.is_played:
            log.warning(
                "unexpected_completion_ignored",
                event_type=str(event.event_type),
                task_id=task_id,
            )
        return task

    def _confirm_action(
        self,
        event: Any,
        allowed_types: set[ActionType],
        expected_name: str | None = None,
    ) -> Action:
        """确认历史中的调度事件与本次执行发出的 Action 一致，并将其移出待发送列表"""
        seq = event.event_id
        action = self._pending_actions.pop(seq, None)
        if action is None:
            raise NonDeterminismError(
                f"历史中存在 {event.event_type}(event_id={seq})，"
                f"但本次执行没有发出对应的操作"
            )
        if action.action_type not in allowed_types:
            raise NonDeterminismError(
                f"序列号 {seq} 的操作类型不一致: "
                f"历史为 {event.event_type}，本次执行为 {action.action_type}"
            )
        if expected_name is not None and _action_name(action) != expected_name:
            raise NonDeterminismError(
                f"序列号 {seq} 的操作名称不一致: "
                f"历史为 '{expected_name}'，本次执行为 '{_action_name(action)}'"
            )
        return action

    def _resolve_external_event(self, task: Task, index: int, event: EventRaisedEvent) -> None:
        self._pending_actions.pop(task, None)
        task.set_result(decode_payload(event.input), index, event.is_played)

    def _resolve_entity_message(self, task: Task, index: int, event: EventRaisedEvent) -> None:
        if isinstance(task.action, AcquireLockAction):
            self._owned_locks = list(task.action.lock_set)
            self._lock_requested = False
            task.set_result(EntityLock(self._context), index, event.is_played)
            return

        try:
            response = ResponseMessage.model_validate_json(event.input or "{}")
        except ValidationError as e:
            raise HistoryFormatError(f"实体响应格式错误: {e}") from e

        if response.exception_type:
            message = decode_payload(response.result)
            if isinstance(message, dict):
                message = message.get("message", message)
            task.set_exception(
                EntityOperationError(response.exception_type, str(message)),
                index,
                event.is_played,
            )
        else:
            task.set_result(decode_payload(response.result), index, event.is_played)

    # ============================================================
    # 推进编排函数
    # ============================================================

    def _start(self) -> None:
        self._started = True
        try:
            result = self._fn(self._context)
        except Exception as e:
            self._fail(e)
            return
        if not inspect.isgenerator(result):
            self._complete(result)
            return
        self._generator = result
        self._step()
        self._resume()

    def _resume(self) -> None:
        while (
            not self._is_done()
            and self._current_task is not None
            and self._current_task.is_completed
        ):
            task = self._current_task
            self._current_task = None
            if task.is_faulted:
                self._step(exception=task.exception)
            else:
                self._step(value=task.result)

    def _step(self, value: Any = None, exception: BaseException | None = None) -> None:
        """向 generator 送入结果或在挂起点抛出异常，直到它 yield 下一个 Task"""
        try:
            if exception is not None:
                next_task = self._generator.throw(exception)
            else:
                next_task = self._generator.send(value)
        except StopIteration as stop:
            self._complete(stop.value)
            return
        except Exception as e:
            self._fail(e)
            return

        if self._is_done():
            return
        if not isinstance(next_task, TaskBase):
            self.on_fatal_error(InvalidYieldError(next_task))
            return
        self._schedule_root(next_task)
        self._current_task = next_task

    def _complete(self, output: Any) -> None:
        if self._fatal_error is not None or self._is_continued_as_new:
            return
        self._status = OrchestrationStatus.COMPLETED
        self._output = output

    def _fail(self, error: BaseException) -> None:
        self._status = OrchestrationStatus.FAILED
        self._error = error

    def _is_done(self) -> bool:
        return (
            self._fatal_error is not None
            or self._is_continued_as_new
            or self._status != OrchestrationStatus.RUNNING
        )

    # ============================================================
    # Action 调度
    # ============================================================

    def _next_sequence(self) -> int:
        seq = self._sequence_number
        self._sequence_number += 1
        return seq

    def _schedule_root(self, task: TaskBase) -> None:
        """调度一次 yield 的 Task（含 TaskSet 成员）

        缓冲中的外部事件在全部成员调度后按事件 index 顺序交付，
        保证 task_any 按 completion_index 选出获胜者。
        """
        self._deferred = []
        self._schedule(task)
        deferred, self._deferred = self._deferred, None
        for index, event, waiter in sorted(deferred, key=lambda item: item[0]):
            self._resolve_external_event(waiter, index, event)

    def _schedule(self, task: TaskBase) -> None:
        if isinstance(task, TaskSet):
            for child in task.children:
                self._schedule(child)
            return
        if task.is_completed or not isinstance(task, Task):
            return
        new_actions = task.yield_new_actions()
        if not new_actions:
            return
        action = new_actions[0]

        if isinstance(action, WaitForExternalEventAction):
            self._schedule_wait(task, action)
            return
        self._issue(task, action)

    def _schedule_wait(self, task: Task, action: WaitForExternalEventAction) -> None:
        task.id = action.name
        buffered = self._received_events.get(action.name)
        if buffered:
            index, event = buffered.popleft()
            if self._deferred is not None:
                self._deferred.append((index, event, task))
            else:
                self._resolve_external_event(task, index, event)
            return
        self._open_events[action.name].append(task)
        self._pending_actions[task] = action

    def _issue(self, task: TaskBase, action: Action) -> None:
        """为 task 的 Action 分配序列号并加入待发送列表，重试与分段定时器以新序列号再次发出"""
        if self._is_continued_as_new:
            return
        seq = self._next_sequence()
        task.id = seq
        self._open_tasks[seq] = task
        self._pending_actions[seq] = action

    def _create_internal_timer(self, delay: timedelta, owner: TaskBase) -> TimerTask:
        timer = TimerTask(
            CreateTimerAction(fire_at=self._context.current_utc_datetime + delay),
            listener=self,
        )
        timer.owner = owner
        self._schedule(timer)
        return timer

    def add_fire_and_forget(self, action: SignalEntityAction | ReleaseLockAction) -> None:
        """不产生 Task 的 Action，发出时即占用序列号"""
        if self._is_continued_as_new:
            return
        self._pending_actions[self._next_sequence()] = action

    def set_custom_status(self, value: Any, action: SetCustomStatusAction) -> None:
        self._custom_status = value
        # 重新插入，保持发出顺序
        self._pending_actions.pop(_CUSTOM_STATUS_KEY, None)
        self._pending_actions[_CUSTOM_STATUS_KEY] = action

    def request_continue_as_new(self, new_input: Any, action: ContinueAsNewAction) -> None:
        if self._is_continued_as_new:
            return
        self._is_continued_as_new = True
        self._new_input = new_input
        self._pending_actions[_CONTINUE_AS_NEW_KEY] = action

    # ============================================================
    # TimerListener
    # ============================================================

    def on_timer_canceled(self, timer: TimerTask) -> None:
        if not isinstance(timer.id, int):
            # 尚未 yield，调度时会直接发出已取消的 Action
            return
        self._pending_actions[timer.id] = timer.action

    def on_fatal_error(self, error: Exception) -> None:
        if self._fatal_error is None:
            self._fatal_error = error if isinstance(error, DurableError) else DurableError(
                str(error), recoverable=False
            )

    # ============================================================
    # 实体锁
    # ============================================================

    def request_lock(self) -> bool:
        """返回 False 表示已持有或正在申请锁"""
        if self._owned_locks or self._lock_requested:
            return False
        self._lock_requested = True
        return True

    def release_locks(self) -> None:
        if not self._owned_locks:
            return
        action = ReleaseLockAction(lock_set=self._owned_locks)
        self._owned_locks = []
        self.add_fire_and_forget(action)

    def lock_state(self) -> LockState:
        return LockState(is_locked=bool(self._owned_locks), owned_locks=list(self._owned_locks))

    # ============================================================
    # 输出
    # ============================================================

    def _release_on_exit(self) -> list[Action]:
        if not self._owned_locks:
            return []
        action = ReleaseLockAction(lock_set=self._owned_locks)
        self._owned_locks = []
        self._pending_actions[self._next_sequence()] = action
        log.debug("entity_locks_released_on_exit", lock_count=len(action.lock_set))
        return [action]

    def _build_state(self) -> OrchestratorState:
        if self._fatal_error is not None:
            log.error(
                "orchestration_failed",
                error=str(self._fatal_error),
                error_type=type(self._fatal_error).__name__,
                fatal=True,
            )
            return OrchestratorState(
                status=OrchestrationStatus.FAILED,
                actions=self._release_on_exit(),
                error=str(self._fatal_error),
                error_type=type(self._fatal_error).__name__,
                custom_status=self._custom_status,
            )

        if self._status == OrchestrationStatus.RUNNING and not self._is_continued_as_new:
            actions = list(self._pending_actions.values())
            log.debug("orchestration_suspended", pending_actions=len(actions))
            return OrchestratorState(
                status=OrchestrationStatus.RUNNING,
                actions=actions,
                custom_status=self._custom_status,
            )

        continue_action = self._pending_actions.pop(_CONTINUE_AS_NEW_KEY, None)
        # 编排已结束，未满足的外部事件等待不再发出
        actions = [
            action
            for key, action in self._pending_actions.items()
            if not isinstance(key, TaskBase)
        ]
        actions.extend(self._release_on_exit())

        if self._status == OrchestrationStatus.FAILED:
            log.info(
                "orchestration_failed",
                error=str(self._error),
                error_type=type(self._error).__name__,
                fatal=False,
            )
            return OrchestratorState(
                status=OrchestrationStatus.FAILED,
                actions=actions,
                error=str(self._error),
                error_type=type(self._error).__name__,
                custom_status=self._custom_status,
            )

        if self._is_continued_as_new:
            actions.append(continue_action)
            log.info("orchestration_continued_as_new")
            return OrchestratorState(
                status=OrchestrationStatus.CONTINUED_AS_NEW,
                actions=actions,
                output=self._new_input,
                custom_status=self._custom_status,
            )

        log.info("orchestration_completed", action_count=len(actions))
        return OrchestratorState(
            status=OrchestrationStatus.COMPLETED,
            actions=actions,
            output=self._output,
            custom_status=self._custom_status,
        )
