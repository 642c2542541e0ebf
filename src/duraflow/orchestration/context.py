"""DurableOrchestrationContext -- 传入编排函数的上下文对象

编排函数只能通过上下文发起操作、读取时间与实例信息；
时间取自历史中的 OrchestratorStarted，GUID 由实例 ID 与编排时间确定性生成，
从不读取真实时钟或随机源。
"""

import json
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, NoReturn

import structlog
from pydantic import ValidationError

from ..config import EngineConfig
from ..exceptions import ActionValidationError
from ..models.actions import (
    AcquireLockAction,
    CallActivityAction,
    CallActivityWithRetryAction,
    CallEntityAction,
    CallHttpAction,
    CallSubOrchestratorAction,
    CallSubOrchestratorWithRetryAction,
    ContinueAsNewAction,
    CreateTimerAction,
    SetCustomStatusAction,
    SignalEntityAction,
    WaitForExternalEventAction,
)
from ..models.entities import EntityId, LockState
from ..models.http import ManagedIdentityTokenSource
from ..models.retry import RetryOptions
from ..tasks import (
    HttpPollingTask,
    LongTimerTask,
    RetryableTask,
    Task,
    TaskBase,
    TimerTask,
    WhenAllTask,
    WhenAnyTask,
)

if TYPE_CHECKING:
    from .executor import TaskOrchestrationExecutor

log = structlog.get_logger()


class EntityLock:
    """已获取的实体锁，release() 或退出 with 块时释放"""

    def __init__(self, context: "DurableOrchestrationContext") -> None:
        self._context = context

    def release(self) -> None:
        self._context._executor.release_locks()

    def __enter__(self) -> "EntityLock":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


class ReplaySafeLogger:
    """回放阶段默认静默的 logger，避免同一条日志在每次回放时重复输出"""

    def __init__(self, context: "DurableOrchestrationContext", **bindings: Any) -> None:
        self._context = context
        self._log = log.bind(instance_id=context.instance_id, **bindings)

    def _emit(self, level: str, event: str, **kwargs: Any) -> None:
        if self._context.is_replaying and not self._context._config.log_replay_events:
            return
        getattr(self._log, level)(event, **kwargs)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._emit("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._emit("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._emit("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._emit("error", event, **kwargs)


class DurableOrchestrationContext:
    """编排函数上下文"""

    def __init__(
        self,
        executor: "TaskOrchestrationExecutor",
        instance_id: str,
        parent_instance_id: str | None,
        input: Any,
        config: EngineConfig,
    ) -> None:
        self._executor = executor
        self._instance_id = instance_id
        self._parent_instance_id = parent_instance_id
        self._input = input
        self._config = config
        self._current_utc_datetime = datetime(1970, 1, 1, tzinfo=UTC)
        self._is_replaying = False
        self._guid_counter = 0

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def parent_instance_id(self) -> str | None:
        return self._parent_instance_id

    @property
    def is_replaying(self) -> bool:
        """当前是否在回放已记录的历史"""
        return self._is_replaying

    @property
    def current_utc_datetime(self) -> datetime:
        """本轮编排时间，取自最近的 OrchestratorStarted 事件"""
        return self._current_utc_datetime

    def get_input(self) -> Any:
        return self._input

    # ============================================================
    # Activity / 子编排
    # ============================================================

    def call_activity(self, name: str, input: Any = None) -> Task:
        action = self._build_action(CallActivityAction, function_name=name, input=input)
        return Task(action)

    def call_activity_with_retry(
        self,
        name: str,
        retry_options: RetryOptions | dict,
        input: Any = None,
    ) -> RetryableTask:
        action = self._build_action(
            CallActivityWithRetryAction,
            function_name=name,
            retry_options=retry_options,
            input=input,
        )
        return RetryableTask(action, started_at=self.current_utc_datetime)

    def call_sub_orchestrator(
        self,
        name: str,
        input: Any = None,
        instance_id: str | None = None,
    ) -> Task:
        action = self._build_action(
            CallSubOrchestratorAction,
            function_name=name,
            instance_id=instance_id or str(self.new_guid()),
            input=input,
        )
        return Task(action)

    def call_sub_orchestrator_with_retry(
        self,
        name: str,
        retry_options: RetryOptions | dict,
        input: Any = None,
        instance_id: str | None = None,
    ) -> RetryableTask:
        action = self._build_action(
            CallSubOrchestratorWithRetryAction,
            function_name=name,
            retry_options=retry_options,
            instance_id=instance_id or str(self.new_guid()),
            input=input,
        )
        return RetryableTask(action, started_at=self.current_utc_datetime)

    def call_http(
        self,
        method: str,
        uri: str,
        content: Any = None,
        headers: dict[str, str] | None = None,
        token_source: ManagedIdentityTokenSource | None = None,
        async_pattern_enabled: bool = True,
    ) -> HttpPollingTask:
        """发起 Durable HTTP 调用，结果为 DurableHttpResponse"""
        if content is not None and not isinstance(content, str):
            content = json.dumps(content)
        action = self._build_action(
            CallHttpAction,
            request={
                "method": method,
                "uri": uri,
                "content": content,
                "headers": headers or {},
                "token_source": token_source,
                "async_pattern_enabled": async_pattern_enabled,
            },
        )
        interval = timedelta(milliseconds=self._config.http_poll_interval_ms)
        return HttpPollingTask(action, default_poll_interval=interval)

    # ============================================================
    # 定时器 / 外部事件
    # ============================================================

    def create_timer(self, fire_at: datetime | timedelta) -> TimerTask:
        """创建定时器，超过 maximum_short_timer_ms 的定时器分段发出"""
        if isinstance(fire_at, timedelta):
            fire_at = self.current_utc_datetime + fire_at
        action = self._build_action(CreateTimerAction, fire_at=fire_at)
        maximum_short_timer = timedelta(milliseconds=self._config.maximum_short_timer_ms)
        if action.fire_at - self.current_utc_datetime > maximum_short_timer:
            return LongTimerTask(
                action.fire_at,
                now=self.current_utc_datetime,
                maximum_short_timer=maximum_short_timer,
                interval=timedelta(milliseconds=self._config.long_running_timer_interval_ms),
                listener=self._executor,
            )
        return TimerTask(action, listener=self._executor)

    def wait_for_external_event(self, name: str) -> Task:
        action = self._build_action(WaitForExternalEventAction, name=name)
        return Task(action)

    # ============================================================
    # 实体
    # ============================================================

    def call_entity(self, entity_id: EntityId, operation: str, input: Any = None) -> Task:
        action = self._build_action(
            CallEntityAction,
            entity_id=entity_id,
            operation=operation,
            input=input,
        )
        return Task(action)

    def signal_entity(self, entity_id: EntityId, operation: str, input: Any = None) -> None:
        """单向调用实体，不等待结果"""
        action = self._build_action(
            SignalEntityAction,
            entity_id=entity_id,
            operation=operation,
            input=input,
        )
        self._executor.add_fire_and_forget(action)

    def lock(self, entities: Iterable[EntityId]) -> Task:
        """申请一组实体锁，结果为 EntityLock

        同一时刻只能持有一组锁，嵌套申请是致命错误。
        """
        if not self._executor.request_lock():
            self._raise_fatal(ActionValidationError("已持有实体锁，不能嵌套加锁"))
        action = self._build_action(AcquireLockAction, lock_set=list(entities))
        return Task(action)

    def is_locked(self) -> LockState:
        return self._executor.lock_state()

    # ============================================================
    # 编排控制
    # ============================================================

    def continue_as_new(self, input: Any = None) -> None:
        """以新输入重新开始编排，之后发出的操作都会被忽略"""
        action = self._build_action(ContinueAsNewAction, input=input)
        self._executor.request_continue_as_new(input, action)

    def set_custom_status(self, custom_status: Any) -> None:
        action = self._build_action(SetCustomStatusAction, custom_status=custom_status)
        self._executor.set_custom_status(custom_status, action)

    def new_guid(self) -> uuid.UUID:
        """确定性 GUID，回放时生成相同的序列"""
        name = f"{self._instance_id}_{self._current_utc_datetime.isoformat()}_{self._guid_counter}"
        self._guid_counter += 1
        return uuid.uuid5(uuid.NAMESPACE_URL, name)

    def task_all(self, tasks: Iterable[TaskBase]) -> WhenAllTask:
        try:
            return WhenAllTask(list(tasks))
        except ActionValidationError as e:
            self._raise_fatal(e)

    def task_any(self, tasks: Iterable[TaskBase]) -> WhenAnyTask:
        try:
            return WhenAnyTask(list(tasks))
        except ActionValidationError as e:
            self._raise_fatal(e)

    def create_replay_safe_logger(self, **bindings: Any) -> ReplaySafeLogger:
        return ReplaySafeLogger(self, **bindings)

    # ============================================================
    # 内部
    # ============================================================

    def _build_action(self, action_cls: type, **kwargs: Any) -> Any:
        try:
            return action_cls(**kwargs)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            self._raise_fatal(
                ActionValidationError(f"{action_cls.__name__} 参数不合法: {details}"),
                cause=e,
            )

    def _raise_fatal(
        self, error: ActionValidationError, cause: Exception | None = None
    ) -> NoReturn:
        self._executor.on_fatal_error(error)
        raise error from cause
