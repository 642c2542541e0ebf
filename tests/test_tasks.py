"""Task / TaskSet 单元测试

测试内容：
1. Task 只交出一次 Action
2. task_all / task_any 聚合语义
3. TimerTask 取消与长定时器分段
4. HTTP 轮询判断
"""

from datetime import UTC, datetime, timedelta

import pytest
from duraflow.exceptions import (
    ActionValidationError,
    AggregatedError,
    TaskFailedError,
    TimerAlreadyCompletedError,
)
from duraflow.models import CallActivityAction, CallHttpAction, CreateTimerAction, DurableHttpResponse
from duraflow.tasks import (
    HttpPollingTask,
    LongTimerTask,
    Task,
    TimerTask,
    WhenAllTask,
    WhenAnyTask,
)

FIRE_AT = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


class FakeListener:
    """记录定时器回调"""

    def __init__(self) -> None:
        self.canceled: list[TimerTask] = []
        self.fatal: list[Exception] = []

    def on_timer_canceled(self, timer: TimerTask) -> None:
        self.canceled.append(timer)

    def on_fatal_error(self, error: Exception) -> None:
        self.fatal.append(error)


def _task(name: str) -> Task:
    return Task(CallActivityAction(function_name=name))


class TestTask:
    def test_yield_new_actions_once(self):
        """同一 Task 的 Action 只交出一次"""
        task = _task("Hello")
        assert task.yield_new_actions() == [CallActivityAction(function_name="Hello")]
        assert task.yield_new_actions() == []

    def test_initial_state(self):
        task = _task("Hello")
        assert task.is_completed is False
        assert task.id is None
        assert task.completion_index is None


class TestWhenAll:
    """task_all 聚合"""

    def test_results_in_input_order(self):
        a, b, c = _task("A"), _task("B"), _task("C")
        group = WhenAllTask([a, b, c])
        c.set_result("c", 7)
        a.set_result("a", 9)
        assert group.is_completed is False
        b.set_result("b", 5)
        assert group.is_completed is True
        assert group.result == ["a", "b", "c"]
        assert group.completion_index == 9

    def test_waits_for_all_before_failing(self):
        """有成员失败时仍等待全部成员完成"""
        a, b = _task("A"), _task("B")
        group = WhenAllTask([a, b])
        b.set_exception(TaskFailedError("boom"), 4)
        assert group.is_completed is False
        a.set_result("a", 6)
        assert group.is_faulted is True
        assert isinstance(group.exception, AggregatedError)
        assert len(group.exception.errors) == 1
        assert group.exception.errors[0].reason == "boom"
        assert group.result is None

    def test_errors_in_input_order(self):
        a, b = _task("A"), _task("B")
        group = WhenAllTask([a, b])
        b.set_exception(TaskFailedError("second"), 3)
        a.set_exception(TaskFailedError("first"), 4)
        assert [e.reason for e in group.exception.errors] == ["first", "second"]

    def test_empty_completes_immediately(self):
        group = WhenAllTask([])
        assert group.is_completed is True
        assert group.result == []

    def test_already_completed_children(self):
        a = _task("A")
        a.set_result(1, 2)
        group = WhenAllTask([a])
        assert group.result == [1]

    def test_yield_new_actions_flattens_children(self):
        a, b = _task("A"), _task("B")
        group = WhenAllTask([a, WhenAllTask([b])])
        names = [action.function_name for action in group.yield_new_actions()]
        assert names == ["A", "B"]
        assert group.yield_new_actions() == []

    def test_non_task_member_rejected(self):
        with pytest.raises(ActionValidationError):
            WhenAllTask([_task("A"), "not a task"])


class TestWhenAny:
    """task_any 聚合"""

    def test_winner_is_task(self):
        a, b = _task("A"), _task("B")
        group = WhenAnyTask([a, b])
        b.set_result("b", 5)
        assert group.is_completed is True
        assert group.result is b
        assert group.completion_index == 5
        assert a.is_completed is False

    def test_failed_member_still_wins(self):
        """失败的成员同样使 task_any 成功完成"""
        a, b = _task("A"), _task("B")
        group = WhenAnyTask([a, b])
        a.set_exception(TaskFailedError("boom"), 3)
        assert group.is_faulted is False
        assert group.result is a

    def test_tie_break_by_completion_index_then_position(self):
        a, b, c = _task("A"), _task("B"), _task("C")
        a.set_result("a", 8)
        b.set_result("b", 4)
        c.set_result("c", 4)
        group = WhenAnyTask([a, b, c])
        assert group.result is b

    def test_later_completion_ignored(self):
        a, b = _task("A"), _task("B")
        group = WhenAnyTask([a, b])
        a.set_result("a", 3)
        b.set_result("b", 5)
        assert group.result is a

    def test_empty_rejected(self):
        with pytest.raises(ActionValidationError):
            WhenAnyTask([])

    def test_nested_sets(self):
        a, b, c = _task("A"), _task("B"), _task("C")
        group = WhenAnyTask([WhenAllTask([a, b]), c])
        a.set_result("a", 3)
        assert group.is_completed is False
        b.set_result("b", 4)
        assert group.result is group.children[0]
        assert group.result.result == ["a", "b"]


class TestTimerTask:
    """定时器取消"""

    def test_cancel_pending_timer(self):
        listener = FakeListener()
        timer = TimerTask(CreateTimerAction(fire_at=FIRE_AT), listener)
        timer.cancel()
        assert timer.is_canceled is True
        assert timer.action.is_canceled is True
        assert listener.canceled == [timer]

    def test_cancel_twice_is_noop(self):
        listener = FakeListener()
        timer = TimerTask(CreateTimerAction(fire_at=FIRE_AT), listener)
        timer.cancel()
        timer.cancel()
        assert len(listener.canceled) == 1

    def test_cancel_fired_timer_is_fatal(self):
        listener = FakeListener()
        timer = TimerTask(CreateTimerAction(fire_at=FIRE_AT), listener)
        timer.id = 2
        timer.set_result(None, 6)
        with pytest.raises(TimerAlreadyCompletedError):
            timer.cancel()
        assert len(listener.fatal) == 1
        assert listener.canceled == []


class TestLongTimerTask:
    """长定时器分段"""

    NOW = datetime(2024, 1, 1, 8, 0, tzinfo=UTC)

    def _make(self, days: int, listener: FakeListener | None = None) -> LongTimerTask:
        return LongTimerTask(
            self.NOW + timedelta(days=days),
            now=self.NOW,
            maximum_short_timer=timedelta(days=6),
            interval=timedelta(days=3),
            listener=listener or FakeListener(),
        )

    def test_first_segment_uses_interval(self):
        timer = self._make(days=10)
        assert timer.yield_new_actions() == [
            CreateTimerAction(fire_at=self.NOW + timedelta(days=3))
        ]
        assert timer.fire_at == self.NOW + timedelta(days=10)

    def test_segments_until_final_fire_time(self):
        timer = self._make(days=10)
        second = timer.next_segment(self.NOW + timedelta(days=3))
        assert second.fire_at == self.NOW + timedelta(days=6)
        # 剩余 4 天不超过最长时长，直接以最终时间发出
        last = timer.next_segment(self.NOW + timedelta(days=6))
        assert last.fire_at == self.NOW + timedelta(days=10)
        assert timer.next_segment(self.NOW + timedelta(days=10)) is None
        assert timer.segment_count == 3

    def test_cancel_stops_segments(self):
        listener = FakeListener()
        timer = self._make(days=10, listener=listener)
        timer.cancel()
        assert timer.is_canceled is True
        assert timer.action.fire_at == self.NOW + timedelta(days=3)
        assert listener.canceled == [timer]
        assert timer.next_segment(self.NOW + timedelta(days=3)) is None


class TestHttpPollingTask:
    """202 异步轮询判断"""

    def _make(self, async_pattern_enabled: bool = True) -> HttpPollingTask:
        action = CallHttpAction(
            request={
                "method": "POST",
                "uri": "https://api.example.com/jobs",
                "headers": {"X-Trace": "1"},
                "async_pattern_enabled": async_pattern_enabled,
            }
        )
        return HttpPollingTask(action, default_poll_interval=timedelta(seconds=30))

    def test_poll_with_retry_after(self):
        task = self._make()
        response = DurableHttpResponse(
            status_code=202,
            headers={"Location": "https://api.example.com/jobs/1", "Retry-After": "5"},
        )
        assert task.poll_delay(response) == timedelta(seconds=5)
        poll = task.next_attempt()
        assert poll.request.method == "GET"
        assert poll.request.uri == "https://api.example.com/jobs/1"
        assert poll.request.headers == {"X-Trace": "1"}

    def test_poll_default_interval(self):
        task = self._make()
        response = DurableHttpResponse(
            status_code=202, headers={"Location": "https://api.example.com/jobs/1"}
        )
        assert task.poll_delay(response) == timedelta(seconds=30)

    @pytest.mark.parametrize(
        "status_code,headers",
        [
            (200, {"Location": "https://api.example.com/jobs/1"}),
            (202, {}),
        ],
    )
    def test_no_poll(self, status_code: int, headers: dict):
        task = self._make()
        response = DurableHttpResponse(status_code=status_code, headers=headers)
        assert task.poll_delay(response) is None

    def test_async_pattern_disabled(self):
        task = self._make(async_pattern_enabled=False)
        response = DurableHttpResponse(
            status_code=202, headers={"Location": "https://api.example.com/jobs/1"}
        )
        assert task.poll_delay(response) is None
