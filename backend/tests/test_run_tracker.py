"""Tests for the run tracker."""

import asyncio

import pytest

from logistics_core.errors import InvariantViolation
from logistics_core.tracker import RunState, RunTracker, TrackerEventType


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestRunTracker:
    """Tests for RunTracker state transitions and events."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tracker(self, clock):
        return RunTracker(monotonic=clock)

    @pytest.fixture
    def events(self, tracker):
        received = []
        tracker.on_event(received.append)
        return received

    def test_initial_state(self, tracker):
        assert tracker.state == RunState.IDLE
        assert tracker.elapsed == 0.0

    def test_start_emits_started_with_target(self, tracker, events):
        tracker.start(10)

        assert tracker.is_running
        assert events[0].type == TrackerEventType.STARTED
        assert events[0].target_steps == 10

    def test_double_start_raises(self, tracker):
        tracker.start(3)
        with pytest.raises(InvariantViolation):
            tracker.start(3)

    def test_start_after_complete(self, tracker):
        tracker.start(1)
        tracker.complete()
        tracker.start(2)
        assert tracker.target_steps == 2
        assert tracker.current_step == 0

    def test_complete_keeps_last_run_readable(self, tracker):
        tracker.start(3)
        tracker.advance_step(1, "엑셀 파일 읽기")
        tracker.complete()

        assert tracker.state == RunState.COMPLETED
        assert tracker.is_running is False
        assert tracker.current_step == 1
        assert tracker.target_steps == 3

    def test_advance_step_progress(self, tracker, events):
        tracker.start(4)
        for i in range(1, 5):
            tracker.advance_step(i, f"step {i}")

        steps = [e for e in events if e.type == TrackerEventType.STEP_UPDATED]
        assert [e.progress for e in steps] == [0.25, 0.5, 0.75, 1.0]
        assert steps[-1].step_name == "step 4"

    def test_advance_while_idle_raises(self, tracker):
        with pytest.raises(InvariantViolation):
            tracker.advance_step(1, "x")

    def test_complete_while_idle_raises(self, tracker):
        with pytest.raises(InvariantViolation):
            tracker.complete()

    def test_complete_twice_raises(self, tracker):
        tracker.start(1)
        tracker.complete()
        with pytest.raises(InvariantViolation):
            tracker.complete()

    def test_elapsed_frozen_after_complete(self, tracker, clock, events):
        tracker.start(1)
        clock.advance(3.8)
        assert tracker.elapsed == pytest.approx(3.8)

        tracker.complete()
        clock.advance(60)

        assert tracker.elapsed == pytest.approx(3.8)
        assert tracker.formatted_elapsed == "3.8초"
        assert events[-1].type == TrackerEventType.COMPLETED
        assert events[-1].elapsed == pytest.approx(3.8)

    def test_abort_records_reason(self, tracker, events):
        tracker.start(5)
        tracker.advance_step(1, "a")
        tracker.abort("cancelled by user")

        assert tracker.state == RunState.COMPLETED
        assert events[-1].aborted is True
        assert events[-1].reason == "cancelled by user"
        assert tracker.snapshot().abort_reason == "cancelled by user"

    def test_reset(self, tracker):
        tracker.start(2)
        with pytest.raises(InvariantViolation):
            tracker.reset()
        tracker.complete()
        tracker.reset()
        assert tracker.state == RunState.IDLE
        assert tracker.target_steps == 0

    def test_time_update_only_while_running(self, tracker, events):
        tracker.emit_time_update()
        assert events == []

        tracker.start(1)
        tracker.emit_time_update()
        assert events[-1].type == TrackerEventType.TIME_UPDATED

    def test_failing_listener_does_not_break_others(self, tracker):
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        tracker.on_event(broken)
        tracker.on_event(received.append)
        tracker.start(1)

        assert len(received) == 1
        assert tracker.is_running

    def test_off_event(self, tracker):
        received = []
        tracker.on_event(received.append)
        tracker.off_event(received.append)
        tracker.start(1)
        assert received == []

    def test_negative_target_rejected(self, tracker):
        with pytest.raises(ValueError):
            tracker.start(-1)

    @pytest.mark.asyncio
    async def test_tick_every_emits_until_complete(self, events):
        tracker = RunTracker()
        tracker.on_event(events.append)
        tracker.start(1)

        task = asyncio.create_task(tracker.tick_every(0.01))
        await asyncio.sleep(0.05)
        tracker.complete()
        await asyncio.wait_for(task, timeout=1.0)

        ticks = [e for e in events if e.type == TrackerEventType.TIME_UPDATED]
        assert len(ticks) >= 1
        assert task.done()
