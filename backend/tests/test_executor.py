"""Tests for the pipeline executor."""

import asyncio

import pytest

from logistics_core.errors import CollaboratorError, FileFormatError, NoDataCondition
from logistics_core.executor import PipelineExecutor, RunContext
from logistics_core.outcome import RunOutcome, StepStatus
from logistics_core.steps import BoundStep, ProcessingStep
from logistics_core.tracker import RunState, RunTracker, TrackerEventType


def make_steps(count: int, calls: list, overrides: dict | None = None, critical: dict | None = None):
    """Build ``count`` bound steps recording their index into ``calls``."""
    overrides = overrides or {}
    critical = critical or {}
    steps = []
    for i in range(1, count + 1):
        behaviour = overrides.get(i)

        async def run(ctx, i=i, behaviour=behaviour):
            calls.append(i)
            if isinstance(behaviour, BaseException):
                raise behaviour
            if behaviour is not None:
                return behaviour
            return StepStatus.CONTINUE

        step = ProcessingStep(index=i, code=f"S{i}", name=f"Step {i}", sort_order=i * 10)
        steps.append(BoundStep(step, run, critical.get(i, True)))
    return steps


class TestPipelineExecutor:
    """Tests for PipelineExecutor.execute."""

    @pytest.fixture
    def tracker(self):
        return RunTracker()

    @pytest.fixture
    def executor(self, tracker):
        return PipelineExecutor(tracker, time_update_interval=None)

    @pytest.fixture
    def logs(self):
        return []

    @pytest.fixture
    def context(self, logs):
        return RunContext(batch_label="2차", batch_id="배치_test", log_sink=logs.append)

    @pytest.mark.asyncio
    async def test_all_steps_succeed(self, executor, context, tracker):
        calls, progress = [], []
        result = await executor.execute(make_steps(5, calls), context, progress.append)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.steps_completed == 5
        assert calls == [1, 2, 3, 4, 5]
        assert tracker.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_monotonic_ending_at_one(self, executor, context):
        progress = []
        await executor.execute(make_steps(7, []), context, progress.append)

        fractions = [p.fraction for p in progress]
        assert len(fractions) == 7
        assert all(a < b for a, b in zip(fractions, fractions[1:]))
        assert fractions[-1] == 1.0

    @pytest.mark.asyncio
    async def test_test_level_cutoff(self, executor, context, tracker):
        calls, progress = [], []
        result = await executor.execute(make_steps(10, calls), context, progress.append, test_level=3)

        assert calls == [1, 2, 3]
        assert result.steps_planned == 3
        assert tracker.target_steps == 3
        assert progress[-1].fraction == 1.0

    @pytest.mark.asyncio
    async def test_no_data_short_circuits(self, executor, context):
        calls = []
        steps = make_steps(4, calls, overrides={1: StepStatus.NO_DATA})
        result = await executor.execute(steps, context)

        assert result.outcome == RunOutcome.NO_DATA
        assert calls == [1]
        assert result.steps_completed == 0
        assert result.error is None

    @pytest.mark.asyncio
    async def test_no_data_condition_exception(self, executor, context):
        steps = make_steps(3, [], overrides={2: NoDataCondition("empty")})
        result = await executor.execute(steps, context)
        assert result.outcome == RunOutcome.NO_DATA
        assert result.steps_completed == 1

    @pytest.mark.asyncio
    async def test_critical_failure_stops_run(self, executor, context, tracker):
        calls, progress, events = [], [], []
        tracker.on_event(events.append)
        cause = OSError("connection reset")
        error = CollaboratorError("database", "insert failed")
        error.__cause__ = cause

        steps = make_steps(10, calls, overrides={7: error})
        result = await executor.execute(steps, context, progress.append)

        assert result.outcome == RunOutcome.FAILED
        assert calls == [1, 2, 3, 4, 5, 6, 7]
        assert result.steps_completed == 6
        assert result.failed_step == "Step 7"
        assert "insert failed" in result.error
        assert "connection reset" in result.root_cause
        assert len(progress) == 6
        completed = [e for e in events if e.type == TrackerEventType.COMPLETED]
        assert len(completed) == 1

    @pytest.mark.asyncio
    async def test_non_critical_failure_contained(self, executor, context, logs):
        calls = []
        steps = make_steps(
            4, calls,
            overrides={2: RuntimeError("seed insert failed")},
            critical={2: False},
        )
        result = await executor.execute(steps, context)

        assert result.outcome == RunOutcome.SUCCESS
        assert calls == [1, 2, 3, 4]
        assert result.steps_completed == 4
        assert len(result.warnings) == 1
        assert "seed insert failed" in result.warnings[0]
        assert any("seed insert failed" in line for line in logs)

    @pytest.mark.asyncio
    async def test_validation_error_fatal_even_when_non_critical(self, executor, context):
        steps = make_steps(3, [], overrides={1: FileFormatError("bad header")}, critical={1: False})
        result = await executor.execute(steps, context)
        assert result.outcome == RunOutcome.FAILED

    @pytest.mark.asyncio
    async def test_cancel_event_aborts_between_steps(self, tracker, context):
        cancel = asyncio.Event()
        calls = []

        async def cancel_after_first(ctx):
            calls.append(1)
            cancel.set()

        steps = make_steps(3, calls)
        steps[0] = BoundStep(steps[0].step, cancel_after_first)

        executor = PipelineExecutor(tracker, time_update_interval=None)
        result = await executor.execute(steps, context, cancel_event=cancel)

        assert result.outcome == RunOutcome.ABORTED
        assert calls == [1]
        assert tracker.snapshot().abort_reason is not None

    @pytest.mark.asyncio
    async def test_step_timeout(self, tracker, context):
        async def slow(ctx):
            await asyncio.sleep(5)

        step = BoundStep(ProcessingStep(1, "SLOW", "Slow step", 10), slow)
        executor = PipelineExecutor(tracker, step_timeout=0.01, time_update_interval=None)

        result = await executor.execute([step], context)

        assert result.outcome == RunOutcome.FAILED
        assert "Slow step" in result.error

    @pytest.mark.asyncio
    async def test_task_cancellation_finishes_tracker(self, tracker, context):
        started = asyncio.Event()

        async def hang(ctx):
            started.set()
            await asyncio.sleep(10)

        step = BoundStep(ProcessingStep(1, "HANG", "Hang", 10), hang)
        executor = PipelineExecutor(tracker, time_update_interval=None)
        task = asyncio.create_task(executor.execute([step], context))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert tracker.state == RunState.COMPLETED

    @pytest.mark.asyncio
    async def test_double_start_raises_before_steps(self, tracker, context):
        from logistics_core.errors import InvariantViolation

        tracker.start(1)
        calls = []
        executor = PipelineExecutor(tracker, time_update_interval=None)
        with pytest.raises(InvariantViolation):
            await executor.execute(make_steps(2, calls), context)
        assert calls == []

    @pytest.mark.asyncio
    async def test_broken_progress_sink_does_not_fail_run(self, executor, context):
        def broken(progress):
            raise ValueError("ui gone")

        result = await executor.execute(make_steps(2, []), context, broken)
        assert result.outcome == RunOutcome.SUCCESS

    @pytest.mark.asyncio
    async def test_empty_plan_is_not_success(self, executor, context, tracker, logs):
        progress, events = [], []
        tracker.on_event(events.append)
        result = await executor.execute([], context, progress.append)

        assert result.outcome == RunOutcome.ABORTED
        assert result.steps_planned == 0
        assert "PG_PROC" in result.warnings[0]
        assert not result.user_message.startswith("🎉")
        assert progress == []
        assert tracker.state == RunState.COMPLETED
        assert [e.aborted for e in events if e.type == TrackerEventType.COMPLETED] == [True]
        assert any("[처리 중단]" in line for line in logs)
