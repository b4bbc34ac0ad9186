"""Sequential step executor with per-step error boundaries."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from logistics_core.errors import (
    NoDataCondition,
    ValidationError,
    classify_error,
    root_cause,
)
from logistics_core.outcome import RunOutcome, RunResult, StepProgress, StepStatus
from logistics_core.protocol import LogSink, ProgressSink, UploadResult
from logistics_core.steps import BoundStep
from logistics_core.tracker import RunTracker

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Mutable state shared by the steps of one run."""

    batch_label: str
    batch_id: str
    spreadsheet_path: Path | None = None
    sales_only: bool = False
    rows: list[dict[str, Any]] = field(default_factory=list)
    exports: dict[str, Path] = field(default_factory=dict)
    export_counts: dict[str, int] = field(default_factory=dict)
    uploads: dict[str, UploadResult] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    log_sink: LogSink | None = None

    def log(self, message: str, level: int = logging.INFO) -> None:
        """Send a line to the caller's log sink and the module logger."""
        logger.log(level, message)
        if self.log_sink is None:
            return
        try:
            self.log_sink(message)
        except Exception as e:
            logger.warning(f"Log sink failed: {e}")


class PipelineExecutor:
    """Runs bound steps in order and folds the result into a RunResult.

    Rules:
    - A step returning StepStatus.NO_DATA (or raising NoDataCondition)
      ends the run with NO_DATA.
    - ValidationError is always fatal.
    - Any other exception is fatal for critical steps and contained for
      non-critical ones (logged, recorded as a warning, step counted).
    - ``cancel_event`` is checked between steps; when set the run ends
      with ABORTED.
    - The tracker is started before the first step and finished exactly
      once in a finally block.
    """

    def __init__(
        self,
        tracker: RunTracker,
        step_timeout: float | None = None,
        time_update_interval: float | None = 10.0,
    ):
        self.tracker = tracker
        self.step_timeout = step_timeout
        self.time_update_interval = time_update_interval

    async def execute(
        self,
        steps: list[BoundStep],
        context: RunContext,
        progress_sink: ProgressSink | None = None,
        test_level: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        planned = steps[:test_level] if test_level is not None else list(steps)
        total = len(planned)
        if test_level is not None and test_level < len(steps):
            context.log(f"테스트 레벨 {test_level}: {len(steps)}단계 중 {total}단계만 실행합니다.")

        self.tracker.start(total)
        ticker = self._start_ticker()

        result = RunResult(outcome=RunOutcome.SUCCESS, steps_planned=total)
        abort_reason: str | None = None
        if total == 0:
            abort_reason = "실행할 처리 단계가 없습니다 (PG_PROC 사용 여부를 확인하세요)"
            result.outcome = RunOutcome.ABORTED
            result.warnings.append(abort_reason)
            context.log(f"[처리 중단] {abort_reason}", logging.WARNING)

        try:
            for bound in planned:
                if cancel_event is not None and cancel_event.is_set():
                    abort_reason = f"{bound.index}단계 시작 전 취소됨"
                    result.outcome = RunOutcome.ABORTED
                    context.log(f"[처리 중단] {abort_reason}", logging.WARNING)
                    break

                context.log(f"[{bound.index}/{total}] {bound.name} 시작")
                try:
                    status = await self._run_step(bound, context)
                except NoDataCondition as e:
                    status = StepStatus.NO_DATA
                    context.log(f"[처리 중단] {e}", logging.WARNING)
                except asyncio.CancelledError:
                    abort_reason = f"{bound.name} 실행 중 작업이 취소됨"
                    result.outcome = RunOutcome.ABORTED
                    raise
                except Exception as e:
                    if bound.critical or isinstance(e, ValidationError):
                        self._record_failure(result, bound, e, context)
                        break
                    warning = f"{bound.name} 실패 (계속 진행): {e}"
                    context.log(f"⚠️ {warning}", logging.WARNING)
                    result.warnings.append(warning)
                    status = StepStatus.CONTINUE

                if status == StepStatus.NO_DATA:
                    result.outcome = RunOutcome.NO_DATA
                    context.log(f"[처리 중단] {bound.name}: 처리할 데이터가 없습니다.", logging.WARNING)
                    break

                result.steps_completed = bound.index
                self.tracker.advance_step(bound.index, bound.name)
                context.log(f"[{bound.index}/{total}] {bound.name} 완료")
                self._report_progress(progress_sink, StepProgress(bound.index, total, bound.name, bound.code))
        finally:
            if ticker is not None:
                ticker.cancel()
            if abort_reason is not None:
                self.tracker.abort(abort_reason)
            else:
                self.tracker.complete()
            result.elapsed = self.tracker.elapsed
            result.warnings = context.warnings + result.warnings
            result.uploads = list(context.uploads.values())

        if result.outcome == RunOutcome.SUCCESS:
            context.log(f"✅ 모든 단계 완료 ({self.tracker.formatted_elapsed})")
        return result

    async def _run_step(self, bound: BoundStep, context: RunContext) -> StepStatus:
        coro = bound.execute(context)
        if self.step_timeout is not None:
            try:
                status = await asyncio.wait_for(coro, timeout=self.step_timeout)
            except asyncio.TimeoutError as e:
                raise TimeoutError(
                    f"{bound.name} 단계가 {self.step_timeout:.0f}초 안에 끝나지 않았습니다"
                ) from e
        else:
            status = await coro
        return status or StepStatus.CONTINUE

    def _record_failure(
        self,
        result: RunResult,
        bound: BoundStep,
        exc: Exception,
        context: RunContext,
    ) -> None:
        cause = root_cause(exc)
        category = classify_error(cause)
        result.outcome = RunOutcome.FAILED
        result.error = str(exc) or type(exc).__name__
        result.failed_step = bound.name
        if cause is not exc:
            result.root_cause = f"{type(cause).__name__}: {cause}"

        logger.exception(
            f"Step {bound.index} ({bound.code}) failed [{category}]: {exc}"
        )
        context.log(f"❌ [{bound.index}] {bound.name} 실패: {result.error}", logging.ERROR)
        if result.root_cause:
            context.log(f"   근본 원인: {result.root_cause}", logging.ERROR)

    def _start_ticker(self) -> asyncio.Task | None:
        if not self.time_update_interval:
            return None
        return asyncio.create_task(self.tracker.tick_every(self.time_update_interval))

    @staticmethod
    def _report_progress(progress_sink: ProgressSink | None, progress: StepProgress) -> None:
        if progress_sink is None:
            return
        try:
            progress_sink(progress)
        except Exception as e:
            logger.warning(f"Progress sink failed: {e}")
