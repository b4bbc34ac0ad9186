"""Invoice processor: the entry point the CLI and API call to run the pipeline."""

import asyncio
import inspect
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from logistics.clients import DropboxClient, KakaoWorkClient
from logistics.config import Settings, get_settings
from logistics.services.invoice_steps import DEFAULT_INVOICE_STEPS, SALES_STEP_CODES, InvoiceSteps
from logistics.services.spreadsheet import ExcelReader, load_column_mapping
from logistics.storage import CommonCodeRepository, OrderRepository, get_database
from logistics_core.batch import BatchClassifier, BatchValidation, make_batch_id
from logistics_core.executor import PipelineExecutor, RunContext
from logistics_core.outcome import RunOutcome, RunResult
from logistics_core.protocol import ConfirmCallback, LogSink, ProgressSink
from logistics_core.steps import BoundStep, ProcessingStep, StepRegistry
from logistics_core.tracker import RunTracker, TrackerEvent, TrackerEventType

logger = logging.getLogger(__name__)

# Log a progress line every N completed steps
STEP_LOG_EVERY = 5


class InvoiceProcessor:
    """Runs the invoice pipeline and the sales input sub-pipeline.

    Both runs share one RunTracker, so only one of them can be in flight
    at a time.
    """

    def __init__(
        self,
        steps: InvoiceSteps,
        registry: StepRegistry,
        tracker: RunTracker,
        classifier: BatchClassifier,
        default_test_level: int = 1,
        step_timeout: float | None = None,
        time_update_interval: float | None = 10.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.steps = steps
        self.registry = registry
        self.tracker = tracker
        self.classifier = classifier
        self.default_test_level = default_test_level
        self.executor = PipelineExecutor(
            tracker,
            step_timeout=step_timeout,
            time_update_interval=time_update_interval,
        )
        self._clock = clock
        tracker.on_event(self._log_tracker_event)

    def _log_tracker_event(self, event: TrackerEvent) -> None:
        if event.type == TrackerEventType.TIME_UPDATED:
            logger.info(f"⏱️ 경과 시간: {event.elapsed:.1f}초 ({event.current_step}/{event.target_steps})")
        elif event.type == TrackerEventType.STEP_UPDATED and event.current_step % STEP_LOG_EVERY == 0:
            logger.info(f"📈 진행률 {event.progress:.0%} ({event.current_step}/{event.target_steps})")

    async def close(self) -> None:
        """Close the HTTP clients held by the steps."""
        for client in (self.steps.storage, self.steps.notifier):
            close = getattr(client, "close", None)
            if close is not None:
                await close()

    async def list_steps(self) -> list[ProcessingStep]:
        return await self.registry.load_steps()

    async def _bound_steps(self, codes: tuple[str, ...] | None = None) -> list[BoundStep]:
        steps = await self.registry.load_steps()
        if codes is not None:
            steps = [s for s in steps if s.code in codes]
        return self.registry.bind(steps, self.steps.handlers())

    async def run(
        self,
        spreadsheet_path: str | Path,
        log_sink: LogSink | None = None,
        progress_sink: ProgressSink | None = None,
        test_level: int | None = None,
        batch_label: str | None = None,
        confirm: ConfirmCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Run the invoice pipeline on a spreadsheet.

        Args:
            spreadsheet_path: Order spreadsheet (.xlsx).
            log_sink: Receives human-readable log lines.
            progress_sink: Receives a StepProgress after each completed step.
            test_level: Run only the first N enabled steps (defaults to settings).
            batch_label: Declared batch; defaults to the current one.
            confirm: Asked whether to proceed when the declared batch does not
                match the clock. Without it a mismatch is only logged.
            cancel_event: Checked between steps; when set the run is aborted.

        Returns:
            RunResult with the aggregate outcome.

        Raises:
            ValueError: test_level is not a positive integer.
            InvariantViolation: Another run is already in progress.
        """
        level = self.default_test_level if test_level is None else test_level
        if not isinstance(level, int) or level < 1:
            raise ValueError(f"test_level must be a positive integer, got {level!r}")

        path = Path(spreadsheet_path)
        ctx = RunContext(
            batch_label="",
            batch_id=make_batch_id(self._clock()),
            spreadsheet_path=path,
            log_sink=log_sink,
        )

        if not path.is_file():
            message = f"파일을 찾을 수 없습니다: {path}"
            ctx.log(f"❌ {message}", logging.ERROR)
            return RunResult(outcome=RunOutcome.FAILED, error=message)

        label, proceed = await self._resolve_batch(batch_label, confirm, ctx)
        if not proceed:
            return RunResult(outcome=RunOutcome.ABORTED, warnings=list(ctx.warnings))
        ctx.batch_label = label

        ctx.log(f"🚀 송장 처리 시작: {path.name} ({label}, 테스트 레벨 {level})")
        bound = await self._bound_steps()
        result = await self.executor.execute(bound, ctx, progress_sink, level, cancel_event)
        self._log_result(result)
        return result

    async def process_sales_input_data(
        self,
        log_sink: LogSink | None = None,
        progress_sink: ProgressSink | None = None,
        batch_label: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Generate, upload and announce the sales input file only."""
        label = batch_label or self.classifier.classify_now()
        ctx = RunContext(
            batch_label=label,
            batch_id=make_batch_id(self._clock()),
            sales_only=True,
            log_sink=log_sink,
        )
        ctx.log(f"🚀 판매입력 자료 처리 시작 ({label})")
        bound = await self._bound_steps(SALES_STEP_CODES)
        result = await self.executor.execute(bound, ctx, progress_sink, None, cancel_event)
        self._log_result(result)
        return result

    async def _resolve_batch(
        self,
        batch_label: str | None,
        confirm: ConfirmCallback | None,
        ctx: RunContext,
    ) -> tuple[str, bool]:
        if not batch_label:
            return self.classifier.classify_now(), True

        validation: BatchValidation = self.classifier.validate(batch_label)
        if validation.matches:
            return batch_label, True

        ctx.log(f"⚠️ {validation.explanation}", logging.WARNING)
        ctx.warnings.append(validation.explanation)
        if confirm is None:
            return batch_label, True

        decision = confirm(validation)
        if inspect.isawaitable(decision):
            decision = await decision
        if not decision:
            ctx.log("[처리 중단] 배치 확인이 취소되었습니다.", logging.WARNING)
            return batch_label, False
        ctx.log(f"배치 '{batch_label}'(으)로 계속 진행합니다.")
        return batch_label, True

    @staticmethod
    def _log_result(result: RunResult) -> None:
        if result.outcome == RunOutcome.FAILED:
            logger.error(
                f"Run failed at {result.failed_step!r} after {result.steps_completed}/"
                f"{result.steps_planned} steps: {result.error}"
            )
        else:
            logger.info(
                f"Run finished: {result.outcome.value} "
                f"({result.steps_completed}/{result.steps_planned} steps, "
                f"{len(result.warnings)} warnings, {result.elapsed:.1f}s)"
            )


def create_invoice_processor(
    settings: Settings | None = None,
    tracker: RunTracker | None = None,
) -> InvoiceProcessor:
    """Wire the processor with the database, Dropbox and KakaoWork clients."""
    settings = settings or get_settings()
    db = get_database()

    steps = InvoiceSteps(
        reader=ExcelReader(load_column_mapping(settings.column_mapping_path)),
        orders=OrderRepository(db),
        storage=DropboxClient(
            app_key=settings.dropbox_app_key,
            app_secret=settings.dropbox_app_secret,
            refresh_token=settings.dropbox_refresh_token,
            default_folder=settings.dropbox_folder,
        ),
        notifier=KakaoWorkClient(
            app_key=settings.kakaowork_app_key,
            chatrooms=settings.kakaowork_chatrooms,
        ),
        output_dir=settings.output_dir,
    )
    registry = StepRegistry(
        CommonCodeRepository(db),
        DEFAULT_INVOICE_STEPS,
        group_code=settings.step_group_code,
    )
    return InvoiceProcessor(
        steps=steps,
        registry=registry,
        tracker=tracker or RunTracker(),
        classifier=BatchClassifier(),
        default_test_level=settings.test_level,
        step_timeout=settings.step_timeout_seconds,
        time_update_interval=settings.time_update_interval,
    )
