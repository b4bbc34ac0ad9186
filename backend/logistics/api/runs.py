"""Background run control for the HTTP surface."""

import asyncio
import logging
from pathlib import Path

from logistics.api.websocket import ConnectionManager
from logistics.services.invoice_processor import InvoiceProcessor
from logistics_core.errors import InvariantViolation
from logistics_core.outcome import RunResult, StepProgress
from logistics_core.tracker import TrackerEvent

logger = logging.getLogger(__name__)


class RunController:
    """Starts runs as background tasks and relays their events to websockets."""

    def __init__(self, processor: InvoiceProcessor, manager: ConnectionManager):
        self.processor = processor
        self.manager = manager
        self.last_result: RunResult | None = None
        self._task: asyncio.Task | None = None
        self._cancel: asyncio.Event | None = None
        processor.tracker.on_event(self._on_tracker_event)

    @property
    def is_busy(self) -> bool:
        return (self._task is not None and not self._task.done()) or self.processor.tracker.is_running

    def _on_tracker_event(self, event: TrackerEvent) -> None:
        self.manager.publish("tracker", event.to_dict())

    def _on_log(self, line: str) -> None:
        self.manager.publish("log", {"message": line})

    def _on_progress(self, progress: StepProgress) -> None:
        self.manager.publish("progress", {
            "index": progress.index,
            "total": progress.total,
            "name": progress.name,
            "code": progress.code,
            "fraction": round(progress.fraction, 4),
        })

    def _ensure_idle(self) -> None:
        if self.is_busy:
            raise InvariantViolation("A processing run is already in progress")

    def start_run(
        self,
        spreadsheet_path: Path,
        test_level: int | None = None,
        batch_label: str | None = None,
        confirm_mismatch: bool = False,
    ) -> None:
        self._ensure_idle()
        self._cancel = asyncio.Event()
        coro = self.processor.run(
            spreadsheet_path,
            log_sink=self._on_log,
            progress_sink=self._on_progress,
            test_level=test_level,
            batch_label=batch_label,
            confirm=lambda validation: confirm_mismatch,
            cancel_event=self._cancel,
        )
        self._task = asyncio.create_task(self._run(coro))

    def start_sales_input(self, batch_label: str | None = None) -> None:
        self._ensure_idle()
        self._cancel = asyncio.Event()
        coro = self.processor.process_sales_input_data(
            log_sink=self._on_log,
            progress_sink=self._on_progress,
            batch_label=batch_label,
            cancel_event=self._cancel,
        )
        self._task = asyncio.create_task(self._run(coro))

    async def _run(self, coro) -> None:
        try:
            result = await coro
        except asyncio.CancelledError:
            logger.warning("Run task cancelled")
            raise
        except Exception as e:
            logger.exception(f"Run crashed: {e}")
            self.manager.publish("result", {"outcome": "failed", "error": str(e)})
            return
        self.last_result = result
        self.manager.publish("result", result.to_dict())

    def cancel(self) -> bool:
        """Request cancellation before the next step. False if nothing is running."""
        if not self.is_busy or self._cancel is None:
            return False
        self._cancel.set()
        return True

    async def shutdown(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
