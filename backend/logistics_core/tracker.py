"""Run tracker: at most one in-flight run, with step and time events.

State machine:
    IDLE -> RUNNING -> COMPLETED -> RUNNING (next start) ...

Listeners are plain callables receiving a TrackerEvent. They are invoked
synchronously from whichever thread or task drives the tracker; a failing
listener is logged and skipped.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable

from logistics_core.errors import InvariantViolation

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class TrackerEventType(str, Enum):
    STARTED = "started"
    STEP_UPDATED = "step"
    TIME_UPDATED = "time"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TrackerEvent:
    type: TrackerEventType
    current_step: int
    target_steps: int
    elapsed: float
    step_name: str | None = None
    aborted: bool = False
    reason: str | None = None

    @property
    def progress(self) -> float:
        if self.target_steps <= 0:
            return 0.0
        return self.current_step / self.target_steps

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "current_step": self.current_step,
            "target_steps": self.target_steps,
            "progress": round(self.progress, 4),
            "elapsed": round(self.elapsed, 3),
            "step_name": self.step_name,
            "aborted": self.aborted,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RunSnapshot:
    """Point-in-time copy of the tracker state."""

    state: RunState
    started_at: datetime | None
    current_step: int
    target_steps: int
    step_name: str | None
    elapsed: float
    abort_reason: str | None = None

    @property
    def progress(self) -> float:
        if self.target_steps <= 0:
            return 0.0
        return self.current_step / self.target_steps


TrackerListener = Callable[[TrackerEvent], None]


class RunTracker:
    """Process-wide tracker for the single active pipeline run.

    ``complete()`` and ``abort()`` leave the tracker in COMPLETED rather
    than IDLE so the final step count, elapsed time and abort reason stay
    readable. COMPLETED accepts a new ``start()`` just like IDLE, and
    ``reset()`` returns to IDLE explicitly.
    """

    def __init__(
        self,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.now,
    ):
        self._monotonic = monotonic
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._listeners: list[TrackerListener] = []

        self._state = RunState.IDLE
        self._started_at: datetime | None = None
        self._origin = 0.0
        self._frozen_elapsed = 0.0
        self._current_step = 0
        self._target_steps = 0
        self._step_name: str | None = None
        self._abort_reason: str | None = None

    # -- listeners -------------------------------------------------------

    def on_event(self, listener: TrackerListener) -> None:
        """Register a listener for tracker events."""
        self._listeners.append(listener)

    def off_event(self, listener: TrackerListener) -> None:
        """Unregister a listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: TrackerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Tracker listener failed on {event.type.value}: {e}")

    # -- state -----------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == RunState.RUNNING

    @property
    def current_step(self) -> int:
        return self._current_step

    @property
    def target_steps(self) -> int:
        return self._target_steps

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    @property
    def elapsed(self) -> float:
        """Seconds since start; frozen once the run completes."""
        if self._state == RunState.RUNNING:
            return self._monotonic() - self._origin
        return self._frozen_elapsed

    @property
    def formatted_elapsed(self) -> str:
        return f"{self.elapsed:.1f}초"

    def snapshot(self) -> RunSnapshot:
        with self._lock:
            return RunSnapshot(
                state=self._state,
                started_at=self._started_at,
                current_step=self._current_step,
                target_steps=self._target_steps,
                step_name=self._step_name,
                elapsed=self.elapsed,
                abort_reason=self._abort_reason,
            )

    # -- transitions -----------------------------------------------------

    def start(self, target_steps: int) -> None:
        """Begin a run. Raises InvariantViolation if one is already running."""
        if target_steps < 0:
            raise ValueError(f"target_steps must be >= 0, got {target_steps}")

        with self._lock:
            if self._state == RunState.RUNNING:
                raise InvariantViolation("A processing run is already in progress")
            self._state = RunState.RUNNING
            self._started_at = self._wall_clock()
            self._origin = self._monotonic()
            self._frozen_elapsed = 0.0
            self._current_step = 0
            self._target_steps = target_steps
            self._step_name = None
            self._abort_reason = None

        logger.info(f"Processing started: {target_steps} steps planned")
        self._emit(TrackerEvent(TrackerEventType.STARTED, 0, target_steps, 0.0))

    def advance_step(self, step_index: int, step_name: str) -> None:
        """Record that ``step_index`` (1-based) has completed."""
        with self._lock:
            if self._state != RunState.RUNNING:
                raise InvariantViolation(f"advance_step called while {self._state.value}")
            self._current_step = step_index
            self._step_name = step_name
            event = TrackerEvent(
                TrackerEventType.STEP_UPDATED,
                step_index,
                self._target_steps,
                self.elapsed,
                step_name=step_name,
            )
        self._emit(event)

    def emit_time_update(self) -> None:
        """Emit TIME_UPDATED with the current elapsed time, if running."""
        if self._state != RunState.RUNNING:
            return
        self._emit(TrackerEvent(
            TrackerEventType.TIME_UPDATED,
            self._current_step,
            self._target_steps,
            self.elapsed,
            step_name=self._step_name,
        ))

    async def tick_every(self, interval: float = 10.0) -> None:
        """Emit time updates at a fixed cadence until the run ends.

        Meant to run as a separate task; cancelling it is the normal way to
        stop it early.
        """
        while self._state == RunState.RUNNING:
            await asyncio.sleep(interval)
            if self._state != RunState.RUNNING:
                break
            self.emit_time_update()

    def complete(self) -> None:
        """Finish the run and freeze elapsed time."""
        self._finish(aborted=False, reason=None)

    def abort(self, reason: str) -> None:
        """Finish the run early, recording why."""
        logger.warning(f"Processing aborted: {reason}")
        self._finish(aborted=True, reason=reason)

    def _finish(self, aborted: bool, reason: str | None) -> None:
        with self._lock:
            if self._state != RunState.RUNNING:
                raise InvariantViolation(f"complete called while {self._state.value}")
            self._frozen_elapsed = self._monotonic() - self._origin
            self._state = RunState.COMPLETED
            self._abort_reason = reason
            event = TrackerEvent(
                TrackerEventType.COMPLETED,
                self._current_step,
                self._target_steps,
                self._frozen_elapsed,
                step_name=self._step_name,
                aborted=aborted,
                reason=reason,
            )

        logger.info(
            f"Processing finished: {self._current_step}/{self._target_steps} steps "
            f"in {self._frozen_elapsed:.1f}s"
        )
        self._emit(event)

    def reset(self) -> None:
        """Return to IDLE and clear the last run."""
        with self._lock:
            if self._state == RunState.RUNNING:
                raise InvariantViolation("Cannot reset while a run is in progress")
            self._state = RunState.IDLE
            self._started_at = None
            self._frozen_elapsed = 0.0
            self._current_step = 0
            self._target_steps = 0
            self._step_name = None
            self._abort_reason = None
