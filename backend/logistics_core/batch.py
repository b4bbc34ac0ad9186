"""Batch classification by time of day.

Orders are shipped in named batches (1차, 2차, ... 막차, 추가). Every minute of
the day belongs to exactly one batch window. The windows from 23:00 to 01:00
belong to the following day's first batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time
from typing import Callable

from logistics_core.errors import InvariantViolation

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class BatchWindow:
    """A half-open interval [start, end) of minutes since midnight."""

    label: str
    start: int
    end: int
    ordinal: int
    next_day: bool = False

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end

    @property
    def range_text(self) -> str:
        return f"{_fmt(self.start)}~{_fmt(self.end)}"


def _fmt(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def _window(label: str, start_h: int, end_h: int, ordinal: int, next_day: bool = False) -> BatchWindow:
    return BatchWindow(label, start_h * 60, end_h * 60, ordinal, next_day)


DEFAULT_BATCH_TABLE: tuple[BatchWindow, ...] = (
    _window("1차", 0, 1, 1, next_day=True),
    _window("1차", 1, 7, 1),
    _window("2차", 7, 10, 2),
    _window("3차", 10, 11, 3),
    _window("4차", 11, 13, 4),
    _window("5차", 13, 15, 5),
    _window("막차", 15, 18, 6),
    _window("추가", 18, 23, 7),
    _window("1차", 23, 24, 1, next_day=True),
)


@dataclass(frozen=True)
class BatchValidation:
    """Result of checking a declared batch against the clock."""

    claimed: str
    current_label: str
    matches: bool
    known: bool
    explanation: str


class BatchClassifier:
    """Maps wall-clock time to a batch label.

    Pure apart from the injected clock: ``classify`` depends only on the
    table and its argument.
    """

    def __init__(
        self,
        table: tuple[BatchWindow, ...] | list[BatchWindow] = DEFAULT_BATCH_TABLE,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._table = tuple(table)
        self._clock = clock
        self._check_table()

    def _check_table(self) -> None:
        if not self._table:
            raise InvariantViolation("Batch table is empty")
        expected = 0
        for window in self._table:
            if window.start != expected:
                raise InvariantViolation(
                    f"Batch table gap or overlap at {_fmt(expected)} ({window.label})"
                )
            if window.end <= window.start:
                raise InvariantViolation(f"Empty batch window for {window.label}")
            expected = window.end
        if expected != MINUTES_PER_DAY:
            raise InvariantViolation(f"Batch table ends at {_fmt(expected)}, not 24:00")

    @property
    def table(self) -> tuple[BatchWindow, ...]:
        return self._table

    @property
    def labels(self) -> list[str]:
        """Distinct labels in batch order."""
        seen: dict[str, int] = {}
        for window in self._table:
            seen.setdefault(window.label, window.ordinal)
        return sorted(seen, key=seen.__getitem__)

    def window_for(self, moment: datetime | time) -> BatchWindow:
        minute = moment.hour * 60 + moment.minute
        for window in self._table:
            if window.contains(minute):
                return window
        # unreachable once _check_table has passed
        raise InvariantViolation(f"No batch window covers {_fmt(minute)}")

    def classify(self, moment: datetime | time) -> str:
        return self.window_for(moment).label

    def classify_now(self) -> str:
        return self.classify(self._clock())

    def validate(self, claimed: str) -> BatchValidation:
        """Compare a declared batch with the current one.

        A mismatch is a warning for the caller to confirm, never an error.
        Unknown labels are reported as such rather than raised.
        """
        current = self.classify_now()
        claimed = (claimed or "").strip()

        if claimed not in self.labels:
            explanation = (
                f"알 수 없는 배치 '{claimed}' 입니다. 검증할 수 없습니다 "
                f"(현재 시간 기준 배치: {current})."
            )
            logger.warning(f"Unknown batch label {claimed!r}, cannot validate")
            return BatchValidation(claimed, current, matches=False, known=False, explanation=explanation)

        if claimed == current:
            return BatchValidation(
                claimed, current, matches=True, known=True,
                explanation=f"선택한 배치 '{claimed}'가 현재 시간과 일치합니다.",
            )

        explanation = (
            f"선택한 배치 '{claimed}'가 현재 시간 기준 배치 '{current}'와 다릅니다. "
            f"({self.describe()[current]})"
        )
        logger.warning(f"Batch mismatch: claimed={claimed} current={current}")
        return BatchValidation(claimed, current, matches=False, known=True, explanation=explanation)

    def batch_title(self, base_title: str, moment: datetime | None = None) -> str:
        """Append the current batch to a title, e.g. ``"송장처리 (2차)"``."""
        label = self.classify(moment or self._clock())
        return f"{base_title} ({label})"

    def describe(self) -> dict[str, str]:
        """Label -> comma-separated time ranges, in batch order."""
        ranges: dict[str, list[str]] = {label: [] for label in self.labels}
        for window in self._table:
            ranges[window.label].append(window.range_text)
        return {label: ", ".join(parts) for label, parts in ranges.items()}


def make_batch_id(moment: datetime) -> str:
    """Identifier used in notification titles and export file names."""
    return f"배치_{moment:%Y%m%d_%H%M%S}"
