"""Run outcome and step status types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from logistics_core.protocol import UploadResult


class RunOutcome(str, Enum):
    """Aggregate result of a pipeline run."""

    SUCCESS = "success"
    NO_DATA = "no_data"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_noop(self) -> bool:
        """True when the run did nothing and the input should be checked."""
        return self in (RunOutcome.NO_DATA, RunOutcome.ABORTED)


class StepStatus(str, Enum):
    """Value a step returns to the executor."""

    CONTINUE = "continue"
    NO_DATA = "no_data"


@dataclass(frozen=True)
class StepProgress:
    """Progress snapshot passed to the progress sink after each step."""

    index: int
    total: int
    name: str
    code: str = ""

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.index / self.total


NO_DATA_HINTS = (
    "- 엑셀 파일에 데이터가 있는지 확인",
    "- 파일 형식이 올바른지 확인",
    "- 헤더 행이 올바른지 확인",
)


@dataclass
class RunResult:
    """Value returned to the caller of a pipeline run.

    Attributes:
        outcome: Aggregate outcome.
        steps_completed: Steps that finished (contained failures included).
        steps_planned: Steps scheduled after the test-level cutoff.
        elapsed: Run duration in seconds.
        error: Verbatim message of the fatal error, if any.
        root_cause: Innermost cause message when it differs from error.
        failed_step: Name of the step that failed the run.
        warnings: Messages from non-critical failures and batch mismatch.
        uploads: Files uploaded during the run.
    """

    outcome: RunOutcome
    steps_completed: int = 0
    steps_planned: int = 0
    elapsed: float = 0.0
    error: str | None = None
    root_cause: str | None = None
    failed_step: str | None = None
    warnings: list[str] = field(default_factory=list)
    uploads: list[UploadResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome == RunOutcome.SUCCESS

    @property
    def user_message(self) -> str:
        if self.outcome == RunOutcome.SUCCESS:
            return f"🎉 송장 처리가 완료되었습니다! ({self.elapsed:.1f}초)"
        if self.outcome.is_noop:
            reason = "처리할 데이터가 없습니다." if self.outcome == RunOutcome.NO_DATA else "처리가 중단되었습니다."
            return "\n".join((f"⚠️ {reason} 아무 작업도 수행되지 않았습니다.", *NO_DATA_HINTS))
        lines = [f"❌ 송장 처리 중 오류가 발생했습니다: {self.error}"]
        if self.root_cause:
            lines.append(f"근본 원인: {self.root_cause}")
        lines.append("자세한 내용은 로그 파일을 확인하세요.")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "steps_completed": self.steps_completed,
            "steps_planned": self.steps_planned,
            "elapsed": round(self.elapsed, 3),
            "error": self.error,
            "root_cause": self.root_cause,
            "failed_step": self.failed_step,
            "warnings": list(self.warnings),
            "uploads": [
                {"remote_url": u.remote_url, "remote_path": u.remote_path}
                for u in self.uploads
            ],
            "message": self.user_message,
        }
