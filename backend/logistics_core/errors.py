"""Pipeline error taxonomy.

- ValidationError: bad input file or shape, always fatal, raised before writes
- NoDataCondition: nothing to process, mapped to RunOutcome.NO_DATA
- CollaboratorError: database, storage or notification failure
- InvariantViolation: programmer error, never contained
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError):
    """Input file is missing, unreadable or has the wrong shape."""


class FileFormatError(ValidationError):
    """Spreadsheet headers are missing or malformed."""

    def __init__(self, message: str, missing_columns: list[str] | None = None):
        super().__init__(message)
        self.missing_columns = missing_columns or []


class NoDataCondition(PipelineError):
    """Raised by collaborators that find nothing to process."""


class CollaboratorError(PipelineError):
    """A database, storage or notification call failed."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"[{collaborator}] {message}")
        self.collaborator = collaborator


class InvariantViolation(PipelineError):
    """Run state machine or static table used incorrectly."""


def root_cause(exc: BaseException) -> BaseException:
    """Follow the __cause__/__context__ chain to the innermost exception."""
    seen = {id(exc)}
    current = exc
    while True:
        nxt = current.__cause__ or current.__context__
        if nxt is None or id(nxt) in seen:
            return current
        seen.add(id(nxt))
        current = nxt


def classify_error(exc: BaseException) -> str:
    """Coarse error category used in failure log lines."""
    if isinstance(exc, (FileNotFoundError, IsADirectoryError)):
        return "file_access"
    if isinstance(exc, PermissionError):
        return "permission"
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, (ValidationError, ValueError, KeyError)):
        return "input_data"
    if isinstance(exc, (InvariantViolation, RuntimeError)):
        return "system_state"
    if isinstance(exc, CollaboratorError):
        return "collaborator"
    return "general"
