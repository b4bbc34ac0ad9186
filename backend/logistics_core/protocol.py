"""Collaborator protocols the pipeline core depends on.

Concrete implementations live in the ``logistics`` package:
- SpreadsheetReader: openpyxl reader with column mapping
- RelationalStore: SQLAlchemy async database
- FileStorage: Dropbox client
- Notifier: KakaoWork client
- CommonCodeSource: common code repository
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from logistics_core.batch import BatchValidation
    from logistics_core.outcome import StepProgress


# ---------------------------------------------------------------------------
# Sink type aliases
# ---------------------------------------------------------------------------
LogSink = Callable[[str], None]
ProgressSink = Callable[["StepProgress"], None]
ConfirmCallback = Callable[["BatchValidation"], bool | Awaitable[bool]]


@dataclass(frozen=True)
class UploadResult:
    """Where an uploaded file ended up."""

    remote_url: str
    remote_path: str


@runtime_checkable
class SpreadsheetReader(Protocol):
    def read_rows(self, path: Path) -> list[dict[str, Any]]:
        """Read data rows keyed by database column name."""
        ...


@runtime_checkable
class RelationalStore(Protocol):
    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Run a statement and return the number of affected rows."""
        ...

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return rows as dicts."""
        ...


@runtime_checkable
class FileStorage(Protocol):
    async def upload(self, local_path: Path, remote_folder: str | None = None) -> UploadResult:
        ...

    async def download(self, remote_path: str, local_path: Path) -> bool:
        ...

    async def test_connection(self) -> bool:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def send_invoice_notification(
        self,
        notification_type: str,
        batch_label: str,
        batch_id: str,
        record_count: int,
        file_url: str,
    ) -> bool:
        ...

    async def test_connection(self) -> bool:
        ...


class CommonCodeRow(Protocol):
    """Shape of a configuration-store row as seen by the step registry."""

    code: str
    code_name: str
    sort_order: int
    is_used: bool


@runtime_checkable
class CommonCodeSource(Protocol):
    async def get_by_group(self, group_code: str) -> list[CommonCodeRow]:
        ...
