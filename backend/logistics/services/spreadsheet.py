"""Spreadsheet reading and writing (openpyxl).

The reader maps spreadsheet headers to database columns using
``column_mapping.yaml``:

    columns:
      수취인명:
        db_column: recipient_name
        data_type: str
        required: true
"""

import logging
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, model_validator

from logistics.config import get_settings
from logistics_core.errors import FileFormatError, ValidationError

logger = logging.getLogger(__name__)


class ColumnSpec(BaseModel):
    """How one spreadsheet header maps to a database column."""

    db_column: str
    data_type: Literal["str", "int", "datetime"] = "str"
    required: bool = False
    default: Any = None


class ColumnMapping(BaseModel):
    table: str = "invoice_orders"
    columns: dict[str, ColumnSpec]

    @model_validator(mode="after")
    def _unique_columns(self):
        seen: set[str] = set()
        for header, spec in self.columns.items():
            if spec.db_column in seen:
                raise ValueError(f"db_column '{spec.db_column}' mapped twice (at '{header}')")
            seen.add(spec.db_column)
        return self

    @property
    def required_headers(self) -> list[str]:
        return [h for h, spec in self.columns.items() if spec.required]

    @property
    def db_columns(self) -> list[str]:
        return [spec.db_column for spec in self.columns.values()]


def load_column_mapping(path: Path | None = None) -> ColumnMapping:
    """Load the column mapping YAML file."""
    mapping_path = path or get_settings().column_mapping_path
    with open(mapping_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    mapping = ColumnMapping(**raw)
    logger.info(
        "Loaded column mapping: %d columns (%d required) -> %s",
        len(mapping.columns), len(mapping.required_headers), mapping.table,
    )
    return mapping


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _coerce(value: Any, spec: ColumnSpec, header: str, row_number: int) -> Any:
    if _is_blank(value):
        return spec.default

    if spec.data_type == "int":
        try:
            return int(float(str(value).replace(",", "")))
        except (ValueError, OverflowError):
            raise FileFormatError(
                f"{row_number}행 '{header}' 값이 숫자가 아닙니다: {value!r}"
            ) from None

    if spec.data_type == "datetime":
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(str(value).strip())
        except ValueError:
            raise FileFormatError(
                f"{row_number}행 '{header}' 값이 날짜 형식이 아닙니다: {value!r}"
            ) from None

    # Numeric cells such as phone numbers come back as floats
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class ExcelReader:
    """Reads order rows from the first worksheet of an .xlsx file."""

    def __init__(self, mapping: ColumnMapping):
        self.mapping = mapping

    def read_rows(self, path: Path) -> list[dict[str, Any]]:
        """Read data rows keyed by database column.

        Raises:
            ValidationError: The file does not exist.
            FileFormatError: The file is not a workbook or required headers are missing.
        """
        path = Path(path)
        if not path.is_file():
            raise ValidationError(f"파일을 찾을 수 없습니다: {path}")

        try:
            workbook = load_workbook(path, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise FileFormatError(f"엑셀 파일 형식이 올바르지 않습니다: {path.name}") from e

        try:
            worksheet = workbook.worksheets[0]
            rows = worksheet.iter_rows(values_only=True)

            header_row = next(rows, None)
            if header_row is None:
                raise FileFormatError(
                    f"헤더 행이 없습니다: {path.name}",
                    missing_columns=self.mapping.required_headers,
                )

            headers = [str(h).strip() if h is not None else "" for h in header_row]
            missing = [h for h in self.mapping.required_headers if h not in headers]
            if missing:
                raise FileFormatError(
                    f"필수 컬럼이 없습니다: {', '.join(missing)}",
                    missing_columns=missing,
                )

            positions = {
                header: headers.index(header)
                for header in self.mapping.columns
                if header in headers
            }

            result: list[dict[str, Any]] = []
            for row_number, row in enumerate(rows, start=2):
                if all(_is_blank(v) for v in row):
                    continue
                record: dict[str, Any] = {}
                for header, spec in self.mapping.columns.items():
                    pos = positions.get(header)
                    value = row[pos] if pos is not None and pos < len(row) else None
                    record[spec.db_column] = _coerce(value, spec, header, row_number)
                result.append(record)
        finally:
            workbook.close()

        logger.info(f"Read {len(result)} rows from {path.name}")
        return result


def write_rows(
    path: Path,
    columns: list[tuple[str, str]],
    rows: list[dict[str, Any]],
    sheet_title: str = "Sheet1",
) -> Path:
    """Write rows to a new .xlsx file.

    Args:
        path: Output file path (parent directories are created).
        columns: (header, row key) pairs in output order.
        rows: Row dicts.
        sheet_title: Worksheet title.

    Returns:
        The written path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    workbook = Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_title
    worksheet.append([header for header, _ in columns])
    for row in rows:
        worksheet.append([row.get(key) for _, key in columns])
    workbook.save(path)

    logger.info(f"Wrote {len(rows)} rows to {path}")
    return path
