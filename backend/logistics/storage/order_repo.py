"""Invoice order repository.

Works against any RelationalStore (``execute``/``query``), so the
pipeline steps can run with the real Database or a test double.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

from logistics_core.errors import CollaboratorError
from logistics_core.protocol import RelationalStore

logger = logging.getLogger(__name__)

ORDER_TABLE = "invoice_orders"

_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")

BOX_PREFIX = "▨▧▦ "

# First stage cleanup, applied in order right after loading
FIRST_STAGE_RULES: tuple[tuple[str, str], ...] = (
    (
        "star_address",
        f"UPDATE {ORDER_TABLE} SET address = address || '*' "
        "WHERE product_code IN ('7710', '7720') AND address NOT LIKE '%*'",
    ),
    (
        "invoice_name_prefix",
        f"UPDATE {ORDER_TABLE} SET invoice_name = 'GC_' || substring(invoice_name from 4) "
        "WHERE invoice_name LIKE 'BS\\_%'",
    ),
    (
        "recipient_nan",
        f"UPDATE {ORDER_TABLE} SET recipient_name = '난난' WHERE recipient_name = 'nan'",
    ),
    (
        "address_middle_dot",
        f"UPDATE {ORDER_TABLE} SET address = replace(address, '·', '') WHERE address LIKE '%·%'",
    ),
    (
        "baemin_payment",
        f"UPDATE {ORDER_TABLE} SET payment_method = '0' WHERE store_name = '배민상회'",
    ),
)

EXPORT_COLUMNS: list[tuple[str, str]] = [
    ("수취인명", "recipient_name"),
    ("전화번호1", "phone1"),
    ("전화번호2", "phone2"),
    ("우편번호", "zip_code"),
    ("주소", "address"),
    ("옵션명", "option_name"),
    ("수량", "quantity"),
    ("배송메세지", "delivery_message"),
    ("주문번호", "order_number"),
    ("쇼핑몰", "store_name"),
    ("송장명", "invoice_name"),
    ("품목코드", "product_code"),
    ("별표1", "star1"),
    ("별표2", "star2"),
    ("메세지", "message"),
]

SALES_EXPORT_COLUMNS: list[tuple[str, str]] = [
    ("쇼핑몰", "store_name"),
    ("주문번호", "order_number"),
    ("품목코드", "product_code"),
    ("송장명", "invoice_name"),
    ("수량", "quantity"),
    ("가격", "price"),
    ("수취인명", "recipient_name"),
]


@dataclass(frozen=True)
class ProcedureLogEntry:
    """One execution-log row returned by a stored procedure."""

    step_id: str
    operation: str
    affected_rows: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProcedureLogEntry":
        lowered = {str(k).lower(): v for k, v in row.items()}
        return cls(
            step_id=str(lowered.get("step_id") or lowered.get("stepid") or ""),
            operation=str(
                lowered.get("operation_description") or lowered.get("operationdescription") or ""
            ),
            affected_rows=int(lowered.get("affected_rows") or lowered.get("affectedrows") or 0),
        )

    def __str__(self) -> str:
        return f"[{self.step_id}] {self.operation}: {self.affected_rows}건"


class OrderRepository:
    """Statements issued by the invoice steps."""

    def __init__(self, store: RelationalStore):
        self.store = store

    async def truncate(self) -> None:
        await self._execute(f"TRUNCATE TABLE {ORDER_TABLE} RESTART IDENTITY")

    async def insert_batch(self, rows: list[dict[str, Any]], chunk_size: int = 500) -> int:
        """Insert rows in chunks. All rows must share the same keys."""
        if not rows:
            return 0
        columns = list(rows[0].keys())
        for column in columns:
            if not _IDENT.match(column):
                raise ValueError(f"Invalid column name: {column!r}")
        sql = (
            f"INSERT INTO {ORDER_TABLE} ({', '.join(columns)}) "
            f"VALUES ({', '.join(':' + c for c in columns)})"
        )

        inserted = 0
        for start in range(0, len(rows), chunk_size):
            chunk = rows[start:start + chunk_size]
            inserted += await self._execute(sql, chunk)
        logger.info(f"Inserted {inserted} rows into {ORDER_TABLE}")
        return inserted

    async def apply_first_stage_rules(self) -> dict[str, int]:
        """Apply the cleanup rules in order. Returns rows changed per rule."""
        changed: dict[str, int] = {}
        for name, sql in FIRST_STAGE_RULES:
            changed[name] = await self._execute(sql)
        return changed

    async def mark_jeju(self) -> int:
        return await self._execute(
            f"UPDATE {ORDER_TABLE} SET star2 = '제주' "
            "WHERE address LIKE '%제주특별%' OR address LIKE '%제주 특별%'"
        )

    async def mark_box_products(self) -> int:
        return await self._execute(
            f"UPDATE {ORDER_TABLE} SET invoice_name = :prefix || invoice_name "
            "WHERE invoice_name LIKE '%박스%' AND invoice_name NOT LIKE :prefix_like",
            {"prefix": BOX_PREFIX, "prefix_like": BOX_PREFIX + "%"},
        )

    async def call_procedure(self, name: str) -> list[ProcedureLogEntry]:
        """Call a stored function and parse the execution log it returns."""
        if not _IDENT.match(name):
            raise ValueError(f"Invalid procedure name: {name!r}")
        try:
            rows = await self.store.query(f"SELECT * FROM {name}()")
        except Exception as e:
            raise CollaboratorError("database", f"{name} failed: {e}") from e
        return [ProcedureLogEntry.from_row(row) for row in rows]

    async def count_by_center(self) -> dict[str, int]:
        rows = await self._query(
            f"SELECT shipment_center, COUNT(*) AS cnt FROM {ORDER_TABLE} "
            "WHERE shipment_center IS NOT NULL GROUP BY shipment_center"
        )
        return {row["shipment_center"]: int(row["cnt"]) for row in rows}

    async def fetch_center_rows(self, center: str) -> list[dict[str, Any]]:
        columns = ", ".join(key for _, key in EXPORT_COLUMNS)
        return await self._query(
            f"SELECT {columns} FROM {ORDER_TABLE} WHERE shipment_center = :center ORDER BY id",
            {"center": center},
        )

    async def fetch_all_rows(self) -> list[dict[str, Any]]:
        columns = ", ".join(key for _, key in EXPORT_COLUMNS)
        return await self._query(f"SELECT {columns} FROM {ORDER_TABLE} ORDER BY id")

    async def fetch_sales_input(self) -> list[dict[str, Any]]:
        columns = ", ".join(key for _, key in SALES_EXPORT_COLUMNS)
        return await self._query(f"SELECT {columns} FROM sales_input ORDER BY id")

    async def ensure_talkdeal_table(self) -> None:
        await self._execute(
            "CREATE TABLE IF NOT EXISTS talkdeal_unavailable ("
            "id SERIAL PRIMARY KEY, "
            "store_name VARCHAR(100), "
            "product_code VARCHAR(50) UNIQUE, "
            "product_name VARCHAR(500), "
            "created_at TIMESTAMPTZ DEFAULT NOW())"
        )

    async def seed_talkdeal_examples(self, examples: list[dict[str, Any]]) -> int:
        """Insert example rows when the table is empty."""
        rows = await self._query("SELECT COUNT(*) AS cnt FROM talkdeal_unavailable")
        if rows and int(rows[0]["cnt"]) > 0:
            return 0
        return await self._execute(
            "INSERT INTO talkdeal_unavailable (store_name, product_code, product_name) "
            "VALUES (:store_name, :product_code, :product_name) "
            "ON CONFLICT (product_code) DO NOTHING",
            examples,
        )

    async def _execute(self, sql: str, params: Any = None) -> int:
        try:
            return await self.store.execute(sql, params)
        except Exception as e:
            raise CollaboratorError("database", str(e)) from e

    async def _query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            return await self.store.query(sql, params)
        except Exception as e:
            raise CollaboratorError("database", str(e)) from e
