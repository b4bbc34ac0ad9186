"""Common code repository."""

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert

from logistics.models import CommonCode
from logistics.storage.database import CommonCodeTable, Database, get_database

logger = logging.getLogger(__name__)


class CommonCodeRepository:
    """Repository for common code operations."""

    def __init__(self, database: Database | None = None):
        self._database = database

    @property
    def db(self) -> Database:
        return self._database or get_database()

    async def get_by_group(self, group_code: str) -> list[CommonCode]:
        """All rows of a group ordered by sort_order, then code."""
        async with self.db.session() as session:
            stmt = (
                select(CommonCodeTable)
                .where(CommonCodeTable.group_code == group_code)
                .order_by(CommonCodeTable.sort_order, CommonCodeTable.code)
            )
            result = await session.execute(stmt)
            return [CommonCode.model_validate(row) for row in result.scalars().all()]

    async def set_used(self, group_code: str, code: str, is_used: bool) -> bool:
        """Enable or disable a row. Returns False if it does not exist."""
        async with self.db.session() as session:
            stmt = (
                update(CommonCodeTable)
                .where(
                    CommonCodeTable.group_code == group_code,
                    CommonCodeTable.code == code,
                )
                .values(is_used=is_used, updated_at=func.now())
            )
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def seed(self, rows: list[dict[str, Any]], created_by: str = "system") -> int:
        """Insert rows that do not exist yet. Existing rows are left alone."""
        if not rows:
            return 0
        async with self.db.session() as session:
            stmt = insert(CommonCodeTable).values(
                [{**row, "created_by": created_by} for row in rows]
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["group_code", "code"])
            result = await session.execute(stmt)
            inserted = max(result.rowcount, 0)

        logger.info(f"Seeded {inserted}/{len(rows)} common codes")
        return inserted
