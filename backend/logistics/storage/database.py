"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from logistics.config import get_settings

Base = declarative_base()


class CommonCodeTable(Base):
    """Common code table. Group PG_PROC holds the processing steps."""

    __tablename__ = "common_codes"

    group_code = Column(String(50), primary_key=True)
    code = Column(String(50), primary_key=True)
    code_name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    is_used = Column(Boolean, nullable=False, default=True)
    attribute1 = Column(String(100), nullable=True)
    attribute2 = Column(String(100), nullable=True)
    created_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=text("NOW()"))
    updated_by = Column(String(50), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=text("NOW()"), onupdate=text("NOW()"))

    __table_args__ = (
        Index("idx_common_codes_group_sort", "group_code", "sort_order"),
    )


class InvoiceOrderTable(Base):
    """Working table holding the orders of the current run."""

    __tablename__ = "invoice_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_name = Column(String(100))
    phone1 = Column(String(30))
    phone2 = Column(String(30))
    zip_code = Column(String(10))
    address = Column(String(500))
    option_name = Column(String(500))
    quantity = Column(Integer, default=1)
    delivery_message = Column(String(500))
    order_number = Column(String(100), nullable=False)
    store_name = Column(String(100))
    collected_at = Column(DateTime)
    invoice_name = Column(String(500))
    product_code = Column(String(50))
    store_order_number = Column(String(100))
    payment_method = Column(String(50))
    price = Column(Integer, default=0)
    # Filled in by the pipeline
    shipment_center = Column(String(50))
    invoice_type = Column(String(50))
    location = Column(String(100))
    star1 = Column(String(50))
    star2 = Column(String(50))
    message = Column(Text)

    __table_args__ = (
        Index("idx_invoice_orders_center", "shipment_center"),
        Index("idx_invoice_orders_order_number", "order_number"),
    )


class SalesInputTable(Base):
    """Sales input rows produced by the sales input procedure."""

    __tablename__ = "sales_input"

    id = Column(Integer, primary_key=True, autoincrement=True)
    store_name = Column(String(100))
    order_number = Column(String(100))
    product_code = Column(String(50))
    invoice_name = Column(String(500))
    quantity = Column(Integer, default=1)
    price = Column(Integer, default=0)
    recipient_name = Column(String(100))


class ExecutionLogTable(Base):
    """Rows written by the stored procedures, one per operation."""

    __tablename__ = "sp_execution_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    procedure_name = Column(String(100), nullable=False)
    step_id = Column(String(50))
    operation_description = Column(String(500))
    affected_rows = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=text("NOW()"))


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=5,
            max_overflow=5,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args={
                "timeout": 10,
                "command_timeout": 300,  # procedures over a full day of orders
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def execute(
        self, sql: str, params: dict[str, Any] | list[dict[str, Any]] | None = None
    ) -> int:
        """Run a statement in its own transaction and return affected rows.

        A list of parameter dicts runs the statement once per dict.
        """
        async with self.session() as session:
            result = await session.execute(text(sql), params)
            if isinstance(params, list) and result.rowcount < 0:
                return len(params)
            return max(result.rowcount, 0)

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query in its own transaction and return rows as dicts."""
        async with self.session() as session:
            result = await session.execute(text(sql), params)
            return [dict(row) for row in result.mappings().all()]

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
