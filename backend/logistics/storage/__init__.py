"""Data storage layer."""

from logistics.storage.database import Database, get_database, init_database
from logistics.storage.common_code_repo import CommonCodeRepository
from logistics.storage.order_repo import OrderRepository, ProcedureLogEntry

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "CommonCodeRepository",
    "OrderRepository",
    "ProcedureLogEntry",
]
