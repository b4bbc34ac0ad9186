#!/usr/bin/env python3
"""Initialize the database: create tables and seed the PG_PROC step codes."""

import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from logistics.config import get_settings
from logistics.services import DEFAULT_INVOICE_STEPS
from logistics.storage import CommonCodeRepository
from logistics.storage.database import init_database
from logistics_core.steps import StepRegistry


async def main():
    print("Initializing database...")
    db = await init_database()
    print("Tables created: common_codes, invoice_orders, sales_input, sp_execution_log")

    group = get_settings().step_group_code
    registry = StepRegistry(None, DEFAULT_INVOICE_STEPS, group)
    inserted = await CommonCodeRepository(db).seed(registry.default_common_codes())
    print(f"Seeded {inserted} {group} step codes")
    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
