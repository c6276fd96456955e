import asyncio
import logging
from typing import List

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

import schoolfees.auth.models  # noqa: F401  registers users / roles on Base.metadata
import schoolfees.core.models  # noqa: F401
from schoolfees.db.session import Base, engine

logger = logging.getLogger(__name__)


REQUIRED_TABLES: List[str] = [
    "tenants",
    "users",
    "roles",
    "classes",
    "students",
    "fee_structures",
    "fee_challans",
    "challan_sequences",
    "fee_payments",
    "reminder_history",
    "fee_audit_logs",
]


async def ensure_tables(db_engine: AsyncEngine) -> List[str]:
    """
    Create any required table missing from the connected database.
    Existing tables are left alone. Returns the names that were created.
    """
    async with db_engine.begin() as conn:
        existing = set(await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names()))
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            # create_all resolves FK order and skips tables that already exist
            await conn.run_sync(Base.metadata.create_all)

    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All required fee tables already exist in the database.")
    return missing


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    await ensure_tables(engine)


if __name__ == "__main__":
    asyncio.run(main())
