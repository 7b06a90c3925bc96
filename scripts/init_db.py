"""
Database initialization script

Creates every LedgerChat index and lists what each collection ends up with.
Safe to run repeatedly:
    python scripts/init_db.py
"""

import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

load_dotenv()

from app.db import mongo
from app.db.mongo import connect_to_mongo, close_mongo_connection, get_database
from app.db.indexes import create_indexes
from app.core.logging import setup_logging, get_logger

logger = get_logger(__name__)

COLLECTIONS = (
    mongo.USERS,
    mongo.PRODUCTS,
    mongo.TRANSACTIONS,
    mongo.CUSTOMERS,
    mongo.BANK_ACCOUNTS,
    mongo.INVENTORY_LOGS,
    mongo.IDEMPOTENCY_RECORDS,
)


async def init_db():
    await connect_to_mongo()
    try:
        await create_indexes()

        db = get_database()
        for name in COLLECTIONS:
            indexes = await db[name].index_information()
            logger.info(f"📋 {name}: {', '.join(sorted(indexes))}")

        logger.info("🎉 Database ready")
    finally:
        await close_mongo_connection()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_db())
