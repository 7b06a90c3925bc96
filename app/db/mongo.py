"""
app/db/mongo.py

Purpose: MongoDB connection setup

- Initializes Motor client with connection pooling
- Collections: users, products, transactions, customers, bank_accounts,
  inventory_logs, idempotency_records
- Health checks and retry logic
- Optional multi-document transactions for task writes
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

USERS = "users"
PRODUCTS = "products"
TRANSACTIONS = "transactions"
CUSTOMERS = "customers"
BANK_ACCOUNTS = "bank_accounts"
INVENTORY_LOGS = "inventory_logs"
IDEMPOTENCY_RECORDS = "idempotency_records"

# Global MongoDB client
_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo():
    """
    Establishes connection to MongoDB with retry logic.
    Called during application startup.
    """
    global _client, _database

    if _client is not None:
        logger.warning("MongoDB client already initialized")
        return

    max_retries = 3
    retry_delay = 2

    for attempt in range(1, max_retries + 1):
        try:
            logger.info(
                f"Attempting to connect to MongoDB (attempt {attempt}/{max_retries})"
            )

            _client = AsyncIOMotorClient(
                settings.MONGODB_URL,
                maxPoolSize=50,
                minPoolSize=5,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                retryWrites=True,
                retryReads=True,
                tz_aware=False,
            )

            _database = _client[settings.MONGODB_DB_NAME]

            await _client.admin.command("ping")

            logger.info(
                f"✅ Successfully connected to MongoDB: {settings.MONGODB_DB_NAME}"
            )
            return

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error(
                f"Failed to connect to MongoDB (attempt {attempt}/{max_retries}): {e}"
            )
            _client = None
            _database = None

            if attempt < max_retries:
                logger.info(f"Retrying in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
                retry_delay *= 2
            else:
                logger.critical("Failed to connect to MongoDB after all retries")
                raise ConnectionError("Could not establish MongoDB connection") from e


async def close_mongo_connection():
    """
    Closes the MongoDB connection.
    Called during application shutdown.
    """
    global _client, _database

    if _client:
        logger.info("Closing MongoDB connection")
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


async def check_database_health() -> bool:
    """
    Checks if the database connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        if _client is None:
            logger.error("MongoDB client not initialized")
            return False

        await _client.admin.command("ping")
        return True

    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        return False


def get_database() -> AsyncIOMotorDatabase:
    """
    Returns the MongoDB database instance.

    Raises:
        RuntimeError: If database is not initialized
    """
    if _database is None:
        raise RuntimeError(
            "Database not initialized. Call connect_to_mongo() during startup."
        )
    return _database


def get_collection(name: str) -> AsyncIOMotorCollection:
    return get_database()[name]


def get_users_collection() -> AsyncIOMotorCollection:
    """
    Returns the users collection.

    Fields:
    - user_id: str (channel address, unique)
    - state: str, state_context: dict, state_updated_at: datetime
    - business_name, email, is_email_verified, currency
    - otp, otp_expires_at
    - subscription_status, subscription_expires_at
    - created_at, updated_at, last_interaction, is_active
    """
    return get_collection(USERS)


def get_products_collection() -> AsyncIOMotorCollection:
    return get_collection(PRODUCTS)


def get_transactions_collection() -> AsyncIOMotorCollection:
    return get_collection(TRANSACTIONS)


def get_customers_collection() -> AsyncIOMotorCollection:
    return get_collection(CUSTOMERS)


def get_bank_accounts_collection() -> AsyncIOMotorCollection:
    return get_collection(BANK_ACCOUNTS)


def get_inventory_logs_collection() -> AsyncIOMotorCollection:
    return get_collection(INVENTORY_LOGS)


def get_idempotency_collection() -> AsyncIOMotorCollection:
    return get_collection(IDEMPOTENCY_RECORDS)


@asynccontextmanager
async def transaction():
    """
    Yields a client session inside a multi-document transaction when
    MONGODB_USE_TRANSACTIONS is enabled, otherwise None.

    Callers pass the yielded value as ``session=`` to every write; with
    None, writes run individually and the caller is responsible for
    compensating partial failures.
    """
    if not settings.MONGODB_USE_TRANSACTIONS or _client is None:
        yield None
        return

    async with await _client.start_session() as session:
        async with session.start_transaction():
            yield session


def to_object_id(value) -> Optional[ObjectId]:
    """Converts a stored or user-supplied id to ObjectId, None if malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def session_kwargs(session) -> dict:
    """Keyword arguments that attach a write to ``session`` when one is active."""
    return {"session": session} if session is not None else {}
