"""
app/db/indexes.py

Purpose: Database index management

- Creates unique and performance indexes
- Case-insensitive uniqueness for products, customers and bank accounts
- Write-once idempotency ledger keyed by reference
"""

from app.db.mongo import (
    get_users_collection,
    get_products_collection,
    get_transactions_collection,
    get_customers_collection,
    get_bank_accounts_collection,
    get_inventory_logs_collection,
    get_idempotency_collection,
)
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_indexes():
    """
    Creates all necessary database indexes.
    This function is idempotent - safe to run multiple times.
    """
    try:
        users = get_users_collection()
        products = get_products_collection()
        transactions = get_transactions_collection()
        customers = get_customers_collection()
        banks = get_bank_accounts_collection()
        inventory_logs = get_inventory_logs_collection()
        ledger = get_idempotency_collection()

        logger.info("Creating database indexes...")

        # ==============================================
        # USERS
        # ==============================================

        await users.create_index("user_id", unique=True, name="user_id_unique")
        await users.create_index("state", name="state_idx")
        await users.create_index("subscription_expires_at", name="subscription_expiry_idx")

        # ==============================================
        # PRODUCTS / CUSTOMERS / BANK ACCOUNTS
        # ==============================================

        # name_key is the trimmed, lower-cased name
        await products.create_index(
            [("user_id", 1), ("name_key", 1)],
            unique=True,
            name="product_name_unique"
        )
        await customers.create_index(
            [("user_id", 1), ("name_key", 1)],
            unique=True,
            name="customer_name_unique"
        )
        await banks.create_index(
            [("user_id", 1), ("name_key", 1)],
            unique=True,
            name="bank_name_unique"
        )
        logger.debug("Created case-insensitive name indexes")

        # ==============================================
        # TRANSACTIONS / INVENTORY LOGS
        # ==============================================

        await transactions.create_index(
            [("user_id", 1), ("created_at", -1)],
            name="user_transactions_idx"
        )
        await transactions.create_index(
            [("user_id", 1), ("type", 1), ("created_at", -1)],
            name="user_type_date_idx"
        )
        await inventory_logs.create_index(
            [("user_id", 1), ("product_id", 1), ("created_at", -1)],
            name="inventory_product_idx"
        )

        # ==============================================
        # IDEMPOTENCY LEDGER
        # ==============================================

        await ledger.create_index("reference", unique=True, name="reference_unique")
        await ledger.create_index([("kind", 1), ("processed_at", -1)], name="kind_processed_idx")

        logger.info("✅ All database indexes created successfully")

    except Exception as e:
        logger.error(f"Failed to create indexes: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    """
    Run this script directly to create indexes manually.
    """
    import asyncio
    from app.db.mongo import connect_to_mongo, close_mongo_connection

    async def main():
        await connect_to_mongo()
        await create_indexes()
        await close_mongo_connection()

    asyncio.run(main())
