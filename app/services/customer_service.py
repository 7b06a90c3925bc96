"""
app/services/customer_service.py

Purpose: Customer records and balances owed

- Find-or-create by case-insensitive name
- balance_owed is only ever changed through $inc
"""

from datetime import datetime
from typing import Any, Dict, List

from pymongo import ReturnDocument

from app.db.mongo import get_customers_collection, to_object_id, session_kwargs
from app.core.logging import get_logger
from utils.validation_utils import normalize_name

logger = get_logger(__name__)


async def find_or_create_customer(user_id: str, name: str, session=None) -> Dict[str, Any]:
    customers = get_customers_collection()
    now = datetime.utcnow()
    return await customers.find_one_and_update(
        {"user_id": user_id, "name_key": normalize_name(name)},
        {
            "$set": {"updated_at": now},
            "$setOnInsert": {
                "user_id": user_id,
                "name": " ".join(name.split()),
                "name_key": normalize_name(name),
                "balance_owed": 0,
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )


async def update_balance_owed(user_id: str, customer_id, delta: float, session=None) -> Dict[str, Any]:
    """
    Adjusts what a customer owes. Positive delta for credit sales,
    negative for payments received. The balance may go negative.
    """
    customers = get_customers_collection()
    customer = await customers.find_one_and_update(
        {"_id": to_object_id(customer_id), "user_id": user_id},
        {"$inc": {"balance_owed": round(delta, 2)}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )
    logger.debug(f"Customer balance {delta:+} -> {customer['balance_owed'] if customer else 'n/a'}")
    return customer


async def list_customers_with_balance(user_id: str) -> List[Dict[str, Any]]:
    customers = get_customers_collection()
    cursor = customers.find({"user_id": user_id, "balance_owed": {"$ne": 0}}).sort("balance_owed", -1)
    return await cursor.to_list(length=200)
