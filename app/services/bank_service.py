"""
app/services/bank_service.py

Purpose: Bank account records

- Unique (case-insensitive) account names per user
- Balance adjustments through $inc
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.db.mongo import get_bank_accounts_collection, to_object_id, session_kwargs
from app.core.exceptions import ConflictError
from app.core.logging import get_logger
from utils.validation_utils import normalize_name

logger = get_logger(__name__)


async def create_bank_account(user_id: str, name: str, opening_balance: float, session=None) -> Dict[str, Any]:
    """
    Creates a bank account.

    Raises:
        ConflictError: If an account with the same name (any casing) exists
    """
    banks = get_bank_accounts_collection()
    clean_name = " ".join(name.split())
    key = normalize_name(name)

    if await banks.find_one({"user_id": user_id, "name_key": key}, **session_kwargs(session)):
        raise ConflictError(f"A bank account named \"{clean_name}\" already exists.", code="DUPLICATE_BANK")

    now = datetime.utcnow()
    document = {
        "user_id": user_id,
        "name": clean_name,
        "name_key": key,
        "balance": round(float(opening_balance), 2),
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await banks.insert_one(document, **session_kwargs(session))
    except DuplicateKeyError as e:
        raise ConflictError(f"A bank account named \"{clean_name}\" already exists.", code="DUPLICATE_BANK") from e

    document["_id"] = result.inserted_id
    logger.info(f"🏦 Bank account created: {clean_name}")
    return document


async def list_bank_accounts(user_id: str) -> List[Dict[str, Any]]:
    banks = get_bank_accounts_collection()
    cursor = banks.find({"user_id": user_id}).sort("name_key", 1)
    return await cursor.to_list(length=50)


async def get_bank_account(user_id: str, bank_id, session=None) -> Optional[Dict[str, Any]]:
    object_id = to_object_id(bank_id)
    if object_id is None:
        return None
    banks = get_bank_accounts_collection()
    return await banks.find_one({"_id": object_id, "user_id": user_id}, **session_kwargs(session))


async def update_balance(user_id: str, bank_id, delta: float, session=None) -> Optional[Dict[str, Any]]:
    banks = get_bank_accounts_collection()
    return await banks.find_one_and_update(
        {"_id": to_object_id(bank_id), "user_id": user_id},
        {"$inc": {"balance": round(delta, 2)}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )
