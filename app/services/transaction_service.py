"""
app/services/transaction_service.py

Purpose: Income and expense records

- Create, fetch, edit and delete transactions
- Date-range queries and totals for reports
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from app.db.mongo import get_transactions_collection, to_object_id, session_kwargs
from app.models.ledger import TransactionType, CATEGORY_COGS
from app.core.logging import get_logger

logger = get_logger(__name__)


async def create_transaction(
    user_id: str,
    transaction_type: TransactionType,
    amount: float,
    description: str,
    category: str,
    session=None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Inserts a transaction.

    Extra keyword arguments (sale_type, customer_name, product_id,
    bank_account_id, units) are stored as-is when not None.

    Returns:
        The inserted document including its _id
    """
    now = datetime.utcnow()
    document = {
        "user_id": user_id,
        "type": transaction_type.value,
        "amount": round(float(amount), 2),
        "description": description,
        "category": category,
        "created_at": now,
        "updated_at": now,
    }
    document.update({k: v for k, v in extra.items() if v is not None})

    transactions = get_transactions_collection()
    result = await transactions.insert_one(document, **session_kwargs(session))
    document["_id"] = result.inserted_id

    logger.debug(f"Recorded {transaction_type.value} of {document['amount']} ({category})")
    return document


async def get_transaction(user_id: str, transaction_id) -> Optional[Dict[str, Any]]:
    object_id = to_object_id(transaction_id)
    if object_id is None:
        return None
    transactions = get_transactions_collection()
    return await transactions.find_one({"_id": object_id, "user_id": user_id})


async def list_recent_transactions(user_id: str, limit: int = 5, exclude_categories=()) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"user_id": user_id}
    if exclude_categories:
        query["category"] = {"$nin": list(exclude_categories)}
    transactions = get_transactions_collection()
    cursor = transactions.find(query).sort("created_at", -1).limit(limit)
    return await cursor.to_list(length=limit)


async def get_transactions_by_date_range(
    user_id: str,
    start: datetime,
    end: datetime,
    transaction_type: Optional[TransactionType] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {"user_id": user_id, "created_at": {"$gte": start, "$lt": end}}
    if transaction_type is not None:
        query["type"] = transaction_type.value

    transactions = get_transactions_collection()
    cursor = transactions.find(query).sort("created_at", 1)
    return await cursor.to_list(length=5000)


async def update_transaction(user_id: str, transaction_id, changes: Dict[str, Any], session=None) -> Optional[Dict[str, Any]]:
    now = datetime.utcnow()
    transactions = get_transactions_collection()
    return await transactions.find_one_and_update(
        {"_id": to_object_id(transaction_id), "user_id": user_id},
        {"$set": {**changes, "edited_at": now, "updated_at": now}},
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )


async def delete_transaction(user_id: str, transaction_id, session=None) -> bool:
    transactions = get_transactions_collection()
    result = await transactions.delete_one(
        {"_id": to_object_id(transaction_id), "user_id": user_id},
        **session_kwargs(session)
    )
    return result.deleted_count > 0


def summarize(transactions: List[Dict[str, Any]]) -> Dict[str, float]:
    """
    Totals for a list of transactions.

    Returns:
        Dict with income, expense, cogs, operating_expense and net
    """
    income = sum(t["amount"] for t in transactions if t["type"] == TransactionType.INCOME.value)
    expense = sum(t["amount"] for t in transactions if t["type"] == TransactionType.EXPENSE.value)
    cogs = sum(
        t["amount"] for t in transactions
        if t["type"] == TransactionType.EXPENSE.value and t.get("category") == CATEGORY_COGS
    )
    return {
        "income": round(income, 2),
        "expense": round(expense, 2),
        "cogs": round(cogs, 2),
        "operating_expense": round(expense - cogs, 2),
        "net": round(income - expense, 2),
    }


async def delete_linked_transactions(user_id: str, transaction_id, session=None) -> int:
    """Deletes entries written alongside a transaction (e.g. a sale's COGS)."""
    transactions = get_transactions_collection()
    result = await transactions.delete_many(
        {"user_id": user_id, "linked_transaction_id": to_object_id(transaction_id)},
        **session_kwargs(session)
    )
    return result.deleted_count


async def get_linked_transactions(user_id: str, transaction_id) -> List[Dict[str, Any]]:
    transactions = get_transactions_collection()
    cursor = transactions.find({"user_id": user_id, "linked_transaction_id": to_object_id(transaction_id)})
    return await cursor.to_list(length=50)


async def restore_transaction(document: Dict[str, Any], session=None) -> None:
    """Re-inserts a deleted transaction under its original _id."""
    transactions = get_transactions_collection()
    await transactions.insert_one(dict(document), **session_kwargs(session))
