"""
app/services/product_service.py

Purpose: Product and inventory storage

- Case-insensitive product lookup and fuzzy candidates
- Upsert on restock (cost/price overwritten, stock incremented)
- Guarded stock decrement that never goes below zero
- Append-only inventory log
"""

import difflib
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ReturnDocument

from app.db.mongo import (
    get_products_collection,
    get_inventory_logs_collection,
    to_object_id,
    session_kwargs,
)
from app.models.conversation import ProductSnapshot
from app.models.ledger import InventoryLogType
from app.core.logging import get_logger
from utils.validation_utils import normalize_name

logger = get_logger(__name__)


async def find_product_by_name(user_id: str, name: str, session=None) -> Optional[Dict[str, Any]]:
    products = get_products_collection()
    return await products.find_one(
        {"user_id": user_id, "name_key": normalize_name(name)},
        **session_kwargs(session)
    )


async def get_product_by_id(user_id: str, product_id, session=None) -> Optional[Dict[str, Any]]:
    object_id = to_object_id(product_id)
    if object_id is None:
        return None
    products = get_products_collection()
    return await products.find_one({"_id": object_id, "user_id": user_id}, **session_kwargs(session))


async def list_products(user_id: str) -> List[Dict[str, Any]]:
    products = get_products_collection()
    cursor = products.find({"user_id": user_id}).sort("name_key", 1)
    return await cursor.to_list(length=500)


async def find_similar_products(user_id: str, name: str, limit: int = 3) -> List[Dict[str, Any]]:
    """
    Products whose names resemble ``name``.

    Substring matches come first, then difflib close matches.
    """
    key = normalize_name(name)
    if not key:
        return []

    candidates = await list_products(user_id)
    by_key = {p["name_key"]: p for p in candidates}

    ranked = [k for k in by_key if key in k or k in key]
    for match in difflib.get_close_matches(key, list(by_key), n=limit, cutoff=0.6):
        if match not in ranked:
            ranked.append(match)

    return [by_key[k] for k in ranked[:limit]]


async def upsert_product(
    user_id: str,
    name: str,
    quantity: int,
    cost: float,
    price: float,
    reorder_level: int = 5,
    session=None,
) -> Tuple[Dict[str, Any], bool]:
    """
    Creates a product or restocks an existing one.

    Returns:
        (product document after the write, True if it was created)
    """
    products = get_products_collection()
    key = normalize_name(name)
    now = datetime.utcnow()

    existing = await products.find_one({"user_id": user_id, "name_key": key}, **session_kwargs(session))

    product = await products.find_one_and_update(
        {"user_id": user_id, "name_key": key},
        {
            "$set": {"cost": cost, "price": price, "updated_at": now},
            "$inc": {"stock": quantity},
            "$setOnInsert": {
                "user_id": user_id,
                "name": " ".join(name.split()),
                "name_key": key,
                "reorder_level": reorder_level,
                "created_at": now,
            },
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )

    created = existing is None
    logger.info(f"📦 {'Created' if created else 'Restocked'} product {product['name']} (+{quantity})")
    return product, created


async def delete_product(user_id: str, product_id, session=None) -> None:
    products = get_products_collection()
    await products.delete_one({"_id": to_object_id(product_id), "user_id": user_id}, **session_kwargs(session))


async def decrement_stock(user_id: str, product_id, units: int, session=None) -> Optional[Dict[str, Any]]:
    """
    Removes ``units`` from stock only if at least that many are available.

    Returns:
        Updated product, or None if stock was insufficient
    """
    products = get_products_collection()
    return await products.find_one_and_update(
        {"_id": to_object_id(product_id), "user_id": user_id, "stock": {"$gte": units}},
        {"$inc": {"stock": -units}, "$set": {"updated_at": datetime.utcnow()}},
        return_document=ReturnDocument.AFTER,
        **session_kwargs(session)
    )


async def increment_stock(user_id: str, product_id, units: int, session=None) -> None:
    products = get_products_collection()
    await products.update_one(
        {"_id": to_object_id(product_id), "user_id": user_id},
        {"$inc": {"stock": units}, "$set": {"updated_at": datetime.utcnow()}},
        **session_kwargs(session)
    )


async def log_inventory_change(
    user_id: str,
    product_id,
    log_type: InventoryLogType,
    quantity_change: int,
    transaction_id=None,
    notes: str = "",
    session=None,
) -> Any:
    """
    Appends an inventory log entry.

    Returns:
        Inserted log id
    """
    logs = get_inventory_logs_collection()
    result = await logs.insert_one(
        {
            "user_id": user_id,
            "product_id": to_object_id(product_id),
            "type": log_type.value,
            "quantity_change": quantity_change,
            "transaction_id": transaction_id,
            "notes": notes,
            "created_at": datetime.utcnow(),
        },
        **session_kwargs(session)
    )
    return result.inserted_id


async def delete_inventory_log(log_id, session=None) -> None:
    logs = get_inventory_logs_collection()
    await logs.delete_one({"_id": log_id}, **session_kwargs(session))


def is_low_stock(product: Dict[str, Any]) -> bool:
    return product.get("stock", 0) <= product.get("reorder_level", 5)


def to_snapshot(product: Dict[str, Any]) -> ProductSnapshot:
    return ProductSnapshot(
        id=str(product["_id"]),
        name=product["name"],
        price=product.get("price"),
        cost=product.get("cost"),
        stock=product.get("stock", 0),
    )
