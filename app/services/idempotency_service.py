"""
app/services/idempotency_service.py

Purpose: Idempotency ledger

- Records processed external references (payment references,
  WhatsApp message ids) exactly once
- The unique index on ``reference`` makes the insert the atomic claim
"""

from datetime import datetime
from typing import Any

from pymongo.errors import DuplicateKeyError

from app.db.mongo import get_idempotency_collection
from app.models.ledger import LedgerKind, LedgerStatus
from app.core.logging import get_logger

logger = get_logger(__name__)

MESSAGE_PREFIX = "wa:"


def message_reference(message_id: str) -> str:
    return f"{MESSAGE_PREFIX}{message_id}"


async def claim(
    reference: str,
    kind: LedgerKind,
    status: LedgerStatus = LedgerStatus.RECEIVED,
    **fields: Any
) -> bool:
    """
    Inserts the ledger record for ``reference``.

    Args:
        reference: Provider reference or message key
        kind: message or payment
        status: Outcome to record
        **fields: Extra attributes (user_id, amount, currency...)

    Returns:
        True if this call created the record, False if it already existed
    """
    ledger = get_idempotency_collection()
    document = {
        "reference": reference,
        "kind": kind.value,
        "status": status.value,
        "processed_at": datetime.utcnow(),
        **{k: v for k, v in fields.items() if v is not None},
    }
    try:
        await ledger.insert_one(document)
    except DuplicateKeyError:
        logger.info(f"♻️ Duplicate {kind.value} reference: {reference}", extra={"reference": reference})
        return False
    return True


async def exists(reference: str) -> bool:
    ledger = get_idempotency_collection()
    return await ledger.count_documents({"reference": reference}, limit=1) > 0


async def release(reference: str) -> None:
    """
    Removes a claim whose follow-up work failed, so the provider's retry
    can process the event again.
    """
    ledger = get_idempotency_collection()
    await ledger.delete_one({"reference": reference})
    logger.warning(f"Released ledger claim: {reference}", extra={"reference": reference})
