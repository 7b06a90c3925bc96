"""
app/services/user_service.py

Purpose: User data management

- Create or fetch user records keyed by WhatsApp ID
- Persist onboarding details (business, email, OTP, currency)
- Subscription extension
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.db.mongo import get_users_collection
from app.models.user import new_user_document, SubscriptionStatus
from app.core.logging import get_logger, LogContext

logger = get_logger(__name__)


async def get_or_create_user(user_id: str) -> Dict[str, Any]:
    """
    Retrieves an existing user or creates a new one in NEW_USER state.

    Args:
        user_id: WhatsApp user ID

    Returns:
        User document
    """
    with LogContext(user_id=user_id):
        users = get_users_collection()

        user = await users.find_one({"user_id": user_id})
        if user:
            return user

        logger.info("Creating new user")
        document = new_user_document(user_id)
        try:
            await users.insert_one(document)
        except DuplicateKeyError:
            # Created concurrently by another request
            logger.warning("User already exists, re-reading")
            return await users.find_one({"user_id": user_id})

        logger.info("✅ New user created")
        return document


async def get_user_by_id(user_id: str) -> Optional[Dict[str, Any]]:
    """
    Retrieves a user by WhatsApp ID.

    Returns:
        User document or None if not found
    """
    users = get_users_collection()
    return await users.find_one({"user_id": user_id})


async def update_user(user_id: str, fields: Dict[str, Any]) -> bool:
    """
    Sets profile fields on the user document.

    Returns:
        True if the user exists
    """
    users = get_users_collection()
    result = await users.update_one(
        {"user_id": user_id},
        {"$set": {**fields, "updated_at": datetime.utcnow()}}
    )
    return result.matched_count > 0


async def save_otp(user_id: str, otp: str, expires_at: datetime) -> bool:
    return await update_user(user_id, {"otp": otp, "otp_expires_at": expires_at})


async def extend_subscription(user_id: str, days: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Extends a subscription by ``days``.

    The extension starts from the current expiry if it is still in the
    future, otherwise from now.

    Returns:
        Updated user document

    Raises:
        LookupError: If the user does not exist
    """
    with LogContext(user_id=user_id):
        now = now or datetime.utcnow()
        users = get_users_collection()

        user = await users.find_one({"user_id": user_id})
        if not user:
            raise LookupError(f"User {user_id} not found")

        current_expiry = user.get("subscription_expires_at")
        start = current_expiry if current_expiry and current_expiry > now else now
        new_expiry = start + timedelta(days=days)

        updated = await users.find_one_and_update(
            {"user_id": user_id},
            {
                "$set": {
                    "subscription_status": SubscriptionStatus.ACTIVE.value,
                    "subscription_expires_at": new_expiry,
                    "updated_at": now,
                }
            },
            return_document=ReturnDocument.AFTER
        )

        logger.info(f"💳 Subscription extended to {new_expiry.isoformat()}")
        return updated
