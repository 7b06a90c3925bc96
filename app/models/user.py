"""
app/models/user.py

Purpose: User document model

- WhatsApp ID (user_id) and business profile
- Current conversation state and its typed context
- Email verification and subscription data
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.flow.states import ConversationState


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"


class User(BaseModel):
    user_id: str
    state: str = ConversationState.NEW_USER.value
    state_context: Dict[str, Any] = Field(default_factory=dict)
    state_updated_at: datetime = Field(default_factory=datetime.utcnow)

    business_name: Optional[str] = None
    email: Optional[str] = None
    is_email_verified: bool = False
    currency: Optional[str] = None
    otp: Optional[str] = None
    otp_expires_at: Optional[datetime] = None

    subscription_status: SubscriptionStatus = SubscriptionStatus.TRIAL
    subscription_expires_at: Optional[datetime] = None

    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    last_interaction: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True


def new_user_document(user_id: str) -> Dict[str, Any]:
    """Document inserted the first time a WhatsApp ID writes in."""
    return User(user_id=user_id).model_dump(mode="python")


def has_active_subscription(user: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    expires_at = user.get("subscription_expires_at")
    return bool(expires_at and expires_at > now)


def trial_expiry(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.utcnow()) + timedelta(days=days)
