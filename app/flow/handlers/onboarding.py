"""
app/flow/handlers/onboarding.py

Handles: NEW_USER and ONBOARDING_* states

Flow:
1. First message → welcome, ask for business name and email
2. Business name + email → 6-digit code emailed
3. Code → email verified, ask for currency
4. Currency → IDLE with a free trial
"""

import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from app.flow.replies import Reply, text, with_menu
from app.flow.states import ConversationState
from app.models.user import SubscriptionStatus, trial_expiry
from app.services import user_service, email_service
from app.services.extraction_service import extract_onboarding_details, extract_currency
from app.services.session_service import update_user_state
from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger
from utils.constants import (
    WELCOME_MESSAGE,
    ASK_BUSINESS_AND_EMAIL_RETRY,
    OTP_SENT_MESSAGE,
    OTP_EMAIL_FAILED_MESSAGE,
    OTP_INVALID_MESSAGE,
    OTP_EXPIRED_MESSAGE,
    ASK_CURRENCY_MESSAGE,
    CURRENCY_INVALID_MESSAGE,
    ONBOARDING_COMPLETE_MESSAGE,
    CURRENCY_ALIASES,
)
from utils.time_utils import calculate_otp_expiry
from utils.validation_utils import extract_email, extract_otp, sanitize_input

logger = get_logger(__name__)

_LEAD_IN = re.compile(r"^(my\s+)?(business(\s+name)?|company|shop|name)(\s+is|\s*:)\s*", re.IGNORECASE)
_TRAILING_JOINERS = re.compile(r"(?:\s*(?:,|;|:|-|\||\band\b|\bmy\b|\bemail\b|\baddress\b|\bis\b))+\s*$", re.IGNORECASE)
MAX_NAME_WORDS = 6


def split_business_and_email(message: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Regex pass over "Business name, email" replies.

    The email is matched directly; what remains becomes the business name
    when it is short enough to be one.
    """
    email = extract_email(message)
    if not email:
        return None, None

    remainder = re.sub(re.escape(email), " ", message, flags=re.IGNORECASE)
    remainder = " ".join(remainder.split()).strip(" ,;:-|.")
    remainder = _LEAD_IN.sub("", remainder)
    remainder = _TRAILING_JOINERS.sub("", remainder).strip(" ,;:-|.")

    if not remainder or len(remainder.split()) > MAX_NAME_WORDS:
        return None, email
    return remainder, email


def match_currency(message: str) -> Optional[str]:
    """Looks the reply up in the alias table; whole reply first, then word by word."""
    t = (message or "").strip().lower()
    if not t:
        return None

    for code, aliases in CURRENCY_ALIASES.items():
        if t in aliases:
            return code

    words = re.findall(r"[a-z]+|[₦$£€]", t)
    for code, aliases in CURRENCY_ALIASES.items():
        if any(word in aliases for word in words):
            return code
    return None


async def handle_onboarding(user: Dict[str, Any], state: ConversationState, message: Optional[str]) -> Reply:
    """
    Routes an onboarding message by state.

    Args:
        user: User document
        state: One of the onboarding states
        message: User's text

    Returns:
        Reply payloads
    """
    message = message or ""
    if state == ConversationState.NEW_USER:
        return await _welcome(user)
    if state == ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL:
        return await _business_and_email(user, message)
    if state == ConversationState.ONBOARDING_AWAIT_OTP:
        return await _otp(user, message)
    return await _currency(user, message)


async def _welcome(user: Dict[str, Any]) -> Reply:
    await update_user_state(
        user["user_id"],
        ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
        from_state=ConversationState.NEW_USER,
    )
    logger.info("👋 Welcome sent")
    return text(WELCOME_MESSAGE)


async def _business_and_email(user: Dict[str, Any], message: str) -> Reply:
    user_id = user["user_id"]
    business_name, email = split_business_and_email(message)

    if not business_name or not email:
        details = await extract_onboarding_details(message)
        business_name = business_name or details["business_name"]
        email = email or extract_email(details["email"] or "")

    business_name = sanitize_input(business_name or "", max_length=100)

    if not business_name or not email:
        logger.info("Onboarding details incomplete, asking again")
        return text(ASK_BUSINESS_AND_EMAIL_RETRY)

    try:
        otp = await email_service.send_otp(email, business_name)
    except UpstreamUnavailable:
        return text(OTP_EMAIL_FAILED_MESSAGE)

    await user_service.update_user(user_id, {
        "business_name": business_name,
        "email": email,
        "is_email_verified": False,
    })
    await user_service.save_otp(user_id, otp, calculate_otp_expiry(datetime.utcnow(), settings.OTP_EXPIRY_MINUTES))
    await update_user_state(
        user_id,
        ConversationState.ONBOARDING_AWAIT_OTP,
        from_state=ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
    )
    return text(OTP_SENT_MESSAGE.format(email=email, minutes=settings.OTP_EXPIRY_MINUTES))


async def _otp(user: Dict[str, Any], message: str) -> Reply:
    user_id = user["user_id"]
    stored = user.get("otp")
    expires_at = user.get("otp_expires_at")

    if not stored or not expires_at or expires_at < datetime.utcnow():
        logger.info("⏰ OTP expired")
        await user_service.update_user(user_id, {"otp": None, "otp_expires_at": None})
        await update_user_state(
            user_id,
            ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
            from_state=ConversationState.ONBOARDING_AWAIT_OTP,
        )
        return text(OTP_EXPIRED_MESSAGE)

    if extract_otp(message) != stored:
        logger.info("❌ OTP mismatch")
        return text(OTP_INVALID_MESSAGE)

    await user_service.update_user(user_id, {"is_email_verified": True, "otp": None, "otp_expires_at": None})
    await update_user_state(
        user_id,
        ConversationState.ONBOARDING_AWAIT_CURRENCY,
        from_state=ConversationState.ONBOARDING_AWAIT_OTP,
    )
    logger.info("✅ Email verified")
    return text(ASK_CURRENCY_MESSAGE)


async def _currency(user: Dict[str, Any], message: str) -> Reply:
    user_id = user["user_id"]
    currency = match_currency(message) or await extract_currency(message)
    if not currency:
        return text(CURRENCY_INVALID_MESSAGE)

    await user_service.update_user(user_id, {
        "currency": currency,
        "subscription_status": SubscriptionStatus.TRIAL.value,
        "subscription_expires_at": trial_expiry(settings.TRIAL_PERIOD_DAYS),
    })
    await update_user_state(user_id, ConversationState.IDLE, from_state=ConversationState.ONBOARDING_AWAIT_CURRENCY)
    logger.info(f"🎉 Onboarding complete ({currency})")

    return with_menu(ONBOARDING_COMPLETE_MESSAGE.format(
        business_name=user.get("business_name") or "there",
        trial_days=settings.TRIAL_PERIOD_DAYS,
    ))
