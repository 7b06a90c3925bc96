"""
app/services/payment_service.py

Purpose: Paystack subscription payments

- Verifies webhook signatures (HMAC-SHA512 of the raw body)
- Processes charge.success exactly once per reference
- Creates payment links for subscription renewal

Processing order for charge.success:
1. Signature (rejected before anything else)
2. Reference already in the ledger -> duplicate, no side effects
3. Resolve the user from metadata; unresolvable -> log, nothing recorded
4. Amount check against the plan price for the currency
5. Ledger claim with the decided status, then the subscription extension
"""

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from app.models.ledger import LedgerKind, LedgerStatus
from app.services import idempotency_service, user_service
from app.services.whatsapp_service import whatsapp_service
from app.core.config import settings
from app.core.exceptions import IntegrityViolation, UpstreamUnavailable
from app.core.logging import get_logger, LogContext
from utils.constants import PAYMENT_CONFIRMED_MESSAGE, PAYMENT_UNDERPAID_MESSAGE
from utils.time_utils import format_timestamp
from utils.whatsapp_utils import format_money

logger = get_logger(__name__)

CHARGE_SUCCESS = "charge.success"


@dataclass
class PaymentOutcome:
    status: str
    reference: Optional[str] = None
    user_id: Optional[str] = None


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str]) -> None:
    """
    Raises:
        IntegrityViolation: If the signature is missing or does not match
    """
    secret = settings.PAYSTACK_SECRET_KEY
    if not secret:
        raise IntegrityViolation("Paystack secret key is not configured")
    if not signature:
        raise IntegrityViolation("Missing x-paystack-signature header")

    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, signature.strip()):
        raise IntegrityViolation("Invalid Paystack signature")


def required_price(currency: Optional[str]) -> Optional[float]:
    """Plan price for a currency; None for currencies that are not sold."""
    prices = {
        "NGN": settings.PLAN_PRICE_NGN,
        "USD": settings.PLAN_PRICE_USD,
    }
    return prices.get((currency or "").upper())


def _metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    metadata = data.get("metadata") or {}
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return {}
    return metadata if isinstance(metadata, dict) else {}


async def _resolve_user(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    metadata = _metadata(data)
    for key in ("userId", "whatsappId"):
        candidate = metadata.get(key)
        if candidate:
            user = await user_service.get_user_by_id(str(candidate))
            if user:
                return user
    return None


async def process_charge_success(data: Dict[str, Any], now: Optional[datetime] = None) -> PaymentOutcome:
    """
    Applies one verified charge.success payload.

    Returns:
        PaymentOutcome with status duplicate, unresolved, invalid_amount,
        processed or ignored

    Raises:
        Exception: If the subscription extension fails; the ledger claim is
        released first so the provider's retry can succeed
    """
    reference = data.get("reference")
    if not reference:
        logger.warning("charge.success without a reference ignored")
        return PaymentOutcome("ignored")

    with LogContext(reference=reference):
        if await idempotency_service.exists(reference):
            logger.info("♻️ Duplicate payment webhook ignored")
            return PaymentOutcome("duplicate", reference)

        user = await _resolve_user(data)
        if not user:
            logger.warning(f"Payment {reference} has no resolvable user in metadata")
            return PaymentOutcome("unresolved", reference)

        user_id = user["user_id"]
        currency = (data.get("currency") or "").upper()
        amount_paid = round((data.get("amount") or 0) / 100, 2)
        price = required_price(currency)

        if price is None or amount_paid < price:
            claimed = await idempotency_service.claim(
                reference,
                LedgerKind.PAYMENT,
                LedgerStatus.INVALID_AMOUNT,
                user_id=user_id,
                amount=amount_paid,
                currency=currency,
                required_amount=price,
            )
            if not claimed:
                return PaymentOutcome("duplicate", reference, user_id)

            logger.warning(f"💳 Underpayment: {currency} {amount_paid} against {price}")
            expected = format_money(price, currency) if price is not None else "a supported currency"
            await whatsapp_service.send_text(
                user_id,
                PAYMENT_UNDERPAID_MESSAGE.format(paid=format_money(amount_paid, currency), price=expected)
            )
            return PaymentOutcome("invalid_amount", reference, user_id)

        overpaid_by = round(amount_paid - price, 2)
        if overpaid_by > 0:
            logger.warning(f"💳 Overpayment of {currency} {overpaid_by} accepted")

        claimed = await idempotency_service.claim(
            reference,
            LedgerKind.PAYMENT,
            LedgerStatus.PROCESSED,
            user_id=user_id,
            amount=amount_paid,
            currency=currency,
            overpaid_by=overpaid_by if overpaid_by > 0 else None,
        )
        if not claimed:
            return PaymentOutcome("duplicate", reference, user_id)

        try:
            updated = await user_service.extend_subscription(user_id, settings.SUBSCRIPTION_PERIOD_DAYS, now=now)
        except Exception:
            logger.error("❌ Subscription extension failed, releasing ledger claim", exc_info=True)
            await idempotency_service.release(reference)
            raise

        await whatsapp_service.send_text(
            user_id,
            PAYMENT_CONFIRMED_MESSAGE.format(expires=format_timestamp(updated.get("subscription_expires_at")))
        )
        logger.info("✅ Subscription payment processed")
        return PaymentOutcome("processed", reference, user_id)


async def handle_webhook(raw_body: bytes, signature: Optional[str]) -> PaymentOutcome:
    """
    Verifies and dispatches a Paystack webhook.

    Raises:
        IntegrityViolation: On a bad signature or an unparseable body
    """
    verify_signature(raw_body, signature)

    try:
        event = json.loads(raw_body)
    except ValueError as e:
        raise IntegrityViolation("Webhook body is not JSON") from e

    if not isinstance(event, dict) or event.get("event") != CHARGE_SUCCESS:
        logger.info(f"Paystack event ignored: {event.get('event') if isinstance(event, dict) else 'n/a'}")
        return PaymentOutcome("ignored")

    return await process_charge_success(event.get("data") or {})


async def initialize_payment(user: Dict[str, Any]) -> str:
    """
    Creates a Paystack checkout for one subscription period.

    Returns:
        Authorization URL to send to the user

    Raises:
        UpstreamUnavailable: If Paystack is unreachable or rejects the request
    """
    if not settings.PAYSTACK_SECRET_KEY:
        raise UpstreamUnavailable("Paystack is not configured")

    user_id = user["user_id"]
    currency = (user.get("currency") or "NGN").upper()
    price = required_price(currency)
    if price is None:
        currency, price = "NGN", settings.PLAN_PRICE_NGN

    reference = f"LC_{user_id}_{int(datetime.utcnow().timestamp())}"
    body = {
        "email": user.get("email") or f"{user_id}@ledgerchat.app",
        "amount": int(round(price * 100)),
        "currency": currency,
        "reference": reference,
        "metadata": {"userId": user_id, "whatsappId": user_id},
    }

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{settings.PAYSTACK_BASE_URL}/transaction/initialize",
                json=body,
                headers={"Authorization": f"Bearer {settings.PAYSTACK_SECRET_KEY}"},
                timeout=10.0
            )
    except httpx.RequestError as e:
        logger.error(f"Paystack unreachable: {e}")
        raise UpstreamUnavailable("Paystack unreachable") from e

    if response.status_code >= 300:
        logger.error(f"❌ Paystack initialize failed: {response.status_code} - {response.text[:300]}")
        raise UpstreamUnavailable(f"Paystack returned {response.status_code}")

    url = (response.json().get("data") or {}).get("authorization_url")
    if not url:
        raise UpstreamUnavailable("Paystack returned no authorization URL")

    logger.info(f"💳 Payment link created: {reference}")
    return url
