"""
app/api/payments.py

Purpose: Paystack webhook endpoint

- Passes the raw body and signature header to the payment service
- Bad signatures surface as 400 through the IntegrityViolation handler
- Every verified event gets a 200, including duplicates, so Paystack
  stops retrying
"""

from typing import Optional

from fastapi import APIRouter, Request, Header

from app.services import payment_service
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.post("/payments/paystack/webhook")
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
):
    raw_body = await request.body()
    outcome = await payment_service.handle_webhook(raw_body, x_paystack_signature)
    logger.info(f"💳 Paystack webhook handled: {outcome.status}")
    return {"status": outcome.status, "reference": outcome.reference}
