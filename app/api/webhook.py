"""
app/api/webhook.py

Purpose: WhatsApp Cloud API webhook endpoint

- GET: Meta's subscription verification handshake
- POST: verifies the optional signature, parses inbound messages,
  drops duplicates and rate-limited senders, and queues the rest
- Handling happens on the per-user queue, so Meta gets its 200 fast
"""

import json
from typing import Optional

from fastapi import APIRouter, Request, Header, HTTPException, Query
from fastapi.responses import PlainTextResponse

from app.core.config import settings
from app.core.logging import get_logger, LogContext
from app.flow.queue import get_message_queue
from app.models.ledger import LedgerKind
from app.schemas.webhook import InboundMessage, parse_whatsapp_payload
from app.services import idempotency_service
from app.services.rate_limit_service import check_rate_limit
from app.services.whatsapp_service import whatsapp_service, verify_signature
from utils.constants import RATE_LIMIT_WARNING

logger = get_logger(__name__)
router = APIRouter()


@router.get("/webhook")
async def webhook_verification(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """
    Webhook verification endpoint

    Meta calls this once when the webhook is registered and expects the
    challenge echoed back as plain text.
    """
    if hub_mode == "subscribe" and hub_verify_token == settings.WHATSAPP_VERIFY_TOKEN:
        logger.info("✅ Webhook verified")
        return PlainTextResponse(hub_challenge or "")

    logger.warning("Webhook verification failed")
    raise HTTPException(status_code=403, detail="Verification failed")


async def ingest_message(message: InboundMessage) -> bool:
    """
    Admits one message to the queue.

    Returns:
        True if queued; False for duplicates and rate-limited senders
    """
    with LogContext(user_id=message.sender_id, message_id=message.message_id):
        claimed = await idempotency_service.claim(
            idempotency_service.message_reference(message.message_id),
            LedgerKind.MESSAGE,
            user_id=message.sender_id,
        )
        if not claimed:
            logger.info("♻️ Duplicate message dropped")
            return False

        decision = await check_rate_limit(message.sender_id)
        if not decision.allowed:
            if decision.should_warn:
                await whatsapp_service.send_text(message.sender_id, RATE_LIMIT_WARNING)
            return False

        get_message_queue().enqueue(message)
        return True


@router.post("/webhook")
async def webhook_handler(
    request: Request,
    x_hub_signature_256: Optional[str] = Header(None),
):
    """
    Receives WhatsApp Cloud API events.

    Status callbacks (delivered/read) carry no messages and are
    acknowledged without work.
    """
    raw_body = await request.body()

    if settings.WHATSAPP_APP_SECRET:
        verify_signature(raw_body, x_hub_signature_256, settings.WHATSAPP_APP_SECRET)

    try:
        payload = json.loads(raw_body)
        messages = parse_whatsapp_payload(payload)
    except ValueError as e:
        logger.error(f"Failed to parse webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    accepted = 0
    for message in messages:
        if await ingest_message(message):
            accepted += 1

    if messages:
        logger.info(f"📱 Webhook: {len(messages)} message(s), {accepted} queued")
    return {"status": "success", "received": len(messages), "queued": accepted}
