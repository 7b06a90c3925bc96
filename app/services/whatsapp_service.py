"""
app/services/whatsapp_service.py

Purpose: WhatsApp Cloud API message sending

- Sends text, button, list and document messages
- Accepts payloads built by utils.whatsapp_utils
- Failures are logged and reported in the result dict, never raised
"""

import hashlib
import hmac

import httpx
from typing import Dict, Any, List, Optional
from app.core.config import settings
from app.core.exceptions import IntegrityViolation
from app.core.logging import get_logger
from utils.whatsapp_utils import (
    create_text_message,
    create_button_message,
    create_list_message,
    create_document_message,
)

logger = get_logger(__name__)

INTERACTIVE_TYPES = ("button", "list")

SIGNATURE_PREFIX = "sha256="


def verify_signature(raw_body: bytes, signature: Optional[str], app_secret: str) -> None:
    """
    Checks Meta's X-Hub-Signature-256 header (HMAC-SHA256 of the raw body).

    Raises:
        IntegrityViolation: If the header is missing or does not match
    """
    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        raise IntegrityViolation("Missing or malformed X-Hub-Signature-256 header")

    expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature[len(SIGNATURE_PREFIX):].strip()):
        raise IntegrityViolation("Invalid WhatsApp webhook signature")


def build_api_body(to: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Wraps a message payload in the Cloud API envelope.

    Text payloads become ``text``; button and list payloads become
    ``interactive``; documents are sent by link.
    """
    body: Dict[str, Any] = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
    }
    msg_type = payload.get("type")

    if msg_type == "text":
        body["type"] = "text"
        body["text"] = {"body": payload["text"], "preview_url": payload.get("preview_url", False)}
    elif msg_type in INTERACTIVE_TYPES:
        body["type"] = "interactive"
        body["interactive"] = payload
    elif msg_type == "document":
        body["type"] = "document"
        body["document"] = payload["document"]
    else:
        raise ValueError(f"Unsupported message type: {msg_type}")

    return body


class WhatsAppService:
    """Service for sending messages through the WhatsApp Cloud API"""

    def __init__(self):
        self.token = settings.WHATSAPP_TOKEN
        self.phone_number_id = settings.WHATSAPP_PHONE_NUMBER_ID
        self.base_url = f"{settings.WHATSAPP_API_URL}/{self.phone_number_id}"

    async def send_message(self, to: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Sends one message.

        Args:
            to: Recipient WhatsApp ID
            payload: Message payload from utils.whatsapp_utils

        Returns:
            {
                "success": True/False,
                "message_id": "wamid...",
                "error": "Optional error message"
            }
        """
        if not self.token or not self.phone_number_id:
            logger.warning(f"📭 WhatsApp not configured, dropping {payload.get('type')} message to {to}")
            return {"success": False, "error": "WhatsApp not configured"}

        try:
            body = build_api_body(to, payload)
            logger.info(f"📤 Sending WhatsApp {payload.get('type')} message to {to}")

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{self.base_url}/messages",
                    json=body,
                    headers={"Authorization": f"Bearer {self.token}"},
                    timeout=10.0
                )

            if response.status_code in [200, 201]:
                result = response.json()
                message_id = (result.get("messages") or [{}])[0].get("id")
                logger.debug(f"✅ Message sent: id={message_id}")
                return {"success": True, "message_id": message_id}

            logger.error(f"❌ WhatsApp API error: {response.status_code} - {response.text[:300]}")
            return {"success": False, "error": f"WhatsApp API error: {response.status_code}"}

        except httpx.TimeoutException:
            logger.error("WhatsApp API timeout")
            return {"success": False, "error": "WhatsApp API timeout"}
        except Exception as e:
            logger.error(f"Error sending WhatsApp message: {e}", exc_info=True)
            return {"success": False, "error": str(e)}

    async def send_text(self, to: str, text: str) -> Dict[str, Any]:
        return await self.send_message(to, create_text_message(text))

    async def send_buttons(self, to: str, body: str, options: List[Dict[str, str]]) -> Dict[str, Any]:
        """Up to three quick-reply buttons; extra options are dropped."""
        return await self.send_message(to, create_button_message(body, options))

    async def send_list(self, to: str, header: str, body: str, sections: List[Dict[str, Any]]) -> Dict[str, Any]:
        return await self.send_message(to, create_list_message(body, "Choose", sections, header=header))

    async def send_document(self, to: str, link: str, filename: str, caption: Optional[str] = None) -> Dict[str, Any]:
        return await self.send_message(to, create_document_message(link, filename, caption))

    async def send_all(self, to: str, payloads: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Sends payloads in order; a failed send does not stop the rest."""
        results = []
        for payload in payloads:
            results.append(await self.send_message(to, payload))
        return results


# Global service instance
whatsapp_service = WhatsAppService()
