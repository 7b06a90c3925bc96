"""
app/schemas/webhook.py

Purpose: WhatsApp Cloud API webhook payload schemas and parsers

- Walks entry[].changes[].value.messages[] in Meta's webhook format
- Normalizes text, interactive replies and media into InboundMessage
- Ignores delivery/read status callbacks
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from utils.whatsapp_utils import get_message_text, parse_reply_id

MEDIA_TYPES = ("image", "audio", "voice", "video", "document", "sticker")


class InboundMessage(BaseModel):
    """
    Normalized message format for internal processing
    """
    sender_id: str = Field(..., description="Sender's WhatsApp ID (phone number without +)")
    message_id: str = Field(..., description="Unique message identifier (wamid)")
    type: str = Field(..., description="WhatsApp message type")
    text: Optional[str] = None
    button_id: Optional[str] = None
    media_id: Optional[str] = None
    name: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "sender_id": "2348012345678",
                "message_id": "wamid.HBgN...",
                "type": "text",
                "text": "Sold 2 bags of rice for 90k cash",
            }
        }

    @property
    def has_content(self) -> bool:
        """True when there is something the flows can read."""
        return bool((self.text or "").strip() or self.button_id)


def _timestamp(value: Any) -> datetime:
    try:
        return datetime.utcfromtimestamp(int(value))
    except (TypeError, ValueError):
        return datetime.utcnow()


def parse_message(message: Dict[str, Any], contacts: Optional[List[Dict[str, Any]]] = None) -> Optional[InboundMessage]:
    """
    Parses one entry of ``value.messages``.

    Interactive replies carry the reply id in button_id and its title as
    text; images carry their caption as text.

    Returns:
        InboundMessage, or None when the entry lacks a sender or id
    """
    sender = message.get("from")
    message_id = message.get("id")
    if not sender or not message_id:
        return None

    msg_type = message.get("type", "unknown")
    button_id = parse_reply_id(message)
    if button_id is None and msg_type == "button":
        # Template quick-reply buttons
        button_id = message.get("button", {}).get("payload")

    media_id = None
    if msg_type in MEDIA_TYPES:
        media_id = message.get(msg_type, {}).get("id")

    name = None
    for contact in contacts or []:
        if contact.get("wa_id") == sender:
            name = contact.get("profile", {}).get("name")

    return InboundMessage(
        sender_id=sender,
        message_id=message_id,
        type=msg_type,
        text=get_message_text(message),
        button_id=button_id,
        media_id=media_id,
        name=name,
        timestamp=_timestamp(message.get("timestamp")),
    )


def parse_whatsapp_payload(payload: Dict[str, Any]) -> List[InboundMessage]:
    """
    Extracts every inbound message from a webhook body.

    Meta format (JSON):
    {
        "object": "whatsapp_business_account",
        "entry": [{
            "changes": [{
                "value": {
                    "contacts": [{"wa_id": "234...", "profile": {"name": "Ada"}}],
                    "messages": [{"from": "234...", "id": "wamid...", "type": "text",
                                  "text": {"body": "Hi"}}]
                }
            }]
        }]
    }

    Raises:
        ValueError: If the payload is not a WhatsApp Business webhook
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("entry"), list):
        raise ValueError("Not a WhatsApp webhook payload")

    messages = []
    for entry in payload["entry"]:
        for change in entry.get("changes", []):
            value = change.get("value") or {}
            contacts = value.get("contacts") or []
            for raw in value.get("messages") or []:
                parsed = parse_message(raw, contacts)
                if parsed is not None:
                    messages.append(parsed)
    return messages
