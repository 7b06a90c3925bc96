"""
utils/whatsapp_utils.py

Purpose: WhatsApp message builders

- Constructs text, button, list and document payloads
- Parses interactive replies from the Cloud API webhook
- Money formatting for message text
"""

from typing import List, Dict, Optional, Any

from utils.constants import MAIN_MENU_TEXT, MAIN_MENU_BUTTON, MAIN_MENU_SECTIONS


CURRENCY_SYMBOLS = {
    "NGN": "₦",
    "USD": "$",
    "GBP": "£",
    "EUR": "€",
    "GHS": "GH₵",
    "KES": "KSh",
    "ZAR": "R",
}


def format_money(amount: float, currency: Optional[str] = None) -> str:
    """
    Formats an amount with the user's currency symbol, e.g. ₦12,500.00.
    """
    code = (currency or "NGN").upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def create_text_message(text: str, preview_url: bool = False) -> Dict[str, Any]:
    """
    Creates a simple text message.

    Args:
        text: Message text (supports WhatsApp markdown)
        preview_url: Whether to show URL preview

    Returns:
        Message payload dict
    """
    return {
        "type": "text",
        "text": text,
        "preview_url": preview_url
    }


def create_button_message(
    text: str,
    buttons: List[Dict[str, str]],
    header: Optional[str] = None,
    footer: Optional[str] = None
) -> Dict[str, Any]:
    """
    Creates a message with quick reply buttons.

    Args:
        text: Body text
        buttons: List of button dicts with 'id' and 'title' keys
                 Max 3 buttons, each title max 20 chars
        header: Optional header text
        footer: Optional footer text

    Returns:
        Button message payload

    Example:
        buttons = [
            {"id": "select_bank:65f0c...", "title": "GTBank"},
            {"id": "select_bank:none", "title": "Cash"}
        ]
    """
    buttons = buttons[:3]  # WhatsApp allows max 3 quick reply buttons

    payload = {
        "type": "button",
        "body": {
            "text": text
        },
        "action": {
            "buttons": [
                {
                    "type": "reply",
                    "reply": {
                        "id": btn["id"],
                        "title": btn["title"][:20]
                    }
                }
                for btn in buttons
            ]
        }
    }

    if header:
        payload["header"] = {"type": "text", "text": header}

    if footer:
        payload["footer"] = {"text": footer}

    return payload


def create_list_message(
    text: str,
    button_text: str,
    sections: List[Dict[str, Any]],
    header: Optional[str] = None,
    footer: Optional[str] = None
) -> Dict[str, Any]:
    """
    Creates a message with a list picker (interactive list).

    Args:
        text: Body text
        button_text: Button text to open the list (max 20 chars)
        sections: List sections with title and rows
        header: Optional header text
        footer: Optional footer text

    Returns:
        List message payload
    """
    sections = sections[:10]

    trimmed_sections = []
    for section in sections:
        rows = []
        for row in section.get("rows", [])[:10]:
            trimmed = {"id": row["id"], "title": row["title"][:24]}
            if row.get("description"):
                trimmed["description"] = row["description"][:72]
            rows.append(trimmed)
        trimmed_sections.append({"title": section.get("title", "")[:24], "rows": rows})

    payload = {
        "type": "list",
        "body": {
            "text": text
        },
        "action": {
            "button": button_text[:20],
            "sections": trimmed_sections
        }
    }

    if header:
        payload["header"] = {"type": "text", "text": header}

    if footer:
        payload["footer"] = {"text": footer}

    return payload


def create_choice_message(
    text: str,
    options: List[Dict[str, str]],
    button_text: str = "Choose",
    section_title: str = "Options"
) -> Dict[str, Any]:
    """
    Buttons for up to three options, a list beyond that.
    """
    if len(options) <= 3:
        return create_button_message(text, options)
    return create_list_message(
        text,
        button_text,
        [{"title": section_title, "rows": options}]
    )


def create_document_message(link: str, filename: str, caption: Optional[str] = None) -> Dict[str, Any]:
    """Document sent by public link; the caption shows under the file."""
    document = {"link": link, "filename": filename}
    if caption:
        document["caption"] = caption
    return {"type": "document", "document": document}


def parse_reply_id(message: Dict[str, Any]) -> Optional[str]:
    """
    Id of the button or list row the user tapped, or None.

    Template quick-reply buttons carry their id in ``payload``.
    """
    if message.get("type") == "button":
        return message.get("button", {}).get("payload")

    if message.get("type") != "interactive":
        return None

    interactive = message.get("interactive", {})
    reply_type = interactive.get("type")
    if reply_type in ("button_reply", "list_reply"):
        return interactive.get(reply_type, {}).get("id")
    return None


def get_message_text(message: Dict[str, Any]) -> Optional[str]:
    """
    Extracts text content from any message type.

    Images contribute their caption; interactive replies their title.

    Args:
        message: Webhook message payload

    Returns:
        Message text content
    """
    msg_type = message.get("type")

    if msg_type == "text":
        return message.get("text", {}).get("body")
    elif msg_type == "image":
        return message.get("image", {}).get("caption")
    elif msg_type == "interactive":
        interactive = message.get("interactive", {})
        reply_type = interactive.get("type")

        if reply_type == "button_reply":
            return interactive.get("button_reply", {}).get("title")
        elif reply_type == "list_reply":
            return interactive.get("list_reply", {}).get("title")
    elif msg_type == "button":
        return message.get("button", {}).get("text")

    return None


def create_main_menu_message() -> Dict[str, Any]:
    """The main menu as an interactive list."""
    return create_list_message(MAIN_MENU_TEXT, MAIN_MENU_BUTTON, MAIN_MENU_SECTIONS)
