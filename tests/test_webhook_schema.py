import pytest

from app.schemas.webhook import parse_whatsapp_payload


def payload(*messages, contacts=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [{
            "id": "WABA_ID",
            "changes": [{
                "field": "messages",
                "value": {
                    "messaging_product": "whatsapp",
                    "contacts": contacts or [{"wa_id": "2348000000001", "profile": {"name": "Ada"}}],
                    "messages": list(messages),
                },
            }],
        }],
    }


def test_text_message():
    [message] = parse_whatsapp_payload(payload({
        "from": "2348000000001",
        "id": "wamid.1",
        "timestamp": "1710000000",
        "type": "text",
        "text": {"body": "Sold 2 rice"},
    }))

    assert message.sender_id == "2348000000001"
    assert message.message_id == "wamid.1"
    assert message.text == "Sold 2 rice"
    assert message.button_id is None
    assert message.name == "Ada"
    assert message.has_content


def test_button_and_list_replies_carry_their_ids():
    messages = parse_whatsapp_payload(payload(
        {
            "from": "2348000000001", "id": "wamid.2", "type": "interactive",
            "interactive": {"type": "button_reply", "button_reply": {"id": "select_bank:none", "title": "Cash / None"}},
        },
        {
            "from": "2348000000001", "id": "wamid.3", "type": "interactive",
            "interactive": {"type": "list_reply", "list_reply": {"id": "menu:log_sale", "title": "Log a Sale"}},
        },
    ))

    assert [(m.button_id, m.text) for m in messages] == [
        ("select_bank:none", "Cash / None"),
        ("menu:log_sale", "Log a Sale"),
    ]


def test_media_without_caption_has_no_content():
    [message] = parse_whatsapp_payload(payload({
        "from": "2348000000001", "id": "wamid.4", "type": "audio", "audio": {"id": "MEDIA_1"},
    }))

    assert message.media_id == "MEDIA_1"
    assert not message.has_content


def test_status_callbacks_yield_no_messages():
    body = {
        "object": "whatsapp_business_account",
        "entry": [{"changes": [{"value": {"statuses": [{"id": "wamid.1", "status": "read"}]}}]}],
    }

    assert parse_whatsapp_payload(body) == []


def test_entries_without_sender_are_skipped():
    assert parse_whatsapp_payload(payload({"id": "wamid.5", "type": "text", "text": {"body": "x"}})) == []


@pytest.mark.parametrize("body", [{}, {"entry": "nope"}, ["entry"]])
def test_non_webhook_payload_is_rejected(body):
    with pytest.raises(ValueError):
        parse_whatsapp_payload(body)
