from datetime import datetime, timedelta

from app.db.mongo import get_users_collection
from app.flow.states import ConversationState
from app.models.user import new_user_document

USER_ID = "2348000000001"


async def make_user(user_id=USER_ID, state=ConversationState.IDLE, **fields):
    """Inserts an onboarded user with an active trial."""
    document = new_user_document(user_id)
    document.update({
        "state": state.value,
        "business_name": "Ada Stores",
        "email": "ada@example.com",
        "is_email_verified": True,
        "currency": "NGN",
        "subscription_status": "TRIAL",
        "subscription_expires_at": datetime.utcnow() + timedelta(days=14),
    })
    document.update(fields)
    await get_users_collection().insert_one(document)
    return await get_users_collection().find_one({"user_id": user_id})


async def reload_user(user_id=USER_ID):
    return await get_users_collection().find_one({"user_id": user_id})


def texts_of(payloads):
    """Body text of each payload, interactive bodies included."""
    result = []
    for payload in payloads:
        if payload["type"] == "text":
            result.append(payload["text"])
        elif payload["type"] in ("button", "list"):
            result.append(payload["body"]["text"])
    return result


def row_ids(payload):
    """Reply ids offered by a button or list payload."""
    if payload["type"] == "button":
        return [b["reply"]["id"] for b in payload["action"]["buttons"]]
    return [row["id"] for section in payload["action"]["sections"] for row in section["rows"]]


def sent_payloads(send_mock):
    return [call.args[1] for call in send_mock.await_args_list]
