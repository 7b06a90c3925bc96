"""
app/flow/handlers/reconcile.py

Handles: AWAITING_TRANSACTION_SELECTION, AWAITING_EDIT_FIELD_CHOICE,
AWAITING_EDIT_VALUE

- Lists recent transactions for the user to pick
- Offers edit amount, edit description or delete
- Collects the new value and hands the change to the executor
"""

from typing import Any, Dict, Optional

from app.flow.replies import Reply, text, finish_task
from app.flow.states import ConversationState
from app.models.conversation import (
    TransactionSelectionContext,
    EditFieldContext,
    EditValueContext,
)
from app.models.ledger import CATEGORY_COGS
from app.services import transaction_service
from app.services.session_service import update_user_state, reset_to_idle
from app.services.task_executor import execute_command
from app.core.logging import get_logger
from utils.constants import (
    RECONCILE_PICK_PROMPT,
    RECONCILE_NONE_MESSAGE,
    RECONCILE_ACTION_PROMPT,
    TRANSACTION_NOT_FOUND_MESSAGE,
    TRANSACTION_BUTTON_PREFIX,
    EDIT_FIELD_BUTTON_PREFIX,
    EDIT_FIELD_OPTIONS,
    EDIT_VALUE_PROMPTS,
    INVALID_AMOUNT_REPLY,
)
from utils.time_utils import format_timestamp
from utils.validation_utils import parse_price, is_valid_amount
from utils.whatsapp_utils import create_list_message, create_button_message, format_money

logger = get_logger(__name__)

RECENT_LIMIT = 5
FIELD_WORDS = {
    "amount": "amount",
    "edit amount": "amount",
    "description": "description",
    "edit description": "description",
    "delete": "delete",
    "remove": "delete",
}


def _summary(txn: Dict[str, Any], currency: Optional[str]) -> str:
    return (
        f"{format_timestamp(txn.get('created_at'), '%d %b')}: {txn['description']} "
        f"({format_money(txn['amount'], currency)})"
    )


async def start_reconcile(user: Dict[str, Any]) -> Reply:
    """Lists the most recent transactions, cost-of-goods entries excluded."""
    user_id = user["user_id"]
    transactions = await transaction_service.list_recent_transactions(
        user_id, RECENT_LIMIT, exclude_categories=(CATEGORY_COGS,)
    )
    if not transactions:
        return text(RECONCILE_NONE_MESSAGE)

    currency = user.get("currency")
    rows = [
        {
            "id": f"{TRANSACTION_BUTTON_PREFIX}{txn['_id']}",
            "title": format_money(txn["amount"], currency),
            "description": _summary(txn, currency),
        }
        for txn in transactions
    ]
    context = TransactionSelectionContext(transaction_ids=[str(txn["_id"]) for txn in transactions])
    await update_user_state(user_id, ConversationState.AWAITING_TRANSACTION_SELECTION, context,
                            from_state=ConversationState.IDLE)
    return [create_list_message(RECONCILE_PICK_PROMPT, "Transactions", [{"title": "Recent", "rows": rows}])]


async def handle_transaction_selection(
    user: Dict[str, Any],
    context: TransactionSelectionContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Optional[Reply]:
    transaction_id = None
    if button_id and button_id.startswith(TRANSACTION_BUTTON_PREFIX):
        candidate = button_id[len(TRANSACTION_BUTTON_PREFIX):]
        if candidate in context.transaction_ids:
            transaction_id = candidate
    elif message and message.strip().isdigit():
        index = int(message.strip())
        if 1 <= index <= len(context.transaction_ids):
            transaction_id = context.transaction_ids[index - 1]

    if transaction_id is None:
        return None

    txn = await transaction_service.get_transaction(user["user_id"], transaction_id)
    if not txn:
        await reset_to_idle(user["user_id"], "transaction gone")
        return text(TRANSACTION_NOT_FOUND_MESSAGE)

    summary = _summary(txn, user.get("currency"))
    await update_user_state(
        user["user_id"],
        ConversationState.AWAITING_EDIT_FIELD_CHOICE,
        EditFieldContext(transaction_id=transaction_id, summary=summary),
        from_state=ConversationState.AWAITING_TRANSACTION_SELECTION,
    )
    return [create_button_message(RECONCILE_ACTION_PROMPT.format(summary=summary), EDIT_FIELD_OPTIONS)]


async def handle_edit_field_choice(
    user: Dict[str, Any],
    context: EditFieldContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Optional[Reply]:
    if button_id and button_id.startswith(EDIT_FIELD_BUTTON_PREFIX):
        choice = button_id[len(EDIT_FIELD_BUTTON_PREFIX):]
    else:
        choice = FIELD_WORDS.get((message or "").strip().lower())

    if choice == "delete":
        result = await execute_command("reconcile", user, {
            "transaction_id": context.transaction_id,
            "action": "delete",
        })
        return await finish_task(user["user_id"], result)

    if choice not in EDIT_VALUE_PROMPTS:
        return None

    await update_user_state(
        user["user_id"],
        ConversationState.AWAITING_EDIT_VALUE,
        EditValueContext(transaction_id=context.transaction_id, field=choice),
        from_state=ConversationState.AWAITING_EDIT_FIELD_CHOICE,
    )
    return text(EDIT_VALUE_PROMPTS[choice])


async def handle_edit_value(
    user: Dict[str, Any],
    context: EditValueContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Reply:
    """
    Applies the new value. An unparseable amount keeps the user in this
    state so they can try again.
    """
    value = (message or "").strip()
    if context.field == "amount" and not is_valid_amount(parse_price(value)):
        return text(INVALID_AMOUNT_REPLY)

    result = await execute_command("reconcile", user, {
        "transaction_id": context.transaction_id,
        "action": "edit",
        "field": context.field,
        "value": value,
    })
    return await finish_task(user["user_id"], result)
