"""
app/flow/handlers/selection.py

Handles: AWAITING_BANK_SELECTION_*, AWAITING_ITEM_SELECTION,
AWAITING_REPORT_TYPE_SELECTION

- Asks which bank account a command should be booked against
- Asks which stored product a fuzzy sale name meant
- Executes the parked command once the choice is made

Handlers return None when the input is not a recognised choice so the
dispatcher can treat it as an interrupt.
"""

from typing import Any, Dict, List, Optional, Tuple

from app.flow.replies import Reply, text, with_menu, finish_task
from app.flow.states import ConversationState
from app.models.conversation import (
    BankOption,
    BankSelectionContext,
    ItemSelectionContext,
    ReportSelectionContext,
)
from app.services import bank_service, product_service, report_service
from app.services.session_service import update_user_state, reset_to_idle
from app.services.task_executor import execute_command
from app.core.logging import get_logger
from utils.constants import (
    BANK_SELECTION_PROMPTS,
    BANK_NONE_TITLE,
    BANK_BUTTON_PREFIX,
    PRODUCT_BUTTON_PREFIX,
    REPORT_BUTTON_PREFIX,
    NONE_OPTION,
    NONE_OF_THESE_TITLE,
    ITEM_SELECTION_PROMPT,
    PRODUCT_NOT_LISTED_MESSAGE,
)
from utils.validation_utils import normalize_name
from utils.whatsapp_utils import create_choice_message

logger = get_logger(__name__)

BANK_SELECTION_STATE = {
    "sale": ConversationState.AWAITING_BANK_SELECTION_SALE,
    "expense": ConversationState.AWAITING_BANK_SELECTION_EXPENSE,
    "purchase": ConversationState.AWAITING_BANK_SELECTION_PURCHASE,
    "customer_payment": ConversationState.AWAITING_BANK_SELECTION_CUST_PAYMENT,
}

CASH_WORDS = ("cash", "none", "no", "cash / none", "no bank")


def needs_bank(kind: str, command: Dict[str, Any]) -> bool:
    """
    Whether a completed command should ask for a bank account.

    Credit sales never touch a bank; stock additions only when units
    were actually bought.
    """
    if kind == "sale":
        return command.get("sale_type") != "credit"
    if kind == "purchase":
        lines = command.get("products") or [command]
        return any((line.get("quantity_added") or 0) > 0 for line in lines)
    return kind in ("expense", "customer_payment")


def _parse_choice(button_id: Optional[str], message: Optional[str], prefix: str,
                  options: List[Tuple[str, str]]) -> Tuple[bool, Optional[str]]:
    """
    Matches a reply against (id, title) options.

    Returns:
        (matched, id); id is None when the user picked the "none" choice
    """
    if button_id and button_id.startswith(prefix):
        value = button_id[len(prefix):]
        if value == NONE_OPTION:
            return True, None
        if any(option_id == value for option_id, _ in options):
            return True, value
        return False, None

    typed = normalize_name(message or "")
    if not typed:
        return False, None
    for option_id, title in options:
        if normalize_name(title) == typed:
            return True, option_id
    if typed.isdigit() and 1 <= int(typed) <= len(options):
        return True, options[int(typed) - 1][0]
    return False, None


# ============================================================
# BANK SELECTION
# ============================================================

async def ask_bank_selection(
    user: Dict[str, Any],
    kind: str,
    command: Dict[str, Any],
    from_state: ConversationState
) -> Optional[Reply]:
    """
    Parks ``command`` and asks which account it belongs to.

    Returns:
        The question, or None when the user has no bank accounts
    """
    banks = await bank_service.list_bank_accounts(user["user_id"])
    if not banks:
        return None

    options = [BankOption(id=str(bank["_id"]), name=bank["name"]) for bank in banks]
    context = BankSelectionContext(command_kind=kind, command=command, options=options)
    await update_user_state(user["user_id"], BANK_SELECTION_STATE[kind], context, from_state=from_state)

    rows = [{"id": f"{BANK_BUTTON_PREFIX}{option.id}", "title": option.name} for option in options]
    rows.append({"id": f"{BANK_BUTTON_PREFIX}{NONE_OPTION}", "title": BANK_NONE_TITLE})
    return [create_choice_message(BANK_SELECTION_PROMPTS[kind], rows, "Choose Account", "Accounts")]


async def execute_or_ask_bank(
    user: Dict[str, Any],
    kind: str,
    command: Dict[str, Any],
    from_state: ConversationState
) -> Reply:
    """Asks for a bank when the command needs one, otherwise executes it."""
    if needs_bank(kind, command):
        question = await ask_bank_selection(user, kind, command, from_state)
        if question is not None:
            return question

    result = await execute_command(kind, user, command)
    return await finish_task(user["user_id"], result)


async def handle_bank_selection(
    user: Dict[str, Any],
    context: BankSelectionContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Optional[Reply]:
    options = [(option.id, option.name) for option in context.options]
    options.append((NONE_OPTION, BANK_NONE_TITLE))

    matched, bank_id = _parse_choice(button_id, message, BANK_BUTTON_PREFIX, options)
    if not matched:
        if normalize_name(message or "") not in CASH_WORDS:
            return None
        bank_id = None
    if bank_id == NONE_OPTION:
        bank_id = None

    logger.info(f"🏦 Bank chosen for {context.command_kind}: {bank_id or 'none'}")
    command = dict(context.command)
    command["bank_account_id"] = bank_id
    result = await execute_command(context.command_kind, user, command)
    return await finish_task(user["user_id"], result)


# ============================================================
# ITEM SELECTION
# ============================================================

async def resolve_sale_items(
    user: Dict[str, Any],
    sale: Dict[str, Any],
    from_state: ConversationState,
    start: int = 0
) -> Reply:
    """
    Pins each sale item from ``start`` onwards to a stored product.

    Exact (case-insensitive) names are used directly. The first item with
    only close matches stops the walk and asks the user; the walk resumes
    after their choice. Items with no candidates at all are left for the
    executor to report as unknown.
    """
    user_id = user["user_id"]
    items = sale["items"]

    for index in range(start, len(items)):
        item = items[index]
        if item.get("product_id"):
            continue

        product = await product_service.find_product_by_name(user_id, item["product_name"])
        if product is not None:
            item["product_id"] = str(product["_id"])
            item["product_name"] = product["name"]
            continue

        similar = await product_service.find_similar_products(user_id, item["product_name"])
        if similar:
            return await ask_item_selection(user, sale, index, similar, from_state)

    if not all(item.get("product_id") for item in items):
        result = await execute_command("sale", user, sale)
        return await finish_task(user_id, result)
    return await execute_or_ask_bank(user, "sale", sale, from_state)


async def ask_item_selection(
    user: Dict[str, Any],
    sale: Dict[str, Any],
    item_index: int,
    similar: List[Dict[str, Any]],
    from_state: ConversationState
) -> Reply:
    """Offers the closest stored products for a sale item whose name did not match."""
    requested = sale["items"][item_index].get("product_name", "")
    candidates = [product_service.to_snapshot(product) for product in similar]
    context = ItemSelectionContext(requested_name=requested, sale=sale, item_index=item_index, candidates=candidates)
    await update_user_state(user["user_id"], ConversationState.AWAITING_ITEM_SELECTION, context, from_state=from_state)

    rows = [{"id": f"{PRODUCT_BUTTON_PREFIX}{c.id}", "title": c.name} for c in candidates]
    rows.append({"id": f"{PRODUCT_BUTTON_PREFIX}{NONE_OPTION}", "title": NONE_OF_THESE_TITLE})
    return [create_choice_message(ITEM_SELECTION_PROMPT.format(name=requested), rows, "Choose Product", "Products")]


async def handle_item_selection(
    user: Dict[str, Any],
    context: ItemSelectionContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Optional[Reply]:
    options = [(c.id, c.name) for c in context.candidates]
    options.append((NONE_OPTION, NONE_OF_THESE_TITLE))
    matched, product_id = _parse_choice(button_id, message, PRODUCT_BUTTON_PREFIX, options)
    if not matched:
        return None

    if product_id in (None, NONE_OPTION):
        await reset_to_idle(user["user_id"], "product not listed")
        return with_menu(PRODUCT_NOT_LISTED_MESSAGE.format(name=context.requested_name))

    chosen = next(c for c in context.candidates if c.id == product_id)
    sale = dict(context.sale)
    sale["items"] = [dict(item) for item in sale["items"]]
    sale["items"][context.item_index].update(product_id=chosen.id, product_name=chosen.name)
    logger.info(f"🔎 '{context.requested_name}' resolved to '{chosen.name}'")
    return await resolve_sale_items(user, sale, ConversationState.AWAITING_ITEM_SELECTION, start=context.item_index + 1)


# ============================================================
# REPORT TYPE
# ============================================================

async def handle_report_selection(
    user: Dict[str, Any],
    context: ReportSelectionContext,
    message: Optional[str],
    button_id: Optional[str] = None
) -> Optional[Reply]:
    report_type = None
    if button_id and button_id.startswith(REPORT_BUTTON_PREFIX):
        report_type = report_service.normalize_report_type(button_id[len(REPORT_BUTTON_PREFIX):])
    if report_type is None:
        report_type = report_service.normalize_report_type((message or "").replace(" ", "_"))
    if report_type is None:
        return None

    report = await report_service.generate_report(user, report_type, context.date_range)
    await reset_to_idle(user["user_id"], "report sent")
    return text(report)
