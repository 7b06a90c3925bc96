"""
app/flow/handlers/collecting.py

Handles: LOGGING_SALE, LOGGING_EXPENSE, ADDING_PRODUCT,
LOGGING_CUSTOMER_PAYMENT, ADDING_BANK_ACCOUNT

- Starts a collecting flow from a classified intent or a menu choice
- Runs one slot-filling turn per message
- On completion resolves each sold item to a product, asks for a bank
  account where needed, or executes the command
"""

from typing import Any, Dict, Optional

from app.flow.intents import Intent
from app.flow.replies import Reply, text
from app.flow.slot_filling import new_flow_context, run_turn
from app.flow.states import ConversationState
from app.flow.handlers.selection import resolve_sale_items, execute_or_ask_bank
from app.models.conversation import ProductSnapshot, SaleFlowContext, append_turn
from app.services import product_service
from app.services.extraction_service import ExtractionComplete, ExtractionIncomplete
from app.services.session_service import update_user_state
from app.core.config import settings
from app.core.logging import get_logger
from utils.constants import EXTRACTION_FAILED_REPLY, MENU_FLOW_PROMPTS
from utils.validation_utils import normalize_name

logger = get_logger(__name__)

INTENT_STATES = {
    Intent.LOG_SALE: ConversationState.LOGGING_SALE,
    Intent.LOG_EXPENSE: ConversationState.LOGGING_EXPENSE,
    Intent.ADD_PRODUCT: ConversationState.ADDING_PRODUCT,
    Intent.LOG_CUSTOMER_PAYMENT: ConversationState.LOGGING_CUSTOMER_PAYMENT,
    Intent.ADD_BANK_ACCOUNT: ConversationState.ADDING_BANK_ACCOUNT,
}

MENU_STATES = {
    "menu:log_sale": ConversationState.LOGGING_SALE,
    "menu:log_expense": ConversationState.LOGGING_EXPENSE,
    "menu:add_product": ConversationState.ADDING_PRODUCT,
    "menu:customer_payment": ConversationState.LOGGING_CUSTOMER_PAYMENT,
    "menu:add_bank": ConversationState.ADDING_BANK_ACCOUNT,
}

# Command kind handed to the executor for each collecting state
FLOW_KINDS = {
    ConversationState.LOGGING_SALE: "sale",
    ConversationState.LOGGING_EXPENSE: "expense",
    ConversationState.ADDING_PRODUCT: "purchase",
    ConversationState.LOGGING_CUSTOMER_PAYMENT: "customer_payment",
    ConversationState.ADDING_BANK_ACCOUNT: "bank_account",
}


async def _known_product(user_id: str, hints: Dict[str, Any]) -> Optional[ProductSnapshot]:
    name = hints.get("productName") or hints.get("product_name")
    if not isinstance(name, str) or not name.strip():
        return None
    product = await product_service.find_product_by_name(user_id, name)
    return product_service.to_snapshot(product) if product else None


async def start_flow(user: Dict[str, Any], intent: Intent, message: str,
                     hints: Optional[Dict[str, Any]] = None) -> Reply:
    """
    Enters the collecting state for ``intent`` and runs the first turn on
    the message that triggered it.

    The classifier's context seeds the sale flow and, when it names a
    stored product, the sale and product flows' known product.
    """
    hints = hints or {}
    state = INTENT_STATES[intent]

    known = None
    if state in (ConversationState.LOGGING_SALE, ConversationState.ADDING_PRODUCT):
        known = await _known_product(user["user_id"], hints)

    context = new_flow_context(state, known_product=known, hints=hints)
    await update_user_state(user["user_id"], state, context, from_state=ConversationState.IDLE)
    logger.info(f"▶️ Flow started: {state.value}")
    return await handle_collecting(user, state, context, message)


async def start_menu_flow(user: Dict[str, Any], button_id: str) -> Reply:
    """Enters a collecting state from the menu and asks its opening question."""
    state = MENU_STATES[button_id]
    prompt = MENU_FLOW_PROMPTS[button_id]

    context = new_flow_context(state)
    context.memory = append_turn(context.memory, "assistant", prompt, settings.MEMORY_MAX_TURNS)
    await update_user_state(user["user_id"], state, context, from_state=ConversationState.IDLE)
    return text(prompt)


async def handle_collecting(user: Dict[str, Any], state: ConversationState, context, message: str) -> Reply:
    result = await run_turn(user, state, context, message)

    if isinstance(result, ExtractionIncomplete):
        return text(result.reply)
    if not isinstance(result, ExtractionComplete):
        return text(EXTRACTION_FAILED_REPLY)

    kind = FLOW_KINDS[state]
    data = dict(result.data)
    if kind == "sale":
        return await _complete_sale(user, state, context, data)
    return await execute_or_ask_bank(user, kind, data, state)


async def _complete_sale(user: Dict[str, Any], state: ConversationState,
                         context: SaleFlowContext, sale: Dict[str, Any]) -> Reply:
    """
    Pins the sale's items to stored products and carries on to the bank
    question or the executor.

    The product the classifier already matched is used without another
    lookup; the rest are resolved by name, asking when only close
    matches exist.
    """
    known = context.known_product
    if known is not None:
        for item in sale["items"]:
            if normalize_name(known.name) == normalize_name(item["product_name"]):
                item["product_id"] = known.id
                item["product_name"] = known.name
    return await resolve_sale_items(user, sale, state)
