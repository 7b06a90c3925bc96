"""
app/flow/slot_filling.py

Purpose: Multi-turn slot filling

- Creates the typed context for a collecting flow
- Runs one extraction turn against the flow's memory
- Persists memory while the flow is incomplete

Completed payloads are handed back to the collecting handler, which
decides between a selection step and execution.
"""

from typing import Any, Dict, Optional

from app.flow.states import ConversationState
from app.models.conversation import (
    ProductSnapshot,
    SaleFlowContext,
    ExpenseFlowContext,
    ProductFlowContext,
    CustomerPaymentFlowContext,
    BankAccountFlowContext,
    append_turn,
)
from app.services import extraction_service
from app.services.extraction_service import ExtractionIncomplete, ExtractionResult
from app.services.session_service import update_user_state
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

FLOW_CONTEXTS = {
    ConversationState.LOGGING_SALE: SaleFlowContext,
    ConversationState.LOGGING_EXPENSE: ExpenseFlowContext,
    ConversationState.ADDING_PRODUCT: ProductFlowContext,
    ConversationState.LOGGING_CUSTOMER_PAYMENT: CustomerPaymentFlowContext,
    ConversationState.ADDING_BANK_ACCOUNT: BankAccountFlowContext,
}


def new_flow_context(
    state: ConversationState,
    known_product: Optional[ProductSnapshot] = None,
    hints: Optional[Dict[str, Any]] = None
):
    """
    Empty context for a collecting state.

    Raises:
        ValueError: If the state is not a collecting state
    """
    context_type = FLOW_CONTEXTS.get(state)
    if context_type is None:
        raise ValueError(f"{state.value} is not a collecting state")

    if context_type is SaleFlowContext:
        return SaleFlowContext(known_product=known_product, hints=hints or {})
    if context_type is ProductFlowContext:
        return ProductFlowContext(known_product=known_product)
    return context_type()


async def _extract(context, currency: str) -> ExtractionResult:
    if isinstance(context, SaleFlowContext):
        return await extraction_service.extract_sale(context.memory, context.known_product, context.hints, currency)
    if isinstance(context, ExpenseFlowContext):
        return await extraction_service.extract_expense(context.memory, currency)
    if isinstance(context, ProductFlowContext):
        return await extraction_service.extract_product(context.memory, context.known_product, currency)
    if isinstance(context, CustomerPaymentFlowContext):
        return await extraction_service.extract_customer_payment(context.memory, currency)
    if isinstance(context, BankAccountFlowContext):
        return await extraction_service.extract_bank_account(context.memory, currency)
    raise TypeError(f"No extractor for {type(context).__name__}")


async def run_turn(user: Dict[str, Any], state: ConversationState, context, text: str) -> ExtractionResult:
    """
    One slot-filling turn.

    Appends the user's text to memory (skipped if it is already the tail
    entry), runs the flow's extractor and, when the result is incomplete,
    stores the updated memory in the same state. Failed and complete
    results leave the stored context untouched.

    Args:
        user: User document
        state: Current collecting state
        context: The state's flow context
        text: The user's message

    Returns:
        ExtractionComplete, ExtractionIncomplete or ExtractionFailed
    """
    context.memory = append_turn(context.memory, "user", text, settings.MEMORY_MAX_TURNS)

    result = await _extract(context, user.get("currency") or "NGN")

    if isinstance(result, ExtractionIncomplete):
        context.memory = result.memory
        await update_user_state(user["user_id"], state, context, from_state=state)

    return result
