"""
app/flow/dispatcher.py

Purpose: Central message dispatcher

- Receives normalized messages from the per-user queue
- Applies cancel, expiry and recovery rules before routing
- Routes to the handler for the user's state
- Sends the handler's replies through the WhatsApp Cloud API
"""

from typing import Any, Dict, List

from app.schemas.webhook import InboundMessage
from app.flow.replies import Reply, text, with_menu
from app.flow.states import (
    ConversationState,
    ONBOARDING_STATES,
    COLLECTING_STATES,
    BANK_SELECTION_STATES,
    parse_state,
    is_cancel_command,
)
from app.flow.handlers.onboarding import handle_onboarding
from app.flow.handlers.idle import handle_idle
from app.flow.handlers.collecting import handle_collecting
from app.flow.handlers.selection import (
    handle_bank_selection,
    handle_item_selection,
    handle_report_selection,
)
from app.flow.handlers.reconcile import (
    handle_transaction_selection,
    handle_edit_field_choice,
    handle_edit_value,
)
from app.models.conversation import load_state_context, MalformedContextError
from app.services.user_service import get_or_create_user
from app.services.session_service import reset_to_idle, is_flow_expired
from app.services.whatsapp_service import whatsapp_service
from app.core.logging import get_logger, LogContext
from utils.constants import (
    CANCELLED_MESSAGE,
    FLOW_EXPIRED_MESSAGE,
    RECOVERY_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    SELECT_FROM_MENU_MESSAGE,
    UNSUPPORTED_MEDIA_MESSAGE,
)

logger = get_logger(__name__)

# Selection handlers return None when the reply is not one of the offered choices
SELECTION_HANDLERS = {
    ConversationState.AWAITING_ITEM_SELECTION: handle_item_selection,
    ConversationState.AWAITING_REPORT_TYPE_SELECTION: handle_report_selection,
    ConversationState.AWAITING_TRANSACTION_SELECTION: handle_transaction_selection,
    ConversationState.AWAITING_EDIT_FIELD_CHOICE: handle_edit_field_choice,
}
SELECTION_HANDLERS.update({state: handle_bank_selection for state in BANK_SELECTION_STATES})

MIN_INTERRUPT_LENGTH = 2


async def dispatch_message(message: InboundMessage) -> Reply:
    """
    Main dispatcher for incoming WhatsApp messages

    Never raises: any failure while handling one message resets the user
    to IDLE and sends the generic apology.

    Args:
        message: Normalized message object

    Returns:
        The payloads that were sent
    """
    with LogContext(user_id=message.sender_id, message_id=message.message_id):
        logger.info(f"📨 Dispatching {message.type} message")

        try:
            replies = await _handle(message)
        except Exception as e:
            logger.error(f"❌ Dispatcher error: {e}", exc_info=True)
            try:
                await reset_to_idle(message.sender_id, "dispatcher error")
            except Exception:
                logger.error("❌ Could not reset user after error", exc_info=True)
            replies = text(GENERIC_ERROR_MESSAGE)

        await send_replies(message.sender_id, replies)
        return replies


async def send_replies(to: str, replies: List[Dict[str, Any]]) -> None:
    if not replies:
        logger.warning("⚠️ Handler produced no reply")
        return
    results = await whatsapp_service.send_all(to, replies)
    failed = [r for r in results if not r.get("success")]
    if failed:
        logger.warning(f"⚠️ {len(failed)} of {len(results)} replies failed to send")


async def _handle(message: InboundMessage) -> Reply:
    user = await get_or_create_user(message.sender_id)
    user_id = user["user_id"]
    state = parse_state(user.get("state"))

    if state is None:
        logger.error(f"Unknown stored state {user.get('state')!r}, recovering")
        await reset_to_idle(user_id, "unknown state")
        return with_menu(RECOVERY_MESSAGE)

    with LogContext(state=state.value):
        if not message.has_content:
            logger.info(f"Unsupported {message.type} message")
            return text(UNSUPPORTED_MEDIA_MESSAGE)

        if state in ONBOARDING_STATES:
            return await handle_onboarding(user, state, message.text)

        if state != ConversationState.IDLE and is_cancel_command(message.text):
            await reset_to_idle(user_id, "cancelled")
            return with_menu(CANCELLED_MESSAGE)

        prefix: Reply = []
        if state != ConversationState.IDLE and is_flow_expired(user):
            logger.info(f"⏰ {state.value} expired")
            await reset_to_idle(user_id, "flow expired")
            prefix = text(FLOW_EXPIRED_MESSAGE)
            state = ConversationState.IDLE

        try:
            context = load_state_context(state, user.get("state_context"))
        except MalformedContextError as e:
            logger.error(f"Malformed context for {state.value}: {e}")
            await reset_to_idle(user_id, "malformed context")
            return with_menu(RECOVERY_MESSAGE)

        return prefix + await route_to_handler(user, state, context, message)


async def route_to_handler(user: Dict[str, Any], state: ConversationState, context,
                           message: InboundMessage) -> Reply:
    """
    Routes message to the handler for ``state``.

    Free text in a selection state that is not one of the offered choices
    is an interrupt: anything longer than two characters resets to IDLE
    and is handled as a new request; shorter input re-prompts.
    """
    logger.info(f"🚦 Routing: state={state.value}")

    if state == ConversationState.IDLE:
        return await handle_idle(user, message.text, message.button_id)

    if state in COLLECTING_STATES:
        return await handle_collecting(user, state, context, message.text or "")

    if state == ConversationState.AWAITING_EDIT_VALUE:
        return await handle_edit_value(user, context, message.text, message.button_id)

    handler = SELECTION_HANDLERS[state]
    reply = await handler(user, context, message.text, message.button_id)
    if reply is not None:
        return reply

    return await _interrupt(user, message)


async def _interrupt(user: Dict[str, Any], message: InboundMessage) -> Reply:
    typed = (message.text or "").strip()
    if message.button_id or len(typed) <= MIN_INTERRUPT_LENGTH:
        return text(SELECT_FROM_MENU_MESSAGE)

    logger.info("↩️ Free text during selection, treating as a new request")
    await reset_to_idle(user["user_id"], "interrupted")
    user = {**user, "state": ConversationState.IDLE.value, "state_context": {}}
    return await handle_idle(user, message.text, None)
