"""
app/flow/handlers/idle.py

Handles: IDLE

- Menu taps start a flow or answer directly
- Free text is classified and routed by intent
- Recording intents require an active trial or subscription
"""

from typing import Any, Dict, Optional

from app.flow.intents import Intent, IntentResult, FLOW_INTENTS
from app.flow.replies import Reply, text, with_menu
from app.flow.states import ConversationState
from app.flow.handlers.collecting import start_flow, start_menu_flow, MENU_STATES
from app.flow.handlers.reconcile import start_reconcile
from app.models.conversation import ReportSelectionContext
from app.models.user import has_active_subscription
from app.services import report_service, payment_service
from app.services.extraction_service import financial_insight
from app.services.intent_service import classify_intent
from app.services.session_service import update_user_state
from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger, LogContext
from utils.constants import (
    DEFAULT_GENERAL_REPLY,
    REPORT_MENU_TEXT,
    REPORT_OPTIONS,
    REPORT_BUTTON_PREFIX,
    SUBSCRIPTION_ACTIVE_MESSAGE,
    SUBSCRIPTION_EXPIRED_MESSAGE,
    SUBSCRIPTION_REQUIRED_MESSAGE,
    PAYMENT_LINK_MESSAGE,
    PAYMENT_LINK_FAILED_MESSAGE,
)
from utils.time_utils import format_timestamp, get_date_range
from utils.whatsapp_utils import (
    create_text_message,
    create_choice_message,
    create_main_menu_message,
    format_money,
)

logger = get_logger(__name__)

MENU_INTENTS = {
    "menu:check_stock": Intent.CHECK_STOCK,
    "menu:report": Intent.GENERATE_REPORT,
    "menu:balances": Intent.CHECK_BANK_BALANCE,
    "menu:debtors": Intent.GET_CUSTOMER_BALANCES,
    "menu:edit": Intent.RECONCILE_TRANSACTION,
}

# Intents that write to the books
GATED_INTENTS = FLOW_INTENTS | {Intent.RECONCILE_TRANSACTION}


async def handle_idle(user: Dict[str, Any], message: Optional[str], button_id: Optional[str] = None) -> Reply:
    """
    Entry point for messages outside any flow.

    Args:
        user: User document
        message: Message text (an interactive reply's title for taps)
        button_id: Interactive reply id, if any
    """
    if button_id in MENU_STATES:
        if not has_active_subscription(user):
            return text(SUBSCRIPTION_REQUIRED_MESSAGE)
        return await start_menu_flow(user, button_id)

    if button_id in MENU_INTENTS:
        return await route_intent(user, IntentResult(MENU_INTENTS[button_id], source="menu"), message or "")

    if button_id and button_id.startswith(REPORT_BUTTON_PREFIX):
        result = IntentResult(Intent.GENERATE_REPORT, {"reportType": button_id[len(REPORT_BUTTON_PREFIX):]}, source="menu")
        return await route_intent(user, result, message or "")

    result = await classify_intent(message or "")
    return await route_intent(user, result, message or "")


async def route_intent(user: Dict[str, Any], result: IntentResult, message: str) -> Reply:
    intent = result.intent
    with LogContext(intent=intent.value):
        logger.info(f"🧭 Routing {intent.value} (source={result.source})")

        if intent in GATED_INTENTS and not has_active_subscription(user):
            logger.info("Subscription inactive, recording blocked")
            return text(SUBSCRIPTION_REQUIRED_MESSAGE)

        if intent in FLOW_INTENTS:
            return await start_flow(user, intent, message, result.context)

        if intent == Intent.SHOW_MAIN_MENU:
            return [create_main_menu_message()]

        if intent == Intent.CHECK_STOCK:
            return text(await report_service.stock_report(user))

        if intent == Intent.CHECK_BANK_BALANCE:
            return text(await report_service.bank_balances(user))

        if intent == Intent.GET_CUSTOMER_BALANCES:
            return text(await report_service.customer_balances(user))

        if intent == Intent.GET_FINANCIAL_SUMMARY:
            return text(await report_service.financial_summary(user))

        if intent == Intent.GET_FINANCIAL_INSIGHT:
            return await _insight(user)

        if intent == Intent.GENERATE_REPORT:
            return await _report(user, result.context)

        if intent == Intent.RECONCILE_TRANSACTION:
            return await start_reconcile(user)

        if intent == Intent.CHECK_SUBSCRIPTION:
            return text(subscription_status(user))

        if intent == Intent.UPGRADE_SUBSCRIPTION:
            return await _upgrade(user)

        return text(result.reply or DEFAULT_GENERAL_REPLY)


async def _insight(user: Dict[str, Any]) -> Reply:
    start, end, _ = get_date_range("this_month")
    data = await report_service.pnl_data(user["user_id"], start, end)
    return text(await financial_insight(data, user.get("currency") or "NGN"))


async def _report(user: Dict[str, Any], context: Dict[str, Any]) -> Reply:
    """Sends the report straight away when its type is known, else asks for it."""
    report_type = report_service.normalize_report_type(context.get("reportType"))
    date_range = context.get("dateRange") if isinstance(context.get("dateRange"), str) else None

    if report_type:
        return text(await report_service.generate_report(user, report_type, date_range))

    await update_user_state(
        user["user_id"],
        ConversationState.AWAITING_REPORT_TYPE_SELECTION,
        ReportSelectionContext(date_range=date_range),
        from_state=ConversationState.IDLE,
    )
    return [create_choice_message(REPORT_MENU_TEXT, REPORT_OPTIONS, "Choose Report", "Reports")]


def subscription_status(user: Dict[str, Any]) -> str:
    if not has_active_subscription(user):
        return SUBSCRIPTION_EXPIRED_MESSAGE
    status = str(user.get("subscription_status") or "ACTIVE").title()
    return SUBSCRIPTION_ACTIVE_MESSAGE.format(
        status=status,
        expires=format_timestamp(user.get("subscription_expires_at")),
    )


async def _upgrade(user: Dict[str, Any]) -> Reply:
    try:
        url = await payment_service.initialize_payment(user)
    except UpstreamUnavailable as e:
        logger.warning(f"Payment link unavailable: {e.message}")
        return with_menu(PAYMENT_LINK_FAILED_MESSAGE)

    currency = (user.get("currency") or "NGN").upper()
    price = payment_service.required_price(currency)
    if price is None:
        currency, price = "NGN", settings.PLAN_PRICE_NGN

    return [create_text_message(
        PAYMENT_LINK_MESSAGE.format(
            price=format_money(price, currency),
            days=settings.SUBSCRIPTION_PERIOD_DAYS,
            url=url,
        ),
        preview_url=True,
    )]
