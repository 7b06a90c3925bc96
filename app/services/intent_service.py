"""
app/services/intent_service.py

Purpose: Intent classification for idle messages

- Fast-path keyword rules first (no AI cost)
- AI classifier with a single provider fallback
- Keyword fallback table when every provider fails

Classification never raises: the worst case is GENERAL_CONVERSATION with
an apology reply.
"""

import math
from datetime import date
from typing import Any, Dict, Optional

from app.flow.intents import Intent, IntentResult, match_fast_path, match_fallback, parse_intent
from app.services.ai_service import get_ai_service
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger
from utils.validation_utils import parse_price, parse_quantity

logger = get_logger(__name__)

PRICE_FIELDS = ("amount", "totalAmount", "amountPerUnit", "openingBalance")
QUANTITY_FIELDS = ("unitsSold",)


def build_intent_prompt(today: str) -> str:
    return f"""You are an intent classifier for a small-business bookkeeping assistant. Respond ONLY with JSON.
TODAY: {today}

INTENTS:
- {Intent.LOG_SALE.value}: "Sold 5 rice", "Credit sale to John"
- {Intent.LOG_EXPENSE.value}: "Bought fuel 500", "Paid shop rent"
- {Intent.ADD_PRODUCT.value}: "Restock rice", "New item indomie"
- {Intent.ADD_BANK_ACCOUNT.value}: "Add bank", "Add new bank", "New account"
- {Intent.LOG_CUSTOMER_PAYMENT.value}: "John paid me 5000", "Payment from Ada for her debt"
- {Intent.CHECK_STOCK.value}: "What's in stock?", "How many rice left?"
- {Intent.GENERATE_REPORT.value}: "Sales report", "P&L", "Profit and Loss", "Expense statement"
- {Intent.GET_FINANCIAL_INSIGHT.value}: "Give me a business tip", "Analyze my profit"
- {Intent.GET_FINANCIAL_SUMMARY.value}: "Total sales today", "How much did I spend?"
- {Intent.CHECK_BANK_BALANCE.value}: "Check my balance", "How much in Opay?"
- {Intent.GET_CUSTOMER_BALANCES.value}: "Who owes me?", "List debtors"
- {Intent.RECONCILE_TRANSACTION.value}: "Edit last sale", "Delete transaction", "I made a mistake"
- {Intent.CHECK_SUBSCRIPTION.value}: "My plan", "When do I expire?"
- {Intent.UPGRADE_SUBSCRIPTION.value}: "Renew", "Upgrade to premium", "Extend plan"
- {Intent.SHOW_MAIN_MENU.value}: "Menu", "Options"
- {Intent.GENERAL_CONVERSATION.value}: "Thanks", "Good morning"

CRITICAL RULES:
1. "Add Bank" = {Intent.ADD_BANK_ACCOUNT.value}. NEVER map this to {Intent.ADD_PRODUCT.value}.
2. A customer paying off what they owe = {Intent.LOG_CUSTOMER_PAYMENT.value}, not {Intent.LOG_EXPENSE.value}.
3. {Intent.GENERATE_REPORT.value} context MUST include "reportType" (SALES, EXPENSES, PNL, INVENTORY) and "dateRange" (today, this_week, this_month, last_month) when stated.
4. Put any details you can see in context: productName, unitsSold, amountPerUnit, totalAmount, saleType, customerName, amount, description, bankName, openingBalance.
5. For {Intent.GENERAL_CONVERSATION.value} put a short friendly reply in context.generatedReply.

Return JSON format: {{"intent": "...", "context": {{...}}}}"""


def normalize_context(context: Any) -> Dict[str, Any]:
    """
    Normalises numeric hints from the classifier.

    Price-like fields go through parse_price, unit counts through
    parse_quantity. Values that do not parse are dropped rather than
    coerced to zero.
    """
    if not isinstance(context, dict):
        return {}

    normalized = dict(context)
    for key in PRICE_FIELDS:
        if key in normalized:
            value = parse_price(normalized[key])
            if math.isnan(value) or math.isinf(value):
                normalized.pop(key)
            else:
                normalized[key] = value

    for key in QUANTITY_FIELDS:
        if key in normalized:
            value = parse_quantity(normalized[key])
            if value is None or value <= 0:
                normalized.pop(key)
            else:
                normalized[key] = value

    return normalized


async def classify_intent(text: str, today: Optional[date] = None) -> IntentResult:
    """
    Classifies an idle-state message.

    Args:
        text: Raw user text
        today: Date given to the classifier for relative phrases

    Returns:
        IntentResult with source "rules", "ai" or "fallback"
    """
    fast = match_fast_path(text)
    if fast is not None:
        logger.debug(f"Fast-path intent: {fast.intent.value}")
        return fast

    today_str = (today or date.today()).isoformat()
    messages = [
        {"role": "system", "content": build_intent_prompt(today_str)},
        {"role": "user", "content": text},
    ]

    try:
        result = await get_ai_service().chat_json(messages, temperature=0.1)
    except UpstreamUnavailable:
        logger.warning("⚠️ Intent classifier unavailable, using keyword fallback")
        return match_fallback(text)

    intent = parse_intent(result.get("intent"))
    if intent is None:
        logger.warning(f"⚠️ Classifier returned unknown intent: {result.get('intent')!r}")
        return match_fallback(text)

    context = normalize_context(result.get("context"))
    logger.info(f"🧭 Intent classified: {intent.value}")
    return IntentResult(intent, context, source="ai")
