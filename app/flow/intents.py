"""
app/flow/intents.py

Purpose: Intent vocabulary and keyword rules

- Intent enum shared by the classifier and the idle handler
- Fast-path rules checked before any AI call
- Fallback keyword table used when the AI providers are unavailable
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from utils.constants import GREETING_REPLY, UNKNOWN_COMMAND_REPLY, AI_UNAVAILABLE_REPLY


class Intent(str, Enum):
    LOG_SALE = "LOG_SALE"
    LOG_EXPENSE = "LOG_EXPENSE"
    ADD_PRODUCT = "ADD_PRODUCT"
    ADD_BANK_ACCOUNT = "ADD_BANK_ACCOUNT"
    LOG_CUSTOMER_PAYMENT = "LOG_CUSTOMER_PAYMENT"
    CHECK_STOCK = "CHECK_STOCK"
    GENERATE_REPORT = "GENERATE_REPORT"
    GET_FINANCIAL_SUMMARY = "GET_FINANCIAL_SUMMARY"
    GET_FINANCIAL_INSIGHT = "GET_FINANCIAL_INSIGHT"
    CHECK_BANK_BALANCE = "CHECK_BANK_BALANCE"
    GET_CUSTOMER_BALANCES = "GET_CUSTOMER_BALANCES"
    RECONCILE_TRANSACTION = "RECONCILE_TRANSACTION"
    UPGRADE_SUBSCRIPTION = "UPGRADE_SUBSCRIPTION"
    CHECK_SUBSCRIPTION = "CHECK_SUBSCRIPTION"
    SHOW_MAIN_MENU = "SHOW_MAIN_MENU"
    GENERAL_CONVERSATION = "GENERAL_CONVERSATION"


# Intents that start a multi-turn collecting flow
FLOW_INTENTS = frozenset({
    Intent.LOG_SALE,
    Intent.LOG_EXPENSE,
    Intent.ADD_PRODUCT,
    Intent.ADD_BANK_ACCOUNT,
    Intent.LOG_CUSTOMER_PAYMENT,
})


@dataclass
class IntentResult:
    intent: Intent
    context: Dict[str, Any] = field(default_factory=dict)
    source: str = "rules"

    @property
    def reply(self) -> Optional[str]:
        return self.context.get("generatedReply")


def parse_intent(value: Any) -> Optional[Intent]:
    """Maps a classifier string onto the enum, None when unknown."""
    if not isinstance(value, str):
        return None
    try:
        return Intent(value.strip().upper())
    except ValueError:
        return None


MENU_WORDS = ("menu", "options", "home", "start", "cancel", "stop", "exit")
GREETINGS = ("hi", "hello", "hey")
RECONCILE_WORDS = ("edit", "delete", "correct", "change", "remove", "mistake", "undo")
CUSTOMER_PAYMENT_PHRASES = ("paid me", "payment from", "received payment", "settled their", "cleared their debt")

BRAND_NAME = "ledgerchat"


def _any(text: str, words) -> bool:
    return any(word in text for word in words)


def match_fast_path(text: str) -> Optional[IntentResult]:
    """
    Deterministic rules checked before calling the AI.

    Order matters: earlier rules win.

    Returns:
        IntentResult, or None when the text needs the classifier
    """
    t = (text or "").strip().lower()
    if not t:
        return None

    if "add bank" in t or "add new bank" in t or t == "add account":
        return IntentResult(Intent.ADD_BANK_ACCOUNT)

    if t.startswith("!") or t.startswith("/"):
        return IntentResult(Intent.GENERAL_CONVERSATION, {"generatedReply": UNKNOWN_COMMAND_REPLY})

    if t in MENU_WORDS:
        return IntentResult(Intent.SHOW_MAIN_MENU)

    if t in GREETINGS:
        return IntentResult(Intent.GENERAL_CONVERSATION, {"generatedReply": GREETING_REPLY})

    if ("pay" in t or "renew" in t) and ("subscription" in t or BRAND_NAME in t):
        return IntentResult(Intent.UPGRADE_SUBSCRIPTION)

    if "balance" in t and len(t) < 20:
        return IntentResult(Intent.CHECK_BANK_BALANCE)

    if "subscription" in t or t in ("my plan", "check status"):
        return IntentResult(Intent.CHECK_SUBSCRIPTION)

    if "sales report" in t:
        return IntentResult(Intent.GENERATE_REPORT, {"reportType": "SALES"})
    if "expense report" in t:
        return IntentResult(Intent.GENERATE_REPORT, {"reportType": "EXPENSES"})
    if _any(t, ("p&l", "profit", "loss")):
        return IntentResult(Intent.GENERATE_REPORT, {"reportType": "PNL"})
    if "inventory report" in t:
        return IntentResult(Intent.GENERATE_REPORT, {"reportType": "INVENTORY"})
    if "cogs" in t or "cost of sales" in t:
        return IntentResult(Intent.GENERATE_REPORT, {"reportType": "PNL"})

    if _any(t, RECONCILE_WORDS):
        return IntentResult(Intent.RECONCILE_TRANSACTION)

    if "add product" in t or "restock" in t:
        return IntentResult(Intent.ADD_PRODUCT)

    if _any(t, CUSTOMER_PAYMENT_PHRASES):
        return IntentResult(Intent.LOG_CUSTOMER_PAYMENT)

    return None


# (keywords, intent) checked in order when the AI cannot be reached
FALLBACK_RULES = (
    (("add bank", "new bank"), Intent.ADD_BANK_ACCOUNT),
    (("renew", "upgrade plan", "buy premium"), Intent.UPGRADE_SUBSCRIPTION),
    (("subscription", "my plan"), Intent.CHECK_SUBSCRIPTION),
    (("insight", "tip", "advice"), Intent.GET_FINANCIAL_INSIGHT),
    (CUSTOMER_PAYMENT_PHRASES, Intent.LOG_CUSTOMER_PAYMENT),
    (("sold", "sale", "sell"), Intent.LOG_SALE),
    (("bought", "expense", "spent", "paid"), Intent.LOG_EXPENSE),
    (("stock", "inventory", "count"), Intent.CHECK_STOCK),
    (("menu", "start", "hi", "options"), Intent.SHOW_MAIN_MENU),
    (("balance", "how much in"), Intent.CHECK_BANK_BALANCE),
    (("owe", "debt", "debtor"), Intent.GET_CUSTOMER_BALANCES),
    (("report", "pdf", "p&l", "statement"), Intent.GENERATE_REPORT),
    (("edit", "delete", "correct", "change", "modify"), Intent.RECONCILE_TRANSACTION),
)


def match_fallback(text: str) -> IntentResult:
    """
    Keyword classification used when every AI provider failed.

    Never raises; unmatched text becomes GENERAL_CONVERSATION with an
    apology reply.
    """
    t = (text or "").strip().lower()

    if "pay" in t and "subscription" in t:
        return IntentResult(Intent.UPGRADE_SUBSCRIPTION, source="fallback")

    for keywords, intent in FALLBACK_RULES:
        if _any(t, keywords):
            return IntentResult(intent, source="fallback")

    return IntentResult(
        Intent.GENERAL_CONVERSATION,
        {"generatedReply": AI_UNAVAILABLE_REPLY},
        source="fallback",
    )
