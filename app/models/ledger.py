"""
app/models/ledger.py

Purpose: Bookkeeping record types

- Transactions (income / expense)
- Inventory log entries (append-only)
- Idempotency ledger records for webhooks and inbound messages
"""

from enum import Enum


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class InventoryLogType(str, Enum):
    INITIAL_STOCK = "initial_stock"
    PURCHASE = "purchase"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


class LedgerKind(str, Enum):
    MESSAGE = "message"
    PAYMENT = "payment"


class LedgerStatus(str, Enum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    INVALID_AMOUNT = "INVALID_AMOUNT"


# Transaction categories written by the task executor
CATEGORY_SALES = "Sales"
CATEGORY_COGS = "Cost of Goods Sold"
CATEGORY_CUSTOMER_PAYMENT = "Customer Payment"
DEFAULT_EXPENSE_CATEGORY = "General"

EXPENSE_CATEGORIES = {
    "Rent": ("rent", "shop rent", "lease"),
    "Utilities": ("light", "nepa", "electricity", "water", "power", "diesel", "fuel", "generator"),
    "Transport": ("transport", "fare", "uber", "bolt", "delivery", "logistics", "okada", "keke"),
    "Salaries": ("salary", "salaries", "wage", "staff", "worker"),
    "Marketing": ("advert", "ads", "marketing", "promo", "flyer"),
    "Supplies": ("supplies", "packaging", "nylon", "bags", "stationery"),
    "Communication": ("airtime", "data", "internet", "phone"),
    "Repairs": ("repair", "maintenance", "fix"),
}


def categorize_expense(description: str) -> str:
    """Keyword-based category for an expense description."""
    text = (description or "").lower()
    for category, keywords in EXPENSE_CATEGORIES.items():
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_EXPENSE_CATEGORY
