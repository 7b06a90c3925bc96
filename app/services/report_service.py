"""
app/services/report_service.py

Purpose: Read-only answers from the books

- Stock list with low-stock flags
- Bank balances and customer debts
- Month summary and P&L data
- Text reports (sales, expenses, P&L, inventory) for a date range
"""

from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Optional

from app.models.ledger import TransactionType, CATEGORY_COGS
from app.services import product_service, transaction_service, bank_service, customer_service
from app.core.logging import get_logger
from utils.time_utils import get_date_range, format_timestamp
from utils.whatsapp_utils import format_money

logger = get_logger(__name__)

REPORT_TYPES = ("SALES", "EXPENSES", "PNL", "INVENTORY")
MAX_LINES = 15


def normalize_report_type(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    key = value.strip().upper()
    if key in ("PROFIT", "P&L", "PNL", "PROFIT_AND_LOSS"):
        return "PNL"
    if key in ("EXPENSE", "EXPENSES"):
        return "EXPENSES"
    if key in ("SALE", "SALES"):
        return "SALES"
    if key in ("INVENTORY", "STOCK"):
        return "INVENTORY"
    return None


async def stock_report(user: Dict[str, Any]) -> str:
    products = await product_service.list_products(user["user_id"])
    if not products:
        return "📦 You have no products yet. Say something like _Add 20 shoes, cost 8k, sell 12k_."

    currency = user.get("currency")
    lines = ["📋 *Your Stock*", ""]
    for product in products[:MAX_LINES * 2]:
        flag = " ⚠️ low" if product_service.is_low_stock(product) else ""
        lines.append(
            f"• {product['name']}: {product.get('stock', 0)} @ {format_money(product.get('price') or 0, currency)}{flag}"
        )
    return "\n".join(lines)


async def bank_balances(user: Dict[str, Any]) -> str:
    banks = await bank_service.list_bank_accounts(user["user_id"])
    if not banks:
        return "🏦 You haven't added any bank accounts yet. Type *add bank* to add one."

    currency = user.get("currency")
    total = sum(bank.get("balance", 0) for bank in banks)
    lines = ["🏦 *Bank Balances*", ""]
    lines.extend(f"• {bank['name']}: {format_money(bank.get('balance', 0), currency)}" for bank in banks)
    lines.append("")
    lines.append(f"*Total:* {format_money(total, currency)}")
    return "\n".join(lines)


async def customer_balances(user: Dict[str, Any]) -> str:
    customers = await customer_service.list_customers_with_balance(user["user_id"])
    owing = [c for c in customers if c.get("balance_owed", 0) > 0]
    if not owing:
        return "📒 Nobody owes you money right now. 🎉"

    currency = user.get("currency")
    total = sum(c["balance_owed"] for c in owing)
    lines = ["📒 *Who Owes You*", ""]
    lines.extend(f"• {c['name']}: {format_money(c['balance_owed'], currency)}" for c in owing[:MAX_LINES * 2])
    lines.append("")
    lines.append(f"*Total owed:* {format_money(total, currency)}")
    return "\n".join(lines)


async def pnl_data(user_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
    """Totals and expense breakdown for a period."""
    transactions = await transaction_service.get_transactions_by_date_range(user_id, start, end)
    totals = transaction_service.summarize(transactions)

    by_category = defaultdict(float)
    for txn in transactions:
        if txn["type"] == TransactionType.EXPENSE.value and txn.get("category") != CATEGORY_COGS:
            by_category[txn.get("category") or "General"] += txn["amount"]

    totals["gross_profit"] = round(totals["income"] - totals["cogs"], 2)
    totals["expenses_by_category"] = {k: round(v, 2) for k, v in by_category.items()}
    return totals


async def financial_summary(user: Dict[str, Any], now: Optional[datetime] = None) -> str:
    start, end, label = get_date_range("this_month", now)
    data = await pnl_data(user["user_id"], start, end)
    currency = user.get("currency")
    return "\n".join([
        f"📊 *Summary for {label}*",
        "",
        f"💰 Income: {format_money(data['income'], currency)}",
        f"💸 Expenses: {format_money(data['expense'], currency)}",
        f"📈 Net: {format_money(data['net'], currency)}",
    ])


def _transaction_lines(transactions, currency) -> list:
    lines = []
    for txn in transactions[-MAX_LINES:]:
        lines.append(
            f"• {format_timestamp(txn.get('created_at'), '%d %b')}: {txn['description']} "
            f"{format_money(txn['amount'], currency)}"
        )
    if len(transactions) > MAX_LINES:
        lines.insert(0, f"_(latest {MAX_LINES} of {len(transactions)})_")
    return lines


async def generate_report(
    user: Dict[str, Any],
    report_type: str,
    date_range: Optional[str] = None,
    now: Optional[datetime] = None
) -> str:
    """
    Text report for the user.

    Args:
        user: User document
        report_type: SALES, EXPENSES, PNL or INVENTORY
        date_range: today, this_week, this_month, last_month...
        now: Reference time

    Returns:
        Formatted WhatsApp text
    """
    report_type = normalize_report_type(report_type) or "PNL"
    if report_type == "INVENTORY":
        return await stock_report(user)

    user_id = user["user_id"]
    currency = user.get("currency")
    start, end, label = get_date_range(date_range, now)
    logger.info(f"📄 Generating {report_type} report for {label}")

    if report_type == "SALES":
        sales = await transaction_service.get_transactions_by_date_range(user_id, start, end, TransactionType.INCOME)
        if not sales:
            return f"📈 No sales recorded for {label}."
        total = sum(t["amount"] for t in sales)
        return "\n".join(
            [f"📈 *Sales Report: {label}*", ""]
            + _transaction_lines(sales, currency)
            + ["", f"*Total:* {format_money(total, currency)} ({len(sales)} entries)"]
        )

    if report_type == "EXPENSES":
        expenses = await transaction_service.get_transactions_by_date_range(user_id, start, end, TransactionType.EXPENSE)
        if not expenses:
            return f"💸 No expenses recorded for {label}."
        total = sum(t["amount"] for t in expenses)
        return "\n".join(
            [f"💸 *Expense Report: {label}*", ""]
            + _transaction_lines(expenses, currency)
            + ["", f"*Total:* {format_money(total, currency)} ({len(expenses)} entries)"]
        )

    data = await pnl_data(user_id, start, end)
    lines = [
        f"📊 *Profit & Loss: {label}*",
        "",
        f"Revenue: {format_money(data['income'], currency)}",
        f"Cost of goods sold: {format_money(data['cogs'], currency)}",
        f"*Gross profit:* {format_money(data['gross_profit'], currency)}",
        "",
        "Operating expenses:",
    ]
    if data["expenses_by_category"]:
        lines.extend(
            f"• {category}: {format_money(amount, currency)}"
            for category, amount in sorted(data["expenses_by_category"].items(), key=lambda item: -item[1])
        )
    else:
        lines.append("• None")
    lines.extend(["", f"*Net profit:* {format_money(data['net'], currency)}"])
    return "\n".join(lines)
