"""
app/services/extraction_service.py

Purpose: AI field extraction for collecting flows

- One extractor per flow (sale, expense, product, customer payment, bank account)
- Strict per-flow JSON contract sent to the model
- Sales, expenses and stock additions may carry several lines; the turn
  is complete only when every line is
- Completeness decided here against a fixed required-field list,
  never taken from the model's own status
- Onboarding helpers (business name / email, currency) and the
  financial insight tip
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from app.models.conversation import Turn, ProductSnapshot, append_turn
from app.models.ledger import categorize_expense
from app.services.ai_service import get_ai_service
from app.core.config import settings
from app.core.exceptions import UpstreamUnavailable
from app.core.logging import get_logger
from utils.constants import FIELD_PROMPTS, DEFAULT_INSIGHT
from utils.validation_utils import parse_price, parse_quantity, is_valid_amount, normalize_name

logger = get_logger(__name__)


@dataclass
class ExtractionComplete:
    data: Dict[str, Any]


@dataclass
class ExtractionIncomplete:
    reply: str
    memory: List[Turn] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class ExtractionFailed:
    reason: str


ExtractionResult = Union[ExtractionComplete, ExtractionIncomplete, ExtractionFailed]

SALE_TYPES = {
    "cash": "cash",
    "bank": "bank",
    "bank transfer": "bank",
    "transfer": "bank",
    "pos": "bank",
    "card": "bank",
    "credit": "credit",
    "debt": "credit",
    "owing": "credit",
}


# ============================================================
# FIELD NORMALISATION
# ============================================================

def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    text = " ".join(str(value).split())
    return text or None


def _price(value: Any, allow_zero: bool = False) -> Optional[float]:
    number = parse_price(value)
    if not is_valid_amount(number, allow_zero=allow_zero):
        return None
    return round(number, 2)


def _signed_amount(value: Any) -> Optional[float]:
    number = parse_price(value)
    if math.isnan(number) or math.isinf(number):
        return None
    return round(number, 2)


def _count(value: Any, allow_zero: bool = False) -> Optional[int]:
    number = parse_quantity(value)
    if number is None:
        return None
    if number < 0 or (number == 0 and not allow_zero):
        return None
    return number


def _sale_type(value: Any) -> Optional[str]:
    text = _text(value)
    if not text:
        return None
    return SALE_TYPES.get(text.lower())


def _pick(data: Dict[str, Any], hints: Dict[str, Any], *keys: str) -> Any:
    """First non-empty value among ``keys`` in data, then in hints."""
    for source in (data, hints):
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _missing(fields: Dict[str, Any], required: List[str]) -> List[str]:
    return [name for name in required if fields.get(name) is None]


def _lines(data: Dict[str, Any], key: str) -> Optional[List[Dict[str, Any]]]:
    """Object entries of a list field such as ``items``, or None when absent."""
    raw = data.get(key)
    if not isinstance(raw, list):
        return None
    entries = [entry for entry in raw if isinstance(entry, dict)]
    return entries or None


def _lines_missing(lines: List[Dict[str, Any]], names: tuple) -> List[str]:
    missing: List[str] = []
    for line in lines:
        for name in names:
            if line.get(name) is None and name not in missing:
                missing.append(name)
    return missing


def _same_product(name: Optional[str], known_product: Optional[ProductSnapshot]) -> bool:
    return known_product is not None and bool(name) and normalize_name(name) == normalize_name(known_product.name)


# ============================================================
# PER-FLOW NORMALISERS
# ============================================================

SALE_LINE_FIELDS = ("product_name", "units_sold", "amount_per_unit")
EXPENSE_LINE_FIELDS = ("amount", "description", "category")
PRODUCT_LINE_FIELDS = ("product_name", "quantity_added", "cost", "price")


def _sale_line(data: Dict[str, Any], hints: Dict[str, Any],
               known_product: Optional[ProductSnapshot]) -> Dict[str, Any]:
    units = _count(_pick(data, hints, "units_sold", "quantity", "unitsSold"))
    per_unit = _price(_pick(data, hints, "amount_per_unit", "price_per_unit", "amountPerUnit", "pricePerUnit"))

    if per_unit is None and units:
        total = _price(_pick(data, hints, "total_amount", "totalAmount"))
        if total is not None:
            per_unit = round(total / units, 2)

    product_name = _text(_pick(data, hints, "product_name", "productName"))
    if known_product is not None:
        product_name = product_name or known_product.name
        if per_unit is None and known_product.price:
            per_unit = round(float(known_product.price), 2)

    return {"product_name": product_name, "units_sold": units, "amount_per_unit": per_unit}


def normalize_sale(data: Dict[str, Any], known_product: Optional[ProductSnapshot] = None,
                   hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Sale fields with one entry in ``items`` per product sold.

    A flat payload is a single item. The classifier hints and the known
    product describe one product, so with several items they only fill
    the item naming that product.
    """
    hints = hints or {}
    lines = _lines(data, "items")

    if lines is None or len(lines) == 1:
        items = [_sale_line(lines[0] if lines else data, hints, known_product)]
    else:
        items = []
        for line in lines:
            known = known_product if _same_product(_text(_pick(line, {}, "product_name", "productName")), known_product) else None
            items.append(_sale_line(line, {}, known))

    return {
        "items": items,
        "sale_type": _sale_type(_pick(data, hints, "sale_type", "saleType")),
        "customer_name": _text(_pick(data, hints, "customer_name", "customerName")),
    }


def sale_missing(fields: Dict[str, Any]) -> List[str]:
    missing = _lines_missing(fields["items"], SALE_LINE_FIELDS)
    required = ["sale_type"]
    if fields.get("sale_type") == "credit":
        required.append("customer_name")
    return missing + _missing(fields, required)


def _expense_line(data: Dict[str, Any], hints: Dict[str, Any]) -> Dict[str, Any]:
    description = _text(_pick(data, hints, "description"))
    category = _text(_pick(data, hints, "category"))
    if description and not category:
        category = categorize_expense(description)
    return {
        "amount": _price(_pick(data, hints, "amount")),
        "description": description,
        "category": category,
    }


def normalize_expense(data: Dict[str, Any], hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Expense fields with one entry in ``expenses`` per payment."""
    lines = _lines(data, "expenses")
    if lines is None:
        return {"expenses": [_expense_line(data, hints or {})]}
    return {"expenses": [_expense_line(line, {}) for line in lines]}


def _product_line(data: Dict[str, Any], hints: Dict[str, Any],
                  known_product: Optional[ProductSnapshot]) -> Dict[str, Any]:
    fields = {
        "product_name": _text(_pick(data, hints, "product_name", "productName")),
        "quantity_added": _count(_pick(data, hints, "quantity_added", "quantity", "quantityAdded", "stock"), allow_zero=True),
        "cost": _price(_pick(data, hints, "cost", "cost_price", "costPrice"), allow_zero=True),
        "price": _price(_pick(data, hints, "price", "selling_price", "sellingPrice")),
    }
    reorder = _count(_pick(data, hints, "reorder_level", "reorderLevel"), allow_zero=True)
    if reorder is not None:
        fields["reorder_level"] = reorder

    if known_product is not None:
        fields["product_name"] = fields["product_name"] or known_product.name
        if fields["cost"] is None and known_product.cost is not None:
            fields["cost"] = known_product.cost
        if fields["price"] is None and known_product.price:
            fields["price"] = known_product.price
    return fields


def normalize_product(data: Dict[str, Any], known_product: Optional[ProductSnapshot] = None,
                      hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Product fields with one entry in ``products`` per line, so a pasted
    stock list can be imported in one go.
    """
    lines = _lines(data, "products")
    if lines is None or len(lines) == 1:
        return {"products": [_product_line(lines[0] if lines else data, hints or {}, known_product)]}

    products = []
    for line in lines:
        known = known_product if _same_product(_text(_pick(line, {}, "product_name", "productName")), known_product) else None
        products.append(_product_line(line, {}, known))
    return {"products": products}


def normalize_customer_payment(data: Dict[str, Any], hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    hints = hints or {}
    return {
        "customer_name": _text(_pick(data, hints, "customer_name", "customerName")),
        "amount": _price(_pick(data, hints, "amount")),
    }


def normalize_bank_account(data: Dict[str, Any], hints: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    hints = hints or {}
    return {
        "bank_name": _text(_pick(data, hints, "bank_name", "bankName")),
        "opening_balance": _signed_amount(_pick(data, hints, "opening_balance", "openingBalance")),
    }


# ============================================================
# PROMPTS
# ============================================================

def _sale_prompt(known_product: Optional[ProductSnapshot], currency: str) -> str:
    if known_product is not None:
        product_info = f'Existing product: "{known_product.name}", selling price {known_product.price}, in stock {known_product.stock}.'
    else:
        product_info = "Product not matched yet."
    return f"""You are a bookkeeping assistant logging a sale. Currency: {currency}.
CONTEXT: {product_info}
Collect: items (one entry per product sold, each with product_name, units_sold, amount_per_unit), sale_type (cash, bank or credit), customer_name.

CRITICAL RULES (NO GUESSING):
1. Only fill a field the user actually stated. Leave anything unknown as null.
2. units_sold defaults to 1 only when the user clearly sold a single item.
3. If the product exists and the user gave no price, leave amount_per_unit null.
4. If sale_type is missing, ask "Was this Cash, Bank Transfer, or Credit?".
5. customer_name is required for a credit sale.
Return JSON: {{"status": "complete" or "incomplete", "data": {{"items": [{{"product_name": ..., "units_sold": ..., "amount_per_unit": ...}}], "sale_type": ..., "customer_name": ...}}, "reply": "Question to user..."}}"""


def _expense_prompt(currency: str) -> str:
    return f"""You are a smart bookkeeping assistant logging expenses. Currency: {currency}.
Collect: expenses (one entry per payment, each with amount, description, category).

CRITICAL RULES (NO GUESSING):
1. If an amount is missing, ask "How much was the expense?".
2. If a description is too vague (e.g. "I spent money"), ask "What was the money for?".
3. Pick a short category (Rent, Utilities, Transport, Salaries, Marketing, Supplies, General) when the description allows.
Return JSON: {{"status": "complete" or "incomplete", "data": {{"expenses": [{{"amount": ..., "description": ..., "category": ...}}]}}, "reply": "Question to user..."}}"""


def _product_prompt(known_product: Optional[ProductSnapshot], currency: str) -> str:
    if known_product is not None:
        product_info = f'Existing product "{known_product.name}": cost {known_product.cost}, sell {known_product.price}, stock {known_product.stock}.'
    else:
        product_info = "New product."
    return f"""Inventory manager adding or restocking products. Currency: {currency}.
CONTEXT: {product_info}
Collect: products (one entry per line of a stock list, each with product_name, quantity_added, cost, price, reorder_level).

CRITICAL RULES (NO GUESSING):
1. For a NEW product you MUST have product_name, cost and price.
2. If cost is missing, ask "What is the Cost Price?".
3. If price is missing, ask "What is the Selling Price?".
4. If quantity is missing, ask "How many are you adding?".
Return JSON: {{"status": "complete" or "incomplete", "data": {{"products": [{{"product_name": ..., "quantity_added": ..., "cost": ..., "price": ..., "reorder_level": ...}}]}}, "reply": "Question to user..."}}"""


def _customer_payment_prompt(currency: str) -> str:
    return f"""Log a payment received from a customer. Currency: {currency}.
Collect: customer_name, amount.
CRITICAL RULES:
1. If customer_name is missing, ask "Who made the payment?".
2. If amount is missing, ask "How much did they pay?".
Return JSON: {{"status": "complete" or "incomplete", "data": {{"customer_name": ..., "amount": ...}}, "reply": "Question to user..."}}"""


def _bank_account_prompt(currency: str) -> str:
    return f"""Add a bank account. Currency: {currency}.
Collect: bank_name, opening_balance.
CRITICAL RULES:
1. If bank_name is missing, ask "What is the bank name?".
2. If opening_balance is missing, ask "What is the current balance?".
Return JSON: {{"status": "complete" or "incomplete", "data": {{"bank_name": ..., "opening_balance": ...}}, "reply": "Question to user..."}}"""


# ============================================================
# EXTRACTION
# ============================================================

async def _extract(
    flow: str,
    system_prompt: str,
    memory: List[Turn],
    normalize: Callable[[Dict[str, Any]], Dict[str, Any]],
    missing_fields: Callable[[Dict[str, Any]], List[str]],
) -> ExtractionResult:
    """
    Runs one extraction turn.

    The model's data is normalised first; the result is complete only if
    every required field survived normalisation. When a field is missing
    the model's own question is relayed if it also reported the turn as
    incomplete, otherwise the fixed prompt for the first missing field.
    """
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": turn.role, "content": turn.content} for turn in memory)

    try:
        response = await get_ai_service().chat_json(messages, temperature=0.3)
    except UpstreamUnavailable as e:
        logger.warning(f"⚠️ {flow} extraction unavailable: {e.message}")
        return ExtractionFailed(e.message)

    data = response.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        logger.warning(f"⚠️ {flow} extraction returned non-object data")
        return ExtractionFailed("data is not an object")

    fields = normalize(data)
    missing = missing_fields(fields)
    if not missing:
        logger.info(f"🧩 {flow} extraction complete")
        return ExtractionComplete({k: v for k, v in fields.items() if v is not None})

    model_reply = _text(response.get("reply"))
    if response.get("status") == "incomplete" and model_reply:
        reply = model_reply
    else:
        reply = FIELD_PROMPTS[flow][missing[0]]

    updated_memory = append_turn(memory, "assistant", reply, settings.MEMORY_MAX_TURNS)
    logger.info(f"🧩 {flow} extraction incomplete, missing: {', '.join(missing)}")
    return ExtractionIncomplete(reply=reply, memory=updated_memory, missing=missing)


async def extract_sale(memory: List[Turn], known_product: Optional[ProductSnapshot] = None,
                       hints: Optional[Dict[str, Any]] = None, currency: str = "NGN") -> ExtractionResult:
    return await _extract(
        "sale",
        _sale_prompt(known_product, currency),
        memory,
        lambda data: normalize_sale(data, known_product, hints),
        sale_missing,
    )


async def extract_expense(memory: List[Turn], currency: str = "NGN") -> ExtractionResult:
    return await _extract(
        "expense",
        _expense_prompt(currency),
        memory,
        normalize_expense,
        lambda fields: _lines_missing(fields["expenses"], EXPENSE_LINE_FIELDS),
    )


async def extract_product(memory: List[Turn], known_product: Optional[ProductSnapshot] = None,
                          currency: str = "NGN") -> ExtractionResult:
    return await _extract(
        "product",
        _product_prompt(known_product, currency),
        memory,
        lambda data: normalize_product(data, known_product),
        lambda fields: _lines_missing(fields["products"], PRODUCT_LINE_FIELDS),
    )


async def extract_customer_payment(memory: List[Turn], currency: str = "NGN") -> ExtractionResult:
    return await _extract(
        "customer_payment",
        _customer_payment_prompt(currency),
        memory,
        normalize_customer_payment,
        lambda fields: _missing(fields, ["customer_name", "amount"]),
    )


async def extract_bank_account(memory: List[Turn], currency: str = "NGN") -> ExtractionResult:
    return await _extract(
        "bank_account",
        _bank_account_prompt(currency),
        memory,
        normalize_bank_account,
        lambda fields: _missing(fields, ["bank_name", "opening_balance"]),
    )


# ============================================================
# ONBOARDING AND INSIGHT
# ============================================================

async def extract_onboarding_details(text: str) -> Dict[str, Optional[str]]:
    """
    Second opinion on business name and email.

    Returns:
        {"business_name": ..., "email": ...}; values are None when the
        provider could not be reached or did not find them
    """
    messages = [
        {"role": "system", "content": 'Extract the business name and email address. Return JSON: {"businessName": ..., "email": ...}'},
        {"role": "user", "content": text},
    ]
    try:
        result = await get_ai_service().chat_json(messages)
    except UpstreamUnavailable:
        logger.warning("⚠️ Onboarding extraction unavailable")
        return {"business_name": None, "email": None}
    return {
        "business_name": _text(result.get("businessName")),
        "email": _text(result.get("email")),
    }


async def extract_currency(text: str) -> Optional[str]:
    """ISO 4217 code for a free-form currency answer, or None."""
    messages = [
        {"role": "system", "content": 'Extract the currency as an ISO 4217 code. Return JSON: {"currency": "ISO_CODE"}'},
        {"role": "user", "content": text},
    ]
    try:
        result = await get_ai_service().chat_json(messages)
    except UpstreamUnavailable:
        logger.warning("⚠️ Currency extraction unavailable")
        return None

    code = _text(result.get("currency"))
    if code and len(code) == 3 and code.isalpha():
        return code.upper()
    return None


async def financial_insight(pnl_data: Dict[str, Any], currency: str = "NGN") -> str:
    """One short business tip from the month's P&L; a canned tip on failure."""
    messages = [{
        "role": "system",
        "content": (
            "You are a financial advisor. Analyze this P&L data and give ONE short, friendly, "
            "actionable business tip (max 2 sentences). "
            f"Currency: {currency}. Data: {json.dumps(pnl_data, default=str)}"
        ),
    }]
    try:
        tip = await get_ai_service().chat_text(messages, temperature=0.7)
    except UpstreamUnavailable:
        return DEFAULT_INSIGHT
    return tip or DEFAULT_INSIGHT
