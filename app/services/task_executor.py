"""
app/services/task_executor.py

Purpose: Applies completed commands to the books

- Sales of one or more items (stock, income, COGS, inventory log,
  customer or bank balance)
- Expense batches, product additions and restocks, customer payments,
  bank accounts
- Transaction edits and deletions with balance and stock reversal
- Every operation returns a TaskResult; user-correctable errors become
  specific messages, anything else the generic apology

Writes for one operation run inside a MongoDB transaction when enabled.
Otherwise the guarded stock decrements go first and every later write
registers an undo step that runs if a subsequent write fails.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.db.mongo import transaction
from app.core.exceptions import ValidationError, NotFoundError, ConflictError, InsufficientStockError
from app.core.logging import get_logger, LogContext
from app.models.commands import (
    SaleCommand,
    SaleItem,
    ExpenseCommand,
    ProductCommand,
    CustomerPaymentCommand,
    BankAccountCommand,
    ReconcileCommand,
)
from app.models.ledger import (
    TransactionType,
    InventoryLogType,
    CATEGORY_SALES,
    CATEGORY_COGS,
    CATEGORY_CUSTOMER_PAYMENT,
)
from app.services import product_service, transaction_service, customer_service, bank_service
from utils.constants import TASK_FAILED_MESSAGE
from utils.validation_utils import parse_price, is_valid_amount
from utils.whatsapp_utils import format_money

logger = get_logger(__name__)


@dataclass
class TaskResult:
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)


class _Compensation:
    """Undo steps for writes already applied, run newest first."""

    def __init__(self):
        self._steps: List[Tuple[str, Callable[..., Awaitable[Any]], tuple]] = []

    def add(self, description: str, func: Callable[..., Awaitable[Any]], *args):
        self._steps.append((description, func, args))

    async def run(self):
        for description, func, args in reversed(self._steps):
            try:
                await func(*args)
            except Exception:
                logger.error(f"Compensation step failed: {description}", exc_info=True)
        self._steps.clear()


@asynccontextmanager
async def _unit_of_work():
    undo = _Compensation()
    async with transaction() as session:
        try:
            yield session, undo
        except Exception:
            if session is None:
                logger.warning("Rolling back partial task writes")
                await undo.run()
            raise


def _validate(model: type, payload) -> BaseModel:
    if isinstance(payload, model):
        return payload
    return model.model_validate(payload)


async def _execute(name: str, user: Dict[str, Any], operation: Callable[[], Awaitable[TaskResult]]) -> TaskResult:
    with LogContext(user_id=user.get("user_id"), intent=name):
        try:
            result = await operation()
            logger.info(f"✅ Task {name} completed")
            return result
        except (ValidationError, NotFoundError, ConflictError) as e:
            logger.info(f"Task {name} rejected: {e.message}")
            return TaskResult(False, f"⚠️ {e.message}")
        except PydanticValidationError as e:
            reason = e.errors()[0].get("msg", "invalid value") if e.errors() else "invalid value"
            logger.info(f"Task {name} rejected by validation: {reason}")
            return TaskResult(False, f"⚠️ I couldn't record that: {reason}.")
        except Exception:
            logger.error(f"❌ Task {name} failed", exc_info=True)
            return TaskResult(False, TASK_FAILED_MESSAGE)


async def _require_bank(user_id: str, bank_id) -> Dict[str, Any]:
    bank = await bank_service.get_bank_account(user_id, bank_id)
    if not bank:
        raise NotFoundError("That bank account no longer exists.")
    return bank


# ============================================================
# SALES
# ============================================================

async def _resolve_sale_product(user_id: str, item: SaleItem) -> Dict[str, Any]:
    product = None
    if item.product_id:
        product = await product_service.get_product_by_id(user_id, item.product_id)
    if product is None:
        product = await product_service.find_product_by_name(user_id, item.product_name)
    if product is None:
        raise NotFoundError(f"Could not find a product named \"{item.product_name}\".")
    return product


async def log_sale(user: Dict[str, Any], command) -> TaskResult:
    """
    Records a sale of one or more items.

    Every item is resolved and checked against stock before anything is
    written; an unknown product or a shortfall (summed per product when
    it appears on several lines) fails the whole sale. Each item then gets
    its guarded stock decrement, income transaction, COGS expense (when
    cost > 0) and inventory log. The customer's balance (credit) or bank
    balance moves once, by the sale total.
    """
    async def operation() -> TaskResult:
        cmd = _validate(SaleCommand, command)
        user_id = user["user_id"]
        currency = user.get("currency")

        lines: List[Tuple[SaleItem, Dict[str, Any]]] = []
        for item in cmd.items:
            lines.append((item, await _resolve_sale_product(user_id, item)))

        wanted: Dict[Any, int] = {}
        for item, product in lines:
            wanted[product["_id"]] = wanted.get(product["_id"], 0) + item.units_sold
        for _, product in lines:
            available = product.get("stock", 0)
            if wanted[product["_id"]] > available:
                raise InsufficientStockError(product["name"], available, wanted[product["_id"]])

        is_credit = cmd.sale_type == "credit"
        bank_id = None if is_credit else cmd.bank_account_id
        if bank_id:
            await _require_bank(user_id, bank_id)

        total = cmd.total_amount
        income_ids = []
        stock_after: Dict[Any, Dict[str, Any]] = {}

        async with _unit_of_work() as (session, undo):
            for item, product in lines:
                updated = await product_service.decrement_stock(user_id, product["_id"], item.units_sold, session=session)
                if updated is None:
                    # Stock changed between the check and the write
                    fresh = await product_service.get_product_by_id(user_id, product["_id"], session=session)
                    raise InsufficientStockError(product["name"], (fresh or {}).get("stock", 0), item.units_sold)
                undo.add("restore stock", product_service.increment_stock, user_id, product["_id"], item.units_sold)
                stock_after[product["_id"]] = updated

            customer = None
            if is_credit:
                customer = await customer_service.find_or_create_customer(user_id, cmd.customer_name, session=session)

            for item, product in lines:
                description = f"Sale of {item.units_sold} x {product['name']}"
                income = await transaction_service.create_transaction(
                    user_id,
                    TransactionType.INCOME,
                    item.total_amount,
                    description,
                    CATEGORY_SALES,
                    session=session,
                    sale_type=cmd.sale_type,
                    customer_name=cmd.customer_name,
                    customer_id=customer["_id"] if customer else None,
                    product_id=product["_id"],
                    bank_account_id=bank_id,
                    units=item.units_sold,
                )
                undo.add("delete income", transaction_service.delete_transaction, user_id, income["_id"])
                income_ids.append(income["_id"])

                cogs = round((product.get("cost") or 0) * item.units_sold, 2)
                if cogs > 0:
                    cost_entry = await transaction_service.create_transaction(
                        user_id,
                        TransactionType.EXPENSE,
                        cogs,
                        f"Cost of {item.units_sold} x {product['name']}",
                        CATEGORY_COGS,
                        session=session,
                        product_id=product["_id"],
                        units=item.units_sold,
                        linked_transaction_id=income["_id"],
                    )
                    undo.add("delete COGS", transaction_service.delete_transaction, user_id, cost_entry["_id"])

                log_id = await product_service.log_inventory_change(
                    user_id,
                    product["_id"],
                    InventoryLogType.SALE,
                    -item.units_sold,
                    transaction_id=income["_id"],
                    notes=description,
                    session=session,
                )
                undo.add("delete inventory log", product_service.delete_inventory_log, log_id)

            if customer:
                await customer_service.update_balance_owed(user_id, customer["_id"], total, session=session)
                undo.add("reverse customer balance", customer_service.update_balance_owed, user_id, customer["_id"], -total)
            elif bank_id:
                await bank_service.update_balance(user_id, bank_id, total, session=session)
                undo.add("reverse bank credit", bank_service.update_balance, user_id, bank_id, -total)

        sold = ", ".join(f"{item.units_sold} x {product['name']}" for item, product in lines)
        message = f"✅ Sale recorded: {sold} for {format_money(total, currency)}."
        if is_credit:
            message += f"\n📒 {cmd.customer_name} now owes you this amount."
        for product in stock_after.values():
            if product_service.is_low_stock(product):
                message += f"\n⚠️ Low stock: only {product['stock']} {product['name']} left."

        return TaskResult(True, message, {
            "transaction_id": str(income_ids[0]),
            "transaction_ids": [str(txn_id) for txn_id in income_ids],
            "remaining_stock": {product["name"]: product["stock"] for product in stock_after.values()},
            "total_amount": total,
        })

    return await _execute("log_sale", user, operation)


# ============================================================
# EXPENSES
# ============================================================

async def log_expense(user: Dict[str, Any], command) -> TaskResult:
    """One or more expenses; a chosen bank account is debited once, by the total."""
    async def operation() -> TaskResult:
        cmd = _validate(ExpenseCommand, command)
        user_id = user["user_id"]
        currency = user.get("currency")

        if cmd.bank_account_id:
            await _require_bank(user_id, cmd.bank_account_id)

        expense_ids = []
        async with _unit_of_work() as (session, undo):
            for line in cmd.expenses:
                expense = await transaction_service.create_transaction(
                    user_id,
                    TransactionType.EXPENSE,
                    line.amount,
                    line.description,
                    line.category,
                    session=session,
                    bank_account_id=cmd.bank_account_id,
                )
                undo.add("delete expense", transaction_service.delete_transaction, user_id, expense["_id"])
                expense_ids.append(expense["_id"])

            if cmd.bank_account_id:
                await bank_service.update_balance(user_id, cmd.bank_account_id, -cmd.total_amount, session=session)

        if len(cmd.expenses) == 1:
            line = cmd.expenses[0]
            message = (
                f"✅ Expense recorded: {format_money(line.amount, currency)} "
                f"for \"{line.description}\" ({line.category})."
            )
        else:
            message = f"✅ {len(cmd.expenses)} expenses recorded, {format_money(cmd.total_amount, currency)} in total:"
            for line in cmd.expenses:
                message += f"\n• {line.description}: {format_money(line.amount, currency)} ({line.category})"

        return TaskResult(True, message, {
            "transaction_id": str(expense_ids[0]),
            "transaction_ids": [str(txn_id) for txn_id in expense_ids],
        })

    return await _execute("log_expense", user, operation)


# ============================================================
# PRODUCTS
# ============================================================

async def add_product(user: Dict[str, Any], command) -> TaskResult:
    """
    Creates products or adds stock to existing ones (case-insensitive
    name match). Paying for stock from a bank account debits the summed
    cost x quantity of every line.
    """
    async def operation() -> TaskResult:
        cmd = _validate(ProductCommand, command)
        user_id = user["user_id"]
        currency = user.get("currency")

        if cmd.bank_account_id:
            await _require_bank(user_id, cmd.bank_account_id)

        results = []
        async with _unit_of_work() as (session, undo):
            for line in cmd.products:
                product, created = await product_service.upsert_product(
                    user_id,
                    line.product_name,
                    line.quantity_added,
                    line.cost,
                    line.price,
                    reorder_level=line.reorder_level,
                    session=session,
                )
                if created:
                    undo.add("delete new product", product_service.delete_product, user_id, product["_id"])
                else:
                    undo.add("remove added stock", product_service.increment_stock, user_id, product["_id"], -line.quantity_added)

                if created or line.quantity_added > 0:
                    log_type = InventoryLogType.INITIAL_STOCK if created else InventoryLogType.PURCHASE
                    log_id = await product_service.log_inventory_change(
                        user_id,
                        product["_id"],
                        log_type,
                        line.quantity_added,
                        notes=f"{log_type.value.replace('_', ' ')} of {line.quantity_added}",
                        session=session,
                    )
                    undo.add("delete inventory log", product_service.delete_inventory_log, log_id)

                results.append((product, created))

            purchase_cost = round(sum(line.purchase_cost for line in cmd.products), 2)
            if cmd.bank_account_id and purchase_cost > 0:
                await bank_service.update_balance(user_id, cmd.bank_account_id, -purchase_cost, session=session)

        if len(results) == 1:
            product, created = results[0]
            message = (
                f"📦 {product['name']} {'added' if created else 'restocked'}. You now have {product['stock']} in stock "
                f"(selling at {format_money(product['price'], currency)})."
            )
        else:
            message = f"📦 {len(results)} products updated:"
            for product, created in results:
                message += f"\n• {product['name']}: {product['stock']} in stock{' (new)' if created else ''}"

        return TaskResult(True, message, {
            "products": [
                {"product_id": str(product["_id"]), "name": product["name"], "stock": product["stock"], "created": created}
                for product, created in results
            ],
        })

    return await _execute("add_product", user, operation)


# ============================================================
# CUSTOMER PAYMENTS
# ============================================================

async def log_customer_payment(user: Dict[str, Any], command) -> TaskResult:
    async def operation() -> TaskResult:
        cmd = _validate(CustomerPaymentCommand, command)
        user_id = user["user_id"]

        if cmd.bank_account_id:
            await _require_bank(user_id, cmd.bank_account_id)

        async with _unit_of_work() as (session, undo):
            customer = await customer_service.find_or_create_customer(user_id, cmd.customer_name, session=session)

            payment = await transaction_service.create_transaction(
                user_id,
                TransactionType.INCOME,
                cmd.amount,
                f"Payment from {customer['name']}",
                CATEGORY_CUSTOMER_PAYMENT,
                session=session,
                customer_name=customer["name"],
                customer_id=customer["_id"],
                bank_account_id=cmd.bank_account_id,
            )
            undo.add("delete payment", transaction_service.delete_transaction, user_id, payment["_id"])

            customer = await customer_service.update_balance_owed(user_id, customer["_id"], -cmd.amount, session=session)
            undo.add("restore customer balance", customer_service.update_balance_owed, user_id, customer["_id"], cmd.amount)

            if cmd.bank_account_id:
                await bank_service.update_balance(user_id, cmd.bank_account_id, cmd.amount, session=session)

        currency = user.get("currency")
        balance = customer["balance_owed"]
        if balance > 0:
            status = f"They still owe {format_money(balance, currency)}."
        elif balance < 0:
            status = f"They are in credit by {format_money(-balance, currency)}."
        else:
            status = "Their balance is fully cleared. 🎉"

        return TaskResult(
            True,
            f"✅ Payment of {format_money(cmd.amount, currency)} from {customer['name']} recorded.\n{status}",
            {"transaction_id": str(payment["_id"]), "balance_owed": balance},
        )

    return await _execute("log_customer_payment", user, operation)


# ============================================================
# BANK ACCOUNTS
# ============================================================

async def add_bank_account(user: Dict[str, Any], command) -> TaskResult:
    async def operation() -> TaskResult:
        cmd = _validate(BankAccountCommand, command)
        bank = await bank_service.create_bank_account(user["user_id"], cmd.bank_name, cmd.opening_balance)
        return TaskResult(
            True,
            f"🏦 {bank['name']} added with a balance of {format_money(bank['balance'], user.get('currency'))}.",
            {"bank_account_id": str(bank["_id"])},
        )

    return await _execute("add_bank_account", user, operation)


# ============================================================
# RECONCILE (EDIT / DELETE)
# ============================================================

def _bank_effect(txn: Dict[str, Any], amount: float) -> float:
    """Signed bank movement a transaction of ``amount`` produced."""
    return amount if txn["type"] == TransactionType.INCOME.value else -amount


def _customer_effect(txn: Dict[str, Any], amount: float) -> float:
    """Signed change in balance_owed a transaction of ``amount`` produced."""
    if txn.get("category") == CATEGORY_CUSTOMER_PAYMENT:
        return -amount
    if txn.get("sale_type") == "credit":
        return amount
    return 0


async def reconcile_transaction(user: Dict[str, Any], command) -> TaskResult:
    """
    Edits one field of a transaction or deletes it.

    Amount edits re-validate through parse_price. Linked bank and customer
    balances follow the change; deleting a sale also restores its stock and
    removes the linked cost-of-goods entry.
    """
    async def operation() -> TaskResult:
        cmd = _validate(ReconcileCommand, command)
        user_id = user["user_id"]
        currency = user.get("currency")

        txn = await transaction_service.get_transaction(user_id, cmd.transaction_id)
        if not txn:
            raise NotFoundError("I couldn't find that transaction.")

        if cmd.action == "delete":
            return await _delete_transaction(user_id, txn, currency)

        if cmd.field == "amount":
            new_amount = parse_price(cmd.value)
            if not is_valid_amount(new_amount):
                raise ValidationError("Please enter a valid amount greater than zero (e.g. 5000 or 5k).")
            new_amount = round(new_amount, 2)
            delta = round(new_amount - txn["amount"], 2)

            async with _unit_of_work() as (session, undo):
                await transaction_service.update_transaction(user_id, txn["_id"], {"amount": new_amount}, session=session)
                undo.add("restore amount", transaction_service.update_transaction, user_id, txn["_id"], {"amount": txn["amount"]})

                if txn.get("bank_account_id") and delta:
                    await bank_service.update_balance(user_id, txn["bank_account_id"], _bank_effect(txn, delta), session=session)
                    undo.add("reverse bank delta", bank_service.update_balance, user_id, txn["bank_account_id"], -_bank_effect(txn, delta))

                customer_delta = _customer_effect(txn, delta)
                if txn.get("customer_id") and customer_delta:
                    await customer_service.update_balance_owed(user_id, txn["customer_id"], customer_delta, session=session)

            return TaskResult(
                True,
                f"✏️ Amount updated from {format_money(txn['amount'], currency)} to {format_money(new_amount, currency)}.",
                {"transaction_id": str(txn["_id"])},
            )

        new_value = str(cmd.value).strip()
        if not new_value:
            raise ValidationError(f"The new {cmd.field} can't be empty.")
        await transaction_service.update_transaction(user_id, txn["_id"], {cmd.field: new_value})
        return TaskResult(
            True,
            f"✏️ {cmd.field.capitalize()} updated to \"{new_value}\".",
            {"transaction_id": str(txn["_id"])},
        )

    return await _execute("reconcile_transaction", user, operation)


async def _delete_transaction(user_id: str, txn: Dict[str, Any], currency) -> TaskResult:
    """
    Removes a transaction and everything it moved.

    The deleted documents are kept so an undo can put them back with their
    original ids. A sale also loses its cost-of-goods entry and returns its
    units to stock with an adjustment log.
    """
    is_stocked_sale = bool(txn.get("category") == CATEGORY_SALES and txn.get("product_id") and txn.get("units"))
    linked = await transaction_service.get_linked_transactions(user_id, txn["_id"]) if is_stocked_sale else []

    async with _unit_of_work() as (session, undo):
        deleted = await transaction_service.delete_transaction(user_id, txn["_id"], session=session)
        if not deleted:
            raise NotFoundError("I couldn't find that transaction.")
        undo.add("restore transaction", transaction_service.restore_transaction, txn)

        if linked:
            await transaction_service.delete_linked_transactions(user_id, txn["_id"], session=session)
            for document in linked:
                undo.add("restore linked entry", transaction_service.restore_transaction, document)

        if txn.get("bank_account_id"):
            reversal = -_bank_effect(txn, txn["amount"])
            await bank_service.update_balance(user_id, txn["bank_account_id"], reversal, session=session)
            undo.add("restore bank", bank_service.update_balance, user_id, txn["bank_account_id"], -reversal)

        customer_reversal = -_customer_effect(txn, txn["amount"])
        if txn.get("customer_id") and customer_reversal:
            await customer_service.update_balance_owed(user_id, txn["customer_id"], customer_reversal, session=session)
            undo.add("restore customer", customer_service.update_balance_owed, user_id, txn["customer_id"], -customer_reversal)

        if is_stocked_sale:
            await product_service.increment_stock(user_id, txn["product_id"], txn["units"], session=session)
            undo.add("remove restored stock", product_service.increment_stock, user_id, txn["product_id"], -txn["units"])
            log_id = await product_service.log_inventory_change(
                user_id,
                txn["product_id"],
                InventoryLogType.ADJUSTMENT,
                txn["units"],
                transaction_id=txn["_id"],
                notes="Sale deleted",
                session=session,
            )
            undo.add("delete adjustment log", product_service.delete_inventory_log, log_id)

    return TaskResult(
        True,
        f"🗑️ Deleted: {txn['description']} ({format_money(txn['amount'], currency)}).",
        {"transaction_id": str(txn["_id"])},
    )


# ============================================================
# DISPATCH
# ============================================================

COMMAND_HANDLERS = {
    "sale": log_sale,
    "expense": log_expense,
    "purchase": add_product,
    "product": add_product,
    "customer_payment": log_customer_payment,
    "bank_account": add_bank_account,
    "reconcile": reconcile_transaction,
}


async def execute_command(kind: str, user: Dict[str, Any], command) -> TaskResult:
    """Runs the executor operation registered for ``kind``."""
    handler = COMMAND_HANDLERS.get(kind)
    if handler is None:
        logger.error(f"No executor for command kind {kind!r}")
        return TaskResult(False, TASK_FAILED_MESSAGE)
    return await handler(user, command)
