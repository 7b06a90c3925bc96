from unittest.mock import AsyncMock, patch

import pytest

from app.db.mongo import (
    get_products_collection,
    get_transactions_collection,
    get_customers_collection,
    get_bank_accounts_collection,
    get_inventory_logs_collection,
)
from app.models.ledger import CATEGORY_COGS, CATEGORY_SALES
from app.services import product_service, bank_service
from app.services.task_executor import (
    log_sale,
    log_expense,
    add_product,
    log_customer_payment,
    add_bank_account,
    reconcile_transaction,
    execute_command,
)
from utils.constants import TASK_FAILED_MESSAGE
from tests.helpers import USER_ID


@pytest.fixture
async def rice(user):
    product, _ = await product_service.upsert_product(USER_ID, "Rice", 10, 30000, 45000)
    return product


@pytest.fixture
async def gtbank(user):
    return await bank_service.create_bank_account(USER_ID, "GTBank", 100000)


async def test_cash_sale_updates_stock_and_books(user, rice):
    result = await log_sale(user, {
        "product_name": "rice",
        "units_sold": 2,
        "amount_per_unit": 45000,
        "sale_type": "cash",
    })

    assert result.success
    assert "2 x Rice" in result.message
    assert result.data["remaining_stock"] == {"Rice": 8}

    product = await get_products_collection().find_one({"_id": rice["_id"]})
    assert product["stock"] == 8

    transactions = await get_transactions_collection().find({"user_id": USER_ID}).to_list(length=10)
    income = [t for t in transactions if t["category"] == CATEGORY_SALES]
    cogs = [t for t in transactions if t["category"] == CATEGORY_COGS]
    assert income[0]["amount"] == 90000
    assert cogs[0]["amount"] == 60000
    assert cogs[0]["linked_transaction_id"] == income[0]["_id"]

    logs = await get_inventory_logs_collection().find({"type": "sale"}).to_list(length=10)
    assert logs[0]["quantity_change"] == -2


async def test_sale_with_insufficient_stock_writes_nothing(user, rice):
    result = await log_sale(user, {
        "product_name": "Rice",
        "units_sold": 11,
        "amount_per_unit": 45000,
        "sale_type": "cash",
    })

    assert not result.success
    assert "You have 10 units, but tried to sell 11" in result.message
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10
    assert await get_transactions_collection().count_documents({}) == 0


async def test_sale_of_unknown_product_is_rejected(user):
    result = await log_sale(user, {
        "product_name": "Beans",
        "units_sold": 1,
        "amount_per_unit": 1000,
        "sale_type": "cash",
    })

    assert not result.success
    assert "Beans" in result.message


async def test_credit_sale_increases_customer_balance(user, rice):
    result = await log_sale(user, {
        "product_name": "Rice",
        "units_sold": 1,
        "amount_per_unit": 45000,
        "sale_type": "credit",
        "customer_name": "Chidi",
    })

    assert result.success
    assert "Chidi now owes you" in result.message
    customer = await get_customers_collection().find_one({"name_key": "chidi"})
    assert customer["balance_owed"] == 45000


async def test_credit_sale_without_customer_is_a_validation_error(user, rice):
    result = await log_sale(user, {
        "product_name": "Rice",
        "units_sold": 1,
        "amount_per_unit": 45000,
        "sale_type": "credit",
    })

    assert not result.success
    assert result.message.startswith("⚠️")
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10


async def test_bank_sale_credits_the_account(user, rice, gtbank):
    result = await log_sale(user, {
        "product_name": "Rice",
        "units_sold": 1,
        "amount_per_unit": 45000,
        "sale_type": "bank",
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    bank = await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]})
    assert bank["balance"] == 145000


async def test_low_stock_warning(user):
    await product_service.upsert_product(USER_ID, "Soap", 6, 200, 300)
    result = await log_sale(user, {
        "product_name": "Soap",
        "units_sold": 2,
        "amount_per_unit": 300,
        "sale_type": "cash",
    })

    assert result.success
    assert "Low stock" in result.message


async def test_multi_item_sale_books_each_line(user, rice, gtbank):
    beans, _ = await product_service.upsert_product(USER_ID, "Beans", 20, 1000, 1500)

    result = await log_sale(user, {
        "items": [
            {"product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000},
            {"product_name": "beans", "units_sold": 4, "amount_per_unit": 1500},
        ],
        "sale_type": "bank",
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    assert "2 x Rice, 4 x Beans" in result.message
    assert result.data["total_amount"] == 96000
    assert len(result.data["transaction_ids"]) == 2
    assert result.data["remaining_stock"] == {"Rice": 8, "Beans": 16}

    income = await get_transactions_collection().find({"category": CATEGORY_SALES}).to_list(length=10)
    assert sorted(t["amount"] for t in income) == [6000, 90000]
    cogs = await get_transactions_collection().find({"category": CATEGORY_COGS}).to_list(length=10)
    assert sorted(t["amount"] for t in cogs) == [4000, 60000]
    assert await get_inventory_logs_collection().count_documents({"type": "sale"}) == 2
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 196000


async def test_multi_item_sale_checks_every_item_before_writing(user, rice):
    await product_service.upsert_product(USER_ID, "Beans", 1, 1000, 1500)

    result = await log_sale(user, {
        "items": [
            {"product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000},
            {"product_name": "Beans", "units_sold": 3, "amount_per_unit": 1500},
        ],
        "sale_type": "cash",
    })

    assert not result.success
    assert "You have 1 units, but tried to sell 3" in result.message
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10
    assert await get_transactions_collection().count_documents({}) == 0
    assert await get_inventory_logs_collection().count_documents({"type": "sale"}) == 0


async def test_repeated_product_is_checked_against_its_total(user, rice):
    result = await log_sale(user, {
        "items": [
            {"product_name": "Rice", "units_sold": 6, "amount_per_unit": 45000},
            {"product_name": "RICE", "units_sold": 6, "amount_per_unit": 44000},
        ],
        "sale_type": "cash",
    })

    assert not result.success
    assert "tried to sell 12" in result.message
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10


async def test_multi_item_sale_with_unknown_item_writes_nothing(user, rice):
    result = await log_sale(user, {
        "items": [
            {"product_name": "Rice", "units_sold": 1, "amount_per_unit": 45000},
            {"product_name": "Garri", "units_sold": 1, "amount_per_unit": 900},
        ],
        "sale_type": "cash",
    })

    assert not result.success
    assert "Garri" in result.message
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10


async def test_credit_sale_of_several_items_owes_the_total(user, rice):
    await product_service.upsert_product(USER_ID, "Beans", 5, 1000, 1500)

    await log_sale(user, {
        "items": [
            {"product_name": "Rice", "units_sold": 1, "amount_per_unit": 45000},
            {"product_name": "Beans", "units_sold": 2, "amount_per_unit": 1500},
        ],
        "sale_type": "credit",
        "customer_name": "Ngozi",
    })

    customer = await get_customers_collection().find_one({"name_key": "ngozi"})
    assert customer["balance_owed"] == 48000


async def test_failed_sale_write_restores_stock(user, rice):
    with patch("app.services.product_service.log_inventory_change", AsyncMock(side_effect=RuntimeError("disk full"))):
        result = await log_sale(user, {
            "product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000, "sale_type": "cash",
        })

    assert result.message == TASK_FAILED_MESSAGE
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10
    assert await get_transactions_collection().count_documents({}) == 0


async def test_expense_debits_bank(user, gtbank):
    result = await log_expense(user, {
        "amount": 5000,
        "description": "Transport to market",
        "category": "Transport",
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    assert "Transport" in result.message
    bank = await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]})
    assert bank["balance"] == 95000


async def test_expense_with_missing_bank_is_rejected(user):
    result = await log_expense(user, {
        "amount": 5000,
        "description": "Rent",
        "bank_account_id": "65f0c0ffee0000000000beef",
    })

    assert not result.success
    assert "no longer exists" in result.message
    assert await get_transactions_collection().count_documents({}) == 0


async def test_expense_batch_debits_bank_once(user, gtbank):
    result = await log_expense(user, {
        "expenses": [
            {"amount": 20000, "description": "Shop rent", "category": "Rent"},
            {"amount": 3500, "description": "Generator fuel", "category": "Utilities"},
        ],
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    assert result.message.startswith("✅ 2 expenses recorded")
    assert "• Generator fuel" in result.message
    assert len(result.data["transaction_ids"]) == 2
    assert await get_transactions_collection().count_documents({"bank_account_id": str(gtbank["_id"])}) == 2
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 76500


async def test_invalid_line_rejects_the_whole_batch(user):
    result = await log_expense(user, {
        "expenses": [
            {"amount": 20000, "description": "Shop rent"},
            {"amount": -5, "description": "Refund"},
        ],
    })

    assert not result.success
    assert await get_transactions_collection().count_documents({}) == 0


async def test_add_product_creates_then_restocks(user):
    first = await add_product(user, {"product_name": "Indomie", "quantity_added": 20, "cost": 150, "price": 200})
    assert first.success and first.data["products"][0]["created"]

    second = await add_product(user, {"product_name": "INDOMIE", "quantity_added": 5, "cost": 160, "price": 220})
    assert second.success and not second.data["products"][0]["created"]
    assert second.data["products"][0]["stock"] == 25

    products = await get_products_collection().find({"user_id": USER_ID}).to_list(length=10)
    assert len(products) == 1
    assert products[0]["cost"] == 160 and products[0]["price"] == 220

    log_types = {log["type"] for log in await get_inventory_logs_collection().find({}).to_list(length=10)}
    assert log_types == {"initial_stock", "purchase"}


async def test_stock_purchase_from_bank_debits_cost(user, gtbank):
    result = await add_product(user, {
        "product_name": "Indomie",
        "quantity_added": 10,
        "cost": 150,
        "price": 200,
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    bank = await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]})
    assert bank["balance"] == 98500
    assert await get_transactions_collection().count_documents({}) == 0


async def test_stock_list_import(user, gtbank):
    await product_service.upsert_product(USER_ID, "Soap", 4, 100, 150)

    result = await add_product(user, {
        "products": [
            {"product_name": "soap", "quantity_added": 10, "cost": 110, "price": 160},
            {"product_name": "Omo", "quantity_added": 5, "cost": 1000, "price": 1200, "reorder_level": 2},
        ],
        "bank_account_id": str(gtbank["_id"]),
    })

    assert result.success
    assert result.message.startswith("📦 2 products updated")
    lines = {line["name"]: line for line in result.data["products"]}
    assert lines["Soap"]["stock"] == 14 and not lines["Soap"]["created"]
    assert lines["Omo"]["stock"] == 5 and lines["Omo"]["created"]
    assert (await get_products_collection().find_one({"name_key": "omo"}))["reorder_level"] == 2
    # 10 x 110 + 5 x 1000
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 93900


async def test_failed_import_removes_new_products_and_added_stock(user, gtbank):
    await product_service.upsert_product(USER_ID, "Soap", 4, 100, 150)

    with patch("app.services.bank_service.update_balance", AsyncMock(side_effect=RuntimeError("timeout"))):
        result = await add_product(user, {
            "products": [
                {"product_name": "Soap", "quantity_added": 10, "cost": 110, "price": 160},
                {"product_name": "Omo", "quantity_added": 5, "cost": 1000, "price": 1200},
            ],
            "bank_account_id": str(gtbank["_id"]),
        })

    assert result.message == TASK_FAILED_MESSAGE
    assert (await get_products_collection().find_one({"name_key": "soap"}))["stock"] == 4
    assert await get_products_collection().find_one({"name_key": "omo"}) is None
    assert await get_inventory_logs_collection().count_documents({}) == 0


async def test_customer_payment_reduces_balance_and_allows_credit(user, gtbank):
    await product_service.upsert_product(USER_ID, "Rice", 5, 100, 1000)
    await log_sale(user, {
        "product_name": "Rice", "units_sold": 2, "amount_per_unit": 1000,
        "sale_type": "credit", "customer_name": "chidi",
    })

    partial = await log_customer_payment(user, {"customer_name": "Chidi", "amount": 1500})
    assert partial.success
    assert "still owe" in partial.message
    assert partial.data["balance_owed"] == 500

    over = await log_customer_payment(user, {
        "customer_name": "CHIDI", "amount": 1000, "bank_account_id": str(gtbank["_id"]),
    })
    assert over.success
    assert "in credit" in over.message
    assert over.data["balance_owed"] == -500

    bank = await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]})
    assert bank["balance"] == 101000


async def test_duplicate_bank_name_is_rejected(user, gtbank):
    result = await add_bank_account(user, {"bank_name": "gtbank", "opening_balance": 0})

    assert not result.success
    assert "already exists" in result.message


async def test_add_bank_account(user):
    result = await add_bank_account(user, {"bank_name": "Opay", "opening_balance": -2000})

    assert result.success
    bank = await get_bank_accounts_collection().find_one({"name_key": "opay"})
    assert bank["balance"] == -2000


async def test_edit_amount_moves_bank_balance(user, gtbank):
    expense = await log_expense(user, {
        "amount": 5000, "description": "Fuel", "category": "Utilities",
        "bank_account_id": str(gtbank["_id"]),
    })

    result = await reconcile_transaction(user, {
        "transaction_id": expense.data["transaction_id"],
        "action": "edit",
        "field": "amount",
        "value": "7k",
    })

    assert result.success
    txn = await get_transactions_collection().find_one({})
    assert txn["amount"] == 7000
    assert "edited_at" in txn
    bank = await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]})
    assert bank["balance"] == 93000


async def test_edit_amount_rejects_invalid_value(user, gtbank):
    expense = await log_expense(user, {"amount": 5000, "description": "Fuel"})

    result = await reconcile_transaction(user, {
        "transaction_id": expense.data["transaction_id"],
        "action": "edit",
        "field": "amount",
        "value": "a lot",
    })

    assert not result.success
    assert (await get_transactions_collection().find_one({}))["amount"] == 5000


async def test_edit_description(user):
    expense = await log_expense(user, {"amount": 5000, "description": "Fuel"})

    result = await reconcile_transaction(user, {
        "transaction_id": expense.data["transaction_id"],
        "action": "edit",
        "field": "description",
        "value": "Generator diesel",
    })

    assert result.success
    assert (await get_transactions_collection().find_one({}))["description"] == "Generator diesel"


async def test_deleting_a_sale_restores_stock_and_removes_cogs(user, rice, gtbank):
    sale = await log_sale(user, {
        "product_name": "Rice", "units_sold": 3, "amount_per_unit": 45000,
        "sale_type": "bank", "bank_account_id": str(gtbank["_id"]),
    })

    result = await reconcile_transaction(user, {
        "transaction_id": sale.data["transaction_id"],
        "action": "delete",
    })

    assert result.success
    assert await get_transactions_collection().count_documents({}) == 0
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 10
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 100000
    assert await get_inventory_logs_collection().count_documents({"type": "adjustment"}) == 1


async def test_deleting_a_credit_sale_clears_the_debt(user, rice):
    sale = await log_sale(user, {
        "product_name": "Rice", "units_sold": 1, "amount_per_unit": 45000,
        "sale_type": "credit", "customer_name": "Chidi",
    })

    await reconcile_transaction(user, {"transaction_id": sale.data["transaction_id"], "action": "delete"})

    customer = await get_customers_collection().find_one({"name_key": "chidi"})
    assert customer["balance_owed"] == 0


async def test_failed_edit_puts_amount_and_bank_back(user, gtbank):
    payment = await log_customer_payment(user, {
        "customer_name": "Chidi", "amount": 5000, "bank_account_id": str(gtbank["_id"]),
    })

    with patch("app.services.customer_service.update_balance_owed", AsyncMock(side_effect=RuntimeError("timeout"))):
        result = await reconcile_transaction(user, {
            "transaction_id": payment.data["transaction_id"],
            "action": "edit",
            "field": "amount",
            "value": 8000,
        })

    assert result.message == TASK_FAILED_MESSAGE
    assert (await get_transactions_collection().find_one({}))["amount"] == 5000
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 105000
    assert (await get_customers_collection().find_one({"name_key": "chidi"}))["balance_owed"] == -5000


async def test_failed_delete_puts_the_sale_back(user, rice, gtbank):
    sale = await log_sale(user, {
        "product_name": "Rice", "units_sold": 3, "amount_per_unit": 45000,
        "sale_type": "bank", "bank_account_id": str(gtbank["_id"]),
    })
    before = await get_transactions_collection().find({}).sort("amount", 1).to_list(length=10)

    with patch("app.services.product_service.log_inventory_change", AsyncMock(side_effect=RuntimeError("timeout"))):
        result = await reconcile_transaction(user, {
            "transaction_id": sale.data["transaction_id"],
            "action": "delete",
        })

    assert result.message == TASK_FAILED_MESSAGE
    after = await get_transactions_collection().find({}).sort("amount", 1).to_list(length=10)
    assert [t["_id"] for t in after] == [t["_id"] for t in before]
    assert after[0]["category"] == CATEGORY_COGS
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 7
    assert (await get_bank_accounts_collection().find_one({"_id": gtbank["_id"]}))["balance"] == 235000
    assert await get_inventory_logs_collection().count_documents({"type": "adjustment"}) == 0


async def test_reconcile_unknown_transaction(user):
    result = await reconcile_transaction(user, {"transaction_id": "nope", "action": "delete"})

    assert not result.success
    assert "couldn't find" in result.message


async def test_execute_command_routes_by_kind(user):
    result = await execute_command("bank_account", user, {"bank_name": "Kuda", "opening_balance": 10})
    assert result.success

    unknown = await execute_command("refund", user, {})
    assert not unknown.success
    assert unknown.message == TASK_FAILED_MESSAGE
