from datetime import datetime, timedelta
from itertools import count
from unittest.mock import AsyncMock, patch

from app.db.mongo import (
    get_users_collection,
    get_products_collection,
    get_transactions_collection,
    get_bank_accounts_collection,
)
from app.flow.dispatcher import dispatch_message
from app.flow.states import ConversationState
from app.models.conversation import BankOption, BankSelectionContext, ExpenseFlowContext, load_state_context
from app.schemas.webhook import InboundMessage
from app.services import product_service, bank_service
from app.services.task_executor import log_expense
from utils.constants import (
    WELCOME_MESSAGE,
    OTP_INVALID_MESSAGE,
    OTP_EXPIRED_MESSAGE,
    OTP_EMAIL_FAILED_MESSAGE,
    ASK_CURRENCY_MESSAGE,
    CANCELLED_MESSAGE,
    RECOVERY_MESSAGE,
    FLOW_EXPIRED_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    SELECT_FROM_MENU_MESSAGE,
    UNSUPPORTED_MEDIA_MESSAGE,
    SUBSCRIPTION_REQUIRED_MESSAGE,
    INVALID_AMOUNT_REPLY,
    MENU_FLOW_PROMPTS,
    REPORT_MENU_TEXT,
    PAYMENT_LINK_FAILED_MESSAGE,
)
from app.core.exceptions import UpstreamUnavailable
from tests.helpers import USER_ID, make_user, reload_user, texts_of, row_ids, sent_payloads

_ids = count(1)


def incoming(text=None, button_id=None, msg_type=None, sender=USER_ID):
    return InboundMessage(
        sender_id=sender,
        message_id=f"wamid.{next(_ids)}",
        type=msg_type or ("interactive" if button_id else "text"),
        text=text,
        button_id=button_id,
    )


async def state_of(user_id=USER_ID):
    return (await reload_user(user_id))["state"]


# ============================================================
# ONBOARDING
# ============================================================

async def test_onboarding_end_to_end(ai, sent):
    replies = await dispatch_message(incoming("hi"))
    assert texts_of(replies) == [WELCOME_MESSAGE]
    assert sent_payloads(sent) == replies
    assert await state_of() == ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL.value

    with patch("app.flow.handlers.onboarding.email_service.send_otp", AsyncMock(return_value="482913")) as send_otp:
        replies = await dispatch_message(incoming("My business is Ada Stores, ada@example.com"))
    send_otp.assert_awaited_once_with("ada@example.com", "Ada Stores")
    assert "ada@example.com" in texts_of(replies)[0]
    assert await state_of() == ConversationState.ONBOARDING_AWAIT_OTP.value

    replies = await dispatch_message(incoming("111111"))
    assert texts_of(replies) == [OTP_INVALID_MESSAGE]

    replies = await dispatch_message(incoming("482 913"))
    assert texts_of(replies) == [ASK_CURRENCY_MESSAGE]

    replies = await dispatch_message(incoming("Naira"))
    assert "Setup complete, Ada Stores" in texts_of(replies)[0]
    assert replies[-1]["type"] == "list"

    user = await reload_user()
    assert user["state"] == ConversationState.IDLE.value
    assert user["currency"] == "NGN"
    assert user["is_email_verified"]
    assert user["subscription_status"] == "TRIAL"
    assert timedelta(days=13) < user["subscription_expires_at"] - datetime.utcnow() <= timedelta(days=14)


async def test_onboarding_uses_ai_when_regex_cannot_split(ai):
    await make_user(state=ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL, business_name=None)
    ai.chat_json.return_value = {"businessName": "Mama Put Kitchen", "email": "mama@example.com"}

    with patch("app.flow.handlers.onboarding.email_service.send_otp", AsyncMock(return_value="111222")):
        await dispatch_message(incoming("we are mama put kitchen and you can reach us at mama at example dot com"))

    user = await reload_user()
    assert user["business_name"] == "Mama Put Kitchen"
    assert user["email"] == "mama@example.com"
    assert user["otp"] == "111222"


async def test_expired_otp_restarts_email_step():
    await make_user(
        state=ConversationState.ONBOARDING_AWAIT_OTP,
        otp="482913",
        otp_expires_at=datetime.utcnow() - timedelta(minutes=1),
    )

    replies = await dispatch_message(incoming("482913"))

    assert texts_of(replies) == [OTP_EXPIRED_MESSAGE]
    user = await reload_user()
    assert user["state"] == ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL.value
    assert user["otp"] is None


async def test_email_outage_keeps_user_on_email_step():
    await make_user(state=ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL)

    with patch("app.flow.handlers.onboarding.email_service.send_otp", AsyncMock(side_effect=UpstreamUnavailable())):
        replies = await dispatch_message(incoming("Ada Stores, ada@example.com"))

    assert texts_of(replies) == [OTP_EMAIL_FAILED_MESSAGE]
    assert await state_of() == ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL.value


# ============================================================
# CONVERSATION CONTROL
# ============================================================

async def test_cancel_leaves_any_flow():
    await make_user(
        state=ConversationState.LOGGING_EXPENSE,
        state_context=ExpenseFlowContext().model_dump(mode="json"),
    )

    replies = await dispatch_message(incoming("Cancel"))

    assert texts_of(replies)[0] == CANCELLED_MESSAGE
    user = await reload_user()
    assert user["state"] == ConversationState.IDLE.value
    assert user["state_context"] == {}


async def test_malformed_context_recovers_to_idle():
    await make_user(state=ConversationState.LOGGING_SALE, state_context={"flow": "expense"})

    replies = await dispatch_message(incoming("2 bags"))

    assert texts_of(replies)[0] == RECOVERY_MESSAGE
    assert await state_of() == ConversationState.IDLE.value


async def test_unknown_state_recovers_to_idle():
    await make_user(state=ConversationState.IDLE)
    await get_users_collection().update_one({"user_id": USER_ID}, {"$set": {"state": "AWAITING_INVOICE_UPLOAD"}})

    replies = await dispatch_message(incoming("hello"))

    assert texts_of(replies)[0] == RECOVERY_MESSAGE
    assert await state_of() == ConversationState.IDLE.value


async def test_stale_flow_expires_before_handling():
    await make_user(
        state=ConversationState.LOGGING_EXPENSE,
        state_context=ExpenseFlowContext().model_dump(mode="json"),
        state_updated_at=datetime.utcnow() - timedelta(hours=2),
    )

    replies = await dispatch_message(incoming("menu"))

    assert texts_of(replies)[0] == FLOW_EXPIRED_MESSAGE
    assert replies[1]["type"] == "list"
    assert await state_of() == ConversationState.IDLE.value


async def test_media_without_text_is_not_understood(user):
    replies = await dispatch_message(incoming(msg_type="audio"))

    assert texts_of(replies) == [UNSUPPORTED_MEDIA_MESSAGE]


async def test_handler_crash_sends_apology_and_resets(user):
    with patch("app.flow.dispatcher.route_to_handler", AsyncMock(side_effect=RuntimeError("boom"))):
        replies = await dispatch_message(incoming("hello"))

    assert texts_of(replies) == [GENERIC_ERROR_MESSAGE]
    assert await state_of() == ConversationState.IDLE.value


# ============================================================
# RECORDING FLOWS
# ============================================================

SALE_INTENT = {"intent": "LOG_SALE", "context": {"productName": "Rice", "unitsSold": 2}}
SALE_DATA = {
    "status": "complete",
    "data": {"product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000, "sale_type": "cash"},
}


async def test_sale_without_bank_accounts_executes_immediately(ai, user):
    rice, _ = await product_service.upsert_product(USER_ID, "Rice", 10, 30000, 45000)
    ai.chat_json.side_effect = [SALE_INTENT, SALE_DATA]

    replies = await dispatch_message(incoming("sold 2 rice 45k each cash"))

    assert "Sale recorded" in texts_of(replies)[0]
    assert replies[-1]["type"] == "list"
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 8
    assert await state_of() == ConversationState.IDLE.value


async def test_sale_asks_for_bank_then_books_it(ai, user):
    await product_service.upsert_product(USER_ID, "Rice", 10, 30000, 45000)
    bank = await bank_service.create_bank_account(USER_ID, "GTBank", 0)
    ai.chat_json.side_effect = [SALE_INTENT, SALE_DATA]

    replies = await dispatch_message(incoming("sold 2 rice 45k each"))

    assert await state_of() == ConversationState.AWAITING_BANK_SELECTION_SALE.value
    assert row_ids(replies[0]) == [f"select_bank:{bank['_id']}", "select_bank:none"]

    replies = await dispatch_message(incoming("GTBank", button_id=f"select_bank:{bank['_id']}"))

    assert "Sale recorded" in texts_of(replies)[0]
    assert (await get_bank_accounts_collection().find_one({"_id": bank["_id"]}))["balance"] == 90000
    assert await state_of() == ConversationState.IDLE.value


async def test_cash_choice_books_without_bank(ai, user):
    await product_service.upsert_product(USER_ID, "Rice", 10, 30000, 45000)
    bank = await bank_service.create_bank_account(USER_ID, "GTBank", 0)
    ai.chat_json.side_effect = [SALE_INTENT, SALE_DATA]
    await dispatch_message(incoming("sold 2 rice"))

    await dispatch_message(incoming("cash"))

    assert (await get_bank_accounts_collection().find_one({"_id": bank["_id"]}))["balance"] == 0
    income = await get_transactions_collection().find_one({"category": "Sales"})
    assert "bank_account_id" not in income


async def test_fuzzy_product_name_offers_candidates(ai, user):
    golden, _ = await product_service.upsert_product(USER_ID, "Golden Rice", 10, 300, 500)
    ai.chat_json.side_effect = [
        {"intent": "LOG_SALE", "context": {}},
        {"data": {"product_name": "rice", "units_sold": 1, "amount_per_unit": 500, "sale_type": "cash"}},
    ]

    replies = await dispatch_message(incoming("sold one rice"))

    assert await state_of() == ConversationState.AWAITING_ITEM_SELECTION.value
    assert row_ids(replies[0]) == [f"confirm_prod:{golden['_id']}", "confirm_prod:none"]

    replies = await dispatch_message(incoming("Golden Rice", button_id=f"confirm_prod:{golden['_id']}"))

    assert "Golden Rice" in texts_of(replies)[0]
    assert (await get_products_collection().find_one({"_id": golden["_id"]}))["stock"] == 9


async def test_none_of_these_ends_the_sale(ai, user):
    await product_service.upsert_product(USER_ID, "Golden Rice", 10, 300, 500)
    ai.chat_json.side_effect = [
        {"intent": "LOG_SALE", "context": {}},
        {"data": {"product_name": "rice", "units_sold": 1, "amount_per_unit": 500, "sale_type": "cash"}},
    ]
    await dispatch_message(incoming("sold one rice"))

    replies = await dispatch_message(incoming("None of these"))

    assert "Add *rice* as a product first" in texts_of(replies)[0]
    assert await state_of() == ConversationState.IDLE.value
    assert await get_transactions_collection().count_documents({}) == 0


async def test_multi_item_sale_asks_about_each_fuzzy_item(ai, user):
    rice, _ = await product_service.upsert_product(USER_ID, "Rice", 10, 30000, 45000)
    beans, _ = await product_service.upsert_product(USER_ID, "Golden Beans", 10, 1000, 1500)
    ai.chat_json.side_effect = [
        {"intent": "LOG_SALE", "context": {}},
        {"data": {
            "items": [
                {"product_name": "rice", "units_sold": 1, "amount_per_unit": 45000},
                {"product_name": "beans", "units_sold": 2, "amount_per_unit": 1500},
            ],
            "sale_type": "cash",
        }},
    ]

    replies = await dispatch_message(incoming("sold 1 rice and 2 beans, cash"))

    assert await state_of() == ConversationState.AWAITING_ITEM_SELECTION.value
    assert row_ids(replies[0]) == [f"confirm_prod:{beans['_id']}", "confirm_prod:none"]

    replies = await dispatch_message(incoming("Golden Beans", button_id=f"confirm_prod:{beans['_id']}"))

    assert "1 x Rice, 2 x Golden Beans" in texts_of(replies)[0]
    assert (await get_products_collection().find_one({"_id": rice["_id"]}))["stock"] == 9
    assert (await get_products_collection().find_one({"_id": beans["_id"]}))["stock"] == 8
    assert await state_of() == ConversationState.IDLE.value


async def test_expense_batch_asks_for_bank_once(ai, user):
    bank = await bank_service.create_bank_account(USER_ID, "GTBank", 50000)
    ai.chat_json.side_effect = [
        {"intent": "LOG_EXPENSE", "context": {}},
        {"data": {"expenses": [
            {"amount": "10k", "description": "Shop rent"},
            {"amount": 2500, "description": "Transport to market"},
        ]}},
    ]

    await dispatch_message(incoming("paid rent 10k and transport 2500"))
    assert await state_of() == ConversationState.AWAITING_BANK_SELECTION_EXPENSE.value

    replies = await dispatch_message(incoming("GTBank", button_id=f"select_bank:{bank['_id']}"))

    assert "2 expenses recorded" in texts_of(replies)[0]
    assert (await get_bank_accounts_collection().find_one({"_id": bank["_id"]}))["balance"] == 37500
    assert await get_transactions_collection().count_documents({"type": "expense"}) == 2


async def test_menu_flow_asks_opening_question(user):
    replies = await dispatch_message(incoming("Log an Expense", button_id="menu:log_expense"))

    assert texts_of(replies) == [MENU_FLOW_PROMPTS["menu:log_expense"]]
    stored = await reload_user()
    context = load_state_context(ConversationState.LOGGING_EXPENSE, stored["state_context"])
    assert context.memory[0].role == "assistant"


async def test_incomplete_turn_stays_in_flow(ai, user):
    ai.chat_json.side_effect = [
        {"intent": "LOG_EXPENSE", "context": {}},
        {"status": "incomplete", "data": {"description": "fuel"}, "reply": "How much was the fuel?"},
    ]

    replies = await dispatch_message(incoming("bought fuel"))

    assert texts_of(replies) == ["How much was the fuel?"]
    assert await state_of() == ConversationState.LOGGING_EXPENSE.value


async def test_expired_subscription_blocks_recording(ai):
    await make_user(subscription_expires_at=datetime.utcnow() - timedelta(days=1))
    ai.chat_json.return_value = {"intent": "LOG_SALE", "context": {}}

    typed = await dispatch_message(incoming("sold 2 rice"))
    tapped = await dispatch_message(incoming("Log a Sale", button_id="menu:log_sale"))
    balances = await dispatch_message(incoming("balance"))

    assert texts_of(typed) == [SUBSCRIPTION_REQUIRED_MESSAGE]
    assert texts_of(tapped) == [SUBSCRIPTION_REQUIRED_MESSAGE]
    assert "bank accounts" in texts_of(balances)[0]
    assert await state_of() == ConversationState.IDLE.value


async def test_plan_status_and_renewal_link(user):
    status = await dispatch_message(incoming("my plan"))
    renew = await dispatch_message(incoming("renew subscription"))

    assert "*Trial* plan is active" in texts_of(status)[0]
    assert texts_of(renew)[0] == PAYMENT_LINK_FAILED_MESSAGE


# ============================================================
# SELECTION INTERRUPTS
# ============================================================

async def _awaiting_bank_for_expense():
    bank = await bank_service.create_bank_account(USER_ID, "GTBank", 0)
    context = BankSelectionContext(
        command_kind="expense",
        command={"amount": 5000, "description": "Fuel", "category": "Utilities"},
        options=[BankOption(id=str(bank["_id"]), name="GTBank")],
    )
    await make_user(
        state=ConversationState.AWAITING_BANK_SELECTION_EXPENSE,
        state_context=context.model_dump(mode="json"),
    )
    return bank


async def test_short_text_during_selection_reprompts():
    await _awaiting_bank_for_expense()

    replies = await dispatch_message(incoming("ok"))

    assert texts_of(replies) == [SELECT_FROM_MENU_MESSAGE]
    assert await state_of() == ConversationState.AWAITING_BANK_SELECTION_EXPENSE.value


async def test_stale_button_during_selection_reprompts():
    await _awaiting_bank_for_expense()

    replies = await dispatch_message(incoming("Sales", button_id="report:SALES"))

    assert texts_of(replies) == [SELECT_FROM_MENU_MESSAGE]


async def test_long_text_during_selection_starts_a_new_request(ai):
    await _awaiting_bank_for_expense()
    ai.chat_json.return_value = {"intent": "CHECK_STOCK", "context": {}}

    replies = await dispatch_message(incoming("what do I have in my shop"))

    assert "no products yet" in texts_of(replies)[0]
    assert await state_of() == ConversationState.IDLE.value
    assert await get_transactions_collection().count_documents({}) == 0


async def test_typed_bank_name_selects_it():
    bank = await _awaiting_bank_for_expense()

    await dispatch_message(incoming("gtbank"))

    assert (await get_bank_accounts_collection().find_one({"_id": bank["_id"]}))["balance"] == -5000
    assert await state_of() == ConversationState.IDLE.value


# ============================================================
# REPORTS AND RECONCILE
# ============================================================

async def test_report_menu_then_choice(user):
    replies = await dispatch_message(incoming("Reports", button_id="menu:report"))

    assert texts_of(replies) == [REPORT_MENU_TEXT]
    assert await state_of() == ConversationState.AWAITING_REPORT_TYPE_SELECTION.value

    replies = await dispatch_message(incoming("Sales", button_id="report:SALES"))

    assert "No sales recorded" in texts_of(replies)[0]
    assert await state_of() == ConversationState.IDLE.value


async def test_edit_transaction_amount(user):
    expense = await log_expense(user, {"amount": 5000, "description": "Fuel", "category": "Utilities"})
    txn_id = expense.data["transaction_id"]

    replies = await dispatch_message(incoming("edit"))
    assert row_ids(replies[0]) == [f"select_txn:{txn_id}"]

    replies = await dispatch_message(incoming("₦5,000.00", button_id=f"select_txn:{txn_id}"))
    assert row_ids(replies[0]) == ["edit_field:amount", "edit_field:description", "edit_field:delete"]

    await dispatch_message(incoming("Edit Amount", button_id="edit_field:amount"))
    assert await state_of() == ConversationState.AWAITING_EDIT_VALUE.value

    replies = await dispatch_message(incoming("plenty"))
    assert texts_of(replies) == [INVALID_AMOUNT_REPLY]
    assert await state_of() == ConversationState.AWAITING_EDIT_VALUE.value

    replies = await dispatch_message(incoming("7k"))
    assert "Amount updated" in texts_of(replies)[0]
    assert (await get_transactions_collection().find_one({}))["amount"] == 7000
    assert await state_of() == ConversationState.IDLE.value


async def test_delete_transaction(user):
    expense = await log_expense(user, {"amount": 5000, "description": "Fuel"})
    assert expense.success

    await dispatch_message(incoming("delete"))
    await dispatch_message(incoming("1"))
    replies = await dispatch_message(incoming("Delete", button_id="edit_field:delete"))

    assert "Deleted" in texts_of(replies)[0]
    assert await get_transactions_collection().count_documents({}) == 0
