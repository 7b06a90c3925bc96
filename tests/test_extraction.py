from app.core.exceptions import UpstreamUnavailable
from app.flow.slot_filling import new_flow_context, run_turn
from app.flow.states import ConversationState
from app.models.conversation import ProductSnapshot, Turn, load_state_context
from app.services.extraction_service import (
    ExtractionComplete,
    ExtractionIncomplete,
    ExtractionFailed,
    extract_sale,
    extract_expense,
    extract_product,
    extract_bank_account,
    extract_currency,
    financial_insight,
    normalize_sale,
)
from utils.constants import FIELD_PROMPTS, DEFAULT_INSIGHT
from tests.helpers import reload_user

MEMORY = [Turn(role="user", content="sold rice")]


async def test_complete_sale_ignores_model_status(ai):
    ai.chat_json.return_value = {
        "status": "incomplete",
        "data": {"product_name": "Rice", "units_sold": "2", "amount_per_unit": "45k", "sale_type": "Transfer"},
        "reply": "Anything else?",
    }

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert result.data == {
        "items": [{"product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000.0}],
        "sale_type": "bank",
    }


async def test_model_claiming_complete_with_missing_field_gets_fixed_prompt(ai):
    ai.chat_json.return_value = {
        "status": "complete",
        "data": {"product_name": "Rice", "units_sold": 2, "amount_per_unit": 45000},
        "reply": "Done!",
    }

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.missing == ["sale_type"]
    assert result.reply == FIELD_PROMPTS["sale"]["sale_type"]
    assert result.memory[-1] == Turn(role="assistant", content=result.reply)


async def test_incomplete_relays_model_question(ai):
    ai.chat_json.return_value = {
        "status": "incomplete",
        "data": {"product_name": "Rice"},
        "reply": "How many bags of rice?",
    }

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.reply == "How many bags of rice?"


async def test_credit_sale_requires_customer(ai):
    ai.chat_json.return_value = {
        "data": {"product_name": "Rice", "units_sold": 1, "amount_per_unit": 500, "sale_type": "credit"},
    }

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.missing == ["customer_name"]


def test_known_product_price_fills_missing_unit_price():
    known = ProductSnapshot(id="p1", name="Rice", price=45000, cost=30000, stock=10)
    fields = normalize_sale({"units_sold": 2, "sale_type": "cash"}, known)

    assert fields["items"][0]["product_name"] == "Rice"
    assert fields["items"][0]["amount_per_unit"] == 45000


def test_total_amount_is_split_per_unit():
    fields = normalize_sale({"product_name": "Rice", "units_sold": 4, "total_amount": "10k"})

    assert fields["items"][0]["amount_per_unit"] == 2500


async def test_multi_item_sale_reports_the_missing_price(ai):
    ai.chat_json.return_value = {
        "data": {
            "items": [
                {"product_name": "Rice", "units_sold": 1, "amount_per_unit": "45k"},
                {"productName": "Beans", "unitsSold": "2"},
            ],
            "sale_type": "cash",
        },
    }

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.missing == ["amount_per_unit"]
    assert result.reply == FIELD_PROMPTS["sale"]["amount_per_unit"]


def test_known_product_only_fills_its_own_item():
    known = ProductSnapshot(id="p1", name="Rice", price=45000, cost=30000, stock=10)
    fields = normalize_sale({
        "items": [
            {"product_name": "rice", "units_sold": 1},
            {"product_name": "Beans", "units_sold": 2},
        ],
        "sale_type": "cash",
    }, known)

    assert fields["items"][0]["amount_per_unit"] == 45000
    assert fields["items"][1]["amount_per_unit"] is None


async def test_expense_batch_is_complete(ai):
    ai.chat_json.return_value = {
        "data": {
            "expenses": [
                {"amount": "20k", "description": "Shop rent"},
                {"amount": 3500, "description": "Diesel", "category": "Utilities"},
            ],
        },
    }

    result = await extract_expense(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert [line["amount"] for line in result.data["expenses"]] == [20000, 3500]
    assert result.data["expenses"][0]["category"] == "Rent"


async def test_stock_list_is_complete(ai):
    ai.chat_json.return_value = {
        "data": {
            "products": [
                {"productName": "Omo", "quantityAdded": "12", "costPrice": "1,000", "sellingPrice": "1.2k"},
                {"product_name": "Soap", "stock": 30, "cost": 100, "price": 150},
            ],
        },
    }

    result = await extract_product(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert result.data["products"][0] == {"product_name": "Omo", "quantity_added": 12, "cost": 1000, "price": 1200}
    assert result.data["products"][1]["quantity_added"] == 30


async def test_stock_list_line_without_price_is_incomplete(ai):
    ai.chat_json.return_value = {
        "data": {
            "products": [
                {"product_name": "Omo", "quantity_added": 12, "cost": 1000, "price": 1200},
                {"product_name": "Soap", "quantity_added": 30, "cost": 100},
            ],
        },
    }

    result = await extract_product(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.missing == ["price"]


async def test_invalid_amounts_are_treated_as_missing(ai):
    ai.chat_json.return_value = {"data": {"amount": "-200", "description": "fuel"}}

    result = await extract_expense(MEMORY)

    assert isinstance(result, ExtractionIncomplete)
    assert result.missing == ["amount"]


async def test_expense_category_from_keywords(ai):
    ai.chat_json.return_value = {"data": {"amount": "5000", "description": "Shop rent"}}

    result = await extract_expense(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert result.data["expenses"][0]["category"] == "Rent"


async def test_product_allows_zero_quantity(ai):
    ai.chat_json.return_value = {"data": {"product_name": "Soap", "quantity_added": 0, "cost": 100, "price": 150}}

    result = await extract_product(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert result.data["products"][0]["quantity_added"] == 0


async def test_bank_account_accepts_negative_balance(ai):
    ai.chat_json.return_value = {"data": {"bank_name": "Opay", "opening_balance": "-2,000"}}

    result = await extract_bank_account(MEMORY)

    assert isinstance(result, ExtractionComplete)
    assert result.data["opening_balance"] == -2000


async def test_non_object_data_fails(ai):
    ai.chat_json.return_value = {"data": ["Rice", 2]}

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionFailed)


async def test_provider_outage_fails(ai):
    ai.chat_json.side_effect = UpstreamUnavailable("AI providers unavailable")

    result = await extract_sale(MEMORY)

    assert isinstance(result, ExtractionFailed)


async def test_currency_and_insight_fallbacks(ai):
    ai.chat_json.return_value = {"currency": "ghs"}
    assert await extract_currency("cedis please") == "GHS"

    ai.chat_json.return_value = {"currency": "Ghana money"}
    assert await extract_currency("whatever") is None

    ai.chat_text.side_effect = UpstreamUnavailable()
    assert await financial_insight({"income": 0}) == DEFAULT_INSIGHT


async def test_run_turn_persists_memory_while_incomplete(ai, user):
    ai.chat_json.return_value = {"status": "incomplete", "data": {}, "reply": "How much was the expense?"}
    state = ConversationState.LOGGING_EXPENSE
    context = new_flow_context(state)

    await run_turn(user, state, context, "I spent money")
    await run_turn(user, state, context, "I spent money")

    stored = await reload_user()
    assert stored["state"] == state.value
    restored = load_state_context(state, stored["state_context"])
    assert [turn.role for turn in restored.memory] == ["user", "assistant", "user", "assistant"]


async def test_run_turn_keeps_memory_bounded(ai, user):
    ai.chat_json.return_value = {"status": "incomplete", "data": {}, "reply": "Which product?"}
    state = ConversationState.LOGGING_SALE
    context = new_flow_context(state)

    for i in range(20):
        await run_turn(user, state, context, f"message {i}")

    assert len(context.memory) <= 12
    assert context.memory[-1].role == "assistant"
