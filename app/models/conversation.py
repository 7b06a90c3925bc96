"""
app/models/conversation.py

Purpose: Typed conversation context

- Slot-filling memory (bounded list of turns)
- One context model per flow, stored in users.state_context
- Discriminated on the ``flow`` field so persisted data is validated on load
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from app.flow.states import ConversationState


class Turn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ProductSnapshot(BaseModel):
    """Subset of a product document carried between turns."""
    id: str
    name: str
    price: Optional[float] = None
    cost: Optional[float] = None
    stock: int = 0


class BankOption(BaseModel):
    id: str
    name: str


class _MemoryContext(BaseModel):
    memory: List[Turn] = Field(default_factory=list)


class SaleFlowContext(_MemoryContext):
    flow: Literal["sale"] = "sale"
    known_product: Optional[ProductSnapshot] = None
    hints: Dict[str, Any] = Field(default_factory=dict)


class ExpenseFlowContext(_MemoryContext):
    flow: Literal["expense"] = "expense"


class ProductFlowContext(_MemoryContext):
    flow: Literal["product"] = "product"
    known_product: Optional[ProductSnapshot] = None


class CustomerPaymentFlowContext(_MemoryContext):
    flow: Literal["customer_payment"] = "customer_payment"


class BankAccountFlowContext(_MemoryContext):
    flow: Literal["bank_account"] = "bank_account"


class BankSelectionContext(BaseModel):
    """An uncommitted command waiting for the user to pick a bank account."""
    flow: Literal["bank_selection"] = "bank_selection"
    command_kind: Literal["sale", "expense", "purchase", "customer_payment"]
    command: Dict[str, Any]
    options: List[BankOption] = Field(default_factory=list)


class ItemSelectionContext(BaseModel):
    """A sale item whose product name matched several stored products."""
    flow: Literal["item_selection"] = "item_selection"
    requested_name: str
    sale: Dict[str, Any]
    item_index: int = Field(default=0, ge=0)
    candidates: List[ProductSnapshot]

    @model_validator(mode="after")
    def index_points_at_an_item(self):
        items = self.sale.get("items")
        if not isinstance(items, list) or self.item_index >= len(items):
            raise ValueError("item_index is outside the pending sale")
        return self


class ReportSelectionContext(BaseModel):
    flow: Literal["report_selection"] = "report_selection"
    date_range: Optional[str] = None


class TransactionSelectionContext(BaseModel):
    flow: Literal["transaction_selection"] = "transaction_selection"
    transaction_ids: List[str]


class EditFieldContext(BaseModel):
    flow: Literal["edit_field"] = "edit_field"
    transaction_id: str
    summary: str = ""


class EditValueContext(BaseModel):
    flow: Literal["edit_value"] = "edit_value"
    transaction_id: str
    field: Literal["amount", "description", "category"]


FlowContext = Annotated[
    Union[
        SaleFlowContext,
        ExpenseFlowContext,
        ProductFlowContext,
        CustomerPaymentFlowContext,
        BankAccountFlowContext,
        BankSelectionContext,
        ItemSelectionContext,
        ReportSelectionContext,
        TransactionSelectionContext,
        EditFieldContext,
        EditValueContext,
    ],
    Field(discriminator="flow"),
]

_flow_context_adapter = TypeAdapter(FlowContext)


# Which context each non-IDLE state must carry
STATE_CONTEXT_TYPES = {
    ConversationState.LOGGING_SALE: SaleFlowContext,
    ConversationState.LOGGING_EXPENSE: ExpenseFlowContext,
    ConversationState.ADDING_PRODUCT: ProductFlowContext,
    ConversationState.LOGGING_CUSTOMER_PAYMENT: CustomerPaymentFlowContext,
    ConversationState.ADDING_BANK_ACCOUNT: BankAccountFlowContext,
    ConversationState.AWAITING_BANK_SELECTION_SALE: BankSelectionContext,
    ConversationState.AWAITING_BANK_SELECTION_EXPENSE: BankSelectionContext,
    ConversationState.AWAITING_BANK_SELECTION_PURCHASE: BankSelectionContext,
    ConversationState.AWAITING_BANK_SELECTION_CUST_PAYMENT: BankSelectionContext,
    ConversationState.AWAITING_ITEM_SELECTION: ItemSelectionContext,
    ConversationState.AWAITING_REPORT_TYPE_SELECTION: ReportSelectionContext,
    ConversationState.AWAITING_TRANSACTION_SELECTION: TransactionSelectionContext,
    ConversationState.AWAITING_EDIT_FIELD_CHOICE: EditFieldContext,
    ConversationState.AWAITING_EDIT_VALUE: EditValueContext,
}


class MalformedContextError(ValueError):
    """Persisted state_context does not match its state."""


def load_state_context(state: ConversationState, raw: Optional[Dict[str, Any]]):
    """
    Validates a persisted context against the state it was stored with.

    Returns:
        The typed context, or None for states that carry no context

    Raises:
        MalformedContextError: if the payload is missing, has the wrong
        flow, or fails validation
    """
    expected = STATE_CONTEXT_TYPES.get(state)
    if expected is None:
        return None

    if not raw:
        raise MalformedContextError(f"{state.value} requires a {expected.__name__}")

    try:
        context = _flow_context_adapter.validate_python(raw)
    except PydanticValidationError as e:
        raise MalformedContextError(str(e)) from e

    if not isinstance(context, expected):
        raise MalformedContextError(
            f"{state.value} carries {type(context).__name__}, expected {expected.__name__}"
        )
    return context


def dump_state_context(context: Optional[BaseModel]) -> Dict[str, Any]:
    if context is None:
        return {}
    return context.model_dump(mode="json")


def append_turn(memory: List[Turn], role: str, content: str, limit: int) -> List[Turn]:
    """
    Appends a turn unless it repeats the tail entry, keeping the newest
    ``limit`` turns.
    """
    updated = list(memory)
    if not updated or updated[-1].role != role or updated[-1].content != content:
        updated.append(Turn(role=role, content=content))
    return updated[-limit:]
