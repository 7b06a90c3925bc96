"""
app/flow/states.py

Purpose: Defines all conversation states

- Enum for each stage of onboarding, idle, collecting and selection flows
- Single source of truth for flow stages
- State transition table
- Metadata for each state (kind, timeout)
"""

from enum import Enum
from typing import Dict, List, Optional
from dataclasses import dataclass


class ConversationState(str, Enum):
    """
    Every state a user's conversation can be in.
    """

    # Onboarding
    NEW_USER = "NEW_USER"
    ONBOARDING_AWAIT_BUSINESS_AND_EMAIL = "ONBOARDING_AWAIT_BUSINESS_AND_EMAIL"
    ONBOARDING_AWAIT_OTP = "ONBOARDING_AWAIT_OTP"
    ONBOARDING_AWAIT_CURRENCY = "ONBOARDING_AWAIT_CURRENCY"

    # Core
    IDLE = "IDLE"

    # Multi-turn collection
    LOGGING_SALE = "LOGGING_SALE"
    LOGGING_EXPENSE = "LOGGING_EXPENSE"
    ADDING_PRODUCT = "ADDING_PRODUCT"
    LOGGING_CUSTOMER_PAYMENT = "LOGGING_CUSTOMER_PAYMENT"
    ADDING_BANK_ACCOUNT = "ADDING_BANK_ACCOUNT"

    # Awaiting a button/list selection
    AWAITING_BANK_SELECTION_SALE = "AWAITING_BANK_SELECTION_SALE"
    AWAITING_BANK_SELECTION_EXPENSE = "AWAITING_BANK_SELECTION_EXPENSE"
    AWAITING_BANK_SELECTION_PURCHASE = "AWAITING_BANK_SELECTION_PURCHASE"
    AWAITING_BANK_SELECTION_CUST_PAYMENT = "AWAITING_BANK_SELECTION_CUST_PAYMENT"
    AWAITING_ITEM_SELECTION = "AWAITING_ITEM_SELECTION"
    AWAITING_REPORT_TYPE_SELECTION = "AWAITING_REPORT_TYPE_SELECTION"
    AWAITING_TRANSACTION_SELECTION = "AWAITING_TRANSACTION_SELECTION"
    AWAITING_EDIT_FIELD_CHOICE = "AWAITING_EDIT_FIELD_CHOICE"

    # Free-text answer for an edit
    AWAITING_EDIT_VALUE = "AWAITING_EDIT_VALUE"


CANCEL_KEYWORDS = frozenset({"cancel", "stop", "exit", "abort", "quit"})


@dataclass
class StateMetadata:
    """
    Metadata associated with each conversation state.
    """
    name: ConversationState
    display_name: str
    is_onboarding: bool = False
    is_collecting: bool = False  # Slot-filling flow with AI memory
    is_awaiting: bool = False  # Waiting for a button or list reply
    timeout_minutes: Optional[int] = 30  # None: never expires
    description: str = ""


ONBOARDING_STATES = (
    ConversationState.NEW_USER,
    ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
    ConversationState.ONBOARDING_AWAIT_OTP,
    ConversationState.ONBOARDING_AWAIT_CURRENCY,
)

COLLECTING_STATES = (
    ConversationState.LOGGING_SALE,
    ConversationState.LOGGING_EXPENSE,
    ConversationState.ADDING_PRODUCT,
    ConversationState.LOGGING_CUSTOMER_PAYMENT,
    ConversationState.ADDING_BANK_ACCOUNT,
)

BANK_SELECTION_STATES = (
    ConversationState.AWAITING_BANK_SELECTION_SALE,
    ConversationState.AWAITING_BANK_SELECTION_EXPENSE,
    ConversationState.AWAITING_BANK_SELECTION_PURCHASE,
    ConversationState.AWAITING_BANK_SELECTION_CUST_PAYMENT,
)

AWAITING_STATES = BANK_SELECTION_STATES + (
    ConversationState.AWAITING_ITEM_SELECTION,
    ConversationState.AWAITING_REPORT_TYPE_SELECTION,
    ConversationState.AWAITING_TRANSACTION_SELECTION,
    ConversationState.AWAITING_EDIT_FIELD_CHOICE,
)


def _build_metadata() -> Dict[ConversationState, StateMetadata]:
    metadata = {}
    for state in ConversationState:
        metadata[state] = StateMetadata(
            name=state,
            display_name=state.value.replace("_", " ").title(),
            is_onboarding=state in ONBOARDING_STATES,
            is_collecting=state in COLLECTING_STATES,
            is_awaiting=state in AWAITING_STATES,
            timeout_minutes=None if state in ONBOARDING_STATES or state == ConversationState.IDLE else 30,
        )
    metadata[ConversationState.AWAITING_EDIT_VALUE].description = "Free-text value for a transaction edit"
    metadata[ConversationState.IDLE].description = "No active flow; messages are classified"
    return metadata


STATE_METADATA: Dict[ConversationState, StateMetadata] = _build_metadata()


# Valid state transitions. Cancellation and recovery (anything -> IDLE)
# are always allowed and not listed.
STATE_TRANSITIONS: Dict[ConversationState, List[ConversationState]] = {
    ConversationState.NEW_USER: [
        ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
    ],
    ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL: [
        ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,
        ConversationState.ONBOARDING_AWAIT_OTP,
    ],
    ConversationState.ONBOARDING_AWAIT_OTP: [
        ConversationState.ONBOARDING_AWAIT_OTP,
        ConversationState.ONBOARDING_AWAIT_BUSINESS_AND_EMAIL,  # Expired code
        ConversationState.ONBOARDING_AWAIT_CURRENCY,
    ],
    ConversationState.ONBOARDING_AWAIT_CURRENCY: [
        ConversationState.ONBOARDING_AWAIT_CURRENCY,
    ],
    ConversationState.IDLE: list(COLLECTING_STATES) + [
        ConversationState.AWAITING_REPORT_TYPE_SELECTION,
        ConversationState.AWAITING_TRANSACTION_SELECTION,
        ConversationState.AWAITING_BANK_SELECTION_SALE,
        ConversationState.AWAITING_BANK_SELECTION_EXPENSE,
        ConversationState.AWAITING_BANK_SELECTION_PURCHASE,
        ConversationState.AWAITING_BANK_SELECTION_CUST_PAYMENT,
        ConversationState.AWAITING_ITEM_SELECTION,
    ],
    ConversationState.LOGGING_SALE: [
        ConversationState.LOGGING_SALE,
        ConversationState.AWAITING_ITEM_SELECTION,
        ConversationState.AWAITING_BANK_SELECTION_SALE,
    ],
    ConversationState.LOGGING_EXPENSE: [
        ConversationState.LOGGING_EXPENSE,
        ConversationState.AWAITING_BANK_SELECTION_EXPENSE,
    ],
    ConversationState.ADDING_PRODUCT: [
        ConversationState.ADDING_PRODUCT,
        ConversationState.AWAITING_BANK_SELECTION_PURCHASE,
    ],
    ConversationState.LOGGING_CUSTOMER_PAYMENT: [
        ConversationState.LOGGING_CUSTOMER_PAYMENT,
        ConversationState.AWAITING_BANK_SELECTION_CUST_PAYMENT,
    ],
    ConversationState.ADDING_BANK_ACCOUNT: [
        ConversationState.ADDING_BANK_ACCOUNT,
    ],
    ConversationState.AWAITING_ITEM_SELECTION: [
        ConversationState.AWAITING_BANK_SELECTION_SALE,
    ],
    ConversationState.AWAITING_TRANSACTION_SELECTION: [
        ConversationState.AWAITING_EDIT_FIELD_CHOICE,
    ],
    ConversationState.AWAITING_EDIT_FIELD_CHOICE: [
        ConversationState.AWAITING_EDIT_VALUE,
    ],
    ConversationState.AWAITING_EDIT_VALUE: [
        ConversationState.AWAITING_EDIT_VALUE,
    ],
}


def parse_state(value: Optional[str]) -> Optional[ConversationState]:
    """
    Converts a stored state string to the enum.

    Returns:
        The state, or None when the stored value is unknown
    """
    try:
        return ConversationState(value)
    except ValueError:
        return None


def is_valid_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """
    Checks if a state transition is allowed.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    if to_state == ConversationState.IDLE:
        return True
    allowed_transitions = STATE_TRANSITIONS.get(from_state, [])
    return to_state in allowed_transitions


def get_state_metadata(state: ConversationState) -> StateMetadata:
    """
    Retrieves metadata for a given state.
    """
    return STATE_METADATA.get(state, StateMetadata(
        name=state,
        display_name=state.value,
        description="Unknown state"
    ))


def is_cancel_command(text: Optional[str]) -> bool:
    """Exact, case-insensitive match against the cancel vocabulary."""
    return bool(text) and text.strip().lower() in CANCEL_KEYWORDS
