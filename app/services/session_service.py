"""
app/services/session_service.py

Purpose: Conversation state store

- Writes (state, state_context) together in one update
- Resets to IDLE on cancel, expiry or malformed context
- Detects flows that have been idle too long
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.db.mongo import get_users_collection
from app.flow.states import ConversationState, is_valid_transition, get_state_metadata, parse_state
from app.models.conversation import dump_state_context
from app.core.config import settings
from app.core.logging import get_logger, LogContext
from utils.time_utils import is_expired

logger = get_logger(__name__)


async def update_user_state(
    user_id: str,
    new_state: ConversationState,
    context: Optional[BaseModel] = None,
    from_state: Optional[ConversationState] = None,
) -> bool:
    """
    Atomically sets the user's state and its context.

    Args:
        user_id: User ID
        new_state: Target state
        context: Typed flow context; None stores an empty context
        from_state: Current state, used only to log unexpected transitions

    Returns:
        True if the user document was found
    """
    with LogContext(user_id=user_id, state=new_state.value):
        if new_state == ConversationState.IDLE:
            context = None

        if from_state is not None and not is_valid_transition(from_state, new_state):
            logger.warning(f"Unexpected state transition: {from_state.value} -> {new_state.value}")

        now = datetime.utcnow()
        users = get_users_collection()
        result = await users.update_one(
            {"user_id": user_id},
            {
                "$set": {
                    "state": new_state.value,
                    "state_context": dump_state_context(context),
                    "state_updated_at": now,
                    "last_interaction": now,
                }
            }
        )

        found = result.matched_count > 0
        if found:
            logger.debug(f"State updated -> {new_state.value}")
        else:
            logger.warning("State update failed: user not found")
        return found


async def reset_to_idle(user_id: str, reason: str = "manual") -> bool:
    """
    Returns the user to IDLE with an empty context.

    Args:
        user_id: User ID
        reason: Reason for reset (for logging)
    """
    logger.info(f"Resetting conversation to IDLE ({reason})")
    return await update_user_state(user_id, ConversationState.IDLE)


def is_flow_expired(user: Dict[str, Any]) -> bool:
    """
    Checks whether the user's active collecting/awaiting flow has gone stale.

    IDLE and onboarding states never expire.
    """
    state = parse_state(user.get("state"))
    if state is None:
        return False

    metadata = get_state_metadata(state)
    if metadata.timeout_minutes is None:
        return False

    return is_expired(user.get("state_updated_at"), settings.FLOW_TIMEOUT_MINUTES)
