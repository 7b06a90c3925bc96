"""
app/flow/replies.py

Purpose: Shared reply helpers for flow handlers

- Handlers return a list of message payloads; the dispatcher sends them
- Finishing a task always returns the user to IDLE
"""

from typing import Any, Dict, List

from app.services.session_service import reset_to_idle
from app.services.task_executor import TaskResult
from utils.whatsapp_utils import create_text_message, create_main_menu_message

Reply = List[Dict[str, Any]]


def text(message: str) -> Reply:
    return [create_text_message(message)]


def with_menu(message: str) -> Reply:
    return [create_text_message(message), create_main_menu_message()]


async def finish_task(user_id: str, result: TaskResult) -> Reply:
    """Returns to IDLE and reports the executor's outcome."""
    await reset_to_idle(user_id, "task finished" if result.success else "task failed")
    if result.success:
        return with_menu(result.message)
    return text(result.message)
