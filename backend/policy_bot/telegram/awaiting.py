"""
Awaiting-input maps: which answer the bot expects next in each (chat, thread).

Every "awaiting X" step of the command flows is one ThreadSafeStateMap, so
waiting for a policy number in thread A never swallows a message from
thread B of the same chat.
"""
import logging
from typing import Any, Dict, List, Optional

from policy_bot.state.keys import StateKeyManager, ThreadSafeStateMap

logger = logging.getLogger(__name__)

AWAITING_STEPS = (
    "awaiting_get_policy_number",
    "awaiting_save_data",
    "awaiting_payment_policy_number",
    "awaiting_payment_data",
    "awaiting_service_policy_number",
    "awaiting_service_data",
    "awaiting_delete_policy_number",
    "awaiting_delete_reason",
    "awaiting_phone_number",
    "awaiting_origen_destino",
)


class AwaitingInputs:
    def __init__(self):
        self._maps: Dict[str, ThreadSafeStateMap] = {
            step: StateKeyManager.create_thread_safe_state_map() for step in AWAITING_STEPS
        }

    def __getattr__(self, name: str) -> ThreadSafeStateMap:
        maps = self.__dict__.get("_maps", {})
        if name in maps:
            return maps[name]
        raise AttributeError(name)

    def items(self):
        return self._maps.items()

    def active_for(self, chat_id: Any, thread_id: Any = None) -> Optional[str]:
        """First step waiting for input in this exact (chat, thread), or None."""
        for step, state_map in self._maps.items():
            if state_map.has(chat_id, thread_id):
                return step
        return None

    def active_steps(self, chat_id: Any, thread_id: Any = None) -> List[str]:
        return [step for step, state_map in self._maps.items() if state_map.has(chat_id, thread_id)]

    def clear_for_context(self, chat_id: Any, thread_id: Any = None, user_id: Any = None) -> int:
        cleared = 0
        for state_map in self._maps.values():
            if state_map.delete(chat_id, thread_id):
                cleared += 1
        if cleared:
            logger.debug(f"[Awaiting] Cleared {cleared} pending inputs for chat {chat_id} thread {thread_id}")
        return cleared
