"""
Chat State Registry - "clear everything for this chat" coordinator.

/start and the main-menu button must drop every pending state of the chat:
flow states, admin operation, sub-flow contexts and the awaiting-input maps.
Each stateful module registers a callback here instead of the menu code
reaching into other modules' maps:

    callback(chat_id, thread_id, user_id) -> int | None   (entries removed)
"""
import logging
from typing import Any, Callable, Dict, Optional

from policy_bot.core.audit import AuditLog

logger = logging.getLogger(__name__)

ClearCallback = Callable[[Any, Any, Optional[int]], Optional[int]]


class ChatStateRegistry:
    def __init__(self):
        self._callbacks: Dict[str, ClearCallback] = {}

    def register(self, name: str, callback: ClearCallback) -> bool:
        if not callable(callback):
            logger.error(f"[ChatState] Invalid clear callback '{name}'")
            return False
        if name in self._callbacks:
            logger.warning(f"[ChatState] Replacing clear callback '{name}'")
        self._callbacks[name] = callback
        return True

    def unregister(self, name: str) -> bool:
        return self._callbacks.pop(name, None) is not None

    def names(self):
        return list(self._callbacks)

    def clear_chat_state(
        self, chat_id: Any, thread_id: Any = None, user_id: Optional[int] = None
    ) -> Dict[str, Any]:
        total = 0
        results: Dict[str, int] = {}

        for name, callback in list(self._callbacks.items()):
            try:
                cleared = int(callback(chat_id, thread_id, user_id) or 0)
                results[name] = cleared
                total += cleared
            except Exception as e:
                logger.error(f"[ChatState] Clear callback {name} failed: {e}", exc_info=True)
                results[name] = -1

        # Only log when something was actually cleared
        if total > 0:
            logger.info(f"[ChatState] Cleared {total} states for chat {chat_id} thread {thread_id}")
            AuditLog.log_chat_state_cleared(chat_id, thread_id, user_id, results)

        return {"cleared": total, "results": results}
