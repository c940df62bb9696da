"""
Flow Context Manager - several named sub-flows per chat.

Used by the alert sub-flows ("awaitingPhone", "awaitingOrigenDestino", ...)
that can run side by side in one chat. Each context gets a per-chat
sequential id: flow_1, flow_2, ...

At most one context per (chat, state) exists: creating a context in a state
that is already taken replaces the older one, so get_context_by_state is
never ambiguous.

The "chat" a context belongs to is any string key. Callers working inside
forum threads pass the (chat, thread) context key from StateKeyManager, so
sub-flows of different threads never replace each other.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from policy_bot.state.keys import StateKeyManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 2 * 60 * 60


class FlowContextManager:
    def __init__(
        self,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age_seconds = max_age_seconds
        self._clock = clock
        # chat_id -> flow_id -> context
        self._contexts: Dict[str, Dict[str, Dict[str, Any]]] = {}
        # chat_id -> next sequence number
        self._counters: Dict[str, int] = {}

    @staticmethod
    def _chat_key(chat_id: Any) -> str:
        return str(chat_id)

    def create_context(
        self, chat_id: Any, initial_state: str, policy_number: Optional[str] = None
    ) -> str:
        """Create a context and return its id (flow_<n>, per chat)."""
        chat_key = self._chat_key(chat_id)
        sequence = self._counters.get(chat_key, 1)
        self._counters[chat_key] = sequence + 1
        flow_id = f"flow_{sequence}"

        chat_contexts = self._contexts.setdefault(chat_key, {})
        for existing_id, existing in list(chat_contexts.items()):
            if existing["state"] == initial_state:
                del chat_contexts[existing_id]
                logger.info(
                    f"[FlowContext] Replaced {existing_id} in state '{initial_state}' "
                    f"with {flow_id} for chat {chat_id}"
                )

        now = self._clock()
        chat_contexts[flow_id] = {
            "flow_id": flow_id,
            "state": initial_state,
            "policy_number": policy_number,
            "data": {},
            "created_at": now,
            "updated_at": now,
        }

        logger.info(
            f"[FlowContext] Created {flow_id} for chat {chat_id} - state: {initial_state}, "
            f"policy_number: {policy_number}"
        )
        return flow_id

    def update_state(
        self,
        chat_id: Any,
        flow_id: str,
        new_state: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        context = self._contexts.get(self._chat_key(chat_id), {}).get(flow_id)
        if context is None:
            logger.warning(f"[FlowContext] Update on missing context {flow_id} in chat {chat_id}")
            return False

        context["state"] = new_state
        context["data"] = {**context["data"], **(data or {})}
        context["updated_at"] = self._clock()

        logger.info(f"[FlowContext] Updated {flow_id} for chat {chat_id} - new state: {new_state}")
        return True

    def get_context_by_state(self, chat_id: Any, state: str) -> Optional[Dict[str, Any]]:
        for context in self._contexts.get(self._chat_key(chat_id), {}).values():
            if context["state"] == state:
                return dict(context)
        return None

    def get_context(self, chat_id: Any, flow_id: str) -> Optional[Dict[str, Any]]:
        context = self._contexts.get(self._chat_key(chat_id), {}).get(flow_id)
        return dict(context) if context else None

    def get_all_contexts(self, chat_id: Any) -> List[Dict[str, Any]]:
        return [dict(context) for context in self._contexts.get(self._chat_key(chat_id), {}).values()]

    def remove_context(self, chat_id: Any, flow_id: str) -> bool:
        chat_key = self._chat_key(chat_id)
        chat_contexts = self._contexts.get(chat_key)
        if not chat_contexts or flow_id not in chat_contexts:
            return False

        del chat_contexts[flow_id]
        if not chat_contexts:
            del self._contexts[chat_key]

        logger.info(f"[FlowContext] Removed {flow_id} for chat {chat_id}")
        return True

    def clear_all_contexts(self, chat_id: Any) -> bool:
        if self._contexts.pop(self._chat_key(chat_id), None) is None:
            return False
        logger.info(f"[FlowContext] Removed all contexts for chat {chat_id}")
        return True

    def clear_for_context(self, chat_id: Any, thread_id: Any = None, user_id: Any = None) -> int:
        context_key = StateKeyManager.get_context_key(chat_id, thread_id)
        count = len(self._contexts.get(context_key, {}))
        self.clear_all_contexts(context_key)
        return count

    def count(self) -> int:
        return sum(len(chat_contexts) for chat_contexts in self._contexts.values())

    def cleanup(self, cutoff_time: Optional[float] = None) -> int:
        """
        Remove contexts not updated since cutoff_time.

        A context always survives its max-age window: a later cutoff from
        the scheduler is clamped to now - max_age_seconds.
        """
        window_cutoff = self._clock() - self.max_age_seconds
        if cutoff_time is None or cutoff_time > window_cutoff:
            cutoff_time = window_cutoff

        removed = 0
        for chat_key in list(self._contexts):
            chat_contexts = self._contexts[chat_key]
            for flow_id in list(chat_contexts):
                if chat_contexts[flow_id]["updated_at"] < cutoff_time:
                    del chat_contexts[flow_id]
                    removed += 1
            if not chat_contexts:
                del self._contexts[chat_key]

        if removed > 0:
            logger.info(f"[FlowContext] Cleaned {removed} old contexts")
        return removed

    def cleanup_old_contexts(self) -> int:
        """Sweep with the fixed max-age window (2 hours by default)."""
        return self.cleanup(self._clock() - self.max_age_seconds)
