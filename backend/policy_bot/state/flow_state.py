"""
Flow State Manager - transient data of in-progress policy flows.

Two-level map:
    context_key ("chat" or "chat:thread") -> policy_number -> entry

An entry is the caller's data bag plus `created_at`. Entries live until they
are cleared explicitly or swept by `cleanup(cutoff)` (registered with the
StateCleanupService). Nothing here raises on bad input: the methods return
False/None and log, since a lost flow only means the user restarts it.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from policy_bot.state.keys import KEY_SEPARATOR, ChatId, StateKeyManager, ThreadId
from policy_bot.state.persistence import FlowStateStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_SECONDS = 2 * 60 * 60


class FlowStateManager:
    """Per-(chat, thread) flow states keyed by policy number."""

    def __init__(
        self,
        store: Optional[FlowStateStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._flow_states: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._store = store
        self._clock = clock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> int:
        """Load persisted flows into memory. Returns the number loaded."""
        if not self._store:
            return 0

        self._store.create_tables()
        loaded = 0
        for context_key, policy_number, entry in self._store.load_all():
            self._flow_states.setdefault(context_key, {})[policy_number] = entry
            loaded += 1

        if loaded:
            logger.info(
                f"[FlowState] Loaded {loaded} flows in {len(self._flow_states)} contexts from database"
            )
        return loaded

    def shutdown(self) -> None:
        logger.debug(f"[FlowState] Shutdown with {len(self._flow_states)} active contexts")

    @staticmethod
    def _context_key(chat_id: ChatId, thread_id: ThreadId = None) -> str:
        return StateKeyManager.get_context_key(chat_id, thread_id)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def save_state(
        self,
        chat_id: ChatId,
        policy_number: str,
        data: Dict[str, Any],
        thread_id: ThreadId = None,
    ) -> bool:
        """Insert or replace the flow entry, stamping a fresh created_at."""
        if not chat_id or not policy_number:
            logger.warning(
                f"[FlowState] Refusing to save state without chat_id/policy_number "
                f"(chat_id={chat_id!r}, policy_number={policy_number!r})"
            )
            return False

        context_key = self._context_key(chat_id, thread_id)
        entry = {**(data or {}), "created_at": self._clock()}
        self._flow_states.setdefault(context_key, {})[policy_number] = entry

        if self._store:
            self._store.upsert(context_key, policy_number, entry)
        return True

    def update_state(
        self,
        chat_id: ChatId,
        policy_number: str,
        updates: Dict[str, Any],
        thread_id: ThreadId = None,
    ) -> bool:
        """Shallow-merge into an existing entry, keeping its created_at."""
        entry = self.get_state(chat_id, policy_number, thread_id)
        if entry is None:
            logger.warning(
                f"[FlowState] Update on missing flow: chat_id={chat_id}, "
                f"thread_id={thread_id}, policy_number={policy_number}"
            )
            return False

        created_at = entry["created_at"]
        entry.update(updates or {})
        entry["created_at"] = created_at

        if self._store:
            self._store.upsert(self._context_key(chat_id, thread_id), policy_number, entry)
        return True

    def get_state(
        self, chat_id: ChatId, policy_number: str, thread_id: ThreadId = None
    ) -> Optional[Dict[str, Any]]:
        chat_states = self._flow_states.get(self._context_key(chat_id, thread_id))
        if not chat_states:
            return None
        return chat_states.get(policy_number)

    def has_state(self, chat_id: ChatId, policy_number: str, thread_id: ThreadId = None) -> bool:
        chat_states = self._flow_states.get(self._context_key(chat_id, thread_id))
        return bool(chat_states) and policy_number in chat_states

    def has_any_state(self, chat_id: ChatId, thread_id: ThreadId = None) -> bool:
        return self._context_key(chat_id, thread_id) in self._flow_states

    def clear_state(self, chat_id: ChatId, policy_number: str, thread_id: ThreadId = None) -> bool:
        context_key = self._context_key(chat_id, thread_id)
        chat_states = self._flow_states.get(context_key)
        if chat_states is None:
            return False

        removed = chat_states.pop(policy_number, None) is not None

        # Drop empty inner maps so they do not pile up
        if not chat_states:
            del self._flow_states[context_key]

        if removed and self._store:
            self._store.delete(context_key, policy_number)
        return removed

    def clear_all_states(self, chat_id: ChatId, thread_id: ThreadId = None) -> bool:
        context_key = self._context_key(chat_id, thread_id)
        if context_key not in self._flow_states:
            return False

        del self._flow_states[context_key]
        if self._store:
            self._store.delete(context_key)
        return True

    def clear_for_context(self, chat_id: ChatId, thread_id: ThreadId = None, user_id: Any = None) -> int:
        chat_states = self._flow_states.get(self._context_key(chat_id, thread_id))
        count = len(chat_states) if chat_states else 0
        self.clear_all_states(chat_id, thread_id)
        return count

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_active_flows(self, chat_id: ChatId, thread_id: ThreadId = None) -> List[Dict[str, Any]]:
        chat_states = self._flow_states.get(self._context_key(chat_id, thread_id))
        if not chat_states:
            return []
        return [
            {"policy_number": policy_number, **data}
            for policy_number, data in chat_states.items()
        ]

    def get_all_active_flows(self) -> List[Dict[str, Any]]:
        all_flows = []
        for context_key, chat_states in self._flow_states.items():
            thread_id = StateKeyManager.parse_context_key(context_key)["thread_id"]
            for policy_number, data in chat_states.items():
                all_flows.append({
                    "context_key": context_key,
                    "thread_id": thread_id,
                    "policy_number": policy_number,
                    **data,
                })
        return all_flows

    def get_stats(self) -> Dict[str, Any]:
        breakdown = {key: len(states) for key, states in self._flow_states.items()}
        return {
            "total_contexts": len(self._flow_states),
            "total_flows": sum(breakdown.values()),
            "context_breakdown": breakdown,
            "persistence_enabled": self._store is not None,
        }

    def validate_thread_match(
        self, chat_id: ChatId, policy_number: str, thread_id: ThreadId = None
    ) -> bool:
        """
        Check that a flow is being continued from the thread it lives in.

        - Flow found under the exact (chat, thread) context: True.
        - No thread given and the flow is active under a thread of the same
          chat: False (cross-thread conflict).
        - Otherwise True (fail open, nothing contradicts the caller).
        """
        if self.has_state(chat_id, policy_number, thread_id):
            return True

        if thread_id is None:
            thread_prefix = f"{chat_id}{KEY_SEPARATOR}"
            for other_key, chat_states in self._flow_states.items():
                if other_key.startswith(thread_prefix) and policy_number in chat_states:
                    logger.warning(
                        f"[FlowState] Cross-thread conflict: chat_id={chat_id}, "
                        f"policy_number={policy_number} is active in thread "
                        f"{other_key[len(thread_prefix):]} but was accessed without thread"
                    )
                    return False

        return True

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def cleanup(self, cutoff_time: Optional[float] = None) -> int:
        """Remove entries created before cutoff_time (default: now - 2h)."""
        if cutoff_time is None:
            cutoff_time = self._clock() - DEFAULT_MAX_AGE_SECONDS

        removed = 0
        for context_key in list(self._flow_states):
            chat_states = self._flow_states[context_key]
            for policy_number in list(chat_states):
                if chat_states[policy_number].get("created_at", 0) < cutoff_time:
                    del chat_states[policy_number]
                    if self._store:
                        self._store.delete(context_key, policy_number)
                    removed += 1

            if not chat_states:
                del self._flow_states[context_key]

        if removed > 0:
            logger.info(f"[FlowState] Cleaned {removed} expired flows")
        return removed
