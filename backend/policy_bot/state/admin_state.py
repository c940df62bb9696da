"""
Admin State Manager - one pending admin operation per (user, chat).

Drives the admin multi-step flows (policy search, field edit, mass
deletion). Expiry is sliding: every read or update moves `last_activity`
forward, and a state idle for longer than the timeout is gone.

Expiry is enforced two ways:
1. Reads treat an idle-too-long entry as absent (and drop it).
2. A periodic sweep (`cleanup`) removes idle entries nobody reads again;
   it runs through the StateCleanupService and through this manager's own
   short-interval loop started by `start()`.
"""
import asyncio
import copy
import logging
import time
from typing import Any, Callable, Dict, Optional

from policy_bot.core.audit import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_TIMEOUT_SECONDS = 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60


class AdminStateManager:
    """Single-slot admin operation state with sliding expiry."""

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_ADMIN_TIMEOUT_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout_seconds = timeout_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._admin_states: Dict[str, Dict[str, Any]] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    @staticmethod
    def get_state_key(user_id: int, chat_id: int) -> str:
        return f"{user_id}:{chat_id}"

    def _is_expired(self, state: Dict[str, Any], now: float) -> bool:
        return now - state["last_activity"] > self.timeout_seconds

    def _expire(self, state_key: str) -> None:
        state = self._admin_states.pop(state_key)
        user_id, _, chat_id = state_key.partition(":")
        logger.warning(f"[AdminState] Timeout of admin operation '{state['operation']}' ({state_key})")
        AuditLog.log_admin_state("expire", user_id, chat_id, state["operation"])

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def create_admin_state(
        self,
        user_id: int,
        chat_id: int,
        operation: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Start an admin operation, replacing whatever was pending."""
        now = self._clock()
        admin_state = {
            "operation": operation,
            "data": data if data is not None else {},
            "created_at": now,
            "last_activity": now,
            "history": [],
        }
        self._admin_states[self.get_state_key(user_id, chat_id)] = admin_state

        logger.info(f"[AdminState] Created '{operation}' for user {user_id} in chat {chat_id}")
        AuditLog.log_admin_state("create", user_id, chat_id, operation)
        return admin_state

    def get_admin_state(self, user_id: int, chat_id: int) -> Optional[Dict[str, Any]]:
        """Return the pending state and refresh its activity, or None."""
        state_key = self.get_state_key(user_id, chat_id)
        state = self._admin_states.get(state_key)
        if state is None:
            return None

        now = self._clock()
        if self._is_expired(state, now):
            self._expire(state_key)
            return None

        state["last_activity"] = now
        return state

    def has_admin_state(self, user_id: int, chat_id: int) -> bool:
        """Existence check that does not refresh activity."""
        state = self._admin_states.get(self.get_state_key(user_id, chat_id))
        return state is not None and not self._is_expired(state, self._clock())

    def update_admin_state(
        self, user_id: int, chat_id: int, updates: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """Snapshot the current data into history, then shallow-merge updates."""
        state = self.get_admin_state(user_id, chat_id)
        if state is None:
            logger.warning(f"[AdminState] Update on missing admin state for user {user_id} in chat {chat_id}")
            return None

        now = self._clock()
        state["history"].append({
            "timestamp": now,
            "previous_data": copy.copy(state["data"]),
        })
        state["data"].update(updates)
        state["last_activity"] = now

        AuditLog.log_admin_state("update", user_id, chat_id, state["operation"], changes=updates)
        return state

    def clear_admin_state(self, user_id: int, chat_id: int) -> bool:
        state = self._admin_states.pop(self.get_state_key(user_id, chat_id), None)
        if state is None:
            return False

        logger.info(f"[AdminState] Cleared '{state['operation']}' for user {user_id} in chat {chat_id}")
        AuditLog.log_admin_state("clear", user_id, chat_id, state["operation"])
        return True

    def clear_for_user(self, user_id: int) -> int:
        """Drop the user's pending operations in every chat."""
        prefix = f"{user_id}:"
        state_keys = [key for key in self._admin_states if key.startswith(prefix)]
        for state_key in state_keys:
            state = self._admin_states.pop(state_key)
            AuditLog.log_admin_state("clear", user_id, state_key[len(prefix):], state["operation"])

        if state_keys:
            logger.info(f"[AdminState] Cleared {len(state_keys)} admin states for user {user_id}")
        return len(state_keys)

    def clear_for_context(self, chat_id: int, thread_id: Any = None, user_id: Optional[int] = None) -> int:
        # Admin states are per user, not per thread
        if user_id is None:
            return 0
        return 1 if self.clear_admin_state(user_id, chat_id) else 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_admin_stats(self) -> Dict[str, Any]:
        operations: Dict[str, int] = {}
        for state in self._admin_states.values():
            operations[state["operation"]] = operations.get(state["operation"], 0) + 1
        return {
            "active_states": len(self._admin_states),
            "operations": operations,
        }

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    def cleanup(self, cutoff_time: Optional[float] = None) -> int:
        """
        Remove states whose last activity is older than cutoff_time.

        Clamped to now - timeout_seconds so a shared scheduler with a shorter
        TTL never ends an admin operation early.
        """
        timeout_cutoff = self._clock() - self.timeout_seconds
        if cutoff_time is None or cutoff_time > timeout_cutoff:
            cutoff_time = timeout_cutoff

        expired = [
            key for key, state in self._admin_states.items()
            if state["last_activity"] < cutoff_time
        ]
        for state_key in expired:
            self._expire(state_key)

        if expired:
            logger.info(f"[AdminState] Cleaned {len(expired)} idle admin states")
        return len(expired)

    def cleanup_old_admin_states(self) -> int:
        return self.cleanup(self._clock() - self.timeout_seconds)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.cleanup_old_admin_states()
            except Exception as e:
                logger.error(f"[AdminState] Sweep error: {e}", exc_info=True)

    def start(self) -> None:
        """Start the periodic sweep. Needs a running event loop."""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info(f"[AdminState] Sweep started. Interval: {self.sweep_interval_seconds}s")

    def stop(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            self._sweep_task = None
            logger.info("[AdminState] Sweep stopped")
