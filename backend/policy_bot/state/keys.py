"""
State keys scoped by chat AND forum thread.

Telegram groups can run several topics ("threads") at once. Every pending
input state of the bot is keyed by the (chat, thread) pair so the same user
can be mid-flow in two threads of one chat without the flows overwriting
each other.

Key format:
    "<chat_id>"              no thread
    "<chat_id>:<thread_id>"  thread present (thread 0 included)
"""
import logging
import random
import string
import time
from collections.abc import Mapping
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

ChatId = Union[int, str]
ThreadId = Optional[Union[int, str]]

KEY_SEPARATOR = ":"


class StateKeyManager:
    """Compose, parse and validate (chat, thread) context keys."""

    @staticmethod
    def get_context_key(chat_id: ChatId, thread_id: ThreadId = None) -> str:
        if thread_id is None:
            return f"{chat_id}"
        return f"{chat_id}{KEY_SEPARATOR}{thread_id}"

    @staticmethod
    def parse_context_key(context_key: str) -> Dict[str, Optional[str]]:
        """
        Inverse of get_context_key.

        Splits on the FIRST separator only, so "1:2:3" parses to
        chat "1" and thread "2:3".
        """
        chat_id, sep, thread_id = context_key.partition(KEY_SEPARATOR)
        return {
            "chat_id": chat_id,
            "thread_id": thread_id if sep else None,
        }

    @staticmethod
    def get_thread_id(update: Any) -> Optional[Union[int, str]]:
        """
        Extract the forum thread id from an inbound update.

        Looks at the plain message first, then at the message a callback
        query was attached to. Works with python-telegram-bot objects and
        with plain dicts; anything else yields None.
        """
        if update is None or isinstance(update, (str, bytes, int, float, bool)):
            return None

        message = _field(update, "message")
        thread_id = _field(message, "message_thread_id")
        if thread_id is not None:
            return thread_id

        callback_query = _field(update, "callback_query")
        callback_message = _field(callback_query, "message")
        return _field(callback_message, "message_thread_id")

    @staticmethod
    def is_valid_context_key(context_key: Any) -> bool:
        if not isinstance(context_key, str) or not context_key:
            return False
        parts = context_key.split(KEY_SEPARATOR)
        return 1 <= len(parts) <= 2 and len(parts[0]) > 0

    @staticmethod
    def generate_temp_key(prefix: str = "temp") -> str:
        """Unique key for short-lived operations: prefix:millis:random."""
        millis = int(time.time() * 1000)
        alphabet = string.digits + string.ascii_lowercase
        suffix = "".join(random.choice(alphabet) for _ in range(6))
        return f"{prefix}{KEY_SEPARATOR}{millis}{KEY_SEPARATOR}{suffix}"

    @staticmethod
    def normalize_id(value: Union[int, str]) -> str:
        return str(value).strip()

    @staticmethod
    def create_thread_safe_state_map() -> "ThreadSafeStateMap":
        return ThreadSafeStateMap()


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _belongs_to_chat(key: str, chat_id: ChatId) -> bool:
    chat_key = f"{chat_id}"
    return key == chat_key or key.startswith(chat_key + KEY_SEPARATOR)


class ThreadSafeStateMap(Generic[T]):
    """
    Dict keyed by (chat, thread) context keys.

    "Thread safe" refers to forum threads, not OS threads: values stored
    for one thread are never visible from another thread of the same chat.
    """

    def __init__(self):
        self._states: Dict[str, T] = {}

    def set(self, chat_id: ChatId, value: T, thread_id: ThreadId = None) -> T:
        key = StateKeyManager.get_context_key(chat_id, thread_id)
        self._states[key] = value
        logger.debug(f"[StateMap] Saved state key={key}")
        return value

    def get(self, chat_id: ChatId, thread_id: ThreadId = None) -> Optional[T]:
        return self._states.get(StateKeyManager.get_context_key(chat_id, thread_id))

    def has(self, chat_id: ChatId, thread_id: ThreadId = None) -> bool:
        key = StateKeyManager.get_context_key(chat_id, thread_id)
        exists = key in self._states
        logger.debug(f"[StateMap] Checking key={key}, exists={exists}")
        return exists

    def delete(self, chat_id: ChatId, thread_id: ThreadId = None) -> bool:
        key = StateKeyManager.get_context_key(chat_id, thread_id)
        if key not in self._states:
            return False
        del self._states[key]
        return True

    def delete_all(self, chat_id: ChatId) -> int:
        """Remove every entry of the chat regardless of thread."""
        keys_to_delete = [key for key in self._states if _belongs_to_chat(key, chat_id)]
        for key in keys_to_delete:
            del self._states[key]
        logger.debug(f"[StateMap] Deleted {len(keys_to_delete)} states for chat_id={chat_id}")
        return len(keys_to_delete)

    def get_all_by_chat_id(self, chat_id: ChatId) -> List[Dict[str, Any]]:
        result = []
        for key, value in self._states.items():
            if _belongs_to_chat(key, chat_id):
                thread_id = StateKeyManager.parse_context_key(key)["thread_id"]
                result.append({"thread_id": thread_id, "value": value})
        return result

    def get_internal_map(self) -> Dict[str, T]:
        """Raw dict, for debugging and prefix cleanup only."""
        return self._states

    def size(self) -> int:
        return len(self._states)

    def clear(self) -> None:
        self._states.clear()

    def clear_for_context(self, chat_id: ChatId, thread_id: ThreadId = None, user_id: Any = None) -> int:
        return 1 if self.delete(chat_id, thread_id) else 0

    def __len__(self) -> int:
        return len(self._states)
