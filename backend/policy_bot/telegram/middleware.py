"""
Thread validator: keep a forum thread's message out of another thread's flow.

Registered as a TypeHandler in group -1, so it sees every update before the
regular handlers. Raising ApplicationHandlerStop drops the update.

Rules:
- Commands and callback queries always pass.
- A text message WITHOUT thread is blocked when it would answer a
  thread-less awaiting input for a policy whose flow is anchored to another
  thread of the same chat. Pending inputs that name no policy, or a policy
  not active elsewhere, never block.
- Any error inside the validator lets the update through.
"""
import logging

from telegram import Update
from telegram.ext import ApplicationHandlerStop, ContextTypes

from policy_bot.state.keys import StateKeyManager

logger = logging.getLogger(__name__)

WRONG_THREAD_MESSAGE = (
    "⚠️ There is an operation in progress in another thread.\n"
    "Please continue in that thread or finish the current operation "
    "before starting a new one."
)


def find_thread_conflict(services, chat_id, thread_id):
    """Return the conflicting thread ids, or [] when the message may proceed."""
    if thread_id is not None:
        return []

    chat_key = str(chat_id)
    conflicting = set()
    for step in services.awaiting.active_steps(chat_id, None):
        pending = getattr(services.awaiting, step).get(chat_id)
        policy_number = pending.get("policy_number") if isinstance(pending, dict) else None
        if not policy_number:
            continue
        if services.flow_states.validate_thread_match(chat_id, policy_number, None):
            continue

        for flow in services.flow_states.get_all_active_flows():
            if (
                flow["policy_number"] == policy_number
                and flow["thread_id"] is not None
                and StateKeyManager.parse_context_key(flow["context_key"])["chat_id"] == chat_key
            ):
                conflicting.add(flow["thread_id"])

        logger.warning(
            f"[ThreadValidator] '{step}' for policy {policy_number} pending without thread "
            f"in chat {chat_id} while the policy is active in another thread"
        )

    return sorted(conflicting)


async def thread_validator(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    try:
        chat = update.effective_chat
        if chat is None:
            return

        if update.callback_query is not None:
            return

        message = update.message
        if message is None or (message.text or "").startswith("/"):
            return

        services = context.application.bot_data.get("state")
        if services is None:
            return

        thread_id = StateKeyManager.get_thread_id(update)
        conflicting = find_thread_conflict(services, chat.id, thread_id)
    except Exception as e:
        logger.error(f"[ThreadValidator] Error, letting update through: {e}", exc_info=True)
        return

    if conflicting:
        logger.info(f"[ThreadValidator] Blocking message in chat {chat.id} (wrong thread)")
        await message.reply_text(WRONG_THREAD_MESSAGE)
        raise ApplicationHandlerStop
