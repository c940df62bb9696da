"""
Telegram handlers: menu commands and the text router driving pending inputs.

Flow of a text message:
1. Pending admin operation of this user in this chat? → admin step
2. Pending awaiting-input in this (chat, thread)? → that step
3. Nothing pending → "session expired" (private chats only, groups stay quiet)

Every missing state is answered the same way: expired and never-started are
indistinguishable, the user restarts from the menu.
"""
import logging
import re

from telegram import Update
from telegram.ext import ContextTypes

from policy_bot.core.config import settings
from policy_bot.state.keys import StateKeyManager

logger = logging.getLogger(__name__)

MENU_TEXT = (
    "🏠 Main menu\n\n"
    "/poliza - Look up a policy\n"
    "/telefono <policy> - Register a contact phone for a policy\n"
    "/admin_buscar - Admin: search policies\n"
    "/cancel - Cancel the current operation"
)

SESSION_EXPIRED_TEXT = (
    "⌛ This operation expired or was not started.\n"
    "Please start again from the menu: /start"
)

PHONE_PATTERN = re.compile(r"^\d{10}$")
POLICY_PATTERN = re.compile(r"^[A-Z0-9\-]{3,40}$")


def _services(context: ContextTypes.DEFAULT_TYPE):
    return context.application.bot_data["state"]


def _is_allowed_chat(chat_id: int) -> bool:
    return not settings.ALLOWED_GROUPS or chat_id in settings.ALLOWED_GROUPS or chat_id > 0


def _normalize_policy(text: str) -> str:
    return text.strip().upper()


# ==============================================================================
# COMMANDS
# ==============================================================================

async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/start and main menu: drop every pending state of this chat/thread."""
    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None or not _is_allowed_chat(chat_id):
        return

    thread_id = StateKeyManager.get_thread_id(update)
    user_id = update.effective_user.id if update.effective_user else None
    result = _services(context).clear_chat_state(chat_id, thread_id, user_id)

    logger.info(f"[TELEGRAM] /start chat_id={chat_id} thread_id={thread_id} cleared={result['cleared']}")
    await update.message.reply_text(MENU_TEXT)


async def handle_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None or not _is_allowed_chat(chat_id):
        return

    thread_id = StateKeyManager.get_thread_id(update)
    user_id = update.effective_user.id if update.effective_user else None
    result = _services(context).clear_chat_state(chat_id, thread_id, user_id)

    if result["cleared"]:
        await update.message.reply_text("✅ Operation cancelled.\n\n" + MENU_TEXT)
    else:
        await update.message.reply_text("Nothing to cancel.\n\n" + MENU_TEXT)


async def handle_policy_query(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/poliza [number]: look up a policy, asking for the number if missing."""
    chat_id = update.effective_chat.id
    if not _is_allowed_chat(chat_id):
        return
    thread_id = StateKeyManager.get_thread_id(update)
    services = _services(context)

    if context.args:
        await _open_policy_flow(update, services, chat_id, thread_id, context.args[0])
        return

    services.awaiting.awaiting_get_policy_number.set(chat_id, {"requested_by": update.effective_user.id}, thread_id)
    await update.message.reply_text("🔎 Send the policy number:")


async def handle_phone_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/telefono <policy>: start the phone → origin/destination sub-flow."""
    chat_id = update.effective_chat.id
    if not _is_allowed_chat(chat_id):
        return
    thread_id = StateKeyManager.get_thread_id(update)
    services = _services(context)

    if not context.args:
        await update.message.reply_text("Usage: /telefono <policy number>")
        return

    policy_number = _normalize_policy(context.args[0])
    if not services.flow_states.validate_thread_match(chat_id, policy_number, thread_id):
        await update.message.reply_text(
            f"⚠️ Policy {policy_number} is being handled in another thread. Continue there."
        )
        return

    # One awaitingPhone sub-flow per thread, not per chat
    flow_key = StateKeyManager.get_context_key(chat_id, thread_id)
    flow_id = services.flow_contexts.create_context(flow_key, "awaitingPhone", policy_number)
    services.awaiting.awaiting_phone_number.set(
        chat_id, {"flow_id": flow_id, "policy_number": policy_number}, thread_id
    )
    await update.message.reply_text(f"📞 Send the 10-digit contact phone for policy {policy_number}:")


async def handle_admin_search(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """/admin_buscar: admin policy search, answered by the next text message."""
    chat_id = update.effective_chat.id
    if not _is_allowed_chat(chat_id):
        return
    user_id = update.effective_user.id

    _services(context).admin_states.create_admin_state(
        user_id, chat_id, "policy_search", {"thread_id": StateKeyManager.get_thread_id(update)}
    )
    await update.message.reply_text("🛠 Admin search: send a policy number or part of it.")


# ==============================================================================
# TEXT ROUTER
# ==============================================================================

async def _open_policy_flow(update: Update, services, chat_id, thread_id, raw_policy: str) -> None:
    policy_number = _normalize_policy(raw_policy)
    if not POLICY_PATTERN.match(policy_number):
        await update.message.reply_text("❌ That does not look like a policy number. Try again:")
        services.awaiting.awaiting_get_policy_number.set(chat_id, {"retry": True}, thread_id)
        return

    services.flow_states.save_state(
        chat_id,
        policy_number,
        {"step": "viewing", "requested_by": update.effective_user.id},
        thread_id,
    )
    logger.info(f"[TELEGRAM] Policy flow opened chat_id={chat_id} thread_id={thread_id} policy={policy_number}")
    await update.message.reply_text(f"📄 Policy {policy_number} selected. What do you want to do next?\n\n{MENU_TEXT}")


async def _handle_admin_step(update: Update, services, admin_state: dict, user_id: int, chat_id: int, text: str) -> None:
    if admin_state["operation"] == "policy_search":
        term = _normalize_policy(text)
        services.admin_states.update_admin_state(user_id, chat_id, {"search_term": term})
        services.admin_states.clear_admin_state(user_id, chat_id)
        await update.message.reply_text(f"🔎 Searching policies matching '{term}'...")
        return

    logger.warning(f"[TELEGRAM] Unknown admin operation '{admin_state['operation']}' for user {user_id}")
    services.admin_states.clear_admin_state(user_id, chat_id)
    await update.message.reply_text(SESSION_EXPIRED_TEXT)


async def _handle_phone_step(update: Update, services, chat_id, thread_id, text: str) -> None:
    pending = services.awaiting.awaiting_phone_number.get(chat_id, thread_id)
    phone = re.sub(r"\D", "", text)
    if not PHONE_PATTERN.match(phone):
        await update.message.reply_text("❌ The phone must have exactly 10 digits. Try again:")
        return

    flow_id = pending["flow_id"]
    flow_key = StateKeyManager.get_context_key(chat_id, thread_id)
    if not services.flow_contexts.update_state(flow_key, flow_id, "awaitingOrigenDestino", {"phone": phone}):
        services.awaiting.awaiting_phone_number.delete(chat_id, thread_id)
        await update.message.reply_text(SESSION_EXPIRED_TEXT)
        return

    services.awaiting.awaiting_phone_number.delete(chat_id, thread_id)
    services.awaiting.awaiting_origen_destino.set(chat_id, pending, thread_id)
    await update.message.reply_text("📍 Now send origin and destination (e.g. 'Puebla - CDMX'):")


async def _handle_origin_destination_step(update: Update, services, chat_id, thread_id, text: str) -> None:
    pending = services.awaiting.awaiting_origen_destino.get(chat_id, thread_id)
    services.awaiting.awaiting_origen_destino.delete(chat_id, thread_id)

    origin, sep, destination = text.partition("-")
    if not sep or not origin.strip() or not destination.strip():
        services.awaiting.awaiting_origen_destino.set(chat_id, pending, thread_id)
        await update.message.reply_text("❌ Use the format 'origin - destination'. Try again:")
        return

    flow_id = pending["flow_id"]
    flow_key = StateKeyManager.get_context_key(chat_id, thread_id)
    flow_context = services.flow_contexts.get_context(flow_key, flow_id)
    if flow_context is None:
        await update.message.reply_text(SESSION_EXPIRED_TEXT)
        return

    services.flow_contexts.remove_context(flow_key, flow_id)
    policy_number = pending["policy_number"]
    services.flow_states.save_state(
        chat_id,
        policy_number,
        {
            "step": "service_data_collected",
            "phone": flow_context["data"].get("phone"),
            "origin": origin.strip(),
            "destination": destination.strip(),
        },
        thread_id,
    )
    await update.message.reply_text(
        f"✅ Saved for policy {policy_number}:\n"
        f"📞 {flow_context['data'].get('phone')}\n"
        f"📍 {origin.strip()} → {destination.strip()}"
    )


async def handle_text_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text:
        return

    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None or not _is_allowed_chat(chat_id):
        return

    services = _services(context)
    text = update.message.text.strip()
    thread_id = StateKeyManager.get_thread_id(update)
    user_id = update.effective_user.id if update.effective_user else None

    if user_id is not None:
        admin_state = services.admin_states.get_admin_state(user_id, chat_id)
        if admin_state is not None:
            await _handle_admin_step(update, services, admin_state, user_id, chat_id, text)
            return

    step = services.awaiting.active_for(chat_id, thread_id)
    logger.debug(f"[TELEGRAM] Text in chat_id={chat_id} thread_id={thread_id} step={step}")

    if step == "awaiting_get_policy_number":
        services.awaiting.awaiting_get_policy_number.delete(chat_id, thread_id)
        await _open_policy_flow(update, services, chat_id, thread_id, text)
    elif step == "awaiting_phone_number":
        await _handle_phone_step(update, services, chat_id, thread_id, text)
    elif step == "awaiting_origen_destino":
        await _handle_origin_destination_step(update, services, chat_id, thread_id, text)
    elif step is not None:
        # Step armed by a flow this bot build does not handle
        services.awaiting.clear_for_context(chat_id, thread_id)
        await update.message.reply_text(SESSION_EXPIRED_TEXT)
    elif update.effective_chat.type == "private":
        await update.message.reply_text(SESSION_EXPIRED_TEXT)
