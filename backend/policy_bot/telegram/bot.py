"""
Telegram bot wiring (python-telegram-bot).

The bot runs inside the FastAPI event loop, next to the state sweeps, so all
state maps are touched from one loop only.
"""
import asyncio
import logging

from telegram import Update, error
from telegram.ext import (
    Application,
    CommandHandler,
    MessageHandler,
    TypeHandler,
    filters,
)

from policy_bot.telegram.handlers import (
    handle_admin_search,
    handle_cancel,
    handle_phone_command,
    handle_policy_query,
    handle_start,
    handle_text_message,
)
from policy_bot.telegram.middleware import thread_validator

logger = logging.getLogger(__name__)


def build_application(token: str, services) -> Application:
    application = Application.builder().token(token).build()
    application.bot_data["state"] = services

    # Group -1 runs before every regular handler
    application.add_handler(TypeHandler(Update, thread_validator), group=-1)

    application.add_handler(CommandHandler("start", handle_start))
    application.add_handler(CommandHandler("cancel", handle_cancel))
    application.add_handler(CommandHandler("poliza", handle_policy_query))
    application.add_handler(CommandHandler("telefono", handle_phone_command))
    application.add_handler(CommandHandler("admin_buscar", handle_admin_search))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text_message))
    return application


async def _start_polling_with_retry(application: Application, max_retries=3, initial_backoff=2) -> bool:
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await application.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] ✓ Polling started successfully")
            return True
        except error.Conflict as e:
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] ⚠ Conflict detected: {e}. Retrying in {backoff}s...")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] ✗ Failed after {max_retries} retries. Bot disabled. Error: {e}")
                return False
        except error.TelegramError as e:
            logger.error(f"[Telegram] Unexpected error: {e}")
            return False
    return False


async def start_bot(application: Application) -> bool:
    await application.initialize()
    await application.start()
    started = await _start_polling_with_retry(application)
    if not started:
        await stop_bot(application)
    return started


async def stop_bot(application: Application) -> None:
    """Stop polling. Called on FastAPI shutdown."""
    try:
        if application.updater and application.updater.running:
            await application.updater.stop()
        if application.running:
            await application.stop()
        await application.shutdown()
    except error.TelegramError as e:
        logger.error(f"[Telegram] Error while stopping bot: {e}")
