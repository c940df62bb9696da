"""
Policy Bot Backend.

ARCHITECTURE:
- Telegram Bot: multi-step policy flows, one pending input per (chat, thread)
- State layer: in-memory flow/admin/sub-flow states with sweep-based expiry
- FastAPI: health check and state operations for support staff

The bot and the state sweeps share this process's event loop.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from policy_bot.api.routes import state as state_routes
from policy_bot.core.config import settings
from policy_bot.state.services import StateServices

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Build the state layer and start its sweeps
    2. Start Telegram bot polling (if token provided)

    Shutdown:
    1. Stop Telegram bot
    2. Stop sweeps
    """
    services = getattr(app.state, "state_services", None) or StateServices.from_settings(settings)
    app.state.state_services = services
    services.init()

    bot_app = None
    if settings.TELEGRAM_BOT_TOKEN:
        from policy_bot.telegram.bot import build_application, start_bot

        logger.info("[*] Starting Telegram bot...")
        bot_app = build_application(settings.TELEGRAM_BOT_TOKEN, services)
        if not await start_bot(bot_app):
            bot_app = None
    else:
        logger.warning("[WARN] Telegram bot disabled (no token)")

    yield

    if bot_app is not None:
        from policy_bot.telegram.bot import stop_bot

        await stop_bot(bot_app)
    services.shutdown()


app = FastAPI(
    title="Policy Bot API",
    description="Telegram policy bot: conversation state operations.",
    version="0.1.0",
    lifespan=lifespan,
    # API docs only outside production
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.include_router(state_routes.router, prefix="/state", tags=["state"])


@app.get("/health")
def health():
    services = getattr(app.state, "state_services", None)
    return {
        "status": "ok",
        "state_layer": "running" if services is not None and services.started else "stopped",
    }
