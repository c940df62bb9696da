"""
State layer operations: introspection, manual sweep, timeout tuning and
per-chat reset. Read-mostly; nothing here touches policy data.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from policy_bot.api.deps import get_state_services
from policy_bot.core.exceptions import BusinessError
from policy_bot.schemas.state import (
    ChatStateCleared,
    CleanupResult,
    CleanupStats,
    StateStatsResponse,
    TimeoutUpdate,
)
from policy_bot.state.services import StateServices

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/stats", response_model=StateStatsResponse)
def get_stats(services: StateServices = Depends(get_state_services)):
    """Sizes of every store plus the sweep configuration."""
    return {
        "cleanup": services.cleanup.get_stats(),
        "flow_states": services.flow_states.get_stats(),
        "admin_states": services.admin_states.get_admin_stats(),
        "flow_contexts": services.flow_contexts.count(),
    }


@router.post("/cleanup", response_model=CleanupResult)
async def force_cleanup(services: StateServices = Depends(get_state_services)):
    """Run one sweep over all providers right now."""
    return await services.cleanup.force_cleanup()


@router.put("/timeout", response_model=CleanupStats)
def set_timeout(body: TimeoutUpdate, services: StateServices = Depends(get_state_services)):
    if body.timeout_seconds <= 0:
        raise BusinessError.bad_request("timeout_seconds must be positive")
    services.cleanup.set_state_timeout(body.timeout_seconds)
    return services.cleanup.get_stats()


@router.delete("/providers/{name}", response_model=CleanupStats)
def unregister_provider(name: str, services: StateServices = Depends(get_state_services)):
    if not services.cleanup.unregister_state_provider(name):
        raise BusinessError.not_found("Provider", f"name={name}")
    return services.cleanup.get_stats()


@router.delete("/chats/{chat_id}", response_model=ChatStateCleared)
def clear_chat(
    chat_id: int,
    thread_id: Optional[str] = None,
    user_id: Optional[int] = None,
    services: StateServices = Depends(get_state_services),
):
    """Same reset as /start in the bot, for support staff."""
    result = services.clear_chat_state(chat_id, thread_id, user_id)
    logger.info(f"Chat state reset via API: chat_id={chat_id} thread_id={thread_id} cleared={result['cleared']}")
    return {**result, "chat_id": chat_id, "thread_id": thread_id}
