"""Application configuration.

Environment variables override all defaults. State managers never read this
module directly; the wiring in state/services.py hands them explicit values.
"""

import os
from pathlib import Path
from typing import List


# Load .env for local development (safe no-op if not installed)
try:
    from dotenv import load_dotenv  # type: ignore

    _BACKEND_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)
except Exception:
    pass


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int_list(value: str) -> List[int]:
    return [int(part) for part in value.split(",") if part.strip()]


class Settings:
    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    # Empty list = every chat is served
    ALLOWED_GROUPS: List[int] = _parse_int_list(os.getenv("ALLOWED_GROUPS", ""))

    # State TTL: ONE value for sessions, flow states and admin operations
    STATE_TTL_SECONDS: int = int(os.getenv("TTL_SESSION", "3600"))
    # Sweep interval: fixed 15 minutes
    CLEANUP_INTERVAL_SECONDS: int = 15 * 60

    # Admin operations default to the session TTL
    ADMIN_TIMEOUT_SECONDS: int = int(os.getenv("ADMIN_TIMEOUT", str(STATE_TTL_SECONDS)))
    ADMIN_SWEEP_INTERVAL_SECONDS: int = 60

    # Phone / origin-destination sub-flows: fixed 2 hours of inactivity
    FLOW_CONTEXT_MAX_AGE_SECONDS: int = 2 * 60 * 60

    # Optional write-through of flow states to the database
    FLOW_STATE_PERSISTENCE: bool = _parse_bool(os.getenv("FLOW_STATE_PERSISTENCE", "false"))
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./policy_bot.db")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"


settings = Settings()
