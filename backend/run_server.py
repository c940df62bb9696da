"""Simple server runner that keeps uvicorn alive."""
import logging
import signal
import sys

import uvicorn

from policy_bot.core.config import settings


def handle_signal(sig, frame):
    logging.getLogger(__name__).info(f"Received signal {sig}, shutting down gracefully...")
    sys.exit(0)


signal.signal(signal.SIGINT, handle_signal)
signal.signal(signal.SIGTERM, handle_signal)

if __name__ == "__main__":
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info("Starting Policy Bot backend")
    uvicorn.run(
        "policy_bot.main:app",
        host="127.0.0.1",
        port=8000,
        log_level=settings.LOG_LEVEL.lower(),
    )
