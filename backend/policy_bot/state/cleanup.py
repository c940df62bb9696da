"""
State Cleanup Service - periodic sweep of orphaned conversation state.

Stores register themselves as providers; the service knows nothing about
them beyond the provider contract:

    provider.cleanup(cutoff_time: float) -> int   (sync or async)

where cutoff_time = now - state_timeout_seconds and the return value is the
number of entries removed.

ISOLATION: a provider that raises is logged and reported as -1; the
remaining providers are still swept.

The periodic loop is a plain asyncio task in the bot's event loop, stopped by
cancelling it.
"""
import asyncio
import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from policy_bot.core.audit import AuditLog

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 15 * 60
DEFAULT_STATE_TIMEOUT_SECONDS = 60 * 60


class StateCleanupService:
    def __init__(
        self,
        interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        state_timeout_seconds: float = DEFAULT_STATE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.interval_seconds = interval_seconds
        self.state_timeout_seconds = state_timeout_seconds
        self._clock = clock
        self._providers: List[Dict[str, Any]] = []
        self._task: Optional[asyncio.Task] = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Provider registry
    # ------------------------------------------------------------------

    def register_state_provider(self, provider: Any, name: str) -> bool:
        if provider is None or not callable(getattr(provider, "cleanup", None)):
            logger.error(f"[StateCleanup] Invalid provider '{name}': no cleanup() method")
            return False

        self._providers.append({"name": name, "provider": provider})
        logger.info(f"[StateCleanup] Provider registered: {name}")
        return True

    def unregister_state_provider(self, name: str) -> bool:
        for index, registered in enumerate(self._providers):
            if registered["name"] == name:
                del self._providers[index]
                logger.info(f"[StateCleanup] Provider unregistered: {name}")
                return True
        return False

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    async def run_cleanup(self) -> Dict[str, Any]:
        """
        Sweep every registered provider once.

        Returns:
            {"cleaned": total removed, "provider_results": {name: count or -1},
             "timestamp": ISO-8601 UTC}
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        if not self._providers:
            logger.debug("[StateCleanup] No providers registered")
            return {"cleaned": 0, "provider_results": {}, "timestamp": timestamp}

        cutoff_time = self._clock() - self.state_timeout_seconds
        total_cleaned = 0
        results: Dict[str, int] = {}

        # Copy: a provider may unregister itself while being swept
        for registered in list(self._providers):
            name = registered["name"]
            try:
                cleaned = registered["provider"].cleanup(cutoff_time)
                if inspect.isawaitable(cleaned):
                    cleaned = await cleaned
                cleaned = int(cleaned or 0)

                if cleaned > 0:
                    logger.info(f"[StateCleanup] Removed {cleaned} orphaned states from {name}")
                total_cleaned += cleaned
                results[name] = cleaned
            except Exception as e:
                logger.error(f"[StateCleanup] Provider {name} failed: {e}", exc_info=True)
                results[name] = -1

        if total_cleaned > 0 or any(count < 0 for count in results.values()):
            AuditLog.log_cleanup_run(total_cleaned, results)
        logger.debug(f"[StateCleanup] Sweep finished. Total: {total_cleaned}")

        return {"cleaned": total_cleaned, "provider_results": results, "timestamp": timestamp}

    async def force_cleanup(self) -> Dict[str, Any]:
        logger.info("[StateCleanup] Manual cleanup requested")
        return await self.run_cleanup()

    async def _cleanup_loop(self):
        logger.info(
            f"[StateCleanup] Scheduler started. Interval: {self.interval_seconds}s, "
            f"timeout: {self.state_timeout_seconds}s"
        )
        while self.is_running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_cleanup()
            except Exception as e:
                logger.error(f"[StateCleanup] Scheduler error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        interval_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
    ) -> bool:
        """Schedule periodic sweeps. Needs a running event loop."""
        if self.is_running:
            logger.warning("[StateCleanup] Already running")
            return False

        if interval_seconds is not None:
            self.interval_seconds = interval_seconds
        if timeout_seconds is not None:
            self.state_timeout_seconds = timeout_seconds

        self.is_running = True
        self._task = asyncio.get_running_loop().create_task(self._cleanup_loop())
        return True

    def stop(self) -> None:
        """Halt scheduling. Provider state is left untouched."""
        if not self.is_running:
            return

        self.is_running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("[StateCleanup] Scheduler stopped")

    def init(self) -> bool:
        return self.start()

    def shutdown(self) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "providers_count": len(self._providers),
            "interval_seconds": self.interval_seconds,
            "timeout_seconds": self.state_timeout_seconds,
            "providers": [registered["name"] for registered in self._providers],
        }

    def set_state_timeout(self, timeout_seconds: float) -> None:
        self.state_timeout_seconds = timeout_seconds
        logger.info(f"[StateCleanup] Timeout updated: {timeout_seconds}s")
