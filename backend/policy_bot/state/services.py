"""
StateServices - explicit construction and lifecycle of the state layer.

No module-level singletons: the FastAPI lifespan (or a test) builds one
container, calls init() inside the running event loop and shutdown() at the
end. Handlers reach it through application.bot_data / app.state.
"""
import logging
import time
from typing import Any, Callable, Optional

from policy_bot.core.config import Settings
from policy_bot.db.session import make_engine
from policy_bot.state.admin_state import AdminStateManager
from policy_bot.state.cleanup import StateCleanupService
from policy_bot.state.flow_context import FlowContextManager
from policy_bot.state.flow_state import FlowStateManager
from policy_bot.state.persistence import FlowStateStore
from policy_bot.state.registry import ChatStateRegistry
from policy_bot.telegram.awaiting import AwaitingInputs

logger = logging.getLogger(__name__)


class StateServices:
    def __init__(
        self,
        state_ttl_seconds: float,
        cleanup_interval_seconds: float,
        admin_timeout_seconds: float,
        admin_sweep_interval_seconds: float,
        flow_context_max_age_seconds: float,
        flow_state_store: Optional[FlowStateStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.flow_states = FlowStateManager(store=flow_state_store, clock=clock)
        self.admin_states = AdminStateManager(
            timeout_seconds=admin_timeout_seconds,
            sweep_interval_seconds=admin_sweep_interval_seconds,
            clock=clock,
        )
        self.flow_contexts = FlowContextManager(
            max_age_seconds=flow_context_max_age_seconds, clock=clock
        )
        self.awaiting = AwaitingInputs()
        self.cleanup = StateCleanupService(
            interval_seconds=cleanup_interval_seconds,
            state_timeout_seconds=state_ttl_seconds,
            clock=clock,
        )
        self.chat_state = ChatStateRegistry()
        self.started = False

        self.cleanup.register_state_provider(self.flow_states, "flow_states")
        self.cleanup.register_state_provider(self.admin_states, "admin_states")
        self.cleanup.register_state_provider(self.flow_contexts, "flow_contexts")

        self.chat_state.register("flow_states", self.flow_states.clear_for_context)
        self.chat_state.register("admin_states", self.admin_states.clear_for_context)
        self.chat_state.register("flow_contexts", self.flow_contexts.clear_for_context)
        self.chat_state.register("awaiting", self.awaiting.clear_for_context)

    @classmethod
    def from_settings(cls, settings: Settings) -> "StateServices":
        store = None
        if settings.FLOW_STATE_PERSISTENCE:
            store = FlowStateStore(make_engine(settings.DATABASE_URL))
        return cls(
            state_ttl_seconds=settings.STATE_TTL_SECONDS,
            cleanup_interval_seconds=settings.CLEANUP_INTERVAL_SECONDS,
            admin_timeout_seconds=settings.ADMIN_TIMEOUT_SECONDS,
            admin_sweep_interval_seconds=settings.ADMIN_SWEEP_INTERVAL_SECONDS,
            flow_context_max_age_seconds=settings.FLOW_CONTEXT_MAX_AGE_SECONDS,
            flow_state_store=store,
        )

    def init(self) -> None:
        """Load persisted flows and start the sweeps. Needs a running event loop."""
        if self.started:
            return
        self.flow_states.init()
        self.cleanup.init()
        self.admin_states.start()
        self.started = True
        logger.info("[StateServices] State layer started")

    def shutdown(self) -> None:
        if not self.started:
            return
        self.admin_states.stop()
        self.cleanup.shutdown()
        self.flow_states.shutdown()
        self.started = False
        logger.info("[StateServices] State layer stopped")

    def clear_chat_state(self, chat_id: Any, thread_id: Any = None, user_id: Optional[int] = None):
        return self.chat_state.clear_chat_state(chat_id, thread_id, user_id)
