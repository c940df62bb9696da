"""Conversation state layer: per-(chat, thread) keys, flow/admin/sub-flow stores, sweeps."""
from policy_bot.state.admin_state import AdminStateManager
from policy_bot.state.cleanup import StateCleanupService
from policy_bot.state.flow_context import FlowContextManager
from policy_bot.state.flow_state import FlowStateManager
from policy_bot.state.keys import StateKeyManager, ThreadSafeStateMap
from policy_bot.state.registry import ChatStateRegistry

__all__ = [
    "AdminStateManager",
    "ChatStateRegistry",
    "FlowContextManager",
    "FlowStateManager",
    "StateCleanupService",
    "StateKeyManager",
    "ThreadSafeStateMap",
]
