from policy_bot.models.flow_state import FlowStateRecord

__all__ = ["FlowStateRecord"]
