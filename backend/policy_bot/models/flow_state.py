"""
Flow State Model - optional write-through copy of FlowStateManager entries.

WHY THIS EXISTS:
- In-memory flow state is lost on restart
- With FLOW_STATE_PERSISTENCE enabled, every save/clear is mirrored here
  and the rows are loaded back into memory on startup

The in-memory maps stay the source of truth while the process runs.
"""
from sqlalchemy import Column, Float, Integer, String, UniqueConstraint
from sqlalchemy.types import JSON

from policy_bot.db.base import Base


class FlowStateRecord(Base):
    """
    One in-progress flow for a policy inside a (chat, thread) context.

    Schema:
        context_key: "<chat_id>" or "<chat_id>:<thread_id>"
        policy_number: business key of the flow
        payload: JSON blob with the flow data (created_at excluded)
        created_at: POSIX seconds, drives sweep-based expiry
    """
    __tablename__ = "flow_states"
    __table_args__ = (
        UniqueConstraint("context_key", "policy_number", name="uq_flow_states_context_policy"),
    )

    id = Column(Integer, primary_key=True, index=True)
    context_key = Column(String(128), nullable=False, index=True)
    policy_number = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(Float, nullable=False)

    def __repr__(self):
        return f"<FlowStateRecord context_key={self.context_key} policy_number={self.policy_number}>"
