from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class CleanupResult(BaseModel):
    cleaned: int
    provider_results: Dict[str, int]
    timestamp: str


class CleanupStats(BaseModel):
    is_running: bool
    providers_count: int
    interval_seconds: float
    timeout_seconds: float
    providers: List[str]


class FlowStats(BaseModel):
    total_contexts: int
    total_flows: int
    context_breakdown: Dict[str, int]
    persistence_enabled: bool


class AdminStats(BaseModel):
    active_states: int
    operations: Dict[str, int]


class StateStatsResponse(BaseModel):
    cleanup: CleanupStats
    flow_states: FlowStats
    admin_states: AdminStats
    flow_contexts: int


class TimeoutUpdate(BaseModel):
    timeout_seconds: float = Field(..., description="Seconds of inactivity before a state is orphaned")


class ChatStateCleared(BaseModel):
    cleared: int
    results: Dict[str, int]
    chat_id: int
    thread_id: Optional[str] = None
