"""Agent state owned by the orchestrator."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from agentloop.tasks import Plan, Task


class AgentPhase(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    COMPLETED = "completed"


class AgentState(BaseModel):
    phase: AgentPhase = AgentPhase.IDLE
    current_plan: Plan | None = None
    current_task: Task | None = None
    iteration_count: int = 0
    start_time: float = 0.0
    last_activity: float = 0.0
    total_tokens_used: int = 0
    total_cost: float = 0.0
    stop_reason: str | None = None

    def snapshot(self) -> "AgentState":
        return self.model_copy(deep=True)
