"""Plan, task and execution result models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return uuid4().hex


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Task(BaseModel):
    """Unit of work inside a plan. Dependencies are task ids within the same plan."""

    id: str = Field(default_factory=new_id)
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 5
    dependencies: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    notes: str | None = None


class Plan(BaseModel):
    id: str = Field(default_factory=new_id)
    objective: str
    strategy: str = ""
    estimated_steps: int = 0
    tasks: list[Task] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    # model usage spent producing this plan
    tokens_used: int = 0
    cost: float = 0.0

    def get_task(self, task_id: str | None) -> Task | None:
        if task_id is None:
            return None
        return next((task for task in self.tasks if task.id == task_id), None)

    def tasks_with_status(self, *statuses: TaskStatus) -> list[Task]:
        return [task for task in self.tasks if task.status in statuses]


class ToolCallRecord(BaseModel):
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None
    timestamp: float = Field(default_factory=time.time)


class ExecutionResult(BaseModel):
    """Outcome of driving one task; never mutated after it is returned."""

    model_config = ConfigDict(frozen=True)

    success: bool
    output: Any = None
    error: str | None = None
    tool_calls: tuple[ToolCallRecord, ...] = ()
    tokens_used: int = 0
    cost: float = 0.0
    attempts: int = 0
