"""Lifecycle events published by the orchestrator."""

from __future__ import annotations

import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    DIRECTIVE_RECEIVED = "directive_received"
    PHASE_CHANGED = "phase_changed"
    THINKING_COMPLETED = "thinking_completed"
    PLAN_CREATED = "plan_created"
    PLAN_REVISED = "plan_revised"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    REFLECTION_COMPLETED = "reflection_completed"
    PLAN_COMPLETED = "plan_completed"
    PLAN_STALLED = "plan_stalled"
    COST_LIMIT_REACHED = "cost_limit_reached"
    BUDGET_EXHAUSTED = "budget_exhausted"
    ERROR = "error"
    AGENT_STOPPED = "agent_stopped"


class AgentEvent(BaseModel):
    type: EventType
    timestamp: float = Field(default_factory=time.time)
    payload: dict[str, Any] = Field(default_factory=dict)


Subscriber = Callable[[AgentEvent], None]


class EventBus:
    """Synchronous publish/subscribe channel.

    Subscribers run on the emitting thread. A subscriber that raises is
    logged and skipped; emitting with no subscribers is a no-op.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event_type: EventType, payload: dict[str, Any] | None = None) -> AgentEvent:
        event = AgentEvent(type=event_type, payload=payload or {})
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                logger.error("Event subscriber failed on %s: %s", event.type.value, exc)
        return event


class EventLog:
    """Subscriber that keeps the most recent events in memory."""

    def __init__(self, max_events: int = 500) -> None:
        self._events: deque[AgentEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def __call__(self, event: AgentEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int | None = None) -> list[AgentEvent]:
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def of_type(self, event_type: EventType) -> list[AgentEvent]:
        return [event for event in self.recent() if event.type == event_type]
