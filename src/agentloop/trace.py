"""Trace recorder for agent runs."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agentloop.events import AgentEvent
from agentloop.util.logging import redact


@dataclass
class TraceRecorder:
    """Event subscriber that writes one JSON trace per directive."""

    trace_id: str
    workspace_dir: str
    started_at: float = field(default_factory=time.time)
    events: list[dict[str, Any]] = field(default_factory=list)

    def __call__(self, event: AgentEvent) -> None:
        self.record(event.type.value, event.payload, timestamp=event.timestamp)

    def record(self, event_type: str, payload: dict[str, Any], timestamp: float | None = None) -> None:
        self.events.append(
            {
                "type": event_type,
                "timestamp": timestamp if timestamp is not None else time.time(),
                "payload": _redact_payload(payload),
            }
        )

    def finalize(self, stats: dict[str, Any]) -> str:
        trace_dir = Path(self.workspace_dir) / "traces"
        trace_dir.mkdir(parents=True, exist_ok=True)
        trace_path = trace_dir / f"{self.trace_id}.json"
        payload = {
            "trace_id": self.trace_id,
            "started_at": self.started_at,
            "ended_at": time.time(),
            "stats": stats,
            "events": self.events,
        }
        trace_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        return str(trace_path)


def _redact_payload(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {key: _redact_payload(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact_payload(item) for item in value]
    return value
