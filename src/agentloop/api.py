"""FastAPI service exposing the agent loop."""

from __future__ import annotations

import threading
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from agentloop.config import Settings
from agentloop.events import EventLog
from agentloop.factory import build_orchestrator
from agentloop.orchestrator import Orchestrator
from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class DirectiveRequest(BaseModel):
    directive: str


class DirectiveResponse(BaseModel):
    accepted: bool
    status: str


class AgentService:
    """Owns one orchestrator and the worker thread that runs its directives."""

    def __init__(self, orchestrator: Orchestrator | None = None, settings: Settings | None = None) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self.event_log = EventLog()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        if orchestrator is not None:
            orchestrator.events.subscribe(self.event_log)

    @property
    def orchestrator(self) -> Orchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator(self._settings or Settings())
            self._orchestrator.events.subscribe(self.event_log)
        return self._orchestrator

    def busy(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def submit(self, directive: str) -> bool:
        orchestrator = self.orchestrator
        with self._lock:
            if self.busy() or orchestrator.is_running():
                return False
            self._worker = threading.Thread(
                target=orchestrator.process_directive,
                args=(directive,),
                name="agentloop-directive",
                daemon=True,
            )
            self._worker.start()
        return True

    def join(self, timeout: float | None = None) -> None:
        worker = self._worker
        if worker is not None:
            worker.join(timeout)


def create_app(service: AgentService | None = None) -> FastAPI:
    service = service or AgentService()
    app = FastAPI(title="agentloop")
    app.state.service = service

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/status")
    def status() -> dict[str, Any]:
        orchestrator = service.orchestrator
        state = orchestrator.get_state()
        return {"running": orchestrator.is_running(), "state": state.model_dump(mode="json")}

    @app.post("/directive", status_code=202, response_model=DirectiveResponse)
    def submit_directive(request: DirectiveRequest) -> DirectiveResponse:
        directive = request.directive.strip()
        if not directive:
            raise HTTPException(status_code=400, detail="Directive must not be empty")
        if not service.submit(directive):
            raise HTTPException(status_code=409, detail="Agent is already processing a directive")
        logger.info("Directive accepted")
        return DirectiveResponse(accepted=True, status="processing")

    @app.get("/events")
    def events(limit: int = 50) -> list[dict[str, Any]]:
        return [event.model_dump(mode="json") for event in service.event_log.recent(limit)]

    @app.get("/memory")
    def memory(limit: int = 10) -> dict[str, Any]:
        store = service.orchestrator.memory
        return {
            "stats": store.stats(),
            "working": [item.model_dump(mode="json") for item in store.get_working()],
            "episodic": [item.model_dump(mode="json") for item in store.get_episodic(limit)],
        }

    @app.get("/tools")
    def tools() -> list[dict[str, str]]:
        return [
            {"name": tool.name, "description": tool.description}
            for tool in service.orchestrator.registry.list()
        ]

    @app.post("/stop")
    def stop() -> dict[str, Any]:
        service.orchestrator.stop()
        return {"running": service.orchestrator.is_running()}

    return app


app = create_app()
