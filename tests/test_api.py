import json
import threading

from fastapi.testclient import TestClient

from agentloop.api import AgentService, create_app
from agentloop.config import Settings
from agentloop.events import EventBus
from agentloop.memory import MemoryStore
from agentloop.models.mock import MockChatModel
from agentloop.models.router import ModelRouter
from agentloop.orchestrator import Orchestrator
from agentloop.tools.builtins.shell import ExecuteShellTool
from agentloop.safety.command_gate import SecureCommandGate
from agentloop.tools.registry import ToolRegistry

PLAN = json.dumps({"strategy": "direct", "tasks": [{"id": "t1", "description": "say hi"}]})


def _service(responder) -> AgentService:
    registry = ToolRegistry()
    registry.register(ExecuteShellTool(SecureCommandGate(["echo"])))
    orchestrator = Orchestrator(
        ModelRouter({"mock": MockChatModel(responder=responder)}),
        MemoryStore(),
        registry,
        settings=Settings(max_iterations=5),
        events=EventBus(),
    )
    return AgentService(orchestrator)


def _responder(messages, tools):
    system = messages[0]["content"]
    if "AI planner" in system:
        return PLAN
    if "task verifier" in system:
        return "COMPLETE"
    return "ok"


def test_health_and_tools():
    client = TestClient(create_app(_service(_responder)))
    assert client.get("/health").json() == {"status": "ok"}
    tools = client.get("/tools").json()
    assert [tool["name"] for tool in tools] == ["execute_shell"]


def test_directive_runs_in_background_and_reports_status():
    service = _service(_responder)
    client = TestClient(create_app(service))

    response = client.post("/directive", json={"directive": "Say hi"})
    assert response.status_code == 202
    assert response.json() == {"accepted": True, "status": "processing"}
    service.join(timeout=10)

    status = client.get("/status").json()
    assert status["running"] is False
    assert status["state"]["phase"] == "completed"
    assert status["state"]["current_plan"]["tasks"][0]["status"] == "completed"

    events = client.get("/events", params={"limit": 2}).json()
    assert [event["type"] for event in events][-1] == "agent_stopped"
    assert len(events) == 2

    memory = client.get("/memory").json()
    assert memory["stats"]["episodic"] >= 1


def test_empty_directive_rejected():
    client = TestClient(create_app(_service(_responder)))
    response = client.post("/directive", json={"directive": "   "})
    assert response.status_code == 400


def test_directive_rejected_while_busy():
    release = threading.Event()
    entered = threading.Event()

    def blocking(messages, tools):
        entered.set()
        release.wait(timeout=10)
        return _responder(messages, tools)

    service = _service(blocking)
    client = TestClient(create_app(service))
    try:
        assert client.post("/directive", json={"directive": "first"}).status_code == 202
        assert entered.wait(timeout=10)
        busy = client.post("/directive", json={"directive": "second"})
        assert busy.status_code == 409
        assert client.get("/status").json()["running"] is True
        assert client.post("/stop").json() == {"running": False}
    finally:
        release.set()
        service.join(timeout=10)
    assert client.get("/status").json()["state"]["stop_reason"] == "STOPPED"
