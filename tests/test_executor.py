from pydantic import BaseModel

from agentloop.executor import Executor
from agentloop.models.base import ModelResponse, ToolCall
from agentloop.models.mock import MockChatModel
from agentloop.models.router import ModelRouter
from agentloop.tasks import Task
from agentloop.tools.base import Tool, ToolResult
from agentloop.tools.registry import ToolRegistry


class AddInput(BaseModel):
    a: int
    b: int


class AddTool(Tool):
    name = "add"
    description = "Add two integers."
    input_schema = AddInput

    def run(self, data: BaseModel) -> ToolResult:
        payload = AddInput.model_validate(data)
        return ToolResult(output={"sum": payload.a + payload.b})


def _is_verifier(messages) -> bool:
    return "task verifier" in messages[0]["content"]


def _executor(model, registry=None, **kwargs) -> Executor:
    if registry is None:
        registry = ToolRegistry()
        registry.register(AddTool())
    return Executor(ModelRouter({"mock": model}), registry, **kwargs)


def _task() -> Task:
    return Task(description="Add 2 and 3", acceptance_criteria=["sum reported"])


def test_tool_calls_are_logged_and_answer_verified():
    model = MockChatModel(
        [
            ModelResponse(
                tool_calls=[
                    ToolCall(name="nope", arguments={}),
                    ToolCall(name="add", arguments={"a": 2}),
                    ToolCall(name="add", arguments={"a": 2, "b": 3}),
                ]
            ),
            "The sum is 5",
            "COMPLETE: sum reported",
        ]
    )
    result = _executor(model).execute_task(_task())
    assert result.success
    assert result.output == "The sum is 5"
    assert result.attempts == 2
    assert [call.tool_name for call in result.tool_calls] == ["nope", "add", "add"]
    assert result.tool_calls[0].error == "Tool 'nope' not found"
    assert result.tool_calls[1].error.startswith("Invalid arguments")
    assert result.tool_calls[2].result == {"success": True, "output": {"sum": 5}}
    assert result.tokens_used == 30

    feedback = model.calls[1]["messages"][-1]["content"]
    assert feedback.startswith("Tool execution results:")
    assert "Tool 'nope' not found" in feedback
    assert model.calls[1]["tools"][0]["function"]["name"] == "add"


def test_never_complete_fails_after_max_attempts():
    def responder(messages, tools):
        if _is_verifier(messages):
            return "INCOMPLETE: nothing was added"
        return "I am still thinking"

    result = _executor(MockChatModel(responder=responder), max_attempts=5).execute_task(_task())
    assert not result.success
    assert result.attempts == 5
    assert "after 5 attempts" in result.error
    assert result.output == "I am still thinking"


def test_model_errors_are_retried_within_the_task():
    calls = {"count": 0}

    def responder(messages, tools):
        calls["count"] += 1
        raise RuntimeError("rate limited")

    result = _executor(MockChatModel(responder=responder), max_attempts=3).execute_task(_task())
    assert not result.success
    assert calls["count"] == 3
    assert result.error == "Failed after 3 attempts: rate limited"


def test_empty_answer_is_nudged_not_verified():
    model = MockChatModel(["   ", "Sum is 5", "COMPLETE"])
    result = _executor(model).execute_task(_task())
    assert result.success
    assert result.attempts == 2
    assert "No answer was given" in model.calls[1]["messages"][-1]["content"]


def test_cost_cap_stops_execution():
    model = MockChatModel(responder=lambda messages, tools: "working", cost_per_call=0.1)
    result = _executor(model, max_cost_per_session=0.05).execute_task(_task())
    assert not result.success
    assert result.error.startswith("Cost limit exceeded")
    assert len(model.calls) == 1


def test_cost_cap_includes_session_spend():
    model = MockChatModel(["Sum is 5", "COMPLETE"], cost_per_call=0.02)
    result = _executor(model, max_cost_per_session=5.0).execute_task(_task(), session_cost=4.99)
    assert not result.success
    assert result.error.startswith("Cost limit exceeded")


def test_execute_with_retry_backs_off_linearly_and_aggregates():
    delays = []

    def responder(messages, tools):
        if _is_verifier(messages):
            return "INCOMPLETE: no"
        return "nope"

    model = MockChatModel(responder=responder, cost_per_call=0.01)
    executor = _executor(model, max_attempts=1, backoff_seconds=1.0, sleep=delays.append)
    result = executor.execute_with_retry(_task(), max_retries=3)
    assert not result.success
    assert delays == [1.0, 2.0]
    assert result.attempts == 3
    assert result.tokens_used == 60
    assert abs(result.cost - 0.06) < 1e-9


def test_execute_with_retry_stops_on_success_and_cost_limit():
    delays = []
    model = MockChatModel(["partial", "INCOMPLETE: more", "done", "COMPLETE"])
    executor = _executor(model, max_attempts=1, sleep=delays.append)
    result = executor.execute_with_retry(_task(), max_retries=3)
    assert result.success
    assert delays == [1.0]

    pricey = MockChatModel(responder=lambda messages, tools: "x", cost_per_call=1.0)
    executor = _executor(pricey, max_cost_per_session=0.5, sleep=delays.append)
    result = executor.execute_with_retry(_task(), max_retries=3)
    assert result.error.startswith("Cost limit exceeded")
    assert len(pricey.calls) == 1
