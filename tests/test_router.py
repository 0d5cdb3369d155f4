import pytest

from agentloop.models.base import BaseChatModel, ModelResponse
from agentloop.models.mock import MockChatModel
from agentloop.models.router import ModelRouter, NoProviderError, TaskType


class BrokenModel(BaseChatModel):
    def __init__(self):
        self.calls = 0

    def chat(self, messages, tools=None, temperature=None, max_tokens=None):
        self.calls += 1
        raise RuntimeError("provider down")


class EmbeddingModel(MockChatModel):
    def embed(self, text):
        return [1.0, 0.0]


def test_chain_prefers_task_route_then_general_then_registration_order():
    router = ModelRouter(
        {"a": MockChatModel(), "b": MockChatModel(), "c": MockChatModel()},
        routes={TaskType.FAST: ["c", "missing"], TaskType.GENERAL: ["b"]},
    )
    assert router.chain(TaskType.FAST) == ["c", "b", "a"]
    assert router.chain("planning") == ["b", "a", "c"]
    assert router.select(TaskType.FAST) == "c"


def test_chat_falls_through_failed_providers():
    broken = BrokenModel()
    router = ModelRouter(
        {"broken": broken, "mock": MockChatModel(["fallback answer"])},
        routes={TaskType.REASONING: ["broken", "mock"]},
    )
    response = router.chat([{"role": "user", "content": "hi"}], TaskType.REASONING)
    assert response.content == "fallback answer"
    assert broken.calls == 1


def test_chat_raises_last_error_when_all_fail():
    router = ModelRouter({"broken": BrokenModel()})
    with pytest.raises(RuntimeError, match="provider down"):
        router.chat([{"role": "user", "content": "hi"}])


def test_no_providers_raises_no_provider_error():
    router = ModelRouter({})
    with pytest.raises(NoProviderError):
        router.chat([{"role": "user", "content": "hi"}])
    with pytest.raises(NoProviderError):
        router.select(TaskType.GENERAL)


def test_generate_embedding_uses_configured_embedder():
    router = ModelRouter({"chat": MockChatModel(), "embed": EmbeddingModel()}, embedder="embed")
    assert router.generate_embedding("text") == [1.0, 0.0]
    assert ModelRouter({"chat": MockChatModel()}).generate_embedding("text") is None


def test_mock_model_scripts_and_usage():
    model = MockChatModel(
        [ModelResponse(content="costly", tokens_used=5, cost=0.5), "plain"],
        tokens_per_call=7,
        cost_per_call=0.01,
    )
    first = model.chat([{"role": "user", "content": "one"}])
    second = model.chat([{"role": "user", "content": "two"}])
    third = model.chat([{"role": "user", "content": "three"}])
    assert (first.tokens_used, first.cost) == (5, 0.5)
    assert (second.content, second.tokens_used, second.cost) == ("plain", 7, 0.01)
    assert third.content == "Mock response to: three"
    assert len(model.calls) == 3


def test_mock_model_tool_call_convention():
    tools = [{"type": "function", "function": {"name": "execute_shell", "parameters": {}}}]
    model = MockChatModel()
    response = model.chat(
        [{"role": "user", "content": 'USE_TOOL:execute_shell {"command": "ls"}'}], tools=tools
    )
    assert response.tool_calls[0].name == "execute_shell"
    assert response.tool_calls[0].arguments == {"command": "ls"}
