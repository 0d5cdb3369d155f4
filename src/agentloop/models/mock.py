"""Mock chat model for offline runs and tests."""

from __future__ import annotations

import json
from typing import Any, Callable, Union

from agentloop.models.base import BaseChatModel, ModelResponse, ToolCall

Responder = Callable[[list[dict[str, Any]], list[dict[str, Any]] | None], Union[ModelResponse, str]]
ScriptItem = Union[ModelResponse, str, Responder]


class MockChatModel(BaseChatModel):
    """Deterministic mock model.

    Scripted items are consumed in order; each may be a ``ModelResponse``, a
    plain string (returned as content) or a callable receiving the messages and
    tool schemas. Once the script is exhausted ``responder`` is consulted, and
    without one the model echoes the last message back.
    """

    def __init__(
        self,
        scripted: list[ScriptItem] | None = None,
        responder: Responder | None = None,
        tokens_per_call: int = 10,
        cost_per_call: float = 0.0,
    ) -> None:
        self._scripted = list(scripted or [])
        self._responder = responder
        self.tokens_per_call = tokens_per_call
        self.cost_per_call = cost_per_call
        self.calls: list[dict[str, Any]] = []

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        self.calls.append(
            {"messages": [dict(m) for m in messages], "tools": tools, "temperature": temperature}
        )
        if self._scripted:
            item = self._scripted.pop(0)
        elif self._responder is not None:
            item = self._responder
        else:
            item = self._default_response
        if callable(item) and not isinstance(item, ModelResponse):
            item = item(messages, tools)
        return self._with_usage(item)

    def _with_usage(self, item: ModelResponse | str) -> ModelResponse:
        if isinstance(item, str):
            item = ModelResponse(content=item)
        if item.tokens_used == 0 and item.cost == 0.0:
            item = item.model_copy(
                update={"tokens_used": self.tokens_per_call, "cost": self.cost_per_call}
            )
        return item

    def _default_response(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> ModelResponse:
        last = messages[-1].get("content") if messages else ""
        if isinstance(last, str) and last.startswith("USE_TOOL:"):
            response = self._tool_call_from_prompt(last, tools)
            if response is not None:
                return response
        return ModelResponse(content=f"Mock response to: {last}")

    def _tool_call_from_prompt(
        self, prompt: str, tools: list[dict[str, Any]] | None
    ) -> ModelResponse | None:
        stripped = prompt[len("USE_TOOL:") :].strip()
        if not tools or not stripped:
            return None
        parts = stripped.split(maxsplit=1)
        tool_name = parts[0]
        if tool_name not in {tool["function"]["name"] for tool in tools}:
            return None
        try:
            arguments = json.loads(parts[1]) if len(parts) > 1 else {}
        except json.JSONDecodeError:
            return None
        if not isinstance(arguments, dict):
            return None
        return ModelResponse(tool_calls=[ToolCall(name=tool_name, arguments=arguments)])
