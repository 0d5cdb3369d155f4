"""Base model interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class ToolCall(BaseModel):
    id: str | None = None
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ModelResponse(BaseModel):
    content: str = ""
    tokens_used: int = 0
    cost: float = 0.0
    tool_calls: list[ToolCall] = Field(default_factory=list)


class BaseChatModel(ABC):
    """Abstract chat model interface."""

    @abstractmethod
    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        """Send chat request and return model response."""
        raise NotImplementedError

    def embed(self, text: str) -> list[float] | None:
        """Return an embedding vector, or None when the backend has none."""
        return None
