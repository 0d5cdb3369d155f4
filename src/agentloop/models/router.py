"""Task-type based routing across chat model providers."""

from __future__ import annotations

from enum import Enum
from typing import Any

from agentloop.models.base import BaseChatModel, ModelResponse
from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class TaskType(str, Enum):
    PLANNING = "planning"
    REASONING = "reasoning"
    CODING = "coding"
    FAST = "fast"
    GENERAL = "general"


class NoProviderError(RuntimeError):
    """Raised when no chat provider is configured at all."""


class ModelRouter:
    """Dispatch chat calls to providers by task type with a fallback chain.

    ``routes`` maps each task type to an ordered list of provider names.
    Providers missing from ``providers`` are skipped; when a route yields
    nothing the ``general`` route is tried, then every provider in
    registration order.
    """

    def __init__(
        self,
        providers: dict[str, BaseChatModel],
        routes: dict[TaskType, list[str]] | None = None,
        embedder: str | None = None,
    ) -> None:
        self.providers = dict(providers)
        self.routes = {TaskType(key): list(value) for key, value in (routes or {}).items()}
        self.embedder = embedder

    def available_providers(self) -> list[str]:
        return list(self.providers)

    def chain(self, task_type: TaskType | str) -> list[str]:
        task_type = TaskType(task_type)
        ordered: list[str] = []
        candidates = (
            self.routes.get(task_type, [])
            + self.routes.get(TaskType.GENERAL, [])
            + list(self.providers)
        )
        for name in candidates:
            if name in self.providers and name not in ordered:
                ordered.append(name)
        return ordered

    def select(self, task_type: TaskType | str) -> str:
        chain = self.chain(task_type)
        if not chain:
            raise NoProviderError("No AI providers available")
        return chain[0]

    def chat(
        self,
        messages: list[dict[str, Any]],
        task_type: TaskType | str = TaskType.GENERAL,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> ModelResponse:
        chain = self.chain(task_type)
        if not chain:
            raise NoProviderError("No AI providers available")
        last_error: Exception | None = None
        for name in chain:
            logger.debug("Using provider %s for %s task", name, TaskType(task_type).value)
            try:
                return self.providers[name].chat(
                    messages, tools=tools, temperature=temperature, max_tokens=max_tokens
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                logger.error("Provider %s failed: %s", name, exc)
        raise last_error or NoProviderError("No AI providers available")

    def generate_embedding(self, text: str) -> list[float] | None:
        names = [self.embedder] if self.embedder else list(self.providers)
        for name in names:
            provider = self.providers.get(name) if name else None
            if provider is None:
                continue
            vector = provider.embed(text)
            if vector:
                return vector
        return None
