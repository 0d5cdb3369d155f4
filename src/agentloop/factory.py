"""Shared construction helpers for models, tools, memory and the orchestrator."""

from __future__ import annotations

import json
from pathlib import Path

from agentloop.config import Settings
from agentloop.events import EventBus
from agentloop.memory import MemoryStore, SqliteMemoryBackend
from agentloop.models.base import BaseChatModel
from agentloop.models.mock import MockChatModel
from agentloop.models.openai_compat import OpenAICompatChatModel
from agentloop.models.router import ModelRouter, NoProviderError, TaskType
from agentloop.orchestrator import Orchestrator
from agentloop.safety.command_gate import SecureCommandGate
from agentloop.tools.builtins.filesystem import (
    CreateDirectoryTool,
    ListDirectoryTool,
    ReadFileTool,
    WriteFileTool,
)
from agentloop.tools.builtins.http_request import HttpRequestTool
from agentloop.tools.builtins.shell import ExecuteShellTool
from agentloop.tools.builtins.web_search import WebSearchTool
from agentloop.tools.registry import ToolRegistry


def build_router(
    settings: Settings,
    use_mock: bool = False,
    mock_model: BaseChatModel | None = None,
) -> ModelRouter:
    """Build the provider router.

    Without an API key and without ``use_mock`` there is nothing to route to,
    which is fatal at startup.
    """
    if use_mock or mock_model is not None:
        return ModelRouter({"mock": mock_model or MockChatModel()})
    if not settings.openai_api_key:
        raise NoProviderError("No AI providers available: set OPENAI_API_KEY or use mock mode")
    extra_headers = None
    if settings.openai_extra_headers:
        extra_headers = json.loads(settings.openai_extra_headers)

    per_task = {
        TaskType.PLANNING: settings.planning_model,
        TaskType.REASONING: settings.reasoning_model,
        TaskType.CODING: settings.coding_model,
        TaskType.FAST: settings.fast_model,
        TaskType.GENERAL: settings.default_model,
    }
    providers: dict[str, BaseChatModel] = {}
    for model_name in [settings.default_model, *per_task.values()]:
        if model_name in providers:
            continue
        providers[model_name] = OpenAICompatChatModel(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=model_name,
            timeout_seconds=settings.openai_timeout_seconds,
            extra_headers=extra_headers,
            cost_per_token=settings.cost_per_token,
            embedding_model=settings.embedding_model if settings.enable_vector_embeddings else None,
        )
    routes = {
        task_type: [model_name, settings.default_model] for task_type, model_name in per_task.items()
    }
    embedder = settings.default_model if settings.enable_vector_embeddings else None
    return ModelRouter(providers, routes=routes, embedder=embedder)


def build_gate(settings: Settings) -> SecureCommandGate:
    return SecureCommandGate(
        allowed_commands=settings.shell_whitelist(),
        enabled=settings.enable_shell_sandbox,
        timeout_seconds=settings.max_shell_execution_seconds,
        max_output_bytes=settings.max_shell_output_bytes,
        cwd=settings.workspace_dir,
    )


def build_registry(settings: Settings, gate: SecureCommandGate | None = None) -> ToolRegistry:
    Path(settings.workspace_dir).mkdir(parents=True, exist_ok=True)
    registry = ToolRegistry()
    registry.register_all(
        [
            ExecuteShellTool(gate or build_gate(settings)),
            ReadFileTool(settings.workspace_dir),
            WriteFileTool(settings.workspace_dir),
            ListDirectoryTool(settings.workspace_dir),
            CreateDirectoryTool(settings.workspace_dir),
            HttpRequestTool(),
            WebSearchTool(),
        ]
    )
    return registry


def build_memory(settings: Settings, router: ModelRouter | None = None) -> MemoryStore:
    backend = None
    if settings.enable_persistent_memory:
        backend = SqliteMemoryBackend(settings.memory_db_path)
    embedder = None
    if router is not None and settings.enable_vector_embeddings:
        embedder = router.generate_embedding
    memory = MemoryStore(
        max_working=settings.working_memory_size,
        max_episodic=settings.episodic_memory_size,
        backend=backend,
        embedder=embedder,
    )
    if backend is not None:
        memory.restore()
    return memory


def build_orchestrator(
    settings: Settings,
    router: ModelRouter | None = None,
    *,
    use_mock: bool = False,
    registry: ToolRegistry | None = None,
    memory: MemoryStore | None = None,
    events: EventBus | None = None,
) -> Orchestrator:
    router = router or build_router(settings, use_mock=use_mock)
    return Orchestrator(
        router=router,
        memory=memory or build_memory(settings, router),
        registry=registry or build_registry(settings),
        settings=settings,
        events=events,
    )
