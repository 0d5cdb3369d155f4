"""Tool registry."""

from __future__ import annotations

from typing import Any, Iterable

from agentloop.tools.base import Tool
from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Registry of tools available to the executor."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register(tool)

    def get_tool(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list(self) -> list[Tool]:
        return list(self._tools.values())

    def get_tool_definitions(self) -> list[dict[str, Any]]:
        return [tool.openai_schema() for tool in self._tools.values()]
