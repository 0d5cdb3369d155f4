"""Base tool definitions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ValidationError

from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class ToolResult(BaseModel):
    success: bool = True
    output: Any = None
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.output is not None:
            payload["output"] = self.output
        if self.error:
            payload["error"] = self.error
        return payload


class Tool(ABC):
    """Abstract tool."""

    name: str
    description: str
    input_schema: type[BaseModel]

    @abstractmethod
    def run(self, data: BaseModel) -> ToolResult:
        """Execute the tool on validated input."""
        raise NotImplementedError

    def execute(self, arguments: dict[str, Any]) -> ToolResult:
        """Validate ``arguments`` and run the tool, turning failures into results."""
        try:
            data = self.input_schema.model_validate(arguments or {})
        except ValidationError as exc:
            return ToolResult(success=False, error=f"Invalid arguments: {exc.errors()[:3]}")
        try:
            return self.run(data)
        except Exception as exc:  # noqa: BLE001
            logger.error("Tool %s raised: %s", self.name, exc)
            return ToolResult(success=False, error=str(exc))

    def openai_schema(self) -> dict[str, Any]:
        """Return OpenAI-compatible tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema.model_json_schema(),
            },
        }
