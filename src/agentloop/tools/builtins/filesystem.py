"""Filesystem tools restricted to the workspace."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

from agentloop.tools.base import Tool, ToolResult
from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class WorkspaceTool(Tool):
    """Shared path handling for tools rooted at the workspace directory."""

    def __init__(self, workspace_dir: str | Path) -> None:
        self.workspace_dir = Path(workspace_dir).resolve()
        self.workspace_dir.mkdir(parents=True, exist_ok=True)

    def _safe_path(self, path: str) -> Path:
        target = (self.workspace_dir / path).resolve()
        if target != self.workspace_dir and self.workspace_dir not in target.parents:
            raise ValueError(f"Path traversal detected: {path}")
        return target

    def _relative(self, target: Path) -> str:
        return str(target.relative_to(self.workspace_dir)) or "."


class PathInput(BaseModel):
    path: str = Field(description="Path relative to the workspace")


class WriteFileInput(BaseModel):
    path: str = Field(description="Path relative to the workspace")
    content: str = Field(description="Content to write")


class ListDirectoryInput(BaseModel):
    path: str = Field(default=".", description="Directory relative to the workspace")


class ReadFileTool(WorkspaceTool):
    name = "read_file"
    description = "Read the contents of a file in the workspace."
    input_schema = PathInput

    def __init__(self, workspace_dir: str | Path, max_chars: int = 100_000) -> None:
        super().__init__(workspace_dir)
        self.max_chars = max_chars

    def run(self, data: BaseModel) -> ToolResult:
        input_data = PathInput.model_validate(data)
        target = self._safe_path(input_data.path)
        if not target.is_file():
            return ToolResult(success=False, error=f"File not found: {input_data.path}")
        logger.info("Reading file %s", target)
        content = target.read_text(encoding="utf-8", errors="replace")
        truncated = len(content) > self.max_chars
        return ToolResult(
            output={
                "path": self._relative(target),
                "content": content[: self.max_chars],
                "truncated": truncated,
            }
        )


class WriteFileTool(WorkspaceTool):
    name = "write_file"
    description = "Write content to a file in the workspace, creating parent directories."
    input_schema = WriteFileInput

    def run(self, data: BaseModel) -> ToolResult:
        input_data = WriteFileInput.model_validate(data)
        target = self._safe_path(input_data.path)
        logger.info("Writing file %s", target)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(input_data.content, encoding="utf-8")
        return ToolResult(
            output={"path": self._relative(target), "bytes": len(input_data.content.encode())}
        )


class ListDirectoryTool(WorkspaceTool):
    name = "list_directory"
    description = "List the entries of a directory in the workspace."
    input_schema = ListDirectoryInput

    def run(self, data: BaseModel) -> ToolResult:
        input_data = ListDirectoryInput.model_validate(data)
        target = self._safe_path(input_data.path)
        if not target.is_dir():
            return ToolResult(success=False, error=f"Directory not found: {input_data.path}")
        items = [
            {"name": entry.name, "type": "directory" if entry.is_dir() else "file"}
            for entry in sorted(target.iterdir(), key=lambda item: item.name)
        ]
        return ToolResult(output={"path": self._relative(target), "items": items})


class CreateDirectoryTool(WorkspaceTool):
    name = "create_directory"
    description = "Create a directory (and parents) in the workspace."
    input_schema = PathInput

    def run(self, data: BaseModel) -> ToolResult:
        input_data = PathInput.model_validate(data)
        target = self._safe_path(input_data.path)
        logger.info("Creating directory %s", target)
        target.mkdir(parents=True, exist_ok=True)
        return ToolResult(output={"path": self._relative(target)})
