"""Shell tool backed by the secure command gate."""

from __future__ import annotations

from pydantic import BaseModel, Field

from agentloop.safety.command_gate import SecureCommandGate
from agentloop.tools.base import Tool, ToolResult


class ShellInput(BaseModel):
    command: str = Field(description="Shell command to execute")


class ExecuteShellTool(Tool):
    name = "execute_shell"
    description = (
        "Execute a shell command. Only whitelisted base commands are allowed and "
        "dangerous constructs are rejected."
    )
    input_schema = ShellInput

    def __init__(self, gate: SecureCommandGate) -> None:
        self.gate = gate

    def run(self, data: BaseModel) -> ToolResult:
        input_data = ShellInput.model_validate(data)
        result = self.gate.execute(input_data.command)
        output = {
            "stdout": result.stdout,
            "stderr": result.stderr,
            "exit_code": result.exit_code,
        }
        if not result.success:
            return ToolResult(success=False, output=output, error=result.error)
        return ToolResult(output=output)
