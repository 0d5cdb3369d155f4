"""HTTP request tool."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field

from agentloop.tools.base import Tool, ToolResult

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}


class HttpRequestInput(BaseModel):
    url: str
    method: str = Field(default="GET", description="HTTP method (GET, POST, ...)")
    data: Any = Field(default=None, description="JSON request body")
    headers: dict[str, str] | None = None
    timeout_seconds: int = Field(default=15, ge=1, le=60)
    max_bytes: int = Field(default=200_000, ge=1, le=1_000_000)


class HttpRequestTool(Tool):
    name = "http_request"
    description = "Make an HTTP request and return status, headers and a capped body."
    input_schema = HttpRequestInput

    def __init__(self, transport: httpx.BaseTransport | None = None) -> None:
        self.transport = transport

    def run(self, data: BaseModel) -> ToolResult:
        input_data = HttpRequestInput.model_validate(data)
        method = input_data.method.upper()
        if method not in ALLOWED_METHODS:
            return ToolResult(success=False, error=f"Unsupported HTTP method: {input_data.method}")
        try:
            with httpx.Client(
                timeout=input_data.timeout_seconds, transport=self.transport
            ) as client:
                response = client.request(
                    method,
                    input_data.url,
                    json=input_data.data,
                    headers=input_data.headers,
                )
        except httpx.HTTPError as exc:
            return ToolResult(success=False, error=f"HTTP request failed: {exc}")
        body = response.content[: input_data.max_bytes].decode("utf-8", errors="ignore")
        output = {
            "status": response.status_code,
            "headers": dict(response.headers),
            "body": body,
        }
        if response.status_code >= 400:
            return ToolResult(
                success=False, output=output, error=f"HTTP {response.status_code}"
            )
        return ToolResult(output=output)
