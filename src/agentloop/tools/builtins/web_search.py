"""Web search via the DuckDuckGo Instant Answer API."""

from __future__ import annotations

from typing import Any

import httpx
from pydantic import BaseModel, Field

from agentloop.tools.base import Tool, ToolResult
from agentloop.util.logging import get_logger

logger = get_logger(__name__)

DUCKDUCKGO_URL = "https://api.duckduckgo.com/"


class WebSearchInput(BaseModel):
    query: str = Field(description="Search query")
    max_results: int = Field(default=5, ge=1, le=20)


class WebSearchTool(Tool):
    name = "web_search"
    description = "Search the web for information."
    input_schema = WebSearchInput

    def __init__(
        self,
        base_url: str = DUCKDUCKGO_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def run(self, data: BaseModel) -> ToolResult:
        input_data = WebSearchInput.model_validate(data)
        logger.info("Performing web search: %s", input_data.query)
        params = {"q": input_data.query, "format": "json", "no_html": "1"}
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.get(self.base_url, params=params)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Web search failed: %s", exc)
            return ToolResult(success=False, error=f"Web search failed: {exc}")
        results = _flatten_topics(payload.get("RelatedTopics") or [])[: input_data.max_results]
        return ToolResult(
            output={
                "query": input_data.query,
                "abstract": payload.get("AbstractText") or "",
                "source": payload.get("AbstractURL") or "",
                "results": results,
                "summary": f"Found {len(results)} results for: {input_data.query}",
            }
        )


def _flatten_topics(topics: list[dict[str, Any]]) -> list[dict[str, str]]:
    flattened: list[dict[str, str]] = []
    for topic in topics:
        # grouped topics nest their entries one level down
        if "Topics" in topic:
            flattened.extend(_flatten_topics(topic.get("Topics") or []))
            continue
        text = topic.get("Text")
        if text:
            flattened.append({"text": text, "url": topic.get("FirstURL", "")})
    return flattened
