"""OpenAI-compatible chat model client."""

from __future__ import annotations

import json
import time
from typing import Any
from urllib.parse import urlparse, urlunparse

import httpx

from agentloop.models.base import BaseChatModel, ModelResponse, ToolCall
from agentloop.util.logging import get_logger

logger = get_logger(__name__)


class OpenAICompatError(RuntimeError):
    """Raised when the OpenAI-compatible backend returns an error."""


class OpenAICompatChatModel(BaseChatModel):
    """HTTP client for OpenAI-compatible chat/completions and embeddings."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: int = 60,
        max_response_bytes: int = 2_000_000,
        extra_headers: dict[str, str] | None = None,
        cost_per_token: float = 0.00001,
        embedding_model: str | None = None,
        transport: httpx.BaseTransport | None = None,
        max_retries: int = 3,
    ) -> None:
        normalized = base_url.strip()
        if not normalized.startswith(("http://", "https://")):
            normalized = f"http://{normalized}"
        self.base_url = normalized.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.max_response_bytes = max_response_bytes
        self.extra_headers = extra_headers or {}
        self.cost_per_token = cost_per_token
        self.embedding_model = embedding_model
        self.transport = transport
        self.max_retries = max(1, max_retries)

    def _build_url(self, endpoint: str) -> str:
        parsed = urlparse(self.base_url)
        base_path = (parsed.path or "").rstrip("/")
        for suffix in ("/chat/completions", "/embeddings"):
            if base_path.endswith(suffix):
                base_path = base_path[: -len(suffix)]
        segments = [segment for segment in base_path.split("/") if segment]
        if "v1" not in segments:
            base_path = f"{base_path}/v1"
        return urlunparse(
            parsed._replace(path=f"{base_path}/{endpoint}", params="", query="", fragment="")
        )

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._build_url(endpoint)
        headers = {"Authorization": f"Bearer {self.api_key}", **self.extra_headers}
        timeout = httpx.Timeout(self.timeout_seconds)
        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                with httpx.Client(timeout=timeout, transport=self.transport) as client:
                    response = client.post(url, headers=headers, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise OpenAICompatError(
                        f"Retryable error {response.status_code}: {response.text[:200]}"
                    )
                if response.status_code >= 400:
                    last_error = OpenAICompatError(
                        f"HTTP {response.status_code}: {response.text[:200]}"
                    )
                    break
                if len(response.content) > self.max_response_bytes:
                    raise OpenAICompatError("Response too large")
                try:
                    return response.json()
                except json.JSONDecodeError as exc:
                    raise OpenAICompatError("Malformed JSON response") from exc
            except (httpx.HTTPError, OpenAICompatError) as exc:
                last_error = exc
                logger.warning(
                    "Request to %s failed (attempt %d/%d): %s",
                    endpoint,
                    attempt + 1,
                    self.max_retries,
                    exc,
                )
                if attempt == self.max_retries - 1:
                    break
                time.sleep(2**attempt)
        raise OpenAICompatError(f"OpenAI-compatible request failed: {last_error}")

    def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": 0.7 if temperature is None else temperature,
            "max_tokens": max_tokens or 4096,
        }
        if tools:
            payload["tools"] = tools
        data = self._post("chat/completions", payload)
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        content = message.get("content")
        usage = data.get("usage") or {}
        tokens_used = int(usage.get("total_tokens") or 0)
        return ModelResponse(
            content=content if isinstance(content, str) else "",
            tokens_used=tokens_used,
            cost=tokens_used * self.cost_per_token,
            tool_calls=_parse_tool_calls(message.get("tool_calls")),
        )

    def embed(self, text: str) -> list[float] | None:
        if not self.embedding_model:
            return None
        try:
            data = self._post("embeddings", {"model": self.embedding_model, "input": text})
        except OpenAICompatError as exc:
            logger.error("Failed to generate embedding: %s", exc)
            return None
        items = data.get("data") or []
        if not items:
            return None
        vector = items[0].get("embedding")
        return [float(value) for value in vector] if isinstance(vector, list) else None


def _parse_tool_calls(raw: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    if not isinstance(raw, list):
        return calls
    for item in raw:
        function = item.get("function") if isinstance(item, dict) else None
        if not isinstance(function, dict) or not function.get("name"):
            continue
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                arguments = {"_raw": arguments}
        if not isinstance(arguments, dict):
            arguments = {"value": arguments}
        calls.append(ToolCall(id=item.get("id"), name=function["name"], arguments=arguments))
    return calls
