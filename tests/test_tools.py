from __future__ import annotations

import json

import httpx
from pydantic import BaseModel

from agentloop.safety.command_gate import SecureCommandGate
from agentloop.tools.base import Tool, ToolResult
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


class EchoInput(BaseModel):
    text: str


class EchoTool(Tool):
    name = "echo"
    description = "Echo text back."
    input_schema = EchoInput

    def run(self, data: BaseModel) -> ToolResult:
        return ToolResult(output={"text": EchoInput.model_validate(data).text})


class ExplodingTool(EchoTool):
    name = "explode"

    def run(self, data: BaseModel) -> ToolResult:
        raise RuntimeError("boom")


def test_registry_definitions_use_openai_shape():
    registry = ToolRegistry()
    registry.register_all([EchoTool(), ExplodingTool()])
    definitions = registry.get_tool_definitions()
    assert [item["function"]["name"] for item in definitions] == ["echo", "explode"]
    assert definitions[0]["type"] == "function"
    assert "text" in definitions[0]["function"]["parameters"]["properties"]
    assert registry.get_tool("missing") is None
    assert registry.names() == ["echo", "explode"]


def test_register_replaces_tool_with_same_name():
    registry = ToolRegistry()
    first = EchoTool()
    second = EchoTool()
    registry.register(first)
    registry.register(second)
    assert registry.get_tool("echo") is second
    assert len(registry.list()) == 1


def test_execute_reports_invalid_arguments():
    result = EchoTool().execute({"wrong": 1})
    assert not result.success
    assert result.error.startswith("Invalid arguments")


def test_execute_turns_exceptions_into_results():
    result = ExplodingTool().execute({"text": "hi"})
    assert not result.success
    assert result.error == "boom"
    assert result.to_payload() == {"success": False, "error": "boom"}


def test_filesystem_tools_round_trip(tmp_path):
    write = WriteFileTool(tmp_path)
    read = ReadFileTool(tmp_path)
    listing = ListDirectoryTool(tmp_path)
    mkdir = CreateDirectoryTool(tmp_path)

    assert mkdir.execute({"path": "notes"}).success
    written = write.execute({"path": "notes/todo.txt", "content": "buy milk"})
    assert written.success
    assert written.output == {"path": "notes/todo.txt", "bytes": 8}

    content = read.execute({"path": "notes/todo.txt"})
    assert content.output["content"] == "buy milk"
    assert content.output["truncated"] is False

    listed = listing.execute({})
    assert listed.output["items"] == [{"name": "notes", "type": "directory"}]
    nested = listing.execute({"path": "notes"})
    assert nested.output["items"] == [{"name": "todo.txt", "type": "file"}]


def test_read_file_truncates_and_reports_missing(tmp_path):
    (tmp_path / "big.txt").write_text("x" * 50, encoding="utf-8")
    tool = ReadFileTool(tmp_path, max_chars=10)
    result = tool.execute({"path": "big.txt"})
    assert result.output["content"] == "x" * 10
    assert result.output["truncated"] is True

    missing = tool.execute({"path": "nope.txt"})
    assert not missing.success
    assert "File not found" in missing.error


def test_filesystem_tools_reject_traversal(tmp_path):
    workspace = tmp_path / "ws"
    (tmp_path / "secret.txt").write_text("hidden", encoding="utf-8")
    for tool, arguments in (
        (ReadFileTool(workspace), {"path": "../secret.txt"}),
        (WriteFileTool(workspace), {"path": "../escape.txt", "content": "x"}),
        (ListDirectoryTool(workspace), {"path": ".."}),
        (CreateDirectoryTool(workspace), {"path": "/tmp/outside"}),
    ):
        result = tool.execute(arguments)
        assert not result.success
        assert "Path traversal detected" in result.error
    assert not (tmp_path / "escape.txt").exists()


def test_shell_tool_returns_output_and_gate_errors():
    tool = ExecuteShellTool(SecureCommandGate(["echo"]))
    ok = tool.execute({"command": "echo test"})
    assert ok.success
    assert ok.output["stdout"].strip() == "test"
    assert ok.output["exit_code"] == 0

    blocked = tool.execute({"command": "cat /etc/passwd"})
    assert not blocked.success
    assert "not in the allowed list" in blocked.error


def test_http_request_tool_sends_json_and_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        seen["token"] = request.headers.get("x-token")
        return httpx.Response(201, json={"ok": True})

    tool = HttpRequestTool(transport=httpx.MockTransport(handler))
    result = tool.execute(
        {
            "url": "https://example.test/items",
            "method": "post",
            "data": {"name": "widget"},
            "headers": {"X-Token": "abc"},
        }
    )
    assert result.success
    assert result.output["status"] == 201
    assert json.loads(result.output["body"]) == {"ok": True}
    assert seen == {"method": "POST", "body": {"name": "widget"}, "token": "abc"}


def test_http_request_tool_reports_error_status_and_bad_method():
    tool = HttpRequestTool(
        transport=httpx.MockTransport(lambda request: httpx.Response(404, text="missing"))
    )
    result = tool.execute({"url": "https://example.test/"})
    assert not result.success
    assert result.error == "HTTP 404"
    assert result.output["body"] == "missing"

    bad = tool.execute({"url": "https://example.test/", "method": "TRACE"})
    assert not bad.success
    assert "Unsupported HTTP method" in bad.error


def test_http_request_tool_reports_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    tool = HttpRequestTool(transport=httpx.MockTransport(handler))
    result = tool.execute({"url": "https://example.test/"})
    assert not result.success
    assert result.error.startswith("HTTP request failed")


def test_web_search_flattens_related_topics():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        return httpx.Response(
            200,
            json={
                "AbstractText": "Python is a language.",
                "AbstractURL": "https://python.example/",
                "RelatedTopics": [
                    {"Text": "Python docs", "FirstURL": "https://docs.example/"},
                    {"Name": "Group", "Topics": [{"Text": "PyPI", "FirstURL": "https://pypi.example/"}]},
                    {"Text": "Extra", "FirstURL": "https://extra.example/"},
                ],
            },
        )

    tool = WebSearchTool(transport=httpx.MockTransport(handler))
    result = tool.execute({"query": "python", "max_results": 2})
    assert result.success
    assert seen["params"] == {"q": "python", "format": "json", "no_html": "1"}
    assert result.output["abstract"] == "Python is a language."
    assert result.output["results"] == [
        {"text": "Python docs", "url": "https://docs.example/"},
        {"text": "PyPI", "url": "https://pypi.example/"},
    ]
    assert result.output["summary"] == "Found 2 results for: python"


def test_web_search_failure_is_a_result():
    tool = WebSearchTool(
        transport=httpx.MockTransport(lambda request: httpx.Response(503, text="down"))
    )
    result = tool.execute({"query": "anything"})
    assert not result.success
    assert result.error.startswith("Web search failed")
