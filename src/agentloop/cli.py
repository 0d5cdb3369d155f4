"""Command-line interface."""

from __future__ import annotations

import argparse
import sys
from typing import Any
from uuid import uuid4

from agentloop.config import Settings
from agentloop.events import EventBus
from agentloop.factory import build_orchestrator
from agentloop.models.router import NoProviderError
from agentloop.trace import TraceRecorder


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Autonomous task loop")
    parser.add_argument("directive", type=str, help="Natural-language directive to pursue")
    parser.add_argument("--base-url", dest="base_url")
    parser.add_argument("--api-key", dest="api_key")
    parser.add_argument("--model", dest="model")
    parser.add_argument("--max-iterations", type=int, dest="max_iterations")
    parser.add_argument("--max-cost", type=float, dest="max_cost")
    parser.add_argument("--max-time", type=float, dest="max_time")
    parser.add_argument("--workspace", dest="workspace")
    parser.add_argument("--allow", dest="allow", help="Comma-separated shell whitelist")
    parser.add_argument("--no-sandbox", action="store_true", dest="no_sandbox")
    parser.add_argument("--reflect", action="store_true", dest="reflect")
    parser.add_argument("--trace", action="store_true", dest="trace")
    parser.add_argument("--mock", action="store_true", dest="mock")
    return parser.parse_args(argv)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    data: dict[str, Any] = settings.model_dump()
    if args.base_url:
        data["openai_base_url"] = args.base_url
    if args.api_key:
        data["openai_api_key"] = args.api_key
    if args.model:
        data["default_model"] = args.model
    if args.max_iterations:
        data["max_iterations"] = args.max_iterations
    if args.max_cost is not None:
        data["max_cost_per_session"] = args.max_cost
    if args.max_time:
        data["max_execution_time_seconds"] = args.max_time
    if args.workspace:
        data["workspace_dir"] = args.workspace
    if args.allow:
        data["allowed_shell_commands"] = args.allow
    if args.no_sandbox:
        data["enable_shell_sandbox"] = False
    if args.reflect:
        data["reflect_on_tasks"] = True
    return Settings(**data)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = apply_overrides(Settings(), args)
    events = EventBus()
    trace = None
    if args.trace:
        trace = TraceRecorder(trace_id=f"cli-{uuid4().hex[:8]}", workspace_dir=settings.workspace_dir)
        events.subscribe(trace)
    try:
        orchestrator = build_orchestrator(settings, use_mock=args.mock, events=events)
    except NoProviderError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    state = orchestrator.process_directive(args.directive)
    print("Phase:", state.phase.value)
    print("Stop reason:", state.stop_reason or "none")
    print("Iterations:", state.iteration_count)
    print("Tokens used:", state.total_tokens_used)
    print(f"Cost: ${state.total_cost:.4f}")
    if state.current_plan is not None:
        print("Tasks:")
        for task in state.current_plan.tasks:
            print(f"  [{task.status.value}] {task.description}")
    if trace is not None:
        path = trace.finalize(
            {
                "iterations": state.iteration_count,
                "total_tokens_used": state.total_tokens_used,
                "total_cost": state.total_cost,
                "stop_reason": state.stop_reason,
            }
        )
        print("Trace:", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
