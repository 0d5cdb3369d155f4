"""Tool-augmented task executor with acceptance verification."""

from __future__ import annotations

import json
import time
from typing import Any, Callable

from agentloop.models.base import ModelResponse
from agentloop.models.router import ModelRouter, NoProviderError, TaskType
from agentloop.tasks import ExecutionResult, Task, ToolCallRecord
from agentloop.tools.registry import ToolRegistry
from agentloop.util.context_trim import trim_messages
from agentloop.util.logging import clip, get_logger

logger = get_logger(__name__)

COST_LIMIT_PREFIX = "Cost limit exceeded"
RESULT_SUMMARY_CHARS = 500

EXECUTOR_SYSTEM_PROMPT = (
    "You are an autonomous AI agent that executes tasks using available tools. "
    "Be thorough and complete all acceptance criteria. After using tools, analyze "
    "the results and determine if the task is complete."
)
VERIFIER_SYSTEM_PROMPT = (
    "You are a task verifier. Analyze if all acceptance criteria have been met."
)


def format_criteria(task: Task) -> str:
    return "\n".join(
        f"{index}. {criterion}" for index, criterion in enumerate(task.acceptance_criteria, start=1)
    )


class _Run:
    """Mutable accounting for one execute_task call."""

    def __init__(self, session_cost: float) -> None:
        self.session_cost = session_cost
        self.tokens = 0
        self.cost = 0.0
        self.tool_calls: list[ToolCallRecord] = []
        self.attempts = 0

    def charge(self, response: ModelResponse) -> None:
        self.tokens += response.tokens_used
        self.cost += response.cost

    def result(self, success: bool, output: Any = None, error: str | None = None) -> ExecutionResult:
        return ExecutionResult(
            success=success,
            output=output,
            error=error,
            tool_calls=tuple(self.tool_calls),
            tokens_used=self.tokens,
            cost=self.cost,
            attempts=self.attempts,
        )


class Executor:
    """Drive one task through tool calls until a verifier accepts the answer.

    Each attempt is one model call. Tool calls are dispatched in order and
    their results fed back; a plain answer is checked by a separate "fast"
    verification call that must reply ``COMPLETE``. Session spend plus task
    spend is compared with the cost cap after every model call.
    """

    def __init__(
        self,
        router: ModelRouter,
        registry: ToolRegistry,
        max_attempts: int = 5,
        max_cost_per_session: float = 5.0,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        max_history_chars: int = 24_000,
    ) -> None:
        self.router = router
        self.registry = registry
        self.max_attempts = max(1, max_attempts)
        self.max_cost_per_session = max_cost_per_session
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep
        self.max_history_chars = max_history_chars

    def execute_task(self, task: Task, context: str = "", session_cost: float = 0.0) -> ExecutionResult:
        logger.info("Executing task %s: %s", task.id, clip(task.description))
        run = _Run(session_cost)
        tools = self.registry.get_tool_definitions()
        history: list[dict[str, Any]] = [
            {"role": "system", "content": EXECUTOR_SYSTEM_PROMPT},
            {"role": "user", "content": self._task_prompt(task, context)},
        ]
        last_output: str = ""

        while run.attempts < self.max_attempts:
            run.attempts += 1
            try:
                response = self.router.chat(
                    trim_messages(history, self.max_history_chars),
                    TaskType.GENERAL,
                    temperature=0.7,
                    tools=tools or None,
                )
            except NoProviderError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("Execution attempt %s failed: %s", run.attempts, exc)
                if run.attempts >= self.max_attempts:
                    return run.result(
                        False, error=f"Failed after {self.max_attempts} attempts: {exc}"
                    )
                history.append(
                    {
                        "role": "user",
                        "content": f"An error occurred: {exc}. Please try a different approach.",
                    }
                )
                continue

            run.charge(response)
            over = self._over_budget(run, task)
            if over is not None:
                return run.result(False, output=response.content or None, error=over)

            if response.tool_calls:
                feedback = [self._dispatch(call.name, call.arguments, run) for call in response.tool_calls]
                history.append(
                    {
                        "role": "assistant",
                        "content": "I used the following tools: "
                        + ", ".join(call.name for call in response.tool_calls),
                    }
                )
                history.append(
                    {
                        "role": "user",
                        "content": "Tool execution results:\n"
                        + "\n\n".join(feedback)
                        + "\n\nBased on these results, have all acceptance criteria been met? "
                        "If yes, provide a summary. If no, continue with the next step.",
                    }
                )
                continue

            last_output = response.content
            if not last_output.strip():
                history.append(
                    {"role": "user", "content": "No answer was given. Please continue working on the task."}
                )
                continue

            try:
                verification = self._verify(task, last_output, run)
            except NoProviderError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("Verification call failed: %s", exc)
                verification = f"INCOMPLETE: verification failed ({exc})"
            over = self._over_budget(run, task)
            if over is not None:
                return run.result(False, output=last_output, error=over)
            if verification.strip().upper().startswith("COMPLETE"):
                logger.info(
                    "Task %s completed after %s attempts with %s tool calls",
                    task.id,
                    run.attempts,
                    len(run.tool_calls),
                )
                return run.result(True, output=last_output)
            if run.attempts >= self.max_attempts:
                logger.warning("Task %s incomplete after max attempts: %s", task.id, clip(verification))
                return run.result(
                    False,
                    output=last_output,
                    error=f"Task incomplete after {self.max_attempts} attempts: {verification}",
                )
            history.append({"role": "assistant", "content": last_output})
            history.append(
                {
                    "role": "user",
                    "content": f"Verification result: {verification}\n\n"
                    "Please continue working on the task.",
                }
            )

        return run.result(
            False,
            output=last_output or None,
            error=f"Max attempts ({self.max_attempts}) reached without completion",
        )

    def execute_with_retry(
        self,
        task: Task,
        context: str = "",
        max_retries: int = 3,
        session_cost: float = 0.0,
    ) -> ExecutionResult:
        """Run ``execute_task`` up to ``max_retries`` times with linear backoff.

        Token, cost and tool-call accounting covers every attempt. A failure
        caused by the session cost cap is returned without retrying.
        """
        retries = max(1, max_retries)
        tool_calls: list[ToolCallRecord] = []
        tokens = 0
        cost = 0.0
        attempts = 0
        retry = 0
        while True:
            retry += 1
            result = self.execute_task(task, context, session_cost=session_cost + cost)
            tool_calls.extend(result.tool_calls)
            tokens += result.tokens_used
            cost += result.cost
            attempts += result.attempts
            if result.success or retry >= retries:
                break
            if (result.error or "").startswith(COST_LIMIT_PREFIX):
                break
            delay = self.backoff_seconds * retry
            logger.warning(
                "Task %s failed (retry %s/%s), backing off %.1fs: %s",
                task.id,
                retry,
                retries,
                delay,
                clip(result.error or ""),
            )
            self.sleep(delay)
        return result.model_copy(
            update={
                "tool_calls": tuple(tool_calls),
                "tokens_used": tokens,
                "cost": cost,
                "attempts": attempts,
            }
        )

    def _task_prompt(self, task: Task, context: str) -> str:
        return (
            "You are an autonomous AI agent executing a task. Use the available tools "
            "to complete the task.\n\n"
            f"Task: {task.description}\n\n"
            f"Acceptance Criteria:\n{format_criteria(task)}\n\n"
            f"Context: {context}\n\n"
            "Think step by step and use tools as needed. After using tools, verify that "
            "the acceptance criteria are met before concluding."
        )

    def _over_budget(self, run: _Run, task: Task) -> str | None:
        total = run.session_cost + run.cost
        if total <= self.max_cost_per_session:
            return None
        logger.warning(
            "Cost limit exceeded during task %s: %.4f > %.4f",
            task.id,
            total,
            self.max_cost_per_session,
        )
        return f"{COST_LIMIT_PREFIX}: ${total:.4f} > ${self.max_cost_per_session}"

    def _dispatch(self, name: str, arguments: dict[str, Any], run: _Run) -> str:
        tool = self.registry.get_tool(name)
        if tool is None:
            error = f"Tool '{name}' not found"
            logger.error(error)
            run.tool_calls.append(ToolCallRecord(tool_name=name, arguments=arguments, error=error))
            return f"Error: {error}"
        logger.info("Executing tool %s", name)
        outcome = tool.execute(arguments)
        payload = outcome.to_payload()
        run.tool_calls.append(
            ToolCallRecord(
                tool_name=name,
                arguments=arguments,
                result=payload,
                error=outcome.error,
            )
        )
        summary = json.dumps(payload, ensure_ascii=False, default=str)[:RESULT_SUMMARY_CHARS]
        if outcome.success:
            return f"Tool '{name}' result: {summary}"
        return f"Tool '{name}' error: {summary}"

    def _verify(self, task: Task, answer: str, run: _Run) -> str:
        prompt = (
            f"Task: {task.description}\n\n"
            f"Acceptance Criteria:\n{format_criteria(task)}\n\n"
            f"Tool calls made: {len(run.tool_calls)}\n"
            f"Last response: {answer}\n\n"
            "Have ALL acceptance criteria been met? Respond with:\n"
            '- "COMPLETE: [brief summary]" if all criteria are met\n'
            '- "INCOMPLETE: [what\'s missing]" if any criteria are not met'
        )
        response = self.router.chat(
            [
                {"role": "system", "content": VERIFIER_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            TaskType.FAST,
            temperature=0.3,
        )
        run.charge(response)
        return response.content
