"""Progress evaluation and per-task reflection."""

from __future__ import annotations

import json
import time
from typing import Any

from pydantic import BaseModel, Field

from agentloop.executor import format_criteria
from agentloop.models.router import ModelRouter, NoProviderError, TaskType
from agentloop.tasks import ExecutionResult, Task
from agentloop.util.json_repair import parse_json_object
from agentloop.util.logging import get_logger

logger = get_logger(__name__)

EVALUATION_FALLBACK_FEEDBACK = "Evaluation failed, continuing with current plan"
REFLECTION_FALLBACK_ISSUE = "Failed to generate proper reflection"


class ProgressEvaluation(BaseModel):
    progress_score: float = 0.5
    should_continue: bool = True
    feedback: str = ""
    tokens_used: int = 0
    cost: float = 0.0


class Reflection(BaseModel):
    evaluation: str = ""
    success_metrics: dict[str, float] = Field(default_factory=dict)
    issues_identified: list[str] = Field(default_factory=list)
    suggested_improvements: list[str] = Field(default_factory=list)
    should_replan: bool = False
    learnings: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)
    tokens_used: int = 0
    cost: float = 0.0


class Critic:
    """Score plan progress and reflect on finished tasks.

    Neither operation raises on bad model output or a failed call: both fall
    back to neutral values so the control loop keeps going.
    """

    def __init__(self, router: ModelRouter) -> None:
        self.router = router

    def evaluate_plan_progress(
        self,
        completed: list[Task],
        remaining: list[Task],
        objective: str,
        failed: list[Task] | None = None,
    ) -> ProgressEvaluation:
        failed = failed or []
        logger.info(
            "Evaluating plan progress: %s completed, %s failed, %s remaining",
            len(completed),
            len(failed),
            len(remaining),
        )
        completed_lines = "\n".join(f"- {task.description}" for task in completed)
        failed_lines = "\n".join(
            f"- {task.description}: {task.notes or 'no details'}" for task in failed
        )
        remaining_lines = "\n".join(f"- {task.description}" for task in remaining)
        prompt = (
            "Evaluate the progress toward completing an objective.\n\n"
            f"Objective: {objective}\n\n"
            f"Completed tasks: {len(completed)}\n{completed_lines}\n\n"
            f"Failed tasks: {len(failed)}\n{failed_lines}\n\n"
            f"Remaining tasks: {len(remaining)}\n{remaining_lines}\n\n"
            "Respond with JSON only:\n"
            '{"progress_score": 0.7, "should_continue": true, "feedback": "detailed feedback"}'
        )
        try:
            response = self.router.chat(
                [
                    {"role": "system", "content": "You are an evaluator assessing progress toward objectives."},
                    {"role": "user", "content": prompt},
                ],
                TaskType.REASONING,
                temperature=0.3,
            )
        except NoProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Plan evaluation call failed: %s", exc)
            return ProgressEvaluation(feedback=EVALUATION_FALLBACK_FEEDBACK)
        usage = {"tokens_used": response.tokens_used, "cost": response.cost}
        try:
            data = parse_json_object(response.content)
            score = float(_pick(data, "progress_score", "progressScore", default=0.0) or 0.0)
            should_continue = _pick(data, "should_continue", "shouldContinue", default=True)
            feedback = str(data.get("feedback") or "")
        except (ValueError, TypeError) as exc:
            logger.error("Plan evaluation failed to parse: %s", exc)
            return ProgressEvaluation(feedback=EVALUATION_FALLBACK_FEEDBACK, **usage)
        evaluation = ProgressEvaluation(
            progress_score=min(1.0, max(0.0, score)),
            should_continue=should_continue is not False,
            feedback=feedback,
            **usage,
        )
        logger.info(
            "Plan progress evaluated: score=%.2f continue=%s",
            evaluation.progress_score,
            evaluation.should_continue,
        )
        return evaluation

    def reflect(self, task: Task, result: ExecutionResult, context: str = "") -> Reflection:
        logger.info("Reflecting on task %s", task.id)
        prompt = (
            "You are a critical evaluator analyzing the execution of a task. Provide "
            "honest, constructive feedback.\n\n"
            f"Task: {task.description}\n\n"
            f"Acceptance Criteria:\n{format_criteria(task)}\n\n"
            "Execution Result:\n"
            f"- Success: {result.success}\n"
            f"- Output: {json.dumps(result.output, default=str)[:2000]}\n"
            f"- Tools Used: {len(result.tool_calls)}\n"
            f"- Error: {result.error or 'None'}\n\n"
            f"Context: {context}\n\n"
            "Respond with JSON only:\n"
            "{\n"
            '  "evaluation": "detailed evaluation",\n'
            '  "success_metrics": {"criterion 1": 0.8},\n'
            '  "issues_identified": ["issue"],\n'
            '  "suggested_improvements": ["improvement"],\n'
            '  "should_replan": false,\n'
            '  "learnings": ["learning"]\n'
            "}"
        )
        try:
            response = self.router.chat(
                [
                    {
                        "role": "system",
                        "content": "You are a critical evaluator that provides honest, "
                        "constructive feedback on task execution.",
                    },
                    {"role": "user", "content": prompt},
                ],
                TaskType.REASONING,
                temperature=0.3,
            )
        except NoProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Reflection call failed: %s", exc)
            return _failed_reflection()
        usage = {"tokens_used": response.tokens_used, "cost": response.cost}
        try:
            data = parse_json_object(response.content)
            reflection = Reflection(
                evaluation=str(data.get("evaluation") or ""),
                success_metrics=_pick(data, "success_metrics", "successMetrics", default={}) or {},
                issues_identified=_pick(data, "issues_identified", "issuesIdentified", default=[]) or [],
                suggested_improvements=_pick(
                    data, "suggested_improvements", "suggestedImprovements", default=[]
                )
                or [],
                should_replan=bool(_pick(data, "should_replan", "shouldReplan", default=False)),
                learnings=data.get("learnings") or [],
                **usage,
            )
        except (ValueError, TypeError) as exc:
            logger.error("Reflection failed to parse: %s", exc)
            return _failed_reflection(**usage)
        logger.info(
            "Reflection completed for task %s: replan=%s issues=%s",
            task.id,
            reflection.should_replan,
            len(reflection.issues_identified),
        )
        return reflection


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return default


def _failed_reflection(**usage: Any) -> Reflection:
    return Reflection(
        evaluation="Reflection failed to parse properly",
        issues_identified=[REFLECTION_FALLBACK_ISSUE],
        **usage,
    )
