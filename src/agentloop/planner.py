"""LLM-backed task planner with dependency validation."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field

from agentloop.models.router import ModelRouter, TaskType
from agentloop.tasks import Plan, Task, TaskStatus, new_id
from agentloop.util.json_repair import parse_json_object
from agentloop.util.logging import clip, get_logger

logger = get_logger(__name__)

FALLBACK_CRITERIA = ["Task completed successfully"]
FALLBACK_STRATEGY = "Direct execution"

PLANNER_SYSTEM_PROMPT = "You are an expert AI planner that creates detailed, actionable plans."
REVISER_SYSTEM_PROMPT = "You are an expert AI planner that revises plans based on feedback."

PLAN_FORMAT = """Respond with JSON only, using this structure:
{
  "strategy": "overall approach",
  "estimated_steps": 3,
  "tasks": [
    {
      "id": "t1",
      "description": "what to do",
      "priority": 5,
      "dependencies": [],
      "acceptance_criteria": ["criterion 1", "criterion 2"]
    }
  ]
}
Priorities range from 1 to 10 (higher runs first). Dependencies list the ids
of tasks in this plan that must be completed first."""


class PlanValidationError(ValueError):
    """Raised when model output does not describe a usable plan."""


@dataclass(frozen=True)
class PlanValidationResult:
    ok: bool
    errors: list[str] = field(default_factory=list)


class Planner:
    """Turn objectives into dependency-ordered plans and schedule their tasks."""

    def __init__(self, router: ModelRouter, max_tasks: int = 20) -> None:
        self.router = router
        self.max_tasks = max_tasks

    def create_plan(self, objective: str, context: str = "") -> Plan:
        logger.info("Creating plan for objective: %s", clip(objective))
        prompt = (
            "Create a detailed, step-by-step plan to accomplish the following objective.\n\n"
            f"Objective: {objective}\n\nContext: {context}\n\n"
            "Include a clear strategy, specific tasks with acceptance criteria, task "
            f"dependencies and priority levels.\n\n{PLAN_FORMAT}"
        )
        response = self.router.chat(
            [
                {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            TaskType.PLANNING,
            temperature=0.3,
        )
        try:
            plan = self._parse_plan(response.content, objective)
        except (ValueError, TypeError, KeyError) as exc:
            logger.error("Failed to parse plan from model response: %s", exc)
            plan = self.fallback_plan(objective)
        plan.tokens_used = response.tokens_used
        plan.cost = response.cost
        logger.info("Plan %s created with %s tasks", plan.id, len(plan.tasks))
        return plan

    def revise_plan(self, current: Plan, feedback: str, context: str = "") -> Plan:
        """Ask the model for a replacement plan.

        When the answer cannot be parsed the current plan is kept: the result has
        the same id and tasks, with ``tokens_used`` and ``cost`` set to this call.
        """
        logger.info("Revising plan %s", current.id)
        current_tasks = [
            {
                "id": task.id,
                "description": task.description,
                "status": task.status.value,
                "priority": task.priority,
                "dependencies": task.dependencies,
                "notes": task.notes,
            }
            for task in current.tasks
        ]
        prompt = (
            "You are revising an existing plan based on new feedback.\n\n"
            f"Original objective: {current.objective}\n"
            f"Original strategy: {current.strategy}\n"
            f"Current tasks: {json.dumps(current_tasks, indent=2)}\n\n"
            f"Feedback: {feedback}\nContext: {context}\n\n"
            "Create a revised plan that addresses the feedback. Completed work does not "
            f"need to be repeated.\n\n{PLAN_FORMAT}"
        )
        response = self.router.chat(
            [
                {"role": "system", "content": REVISER_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            TaskType.PLANNING,
            temperature=0.3,
        )
        try:
            revised = self._parse_plan(response.content, current.objective)
        except (ValueError, TypeError, KeyError) as exc:
            logger.error("Failed to parse revised plan, keeping current plan: %s", exc)
            return current.model_copy(
                update={"tokens_used": response.tokens_used, "cost": response.cost}
            )
        revised.tokens_used = response.tokens_used
        revised.cost = response.cost
        logger.info("Plan revised: %s -> %s (%s tasks)", current.id, revised.id, len(revised.tasks))
        return revised

    def fallback_plan(self, objective: str) -> Plan:
        return Plan(
            objective=objective,
            strategy=FALLBACK_STRATEGY,
            estimated_steps=1,
            tasks=[
                Task(
                    description=objective,
                    priority=5,
                    acceptance_criteria=list(FALLBACK_CRITERIA),
                )
            ],
        )

    def validate_plan(self, plan: Plan) -> PlanValidationResult:
        errors: list[str] = []
        ids = [task.id for task in plan.tasks]
        if len(set(ids)) != len(ids):
            errors.append("Task ids must be unique")
        deps = {task.id: list(task.dependencies) for task in plan.tasks}
        for task_id, parents in deps.items():
            for parent in parents:
                if parent not in deps:
                    errors.append(f"Unknown dependency: {parent}")
        if _has_cycle(deps):
            errors.append("Task graph contains a cycle")
        return PlanValidationResult(ok=not errors, errors=errors)

    def get_next_task(self, plan: Plan) -> Task | None:
        """Highest-priority pending task whose dependencies are all completed.

        Ties keep plan order, so the same plan state always yields the same task.
        """
        eligible = [task for task in plan.tasks if self._is_eligible(plan, task)]
        if not eligible:
            return None
        return sorted(eligible, key=lambda task: -task.priority)[0]

    def blocked_tasks(self, plan: Plan) -> list[Task]:
        """Pending tasks that can never run because a dependency failed or is missing."""
        by_id = {task.id: task for task in plan.tasks}
        memo: dict[str, bool] = {}
        visiting: set[str] = set()

        def doomed(task_id: str) -> bool:
            if task_id in memo:
                return memo[task_id]
            task = by_id.get(task_id)
            if task is None or task.status == TaskStatus.FAILED:
                return True
            if task.status == TaskStatus.COMPLETED:
                return False
            if task_id in visiting:
                return True
            visiting.add(task_id)
            result = any(doomed(dep) for dep in task.dependencies)
            visiting.discard(task_id)
            memo[task_id] = result
            return result

        return [
            task
            for task in plan.tasks
            if task.status == TaskStatus.PENDING and doomed(task.id)
        ]

    def update_task_status(
        self,
        plan: Plan,
        task_id: str,
        status: TaskStatus,
        notes: str | None = None,
    ) -> bool:
        task = plan.get_task(task_id)
        if task is None:
            logger.warning("Cannot update unknown task %s", task_id)
            return False
        if task.status.terminal and task.status != status:
            logger.warning(
                "Refusing to move task %s from terminal status %s to %s",
                task_id,
                task.status.value,
                TaskStatus(status).value,
            )
            return False
        task.status = TaskStatus(status)
        task.updated_at = time.time()
        if notes:
            task.notes = notes
        logger.info("Task %s status updated to %s", task_id, task.status.value)
        return True

    def is_plan_complete(self, plan: Plan) -> bool:
        return all(task.status.terminal for task in plan.tasks)

    def _is_eligible(self, plan: Plan, task: Task) -> bool:
        if task.status != TaskStatus.PENDING:
            return False
        for dep_id in task.dependencies:
            dep = plan.get_task(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETED:
                return False
        return True

    def _parse_plan(self, content: str, objective: str) -> Plan:
        payload = parse_json_object(content)
        raw_tasks = payload.get("tasks")
        if not isinstance(raw_tasks, list) or not raw_tasks:
            raise PlanValidationError("Plan has no tasks")
        if len(raw_tasks) > self.max_tasks:
            raise PlanValidationError(f"Too many tasks: {len(raw_tasks)} > {self.max_tasks}")

        # dependencies may name a task by its local id or by 1-based position
        local_keys: list[str] = []
        local_ids: dict[str, str] = {}
        for index, raw in enumerate(raw_tasks, start=1):
            if not isinstance(raw, dict):
                raise PlanValidationError(f"Task {index} is not an object")
            raw_id = raw.get("id")
            local = str(raw_id) if raw_id not in (None, "") else str(index)
            if local in local_ids:
                raise PlanValidationError(f"Duplicate task id: {local}")
            local_keys.append(local)
            local_ids[local] = new_id()
        ordinal_ids = {str(i): local_ids[key] for i, key in enumerate(local_keys, start=1)}

        tasks: list[Task] = []
        for index, (local, raw) in enumerate(zip(local_keys, raw_tasks), start=1):
            description = str(raw.get("description") or "").strip()
            if not description:
                raise PlanValidationError(f"Task {index} has no description")
            dependencies: list[str] = []
            for dep in raw.get("dependencies") or []:
                key = str(dep)
                resolved = local_ids.get(key) or ordinal_ids.get(key)
                if resolved is None:
                    raise PlanValidationError(f"Unknown dependency: {key}")
                if resolved not in dependencies:
                    dependencies.append(resolved)
            criteria = raw.get("acceptance_criteria", raw.get("acceptanceCriteria")) or []
            if isinstance(criteria, str):
                criteria = [criteria]
            criteria = [str(item) for item in criteria if str(item).strip()]
            tasks.append(
                Task(
                    id=local_ids[local],
                    description=description,
                    priority=5 if raw.get("priority") is None else int(raw["priority"]),
                    dependencies=dependencies,
                    acceptance_criteria=criteria or list(FALLBACK_CRITERIA),
                )
            )

        estimated = payload.get("estimated_steps", payload.get("estimatedSteps"))
        plan = Plan(
            objective=objective,
            strategy=str(payload.get("strategy") or ""),
            estimated_steps=int(estimated or len(tasks)),
            tasks=tasks,
        )
        validation = self.validate_plan(plan)
        if not validation.ok:
            raise PlanValidationError("; ".join(validation.errors))
        return plan


def _has_cycle(deps: dict[str, list[str]]) -> bool:
    visiting: set[str] = set()
    visited: set[str] = set()

    def visit(node: str) -> bool:
        if node in visited:
            return False
        if node in visiting:
            return True
        visiting.add(node)
        for parent in deps.get(node, []):
            if parent in deps and visit(parent):
                return True
        visiting.remove(node)
        visited.add(node)
        return False

    return any(visit(node) for node in deps)
