"""Think, plan, act, reflect control loop."""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable

from agentloop.config import DEFAULT_SETTINGS, Settings
from agentloop.critic import Critic
from agentloop.events import EventBus, EventType
from agentloop.executor import Executor
from agentloop.failures import FailureTag
from agentloop.memory import MemoryStore
from agentloop.models.router import ModelRouter, NoProviderError, TaskType
from agentloop.planner import Planner
from agentloop.state import AgentPhase, AgentState
from agentloop.tasks import ExecutionResult, Plan, Task, TaskStatus
from agentloop.tools.registry import ToolRegistry
from agentloop.util.logging import clip, get_logger, redact

logger = get_logger(__name__)

THINK_SYSTEM_PROMPT = (
    "You are an autonomous AI agent that thinks deeply about tasks and makes strategic decisions."
)
BLOCKED_NOTE = "Blocked: a dependency failed or does not exist"


class Orchestrator:
    """Single-flight agent loop over planner, executor and critic.

    One directive is processed at a time. Each iteration checks the budgets,
    thinks, plans when needed, executes at most one task and reflects. A failing
    iteration is recorded and the loop moves on; only budgets, completion,
    ``stop()`` or a missing model provider end it.
    """

    def __init__(
        self,
        router: ModelRouter,
        memory: MemoryStore,
        registry: ToolRegistry,
        planner: Planner | None = None,
        executor: Executor | None = None,
        critic: Critic | None = None,
        settings: Settings | None = None,
        events: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or DEFAULT_SETTINGS
        self.router = router
        self._memory = memory
        self._registry = registry
        self.planner = planner or Planner(router)
        self.executor = executor or Executor(
            router,
            registry,
            max_attempts=self.settings.executor_max_attempts,
            max_cost_per_session=self.settings.max_cost_per_session,
            backoff_seconds=self.settings.task_retry_backoff_seconds,
        )
        self.critic = critic or Critic(router)
        self.events = events or EventBus()
        self.clock = clock
        self._state = AgentState()
        self._lock = threading.Lock()
        self._running = False
        self._active = False
        self._stop_requested = False
        self._replan_requested = False

    @property
    def memory(self) -> MemoryStore:
        return self._memory

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def get_state(self) -> AgentState:
        return self._state.snapshot()

    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                logger.info("Stop requested but agent is not running")
                return
            self._running = False
            self._stop_requested = True
        self._set_phase(AgentPhase.IDLE)
        logger.info("Agent stopped")

    def request_replan(self) -> None:
        """Ask the running loop to build a fresh plan on its next iteration."""
        if self._running:
            self._replan_requested = True
            self._set_phase(AgentPhase.PLANNING)

    def process_directive(self, directive: str) -> AgentState:
        with self._lock:
            if self._active:
                logger.warning("Agent is already running, rejecting directive")
                return self.get_state()
            self._active = True
            self._running = True
            self._stop_requested = False
            self._replan_requested = False

        objective = directive.strip()
        now = self.clock()
        self._state = AgentState(start_time=now, last_activity=now)
        logger.info("Processing new directive: %s", clip(redact(objective)))
        try:
            self._set_phase(AgentPhase.THINKING)
            self.events.emit(EventType.DIRECTIVE_RECEIVED, {"directive": redact(objective)})
            self._loop(objective)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Autonomous loop aborted")
            self._state.stop_reason = self._state.stop_reason or FailureTag.ITERATION_ERROR.value
            self.events.emit(
                EventType.ERROR,
                {"error": str(exc), "tag": FailureTag.ITERATION_ERROR.value, "fatal": True},
            )
            self._state.phase = AgentPhase.IDLE
        finally:
            if self._stop_requested:
                self._state.stop_reason = FailureTag.STOPPED.value
                self._set_phase(AgentPhase.IDLE)
            elif self._state.phase != AgentPhase.COMPLETED:
                self._set_phase(AgentPhase.IDLE)
            self._state.current_task = None
            with self._lock:
                self._running = False
                self._active = False
            self.events.emit(EventType.AGENT_STOPPED, self._summary())
            logger.info(
                "Autonomous loop finished: iterations=%s tokens=%s cost=%.4f reason=%s",
                self._state.iteration_count,
                self._state.total_tokens_used,
                self._state.total_cost,
                self._state.stop_reason,
            )
        return self.get_state()

    def _loop(self, objective: str) -> None:
        self._memory.add_working(f"New objective: {objective}")
        interval = max(1, self.settings.consolidation_interval)
        while not self._stop_requested:
            if self._budget_exhausted():
                return
            self._state.iteration_count += 1
            self._state.last_activity = self.clock()
            iteration = self._state.iteration_count
            logger.info("Starting iteration %s (phase %s)", iteration, self._state.phase.value)
            try:
                if self._iterate(objective):
                    return
            except NoProviderError as exc:
                logger.error("No model provider available, aborting: %s", exc)
                self._state.stop_reason = FailureTag.PROVIDER_UNAVAILABLE.value
                self.events.emit(
                    EventType.ERROR,
                    {
                        "iteration": iteration,
                        "error": str(exc),
                        "tag": FailureTag.PROVIDER_UNAVAILABLE.value,
                        "fatal": True,
                    },
                )
                return
            except Exception as exc:  # noqa: BLE001
                logger.exception("Error in iteration %s", iteration)
                self._memory.add_episodic(
                    f"Error in iteration {iteration}: {exc}",
                    {"iteration": iteration, "tag": FailureTag.ITERATION_ERROR.value},
                )
                self.events.emit(
                    EventType.ERROR,
                    {
                        "iteration": iteration,
                        "error": str(exc),
                        "tag": FailureTag.ITERATION_ERROR.value,
                    },
                )
            if iteration % interval == 0:
                self._memory.consolidate()

    def _iterate(self, objective: str) -> bool:
        """Run one iteration. Returns True when the loop should end."""
        replan = self._replan_requested or self._state.phase == AgentPhase.PLANNING
        self._replan_requested = False
        self._think(objective)
        if self._stop_requested:
            return True
        if self._state.current_plan is None or replan:
            self._plan(objective)
            if self._stop_requested:
                return True
        plan = self._state.current_plan
        if plan is not None and self.planner.is_plan_complete(plan):
            self._complete(plan)
            return True
        self._act()
        if self._stop_requested:
            return True
        self._reflect()
        return False

    def _budget_exhausted(self) -> bool:
        settings = self.settings
        elapsed = self.clock() - self._state.start_time
        if elapsed > settings.max_execution_time_seconds:
            logger.warning(
                "Max execution time reached: %.1fs > %.1fs",
                elapsed,
                settings.max_execution_time_seconds,
            )
            self._finish_budget(FailureTag.BUDGET_TIME, {"elapsed_seconds": elapsed})
            return True
        if self._state.iteration_count >= settings.max_iterations:
            logger.warning("Max iterations reached: %s", settings.max_iterations)
            self._finish_budget(
                FailureTag.BUDGET_ITERATIONS, {"max_iterations": settings.max_iterations}
            )
            return True
        if self._cost_exceeded():
            logger.warning(
                "Cost limit reached: %.4f > %.4f",
                self._state.total_cost,
                settings.max_cost_per_session,
            )
            self._state.stop_reason = FailureTag.BUDGET_COST.value
            self.events.emit(
                EventType.COST_LIMIT_REACHED,
                {
                    "total_cost": self._state.total_cost,
                    "limit": settings.max_cost_per_session,
                    "iteration": self._state.iteration_count,
                },
            )
            self._set_phase(AgentPhase.COMPLETED)
            return True
        return False

    def _finish_budget(self, tag: FailureTag, details: dict[str, Any]) -> None:
        self._state.stop_reason = tag.value
        self.events.emit(
            EventType.BUDGET_EXHAUSTED,
            {"reason": tag.value, "iteration": self._state.iteration_count, **details},
        )
        self._set_phase(AgentPhase.COMPLETED)

    def _cost_exceeded(self) -> bool:
        return self._state.total_cost > self.settings.max_cost_per_session

    def _think(self, objective: str) -> None:
        self._set_phase(AgentPhase.THINKING)
        plan = self._state.current_plan
        if plan is None:
            plan_status = "No plan yet"
        else:
            done = len(plan.tasks_with_status(TaskStatus.COMPLETED))
            plan_status = f"Plan exists. Tasks completed: {done}/{len(plan.tasks)}"
        prompt = (
            "Think about the current situation and decide on the best course of action.\n\n"
            f"Objective: {objective}\n\n"
            f"Current Context:\n{self._memory.get_context_summary()}\n\n"
            f"Current Plan Status: {plan_status}\n\n"
            "Consider what has been accomplished, what needs to be done next, any "
            "obstacles, and whether the plan should be revised. Answer in 2-3 sentences."
        )
        try:
            response = self.router.chat(
                [
                    {"role": "system", "content": THINK_SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                TaskType.REASONING,
                temperature=0.7,
            )
        except NoProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("THINK phase failed: %s", exc)
            return
        self._charge(response.tokens_used, response.cost)
        self._memory.add_working(f"Thinking: {response.content}")
        self.events.emit(
            EventType.THINKING_COMPLETED,
            {"iteration": self._state.iteration_count, "thoughts": redact(response.content)},
        )
        logger.info("THINK phase completed: %s", clip(response.content))

    def _plan(self, objective: str) -> None:
        self._set_phase(AgentPhase.PLANNING)
        plan = self.planner.create_plan(objective, self._memory.get_context_summary())
        self._charge(plan.tokens_used, plan.cost)
        self._state.current_plan = plan
        self._memory.add_working(f"Created plan with {len(plan.tasks)} tasks: {plan.strategy}")
        self.events.emit(EventType.PLAN_CREATED, _plan_payload(plan))
        logger.info("PLAN phase completed: plan %s with %s tasks", plan.id, len(plan.tasks))

    def _complete(self, plan: Plan) -> None:
        completed = len(plan.tasks_with_status(TaskStatus.COMPLETED))
        failed = len(plan.tasks_with_status(TaskStatus.FAILED))
        logger.info("Plan %s completed: %s succeeded, %s failed", plan.id, completed, failed)
        self._state.stop_reason = FailureTag.COMPLETED.value
        self.events.emit(
            EventType.PLAN_COMPLETED,
            {"plan_id": plan.id, "completed": completed, "failed": failed},
        )
        self._set_phase(AgentPhase.COMPLETED)

    def _act(self) -> None:
        self._set_phase(AgentPhase.EXECUTING)
        plan = self._state.current_plan
        if plan is None:
            logger.warning("No plan available for execution")
            return
        if self._cost_exceeded():
            logger.warning("Session cost cap already exceeded, not starting a task")
            return
        task = self.planner.get_next_task(plan)
        if task is None:
            self._handle_no_eligible_task(plan)
            return

        self.planner.update_task_status(plan, task.id, TaskStatus.IN_PROGRESS)
        self._state.current_task = task.model_copy(deep=True)
        self.events.emit(
            EventType.TASK_STARTED,
            {"task_id": task.id, "description": task.description, "priority": task.priority},
        )
        context = self._memory.get_context_summary()
        try:
            result = self.executor.execute_with_retry(
                task,
                context,
                max_retries=self.settings.task_max_retries,
                session_cost=self._state.total_cost,
            )
        except Exception as exc:
            self.planner.update_task_status(plan, task.id, TaskStatus.FAILED, notes=str(exc))
            self._state.current_task = None
            raise
        self._charge(result.tokens_used, result.cost)
        self._record_outcome(plan, task, result)
        self._state.current_task = None
        if self.settings.reflect_on_tasks:
            self._reflect_on_task(task, result, context)

    def _record_outcome(self, plan: Plan, task: Task, result: ExecutionResult) -> None:
        tools_used = [call.tool_name for call in result.tool_calls]
        if result.success:
            self.planner.update_task_status(plan, task.id, TaskStatus.COMPLETED)
            self._memory.add_episodic(
                f"Task completed: {task.description}. Result: {_summarize(result.output)}",
                {"task_id": task.id, "status": TaskStatus.COMPLETED.value},
            )
            self.events.emit(
                EventType.TASK_COMPLETED,
                {
                    "task_id": task.id,
                    "output": redact(_summarize(result.output)),
                    "tool_calls": tools_used,
                    "tokens_used": result.tokens_used,
                    "cost": result.cost,
                },
            )
            logger.info("Task %s completed successfully", task.id)
            return
        self.planner.update_task_status(plan, task.id, TaskStatus.FAILED, notes=result.error)
        self._memory.add_episodic(
            f"Task failed: {task.description}. Error: {result.error}",
            {"task_id": task.id, "status": TaskStatus.FAILED.value},
        )
        self.events.emit(
            EventType.TASK_FAILED,
            {
                "task_id": task.id,
                "error": redact(result.error or ""),
                "tool_calls": tools_used,
                "tokens_used": result.tokens_used,
                "cost": result.cost,
            },
        )
        logger.warning("Task %s failed: %s", task.id, clip(result.error or ""))

    def _handle_no_eligible_task(self, plan: Plan) -> None:
        blocked = self.planner.blocked_tasks(plan)
        if not blocked:
            logger.info("No tasks available for execution")
            return
        for task in blocked:
            self.planner.update_task_status(plan, task.id, TaskStatus.FAILED, notes=BLOCKED_NOTE)
        task_ids = [task.id for task in blocked]
        logger.warning("Plan %s stalled; failing %s blocked tasks", plan.id, len(task_ids))
        self._memory.add_episodic(
            f"Plan stalled: {len(task_ids)} tasks blocked by failed dependencies",
            {"plan_id": plan.id, "tag": FailureTag.PLAN_STALLED.value},
        )
        self.events.emit(
            EventType.PLAN_STALLED,
            {"plan_id": plan.id, "task_ids": task_ids, "reason": FailureTag.PLAN_STALLED.value},
        )

    def _reflect_on_task(self, task: Task, result: ExecutionResult, context: str) -> None:
        reflection = self.critic.reflect(task, result, context)
        self._charge(reflection.tokens_used, reflection.cost)
        for learning in reflection.learnings:
            self._memory.add_semantic(learning, {"task_id": task.id, "source": "reflection"})

    def _reflect(self) -> None:
        self._set_phase(AgentPhase.REFLECTING)
        plan = self._state.current_plan
        if plan is None:
            return
        completed = plan.tasks_with_status(TaskStatus.COMPLETED)
        failed = plan.tasks_with_status(TaskStatus.FAILED)
        remaining = plan.tasks_with_status(TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
        if not completed and not failed:
            return
        evaluation = self.critic.evaluate_plan_progress(
            completed, remaining, plan.objective, failed=failed
        )
        self._charge(evaluation.tokens_used, evaluation.cost)
        self._memory.add_working(
            f"Progress evaluation: {evaluation.feedback} (Score: {evaluation.progress_score})"
        )
        self.events.emit(
            EventType.REFLECTION_COMPLETED,
            {
                "progress_score": evaluation.progress_score,
                "should_continue": evaluation.should_continue,
                "feedback": redact(evaluation.feedback),
                "completed": len(completed),
                "failed": len(failed),
                "remaining": len(remaining),
            },
        )
        needs_revision = (
            not evaluation.should_continue
            or len(failed) > self.settings.max_failed_tasks_before_replan
        )
        if not needs_revision or not remaining:
            return
        logger.info("Reflection suggests replanning")
        revised = self.planner.revise_plan(
            plan, evaluation.feedback, self._memory.get_context_summary()
        )
        self._charge(revised.tokens_used, revised.cost)
        if revised.id == plan.id:
            logger.info("Revision unusable, keeping plan %s", plan.id)
            return
        self._state.current_plan = revised
        self._memory.add_episodic(
            "Plan revised based on reflection", {"old_plan_id": plan.id, "plan_id": revised.id}
        )
        self.events.emit(
            EventType.PLAN_REVISED,
            {**_plan_payload(revised), "previous_plan_id": plan.id, "feedback": redact(evaluation.feedback)},
        )

    def _charge(self, tokens: int, cost: float) -> None:
        self._state.total_tokens_used += tokens
        self._state.total_cost += cost

    def _set_phase(self, phase: AgentPhase) -> None:
        previous = self._state.phase
        if previous == phase:
            return
        self._state.phase = phase
        self.events.emit(
            EventType.PHASE_CHANGED,
            {"from": previous.value, "to": phase.value, "iteration": self._state.iteration_count},
        )

    def _summary(self) -> dict[str, Any]:
        return {
            "phase": self._state.phase.value,
            "iterations": self._state.iteration_count,
            "total_tokens_used": self._state.total_tokens_used,
            "total_cost": self._state.total_cost,
            "stop_reason": self._state.stop_reason,
            "elapsed_seconds": self.clock() - self._state.start_time,
        }


def _plan_payload(plan: Plan) -> dict[str, Any]:
    return {
        "plan_id": plan.id,
        "strategy": plan.strategy,
        "task_count": len(plan.tasks),
        "tasks": [
            {
                "id": task.id,
                "description": task.description,
                "priority": task.priority,
                "dependencies": list(task.dependencies),
            }
            for task in plan.tasks
        ],
    }


def _summarize(output: Any, limit: int = 500) -> str:
    if isinstance(output, str):
        text = output
    else:
        text = json.dumps(output, ensure_ascii=False, default=str)
    return text[:limit]
