import json

import pytest

from agentloop.critic import (
    EVALUATION_FALLBACK_FEEDBACK,
    REFLECTION_FALLBACK_ISSUE,
    Critic,
)
from agentloop.models.mock import MockChatModel
from agentloop.models.router import ModelRouter, NoProviderError
from agentloop.tasks import ExecutionResult, Task, TaskStatus


def _critic(*responses, responder=None) -> Critic:
    return Critic(ModelRouter({"mock": MockChatModel(list(responses), responder=responder)}))


def _tasks():
    done = Task(description="done", status=TaskStatus.COMPLETED)
    todo = Task(description="todo")
    return [done], [todo]


def test_evaluation_parses_and_clamps_score():
    critic = _critic('{"progressScore": 1.7, "shouldContinue": true, "feedback": "great"}')
    evaluation = critic.evaluate_plan_progress(*_tasks(), "objective")
    assert evaluation.progress_score == 1.0
    assert evaluation.should_continue is True
    assert evaluation.feedback == "great"
    assert evaluation.tokens_used == 10


def test_evaluation_only_stops_on_explicit_false():
    stop = _critic('{"progress_score": 0.2, "should_continue": false, "feedback": "wrong way"}')
    assert stop.evaluate_plan_progress(*_tasks(), "objective").should_continue is False
    missing = _critic('{"progress_score": -3}')
    evaluation = missing.evaluate_plan_progress(*_tasks(), "objective")
    assert evaluation.should_continue is True
    assert evaluation.progress_score == 0.0


def test_evaluation_falls_back_on_garbage():
    evaluation = _critic("no idea").evaluate_plan_progress(*_tasks(), "objective")
    assert evaluation.progress_score == 0.5
    assert evaluation.should_continue is True
    assert evaluation.feedback == EVALUATION_FALLBACK_FEEDBACK


def test_evaluation_falls_back_on_model_error():
    def responder(messages, tools):
        raise RuntimeError("timeout")

    evaluation = _critic(responder=responder).evaluate_plan_progress(*_tasks(), "objective")
    assert evaluation.feedback == EVALUATION_FALLBACK_FEEDBACK


def test_evaluation_propagates_missing_provider():
    with pytest.raises(NoProviderError):
        Critic(ModelRouter({})).evaluate_plan_progress(*_tasks(), "objective")


def test_reflect_parses_learnings():
    critic = _critic(
        json.dumps(
            {
                "evaluation": "worked",
                "successMetrics": {"sum reported": 1.0},
                "issues_identified": [],
                "suggested_improvements": ["be faster"],
                "should_replan": False,
                "learnings": ["add is reliable"],
            }
        )
    )
    task = Task(description="Add numbers", acceptance_criteria=["sum reported"])
    reflection = critic.reflect(task, ExecutionResult(success=True, output="5"))
    assert reflection.evaluation == "worked"
    assert reflection.success_metrics == {"sum reported": 1.0}
    assert reflection.learnings == ["add is reliable"]
    assert not reflection.should_replan


def test_reflect_falls_back_on_garbage():
    reflection = _critic("???").reflect(
        Task(description="x"), ExecutionResult(success=False, error="boom")
    )
    assert reflection.issues_identified == [REFLECTION_FALLBACK_ISSUE]
    assert reflection.learnings == []
    assert reflection.tokens_used == 10


def test_evaluation_lists_failed_tasks_apart_from_completed():
    model = MockChatModel(['{"progress_score": 0.4, "should_continue": true, "feedback": "ok"}'])
    critic = Critic(ModelRouter({"mock": model}))
    done, todo = _tasks()
    broken = Task(description="deploy", status=TaskStatus.FAILED, notes="permission denied")
    critic.evaluate_plan_progress(done, todo, "ship", failed=[broken])
    prompt = model.calls[0]["messages"][-1]["content"]
    assert "Completed tasks: 1\n- done\n" in prompt
    assert "Failed tasks: 1\n- deploy: permission denied\n" in prompt
    assert "Remaining tasks: 1\n- todo\n" in prompt
