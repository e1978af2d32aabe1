import pytest
from pydantic import ValidationError

from agentdag import BackoffStrategy, RetryPolicy, Step, Workflow, WorkflowConfig


def test_defaults():
    step = Step(id="a", agent="echo")

    assert step.retry_policy == RetryPolicy(
        max_attempts=3, delay=1000, backoff=BackoffStrategy.EXPONENTIAL
    )
    assert step.depends_on == ()
    assert not step.optional
    assert step.timeout is None
    config = WorkflowConfig()
    assert config.max_concurrent == 3
    assert not config.fail_fast
    assert config.save_state
    assert config.token_budget is None


def test_camel_case_aliases():
    workflow = Workflow.model_validate(
        {
            "id": "wf",
            "name": "WF",
            "steps": [
                {
                    "id": "a",
                    "agent": "echo",
                    "dependsOn": [],
                    "retryPolicy": {"maxAttempts": 5, "delay": 10, "backoff": "linear"},
                }
            ],
            "config": {"maxConcurrent": 2, "failFast": True, "tokenBudget": 100},
        }
    )

    step = workflow.steps[0]
    assert step.retry_policy.max_attempts == 5
    assert step.retry_policy.backoff == BackoffStrategy.LINEAR
    assert workflow.config.max_concurrent == 2
    assert workflow.config.fail_fast
    assert workflow.config.token_budget == 100


def test_depends_on_is_deduplicated_and_accepts_strings():
    assert Step(id="c", depends_on=["a", "b", "a"]).depends_on == ("a", "b")
    assert Step(id="c", depends_on="a, b").depends_on == ("a", "b")
    assert Step(id="c", depends_on=None).depends_on == ()


def test_definitions_are_frozen():
    step = Step(id="a", agent="echo")

    with pytest.raises(ValidationError):
        step.agent = "other"


@pytest.mark.parametrize(
    "model, data",
    [
        (RetryPolicy, {"max_attempts": 0}),
        (RetryPolicy, {"delay": -1}),
        (WorkflowConfig, {"max_concurrent": 0}),
        (Step, {"id": "a", "timeout": 0}),
    ],
)
def test_bounds_are_enforced(model, data):
    with pytest.raises(ValidationError):
        model(**data)


def test_get_step():
    workflow = Workflow(id="wf", name="wf", steps=(Step(id="a"), Step(id="b")))

    assert workflow.step_ids == ["a", "b"]
    assert workflow.get_step("b").id == "b"
    assert workflow.get_step("z") is None
