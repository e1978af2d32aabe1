import asyncio

import pytest

from agentdag import (
    AgentRegistry,
    ExecutionContext,
    ExecutionStatus,
    RetryPolicy,
    Scheduler,
    StepExecutor,
    StepStatus,
    WorkflowValidationError,
)
from agentdag.persistence import InMemoryExecutionRepository
from agentdag.providers import CapabilityProvider, ProviderResult
from tests.fixtures.providers import (
    EchoProvider,
    FailingProvider,
    GatedProvider,
    ProbeProvider,
    make_step,
    make_workflow,
)


class CountingRepository(InMemoryExecutionRepository):
    def __init__(self) -> None:
        super().__init__()
        self.saves = 0

    async def save_execution(self, execution):
        self.saves += 1
        await super().save_execution(execution)


def _scheduler(providers, repository=None) -> Scheduler:
    return Scheduler(StepExecutor(AgentRegistry(providers)), repository)


def _index(events, kind, label):
    return events.index((kind, label))


@pytest.mark.asyncio
async def test_diamond_respects_dependencies_and_cap():
    probe = ProbeProvider()
    workflow = make_workflow(
        make_step("A", "probe"),
        make_step("B", "probe", depends_on=["A"]),
        make_step("C", "probe", depends_on=["A"]),
        make_step("D", "probe", depends_on=["B", "C"]),
        max_concurrent=2,
    )

    result = await _scheduler({"probe": probe}).execute(workflow)

    assert result.status == ExecutionStatus.COMPLETED
    assert probe.max_active == 2
    events = probe.events
    assert _index(events, "end", "A") < _index(events, "start", "B")
    assert _index(events, "end", "A") < _index(events, "start", "C")
    assert _index(events, "end", "B") < _index(events, "start", "D")
    assert _index(events, "end", "C") < _index(events, "start", "D")
    assert all(r.attempts == 1 for r in result.step_results.values())


@pytest.mark.asyncio
async def test_concurrency_never_exceeds_max_concurrent():
    probe = ProbeProvider(delay=0.03)
    steps = [make_step(f"s{i}", "probe") for i in range(6)]
    workflow = make_workflow(*steps, max_concurrent=3)

    result = await _scheduler({"probe": probe}).execute(workflow)

    assert result.status == ExecutionStatus.COMPLETED
    assert probe.max_active == 3
    # declaration order decides who goes first
    starts = [label for kind, label in probe.events if kind == "start"]
    assert starts[:3] == ["s0", "s1", "s2"]


@pytest.mark.asyncio
async def test_independent_steps_start_in_first_round():
    probe = ProbeProvider()
    workflow = make_workflow(
        make_step("a", "probe"),
        make_step("b", "probe"),
        make_step("c", "probe", depends_on=["a"]),
        max_concurrent=5,
    )

    await _scheduler({"probe": probe}).execute(workflow)

    first_round = probe.events[:2]
    assert set(first_round) == {("start", "a"), ("start", "b")}


@pytest.mark.asyncio
async def test_fatal_failure_skips_dependants_transitively():
    echo = EchoProvider()
    workflow = make_workflow(
        make_step("A", "fail"),
        make_step("B", "echo", depends_on=["A"]),
        make_step("C", "echo", depends_on=["B"]),
    )

    result = await _scheduler({"fail": FailingProvider(), "echo": echo}).execute(
        workflow
    )

    assert result.status == ExecutionStatus.FAILED
    assert result.step_results["A"].status == StepStatus.FAILED
    assert result.step_results["A"].fatal
    assert result.step_results["B"].status == StepStatus.SKIPPED
    assert result.step_results["B"].error == "Skipped: dependency 'A' failed"
    assert result.step_results["C"].status == StepStatus.SKIPPED
    assert result.step_results["C"].error == "Skipped: dependency 'B' skipped"
    assert echo.calls == []
    assert "'A' failed after 1 attempt(s)" in result.error


@pytest.mark.asyncio
async def test_optional_failure_lets_dependants_run():
    echo = EchoProvider()
    workflow = make_workflow(
        make_step("A", "fail", optional=True),
        make_step("B", "echo", depends_on=["A"]),
    )

    result = await _scheduler({"fail": FailingProvider(), "echo": echo}).execute(
        workflow
    )

    assert result.status == ExecutionStatus.COMPLETED
    assert result.step_results["A"].status == StepStatus.FAILED
    assert not result.step_results["A"].fatal
    assert result.step_results["B"].status == StepStatus.SUCCEEDED
    assert echo.calls == ["B"]


@pytest.mark.asyncio
async def test_optional_step_exhausting_retries_still_completes():
    failing = FailingProvider()
    workflow = make_workflow(
        make_step(
            "opt",
            "fail",
            optional=True,
            retry_policy=RetryPolicy(max_attempts=2, delay=0),
        ),
    )

    result = await _scheduler({"fail": failing}).execute(workflow)

    assert result.status == ExecutionStatus.COMPLETED
    assert result.step_results["opt"].attempts == 2
    assert failing.calls == 2
    result.raise_for_status()


@pytest.mark.asyncio
async def test_skipped_optional_step_does_not_block_dependants():
    echo = EchoProvider()
    workflow = make_workflow(
        make_step("A", "fail"),
        make_step("O", "echo", depends_on=["A"], optional=True),
        make_step("D", "echo", depends_on=["O"]),
    )

    result = await _scheduler({"fail": FailingProvider(), "echo": echo}).execute(
        workflow
    )

    assert result.step_results["O"].status == StepStatus.SKIPPED
    assert result.step_results["D"].status == StepStatus.SUCCEEDED
    assert result.status == ExecutionStatus.FAILED


@pytest.mark.asyncio
async def test_fail_fast_stops_admitting_new_steps():
    slow = EchoProvider(delay=0.05)
    workflow = make_workflow(
        make_step("A", "fail"),
        make_step("B", "slow"),
        make_step("C", "slow", depends_on=["B"]),
        max_concurrent=2,
        fail_fast=True,
    )

    result = await _scheduler({"fail": FailingProvider(), "slow": slow}).execute(
        workflow
    )

    assert result.status == ExecutionStatus.FAILED
    # B was already in flight and is allowed to finish
    assert result.step_results["B"].status == StepStatus.SUCCEEDED
    assert result.step_results["C"].status == StepStatus.SKIPPED
    assert "fail-fast" in result.step_results["C"].error
    assert slow.calls == ["B"]


@pytest.mark.asyncio
async def test_without_fail_fast_independent_branch_finishes():
    slow = EchoProvider(delay=0.01)
    workflow = make_workflow(
        make_step("A", "fail"),
        make_step("B", "slow"),
        make_step("C", "slow", depends_on=["B"]),
        max_concurrent=2,
    )

    result = await _scheduler({"fail": FailingProvider(), "slow": slow}).execute(
        workflow
    )

    assert result.status == ExecutionStatus.FAILED
    assert result.step_results["C"].status == StepStatus.SUCCEEDED
    assert slow.calls == ["B", "C"]


@pytest.mark.asyncio
async def test_token_budget_halts_execution():
    echo = EchoProvider(tokens=10)
    workflow = make_workflow(
        make_step("A"),
        make_step("B", depends_on=["A"]),
        make_step("C", depends_on=["B"]),
        token_budget=15,
    )

    result = await _scheduler({"echo": echo}).execute(workflow)

    assert result.status == ExecutionStatus.FAILED
    assert result.error == "token budget exceeded (20 > 15)"
    assert result.step_results["B"].status == StepStatus.SUCCEEDED
    assert result.step_results["C"].status == StepStatus.SKIPPED
    assert result.final_context.metadata.total_tokens == 20


@pytest.mark.asyncio
async def test_invalid_workflow_is_rejected_before_persisting():
    repository = CountingRepository()
    workflow = make_workflow(
        make_step("A", depends_on=["B"]),
        make_step("B", depends_on=["A"]),
    )

    with pytest.raises(WorkflowValidationError) as exc_info:
        await _scheduler({"echo": EchoProvider()}, repository).execute(workflow)

    assert any("Circular dependency" in e for e in exc_info.value.errors)
    assert repository.saves == 0
    assert await repository.list_executions() == []


@pytest.mark.asyncio
async def test_save_state_disabled_only_saves_start_and_finish():
    repository = CountingRepository()
    workflow = make_workflow(
        make_step("A"),
        make_step("B", depends_on=["A"]),
        save_state=False,
    )

    result = await _scheduler({"echo": EchoProvider()}, repository).execute(workflow)

    assert repository.saves == 2
    stored = await repository.load_execution(result.execution_id)
    assert stored.status == ExecutionStatus.COMPLETED
    assert stored.context_snapshot.metadata.total_tokens == 20


@pytest.mark.asyncio
async def test_save_state_enabled_saves_every_transition():
    repository = CountingRepository()
    workflow = make_workflow(make_step("A"), make_step("B", depends_on=["A"]))

    await _scheduler({"echo": EchoProvider()}, repository).execute(workflow)

    assert repository.saves > 2


@pytest.mark.asyncio
async def test_unknown_agent_fails_step_without_attempts():
    workflow = make_workflow(make_step("A", "missing"))

    result = await _scheduler({"echo": EchoProvider()}).execute(workflow)

    step = result.step_results["A"]
    assert result.status == ExecutionStatus.FAILED
    assert step.status == StepStatus.FAILED
    assert step.attempts == 0
    assert "'missing' not found" in step.error


@pytest.mark.asyncio
async def test_outputs_are_visible_to_later_steps():
    seen = {}

    def first(task, context):
        return {"title": "Hello"}

    async def second(task, context):
        seen.update(context.data)
        return context.data["first"]["title"].upper()

    workflow = make_workflow(
        make_step("first", "first"),
        make_step("second", "second", depends_on=["first"]),
    )
    initial = ExecutionContext(data={"topic": "dags"})

    result = await _scheduler({"first": first, "second": second}).execute(
        workflow, initial
    )

    assert result.status == ExecutionStatus.COMPLETED
    assert seen == {"topic": "dags", "first": {"title": "Hello"}}
    assert result.final_context.data["second"] == "HELLO"
    assert result.final_context.execution_id == result.execution_id
    history = [(e.step_id, e.summary) for e in result.final_context.history]
    assert history == [
        ("first", "attempt 1 succeeded"),
        ("second", "attempt 1 succeeded"),
    ]


class HoldingRepository(InMemoryExecutionRepository):
    """Block the first save that records ``step_id`` as succeeded."""

    def __init__(self, step_id: str) -> None:
        super().__init__()
        self.step_id = step_id
        self.hold = True
        self.holding = asyncio.Event()
        self.release = asyncio.Event()

    async def save_execution(self, execution):
        state = execution.steps[self.step_id]
        if self.hold and state.status == StepStatus.SUCCEEDED:
            self.hold = False
            self.holding.set()
            await self.release.wait()
        await super().save_execution(execution)


@pytest.mark.asyncio
async def test_cancel_after_last_step_finished_is_honoured():
    gated = GatedProvider()
    repository = HoldingRepository("only")
    scheduler = _scheduler({"gated": gated}, repository)

    task = asyncio.create_task(scheduler.execute(make_workflow(make_step("only", "gated"))))
    await gated.started.wait()
    [execution_id] = scheduler.active_ids()

    gated.release.set()
    await repository.holding.wait()
    assert scheduler.cancel(execution_id)
    repository.release.set()
    result = await task

    assert result.status == ExecutionStatus.CANCELLED
    assert result.step_results["only"].status == StepStatus.SUCCEEDED
    stored = await repository.load_execution(execution_id)
    assert stored.status == ExecutionStatus.CANCELLED
    assert scheduler.active_ids() == []


class FailOnceThenWait(CapabilityProvider):
    def __init__(self) -> None:
        self.calls = 0
        self.retrying = asyncio.Event()
        self.release = asyncio.Event()

    async def invoke(self, agent_id, task, context, signal):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("first try")
        self.retrying.set()
        await self.release.wait()
        return ProviderResult(output="second try")


@pytest.mark.asyncio
async def test_retried_step_reports_running_during_next_attempt():
    provider = FailOnceThenWait()
    scheduler = _scheduler({"flaky": provider})
    step = make_step("s", "flaky", retry_policy=RetryPolicy(max_attempts=2, delay=0))

    task = asyncio.create_task(scheduler.execute(make_workflow(step)))
    await provider.retrying.wait()
    [execution_id] = scheduler.active_ids()

    live = None
    for _ in range(100):
        live = scheduler.get_active(execution_id)
        if live.steps["s"].attempts == 1 and live.steps["s"].status == StepStatus.RUNNING:
            break
        await asyncio.sleep(0.01)
    assert live.steps["s"].status == StepStatus.RUNNING
    assert "first try" in live.steps["s"].error

    provider.release.set()
    result = await task

    assert result.status == ExecutionStatus.COMPLETED
    assert result.step_results["s"].attempts == 2
