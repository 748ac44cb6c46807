"""
Unit tests for WorkflowAggregate and ExecutionAggregate.
"""

import pytest

from browseflow.application.services.task_queue import TaskQueue
from browseflow.domain.aggregates import ExecutionAggregate, WorkflowAggregate
from browseflow.domain.events import (
    DataExtractionEvent,
    ElementInteractionEvent,
    ExecutionErrorEvent,
    PageNavigationEvent,
)
from browseflow.domain.exceptions import AggregateInvariantError, InvalidStateTransition
from browseflow.domain.models import (
    Evidence,
    ExecutionContext,
    Intent,
    IntentType,
    Plan,
    Priority,
    Session,
    SessionStatus,
    Step,
    Task,
    TaskResult,
    Workflow,
    WorkflowStatus,
)


def build_plan(workflow_id: str, *descriptions: str) -> Plan:
    steps = []
    for order, description in enumerate(descriptions, start=1):
        step = Step.create(description, order)
        step.add_task(Task.create(description, Intent(IntentType.CLICK), max_retries=0))
        steps.append(step)
    return Plan.create(workflow_id, steps)


def build_aggregate(*descriptions: str):
    workflow = Workflow.create("Search for X", "https://shop.example")
    plan = build_plan(workflow.id, *(descriptions or ("Open search", "Read results")))
    session = Session.create(workflow.id)
    queue = TaskQueue()
    aggregate = WorkflowAggregate.create(workflow, plan, session, queue)
    aggregate.start_execution()
    return aggregate, queue


async def succeed(task: Task) -> None:
    task.execute()
    task.complete(TaskResult(task_id=task.id, success=True))


async def fail(task: Task) -> None:
    task.execute()
    task.fail("Element not found")


# ═══════════════════════════════════════════════════════════════════════════════
# WorkflowAggregate
# ═══════════════════════════════════════════════════════════════════════════════


class TestWorkflowAggregateCreation:
    """Consistency checks at creation."""

    def test_foreign_plan_rejected(self):
        """The plan must belong to the workflow."""
        workflow = Workflow.create("Search", "https://shop.example")
        with pytest.raises(AggregateInvariantError):
            WorkflowAggregate.create(
                workflow, build_plan("other", "A"), Session.create(workflow.id), TaskQueue(),
            )

    def test_foreign_session_rejected(self):
        """The session must belong to the workflow."""
        workflow = Workflow.create("Search", "https://shop.example")
        with pytest.raises(AggregateInvariantError):
            WorkflowAggregate.create(
                workflow, build_plan(workflow.id, "A"), Session.create("other"), TaskQueue(),
            )

    def test_terminal_workflow_rejected(self):
        """Finished workflows cannot be wrapped again."""
        workflow = Workflow.create("Search", "https://shop.example")
        workflow.start()
        workflow.fail("x")
        with pytest.raises(AggregateInvariantError):
            WorkflowAggregate.create(
                workflow, build_plan(workflow.id, "A"), Session.create(workflow.id), TaskQueue(),
            )

    def test_start_requires_active_session(self):
        """An ended session blocks start_execution."""
        workflow = Workflow.create("Search", "https://shop.example")
        session = Session.create(workflow.id)
        session.end()
        aggregate = WorkflowAggregate.create(workflow, build_plan(workflow.id, "A"), session, TaskQueue())
        with pytest.raises(InvalidStateTransition):
            aggregate.start_execution()

    def test_start_attaches_plan(self):
        """start_execution starts the workflow and records the plan id."""
        aggregate, _ = build_aggregate()
        assert aggregate.workflow.status == WorkflowStatus.RUNNING
        assert aggregate.workflow.current_plan_id == aggregate.plan.id


class TestExecuteNextStep:
    """Step execution through the task queue."""

    @pytest.mark.asyncio
    async def test_successful_step_advances(self):
        """A completed task completes the step and advances the plan."""
        aggregate, queue = build_aggregate()
        assert aggregate.enqueue_plan() == 2

        outcome = await aggregate.execute_next_step(succeed)

        assert outcome.success
        assert outcome.tasks_executed == 1
        assert aggregate.plan.current_step_index == 1
        assert queue.is_completed(aggregate.plan.steps[0].tasks[0].id)

    @pytest.mark.asyncio
    async def test_failed_task_fails_step(self):
        """A terminally failed task fails the step; the plan still advances."""
        aggregate, queue = build_aggregate()
        aggregate.enqueue_plan()

        outcome = await aggregate.execute_next_step(fail)

        assert not outcome.success
        assert outcome.tasks_failed == 1
        assert "Element not found" in outcome.error
        assert aggregate.plan.current_step_index == 1
        assert len(queue.get_failed_tasks()) == 1

    @pytest.mark.asyncio
    async def test_blocked_tasks_fail_step(self):
        """A dependency on a failed task leaves the next step blocked."""
        aggregate, _ = build_aggregate()
        first, second = (s.tasks[0] for s in aggregate.plan.steps)
        aggregate.enqueue_plan({second.id: [first.id]})

        await aggregate.execute_next_step(fail)
        outcome = await aggregate.execute_next_step(succeed)

        assert not outcome.success
        assert outcome.blocked_task_ids == [second.id]
        assert "blocked" in outcome.error
        assert aggregate.plan.is_complete()

    @pytest.mark.asyncio
    async def test_stop_before_running_fails_step(self):
        """A stop request before any task runs fails the step as aborted."""
        aggregate, _ = build_aggregate()
        aggregate.enqueue_plan()

        outcome = await aggregate.execute_next_step(succeed, should_stop=lambda: True)

        assert outcome.stopped
        assert outcome.tasks_executed == 0
        assert outcome.error == "Execution aborted"

    @pytest.mark.asyncio
    async def test_stop_after_last_task_completes_step(self):
        """A stop request after the task finished keeps the step successful."""
        aggregate, _ = build_aggregate()
        aggregate.enqueue_plan()
        calls = []

        async def run_and_stop(task):
            await succeed(task)
            calls.append(task)

        outcome = await aggregate.execute_next_step(run_and_stop, should_stop=lambda: bool(calls))

        assert outcome.stopped
        assert outcome.success

    @pytest.mark.asyncio
    async def test_higher_priority_task_runs_first(self):
        """Within a step, ready tasks run by priority."""
        workflow = Workflow.create("Search", "https://shop.example")
        step = Step.create("Fill form", 1)
        low = Task.create("low", Intent(IntentType.FILL), priority=Priority.low())
        high = Task.create("high", Intent(IntentType.FILL), priority=Priority.high())
        step.add_task(low)
        step.add_task(high)
        aggregate = WorkflowAggregate.create(
            workflow, Plan.create(workflow.id, [step]), Session.create(workflow.id), TaskQueue(),
        )
        aggregate.start_execution()
        aggregate.enqueue_plan()
        order = []

        async def record(task):
            order.append(task.description)
            await succeed(task)

        await aggregate.execute_next_step(record)
        assert order == ["high", "low"]

    @pytest.mark.asyncio
    async def test_no_current_step_raises(self):
        """Executing a finished plan is an invariant violation."""
        aggregate, _ = build_aggregate("Only step")
        aggregate.enqueue_plan()
        await aggregate.execute_next_step(succeed)
        with pytest.raises(AggregateInvariantError):
            await aggregate.execute_next_step(succeed)


class TestPlanReplacementAndCompletion:
    """replace_plan / complete_execution / fail_execution."""

    def test_replace_plan_clears_queue_and_keeps_history(self):
        """Old tasks leave the queue; old plans stay in plans."""
        aggregate, queue = build_aggregate()
        aggregate.enqueue_plan()
        old_plan = aggregate.plan
        new_plan = build_plan(aggregate.workflow.id, "Use menu")

        aggregate.replace_plan(new_plan)

        assert queue.is_empty()
        assert aggregate.plan is new_plan
        assert aggregate.plans == [old_plan, new_plan]
        assert aggregate.workflow.current_plan_id == new_plan.id
        assert old_plan in aggregate.get_entities()

    def test_replace_with_foreign_plan_rejected(self):
        """Replacement plans must belong to the workflow."""
        aggregate, _ = build_aggregate()
        with pytest.raises(AggregateInvariantError):
            aggregate.replace_plan(build_plan("other", "A"))

    def test_complete_ends_session(self):
        """Completion ends the session."""
        aggregate, _ = build_aggregate()
        aggregate.complete_execution("done", {"price": 1})
        assert aggregate.workflow.status == WorkflowStatus.COMPLETED
        assert aggregate.session.status == SessionStatus.ENDED

    def test_fail_marks_session_error(self):
        """Failure leaves the session in ERROR and ended."""
        aggregate, _ = build_aggregate()
        aggregate.fail_execution("nothing worked")
        assert aggregate.workflow.status == WorkflowStatus.FAILED
        assert aggregate.session.status == SessionStatus.ERROR
        assert aggregate.session.ended_at is not None

    def test_domain_events_ordered_and_clearable(self):
        """Aggregate events come out in occurrence order and clear together."""
        aggregate, _ = build_aggregate()
        events = aggregate.get_domain_events()
        assert events == sorted(events, key=lambda e: e.occurred_at)
        aggregate.clear_domain_events()
        assert aggregate.get_domain_events() == []

    def test_execution_status(self):
        """Status snapshot includes plan count and queue stats."""
        aggregate, _ = build_aggregate()
        aggregate.enqueue_plan()
        status = aggregate.get_execution_status()
        assert status["workflow_status"] == "running"
        assert status["plan_count"] == 1
        assert status["queue"]["queued"] == 2


# ═══════════════════════════════════════════════════════════════════════════════
# ExecutionAggregate
# ═══════════════════════════════════════════════════════════════════════════════


class TestExecutionAggregate:
    """Attempt log and browser-level events."""

    @staticmethod
    def running_task() -> Task:
        task = Task.create("Read price", Intent(IntentType.EXTRACT), max_retries=1)
        task.execute()
        return task

    def test_record_requires_running_task(self):
        """Attempts are recorded before the task transitions."""
        aggregate = ExecutionAggregate(context=ExecutionContext("s-1", "wf-1"))
        task = Task.create("Read price", Intent(IntentType.EXTRACT))
        with pytest.raises(InvalidStateTransition):
            aggregate.record_execution(task, TaskResult(task_id=task.id, success=True))

    def test_success_emits_interaction_navigation_and_extraction(self):
        """A successful attempt updates the URL and reports extracted fields."""
        aggregate = ExecutionAggregate(context=ExecutionContext("s-1", "wf-1", current_url="https://a.example"))
        task = self.running_task()
        aggregate.start_task(task)
        result = TaskResult(
            task_id=task.id, success=True,
            data={"current_url": "https://a.example/item", "extracted_data": {"price": "$1", "name": "x"}},
        )

        execution = aggregate.record_execution(task, result, Evidence.text("price shown"))

        types = [type(e) for e in aggregate.get_domain_events()]
        assert types == [ElementInteractionEvent, PageNavigationEvent, DataExtractionEvent]
        assert aggregate.context.current_url == "https://a.example/item"
        assert aggregate.context.current_task_id is None
        assert execution.has_evidence()
        assert aggregate.get_domain_events()[-1].fields == ["name", "price"]

    def test_failure_emits_error_event(self):
        """A failed attempt emits ExecutionErrorEvent flagged recoverable while retries remain."""
        aggregate = ExecutionAggregate(context=ExecutionContext("s-1", "wf-1"))
        task = self.running_task()
        aggregate.record_execution(task, TaskResult(task_id=task.id, success=False, error="boom"))

        error = aggregate.get_domain_events()[-1]
        assert isinstance(error, ExecutionErrorEvent)
        assert error.recoverable

    def test_single_task_in_flight(self):
        """Starting a second task while one runs raises."""
        aggregate = ExecutionAggregate(context=ExecutionContext("s-1", "wf-1"))
        aggregate.start_task(self.running_task())
        with pytest.raises(InvalidStateTransition):
            aggregate.start_task(self.running_task())

    def test_statistics(self):
        """Statistics count successes, failures and retries."""
        aggregate = ExecutionAggregate(context=ExecutionContext("s-1", "wf-1"))
        task = self.running_task()
        aggregate.record_execution(task, TaskResult(task_id=task.id, success=False, error="x", duration_ms=6000))
        task.fail("x")
        task.execute()
        aggregate.record_execution(task, TaskResult(task_id=task.id, success=True, duration_ms=1000))

        stats = aggregate.get_execution_statistics()
        assert stats["total_executions"] == 2
        assert stats["success_rate"] == 0.5
        assert stats["retry_executions"] == 1
        assert stats["slow_executions"] == 1
        summary = aggregate.get_task_execution_summary(task.id)
        assert summary["execution_count"] == 2
        assert aggregate.get_task_execution_summary("missing") is None
