"""
End-to-end tests for WorkflowManager.

Every scenario runs the real control loop against scripted planner,
executor and evaluator collaborators and an in-memory event store.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from browseflow.application.services.workflow_manager import WorkflowManager, determine_status
from browseflow.config import StuckDetectionConfig, WorkflowManagerConfig
from browseflow.domain.exceptions import InvalidStateTransition, WorkflowInitializationError
from browseflow.domain.models import Variable, WorkflowResultStatus, WorkflowStatus
from browseflow.infrastructure.database import create_inmemory_uow_factory
from browseflow.infrastructure.events import (
    InMemoryEventStore,
    WorkflowEventBus,
    WorkflowStuckHandler,
)

from conftest import (
    FakeBrowser,
    FakeDomService,
    RecordingReporter,
    ScriptedEvaluator,
    ScriptedExecutor,
    ScriptedPlanner,
    StaticSummarizer,
    strategy,
)


GOAL = "Search for X"
START_URL = "https://shop.example"


def build_manager(planner, executor, config, browser=None, **kwargs) -> WorkflowManager:
    return WorkflowManager(
        planner=planner,
        executor=executor,
        evaluator=kwargs.pop("evaluator", ScriptedEvaluator()),
        browser=browser or FakeBrowser(),
        dom_service=kwargs.pop("dom_service", FakeDomService()),
        config=config,
        reporter=kwargs.pop("reporter", RecordingReporter()),
        **kwargs,
    )


class FlakyDomService(FakeDomService):
    """Raises on the given 1-based calls to get_interactive_elements."""

    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = set(fail_on)
        self.calls = 0

    async def get_interactive_elements(self):
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError("Target page, context or browser has been closed")
        return await super().get_interactive_elements()


class GatedExecutor(ScriptedExecutor):
    """Holds one task open until `gate` is set."""

    def __init__(self, held: str):
        super().__init__()
        self.held = held
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def execute(self, executor_input):
        if executor_input.description == self.held:
            self.entered.set()
            await self.gate.wait()
        return await super().execute(executor_input)


# ═══════════════════════════════════════════════════════════════════════════════
# Completion policy
# ═══════════════════════════════════════════════════════════════════════════════


class TestDetermineStatus:
    """Graceful degradation thresholds."""

    def test_all_steps_is_success(self):
        """Every planned step succeeded."""
        assert determine_status(3, 3, WorkflowManagerConfig()) == WorkflowResultStatus.SUCCESS

    def test_half_is_partial(self):
        """50% meets the default partial ratio."""
        assert determine_status(2, 4, WorkflowManagerConfig()) == WorkflowResultStatus.PARTIAL

    def test_two_successes_below_ratio_is_degraded(self):
        """Two successes clear the floor even below 50%."""
        assert determine_status(2, 5, WorkflowManagerConfig()) == WorkflowResultStatus.DEGRADED

    def test_one_of_three_is_failure(self):
        """One success out of three clears neither arm."""
        assert determine_status(1, 3, WorkflowManagerConfig()) == WorkflowResultStatus.FAILURE

    def test_early_exit_is_success(self):
        """An early exit reports success whatever the ratio."""
        status = determine_status(2, 3, WorkflowManagerConfig(), early_exit=True)
        assert status == WorkflowResultStatus.SUCCESS

    def test_nothing_planned_is_failure(self):
        """Zero planned steps never count as success."""
        assert determine_status(0, 0, WorkflowManagerConfig()) == WorkflowResultStatus.FAILURE


# ═══════════════════════════════════════════════════════════════════════════════
# Happy paths
# ═══════════════════════════════════════════════════════════════════════════════


class TestExecuteSuccess:
    """Runs that finish every step."""

    @pytest.mark.asyncio
    async def test_transient_retries_are_not_errors(self, fast_config):
        """Step 2 fails twice then succeeds: success, 100%, no errors."""
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor({"Type query": ["fail", "fail", "ok"]})
        config = replace(fast_config, max_retries=3)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert result.completion_percentage == 100
        assert result.errors == []
        assert executor.attempts_for("Type query") == 3
        assert result.completed_steps == ["Open search", "Type query", "Read results"]

    @pytest.mark.asyncio
    async def test_extracted_data_is_accumulated(self, fast_config):
        """Executor-provided data ends up in the result."""
        planner = ScriptedPlanner(strategy("Open search", "Read price", intent="extract"))
        executor = ScriptedExecutor({"Read price": [{"extracted_data": {"price": "$10"}}]})

        result = await build_manager(planner, executor, fast_config).execute(GOAL, START_URL)

        assert result.extracted_data == {"price": "$10"}
        assert result.confidence_score == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_checkpoint_holds_the_task_data(self, fast_config):
        """A task's checkpoint includes what it extracted; only five are kept."""
        steps = ["Open site", "Open menu", "Pick category", "Sort list",
                 "Open item", "Scroll down", "Read price"]
        planner = ScriptedPlanner(strategy(*steps, intent="extract"))
        executor = ScriptedExecutor({"Read price": [{"extracted_data": {"price": "$10"}}]})
        config = replace(fast_config, enable_replanning=False)
        manager = build_manager(planner, executor, config)

        await manager.execute(GOAL, START_URL)

        names = manager.state_manager.get_checkpoint_names()
        assert len(names) == 5
        assert manager.state_manager.get_checkpoint(names[-1]).extracted_data == {"price": "$10"}

    @pytest.mark.asyncio
    async def test_executor_receives_screenshots_and_variables(self, fast_config):
        """The executor sees both screenshots, DOM elements and the variable manager."""
        planner = ScriptedPlanner(strategy("Log in", intent="authenticate"))
        executor = ScriptedExecutor()
        config = replace(fast_config, variables=[Variable("password", "hunter2", is_secret=True)])

        await build_manager(planner, executor, config).execute(GOAL, START_URL)

        call = executor.calls[0]
        assert call.intent == "fill"
        assert call.pristine_screenshot and call.highlighted_screenshot
        assert len(call.dom_elements) == 3
        assert call.variable_manager.interpolate("{{password}}") == "hunter2"

    @pytest.mark.asyncio
    async def test_summarizer_output_becomes_summary(self, fast_config):
        """A configured summarizer provides the human-readable summary."""
        planner = ScriptedPlanner(strategy("Open search", "Read results"))
        summarizer = StaticSummarizer()

        result = await build_manager(
            planner, ScriptedExecutor(), fast_config, summarizer=summarizer,
        ).execute(GOAL, START_URL)

        assert result.summary == f"2 steps done for: {GOAL}"
        assert result.structured_summary["objective"] == GOAL
        assert len(summarizer.inputs[0].plan) == 2

    @pytest.mark.asyncio
    async def test_summarizer_failure_is_ignored(self, fast_config):
        """A broken summarizer never changes the outcome."""
        planner = ScriptedPlanner(strategy("Open search"))

        result = await build_manager(
            planner, ScriptedExecutor(), fast_config, summarizer=StaticSummarizer(fail=True),
        ).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert result.structured_summary is None
        assert result.summary == "Completed 1/1 steps (100%)"

    @pytest.mark.asyncio
    async def test_browser_closed_after_run(self, fast_config):
        """Cleanup closes the browser on success."""
        browser = FakeBrowser()
        planner = ScriptedPlanner(strategy("Open search"))

        await build_manager(planner, ScriptedExecutor(), fast_config, browser=browser).execute(GOAL, START_URL)

        assert browser.launched
        assert browser.closed
        assert browser.visited[0] == START_URL


# ═══════════════════════════════════════════════════════════════════════════════
# Degraded outcomes
# ═══════════════════════════════════════════════════════════════════════════════


class TestExecuteDegraded:
    """Failures surface in the result, never as exceptions."""

    @pytest.mark.asyncio
    async def test_two_of_four_is_partial(self, fast_config):
        """Exactly two of four steps succeeding yields partial, not failure."""
        planner = ScriptedPlanner(strategy("A step", "B step", "C step", "D step"))
        executor = ScriptedExecutor({"B step": ["fail"], "D step": ["fail"]})
        config = replace(fast_config, max_retries=0, enable_replanning=False)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.PARTIAL
        assert result.completion_percentage == 50
        assert result.failed_steps == ["B step", "D step"]
        assert len(result.errors) == 2
        assert "Element not found" in result.errors[0]

    @pytest.mark.asyncio
    async def test_failed_step_does_not_stop_the_run(self, fast_config):
        """Later steps still run after a step fails."""
        planner = ScriptedPlanner(strategy("A step", "B step", "C step"))
        executor = ScriptedExecutor({"A step": ["fail"]})
        config = replace(fast_config, max_retries=0, enable_replanning=False)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert executor.attempts_for("C step") == 1
        assert result.status == WorkflowResultStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_all_failed_marks_workflow_failed(self, fast_config):
        """No successes → failure status and a failed Workflow entity."""
        uow_factory = create_inmemory_uow_factory()
        planner = ScriptedPlanner(strategy("A step", "B step"))
        executor = ScriptedExecutor({"A step": ["fail"], "B step": ["fail"]})
        config = replace(fast_config, max_retries=0, enable_replanning=False)

        result = await build_manager(
            planner, executor, config, uow_factory=uow_factory,
        ).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.FAILURE
        with uow_factory() as uow:
            assert uow.workflows.get(result.workflow_id).status == WorkflowStatus.FAILED

    @pytest.mark.asyncio
    async def test_executor_exception_counts_as_failed_attempt(self, fast_config):
        """An exception from the executor is retried like any failure."""
        planner = ScriptedPlanner(strategy("A step"))
        executor = ScriptedExecutor({"A step": ["raise", "ok"]})
        config = replace(fast_config, max_retries=1)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert executor.attempts_for("A step") == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, fast_config):
        """A hung attempt times out, is recorded, then retried."""
        store = InMemoryEventStore()
        planner = ScriptedPlanner(strategy("A step"))
        executor = ScriptedExecutor({"A step": ["hang", "ok"]})
        config = replace(fast_config, max_retries=1, task_timeout_ms=50)

        result = await build_manager(
            planner, executor, config, event_store=store,
        ).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert len(store.get_events_by_type("TaskTimedOutEvent")) == 1

    @pytest.mark.asyncio
    async def test_page_capture_failure_fails_only_its_step(self, fast_config):
        """A capture error before step B fails B; C and D still run."""
        # calls: plan, A before, A after, B before
        dom = FlakyDomService(fail_on={4})
        planner = ScriptedPlanner(strategy("A step", "B step", "C step", "D step"))
        executor = ScriptedExecutor()
        config = replace(fast_config, max_retries=0, enable_replanning=False)

        result = await build_manager(planner, executor, config, dom_service=dom).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.PARTIAL
        assert result.failed_steps == ["B step"]
        assert executor.attempts_for("B step") == 0
        assert executor.attempts_for("C step") == 1
        assert executor.attempts_for("D step") == 1
        assert "Page capture failed" in result.errors[0]
        assert not any(e.startswith("Unexpected error") for e in result.errors)

    @pytest.mark.asyncio
    async def test_capture_failure_after_action_is_retried(self, fast_config):
        """A capture error after the action counts as one failed attempt."""
        # calls: plan, A before, A after
        dom = FlakyDomService(fail_on={3})
        planner = ScriptedPlanner(strategy("A step"))
        executor = ScriptedExecutor()
        config = replace(fast_config, max_retries=1, enable_replanning=False)

        result = await build_manager(planner, executor, config, dom_service=dom).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert executor.attempts_for("A step") == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Early exit / abort
# ═══════════════════════════════════════════════════════════════════════════════


class TestEarlyExitAndAbort:
    """Stopping before the plan is exhausted."""

    @pytest.mark.asyncio
    async def test_early_exit_after_critical_step(self, fast_config):
        """Steps 1-2 reach 66% with step-1 done; step 3 never runs."""
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor()
        config = replace(
            fast_config, allow_early_exit=True, min_acceptable_completion=60,
            critical_steps=["step-1"],
        )

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert result.early_exit is True
        assert result.completion_percentage == pytest.approx(66.67, abs=0.01)
        assert executor.attempts_for("Read results") == 0
        assert result.completed_steps == ["Open search", "Type query"]

    @pytest.mark.asyncio
    async def test_no_early_exit_until_critical_step_done(self, fast_config):
        """An unmet critical step keeps the run going."""
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor()
        config = replace(
            fast_config, allow_early_exit=True, min_acceptable_completion=60,
            critical_steps=["step-3"],
        )

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.early_exit is False
        assert executor.attempts_for("Read results") == 1

    @pytest.mark.asyncio
    async def test_abort_builds_partial_result(self, fast_config):
        """abort() stops at the next boundary and records the reason."""
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor()
        manager = build_manager(planner, executor, fast_config)
        executor.script["Type query"] = [lambda _: manager.abort("user cancelled")]

        result = await manager.execute(GOAL, START_URL)

        assert result.errors == ["Aborted: user cancelled"]
        assert executor.attempts_for("Read results") == 0
        assert result.status == WorkflowResultStatus.PARTIAL
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_stuck_escalation_aborts(self, fast_config):
        """The fourth stuck recommendation in a row aborts the run."""
        reporter = RecordingReporter()
        stuck = WorkflowStuckHandler(StuckDetectionConfig(check_interval_ms=600_000))
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor()
        manager = build_manager(planner, executor, fast_config, reporter=reporter, stuck_handler=stuck)

        def go_idle(_):
            later = datetime.now() + timedelta(hours=1)
            for _ in range(4):
                stuck.perform_health_check(now=later)

        executor.script["Type query"] = [go_idle]

        result = await manager.execute(GOAL, START_URL)

        assert result.errors[-1].startswith("Aborted: Workflow stuck")
        assert any("human intervention" in m for m in reporter.of_level("info"))
        assert stuck.get_workflow_health(result.workflow_id) is None
        assert not stuck.is_running

    @pytest.mark.asyncio
    async def test_shared_monitor_outlives_a_finished_run(self, fast_config):
        """A run that finishes first leaves the other run monitored."""
        stuck = WorkflowStuckHandler(StuckDetectionConfig(check_interval_ms=600_000))
        first = build_manager(ScriptedPlanner(strategy("Open search")), ScriptedExecutor(),
                              fast_config, stuck_handler=stuck)
        held = GatedExecutor("Wait here")
        second = build_manager(ScriptedPlanner(strategy("Wait here")), held,
                               fast_config, stuck_handler=stuck)

        pending = asyncio.ensure_future(second.execute(GOAL, START_URL))
        await held.entered.wait()
        await first.execute(GOAL, START_URL)

        assert stuck.is_running
        assert [h.workflow_id for h in stuck.get_all_workflow_health()] == [second.workflow.id]

        held.gate.set()
        result = await pending

        assert result.status == WorkflowResultStatus.SUCCESS
        assert not stuck.is_running


# ═══════════════════════════════════════════════════════════════════════════════
# Replanning
# ═══════════════════════════════════════════════════════════════════════════════


class TestReplanning:
    """Replans after failures and page changes."""

    @pytest.mark.asyncio
    async def test_replan_after_failed_step(self, fast_config):
        """A terminal failure replans; completion counts earlier successes."""
        planner = ScriptedPlanner(
            strategy("Open search", "Use search box", "Read results"),
            replans=[strategy("Use category menu", "Read results")],
        )
        executor = ScriptedExecutor({"Use search box": ["fail"]})
        config = replace(fast_config, max_retries=0)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.replan_count == 1
        assert result.status == WorkflowResultStatus.SUCCESS
        assert result.completion_percentage == 100
        assert result.completed_steps == ["Open search", "Use category menu", "Read results"]
        replan_input = planner.replan_inputs[0]
        assert replan_input.completed_steps == ["Open search"]
        assert replan_input.failed_step == "Use search box"
        assert "DO NOT REPEAT" in replan_input.continuation_prompt

    @pytest.mark.asyncio
    async def test_identical_replan_is_refused(self, fast_config):
        """A replan repeating the remaining steps is refused and reported."""
        planner = ScriptedPlanner(
            strategy("Open search", "Use search box", "Read results"),
            replans=[strategy("Use search box", "Read results")],
        )
        executor = ScriptedExecutor({"Use search box": ["fail"]})
        config = replace(fast_config, max_retries=0)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert result.replan_count == 1
        assert any("Replan refused" in e and "no meaningful change" in e for e in result.errors)
        assert executor.attempts_for("Read results") == 1

    @pytest.mark.asyncio
    async def test_fundamental_failure_is_not_replanned(self, fast_config):
        """Page-not-found failures never reach the planner again."""
        planner = ScriptedPlanner(strategy("Open search", "Read results"))
        executor = ScriptedExecutor({"Open search": [{"error": "Page not found (404)"}]})
        config = replace(fast_config, max_retries=0)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert planner.replan_inputs == []
        assert any("Fundamental failure" in e for e in result.errors)

    @pytest.mark.asyncio
    async def test_planner_error_during_replan_is_recovered(self, fast_config):
        """A crashing planner refuses the replan; the run continues."""
        planner = ScriptedPlanner(
            strategy("Open search", "Use search box", "Read results"),
            replans=[RuntimeError("model overloaded")],
        )
        executor = ScriptedExecutor({"Use search box": ["fail"]})
        config = replace(fast_config, max_retries=0)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert executor.attempts_for("Read results") == 1
        assert any("model overloaded" in e for e in result.errors)
        assert result.status == WorkflowResultStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_page_change_triggers_replan(self, fast_config):
        """A URL change after an interaction replans the remaining steps."""
        browser = FakeBrowser()
        planner = ScriptedPlanner(
            strategy("Submit search", "Apply filter", "Read results"),
            replans=[strategy("Open first result", "Read price")],
        )
        executor = ScriptedExecutor(
            {"Submit search": [{"url": "https://shop.example/results"}]}, browser=browser,
        )

        result = await build_manager(planner, executor, fast_config, browser=browser).execute(GOAL, START_URL)

        assert result.replan_count == 1
        assert executor.attempts_for("Apply filter") == 0
        assert result.completed_steps == ["Submit search", "Open first result", "Read price"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_navigation_does_not_trigger_replan(self, fast_config):
        """A URL change was the point of a navigate step."""
        browser = FakeBrowser()
        planner = ScriptedPlanner(strategy("Go to deals", "Read deals", "Read more", intent="navigate"))
        executor = ScriptedExecutor({"Go to deals": [{"url": "https://shop.example/deals"}]}, browser=browser)

        result = await build_manager(planner, executor, fast_config, browser=browser).execute(GOAL, START_URL)

        assert result.replan_count == 0
        assert planner.replan_inputs == []

    @pytest.mark.asyncio
    async def test_replan_disabled(self, fast_config):
        """With replanning off the planner is only called once."""
        planner = ScriptedPlanner(strategy("A step", "B step"))
        executor = ScriptedExecutor({"A step": ["fail"]})
        config = replace(fast_config, max_retries=0, enable_replanning=False)

        result = await build_manager(planner, executor, config).execute(GOAL, START_URL)

        assert len(planner.inputs) == 1
        assert result.replan_count == 0


# ═══════════════════════════════════════════════════════════════════════════════
# Events / persistence
# ═══════════════════════════════════════════════════════════════════════════════


class TestEventsAndPersistence:
    """Event batching and best-effort persistence."""

    @pytest.mark.asyncio
    async def test_store_holds_exactly_the_published_events(self, fast_config):
        """One batch per run: every published event stored once, nothing else."""
        store = InMemoryEventStore()
        bus = WorkflowEventBus()
        planner = ScriptedPlanner(strategy("Open search", "Type query", "Read results"))
        executor = ScriptedExecutor({"Type query": ["fail", "ok"]})

        manager = build_manager(planner, executor, fast_config, event_store=store, event_bus=bus)
        result = await manager.execute(GOAL, START_URL)

        stored_ids = [e.event_id for e in store.get_events()]
        published_ids = [e.event_id for e in bus.get_event_history()]
        assert len(stored_ids) == len(set(stored_ids))
        assert set(stored_ids) == set(published_ids)
        assert manager.workflow.get_domain_events() == []
        assert manager.execution.get_domain_events() == []

        types = {e.event_type for e in store.get_events()}
        assert {"WorkflowStartedEvent", "PlanCreatedEvent", "StepStartedEvent",
                "TaskCompletedEvent", "TaskRetriedEvent", "WorkflowCompletedEvent",
                "SessionStartedEvent", "ElementInteractionEvent"} <= types
        assert all(e.metadata["workflow_id"] == result.workflow_id for e in store.get_events())

    @pytest.mark.asyncio
    async def test_legacy_events_are_mirrored(self, fast_config):
        """Legacy listeners see workflow and task lifecycle names."""
        bus = WorkflowEventBus()
        seen = []
        for name in ("workflow:started", "task:completed", "workflow:completed", "plan:created"):
            bus.on(name, lambda payload, name=name: seen.append(name))
        planner = ScriptedPlanner(strategy("Open search"))

        await build_manager(planner, ScriptedExecutor(), fast_config, event_bus=bus).execute(GOAL, START_URL)

        assert seen.index("workflow:started") < seen.index("task:completed") < seen.index("workflow:completed")
        assert "plan:created" in seen

    @pytest.mark.asyncio
    async def test_workflow_and_plan_are_persisted(self, fast_config):
        """Workflow and plan rows exist after the run; secrets are masked."""
        uow_factory = create_inmemory_uow_factory()
        planner = ScriptedPlanner(strategy("Open search", "Read results"))
        config = replace(fast_config, variables=[Variable("password", "hunter2", is_secret=True)])

        result = await build_manager(
            planner, ScriptedExecutor(), config, uow_factory=uow_factory,
        ).execute(GOAL, START_URL)

        with uow_factory() as uow:
            stored = uow.workflows.get(result.workflow_id)
            plans = uow.plans.find_by_workflow(result.workflow_id)
        assert stored.status == WorkflowStatus.COMPLETED
        assert stored.get_variable("password").value != "hunter2"
        assert len(plans) == 1
        assert all(s.is_completed() for s in plans[0].steps)

    @pytest.mark.asyncio
    async def test_persistence_failure_is_swallowed(self, fast_config):
        """A broken unit of work never breaks the run."""
        def broken_uow():
            raise RuntimeError("database is locked")

        reporter = RecordingReporter()
        planner = ScriptedPlanner(strategy("Open search"))

        result = await build_manager(
            planner, ScriptedExecutor(), fast_config, uow_factory=broken_uow, reporter=reporter,
        ).execute(GOAL, START_URL)

        assert result.status == WorkflowResultStatus.SUCCESS
        assert any("database is locked" in m for m in reporter.of_level("log"))

    @pytest.mark.asyncio
    async def test_failures_become_learnings(self, fast_config):
        """Failed attempts are remembered with the default suggestion."""
        planner = ScriptedPlanner(strategy("Open search"))
        executor = ScriptedExecutor({"Open search": ["fail", "ok"]})
        manager = build_manager(planner, executor, replace(fast_config, max_retries=1))

        await manager.execute(GOAL, START_URL)

        recent = manager.memory.get_recent_learnings()
        assert any(m.alternative_action == "Try a different approach" for m in recent)
        assert recent[0].learning.startswith('Action "Open search" succeeded')
        assert manager.memory.get_stats()["total_memories"] == 2


# ═══════════════════════════════════════════════════════════════════════════════
# Fatal errors
# ═══════════════════════════════════════════════════════════════════════════════


class TestFatalErrors:
    """Only initialization failures raise."""

    @pytest.mark.asyncio
    async def test_empty_plan_is_fatal(self, fast_config):
        """An empty strategy raises and still closes the browser."""
        browser = FakeBrowser()
        manager = build_manager(ScriptedPlanner([]), ScriptedExecutor(), fast_config, browser=browser)

        with pytest.raises(WorkflowInitializationError, match="empty strategy"):
            await manager.execute(GOAL, START_URL)

        assert browser.closed
        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_browser_launch_failure_is_fatal(self, fast_config):
        """A browser that cannot launch aborts before planning."""
        planner = ScriptedPlanner(strategy("Open search"))
        manager = build_manager(planner, ScriptedExecutor(), fast_config, browser=FakeBrowser(fail_launch=True))

        with pytest.raises(WorkflowInitializationError, match="Browser launch failed"):
            await manager.execute(GOAL, START_URL)

        assert planner.inputs == []

    @pytest.mark.asyncio
    async def test_initial_capture_failure_is_fatal(self, fast_config):
        """A page that cannot be read before planning aborts the run."""
        planner = ScriptedPlanner(strategy("Open search"))
        manager = build_manager(planner, ScriptedExecutor(), fast_config,
                                dom_service=FlakyDomService(fail_on={1}))

        with pytest.raises(WorkflowInitializationError, match="Initial page capture failed"):
            await manager.execute(GOAL, START_URL)

        assert planner.inputs == []

    @pytest.mark.asyncio
    async def test_concurrent_execute_is_rejected(self, fast_config):
        """A manager runs one workflow at a time."""
        planner = ScriptedPlanner(strategy("Open search"))
        executor = ScriptedExecutor()
        manager = build_manager(planner, executor, fast_config)
        errors = []

        async def reenter(_):
            try:
                await manager.execute(GOAL, START_URL)
            except InvalidStateTransition as e:
                errors.append(e)

        original = executor.execute

        async def execute(executor_input):
            await reenter(executor_input)
            return await original(executor_input)

        executor.execute = execute
        await manager.execute(GOAL, START_URL)

        assert len(errors) == 1
