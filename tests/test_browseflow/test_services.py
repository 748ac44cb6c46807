"""
Unit tests for the application services.

TaskQueue, StateManager, VariableManager, MemoryService and PlanningService
exercised directly, without the WorkflowManager loop.
"""

from datetime import datetime, timedelta

import pytest

from browseflow.application.services import (
    MemoryService,
    PlanningService,
    ReplanRequest,
    StateManager,
    TaskQueue,
    VariableManager,
)
from browseflow.application.services.memory_service import goal_similarity, rank_memories
from browseflow.application.services.planning_service import (
    build_continuation_prompt,
    is_fundamental_failure,
)
from browseflow.application.services.state_manager import identify_actions, identify_sections, jaccard_distance
from browseflow.config import WorkflowManagerConfig
from browseflow.domain.exceptions import (
    ReplanRefusedError,
    PlanningError,
    UnknownIntentError,
    WorkflowInitializationError,
)
from browseflow.domain.interfaces.agents import PageSnapshot, PlannerOutput
from browseflow.domain.models import (
    Intent,
    IntentType,
    MemoryContext,
    MemoryEntry,
    PageState,
    Priority,
    Task,
    Variable,
    Workflow,
)
from browseflow.infrastructure.database import create_inmemory_uow_factory
from browseflow.infrastructure.events import LegacyEventEmitter

from conftest import (
    FakeBrowser,
    FakeDomService,
    ScriptedPlanner,
    results_page_elements,
    search_page_elements,
    strategy,
)


def task(description: str, priority: Priority = None) -> Task:
    return Task.create(description, Intent(IntentType.CLICK), priority=priority)


# ═══════════════════════════════════════════════════════════════════════════════
# TaskQueue
# ═══════════════════════════════════════════════════════════════════════════════


class TestTaskQueue:
    """Dependency-aware scheduling."""

    def test_dependencies_block_until_completed(self):
        """A dependent task only becomes ready after its dependency completes."""
        queue = TaskQueue()
        search, extract = task("search"), task("extract")
        queue.enqueue(search)
        queue.enqueue(extract, dependencies=[search.id])

        assert queue.get_ready_tasks() == [search]
        assert queue.get_blocked_tasks() == [extract]
        assert queue.dequeue() is search
        assert queue.mark_completed(search.id) == [extract.id]
        assert queue.dequeue() is extract

    def test_failed_dependency_keeps_dependents_blocked(self):
        """Failure never unblocks dependents."""
        queue = TaskQueue()
        search, extract = task("search"), task("extract")
        queue.enqueue(search)
        queue.enqueue(extract, dependencies=[search.id])
        queue.dequeue()
        queue.mark_failed(search.id, "boom")

        assert queue.get_ready_tasks() == []
        assert queue.get_unmet_dependencies(extract.id) == [search.id]
        assert queue.get_failed_tasks() == {search.id: "boom"}

    def test_dependency_already_completed(self):
        """Enqueuing after the dependency completed leaves the task ready."""
        queue = TaskQueue()
        first = task("first")
        queue.enqueue(first)
        queue.mark_completed(queue.dequeue().id)
        second = task("second")
        queue.enqueue(second, dependencies=[first.id])
        assert queue.are_dependencies_met(second.id)

    def test_duplicate_enqueue_rejected(self):
        """The same task id cannot be queued twice."""
        queue = TaskQueue()
        t = task("once")
        queue.enqueue(t)
        with pytest.raises(ValueError):
            queue.enqueue(t)

    def test_priority_order_respects_dependencies(self):
        """A high-priority dependent still waits for its low-priority dependency."""
        queue = TaskQueue()
        low = task("low", Priority.low())
        high_dependent = task("high dependent", Priority.high())
        medium = task("medium", Priority.medium())
        queue.enqueue(low)
        queue.enqueue(high_dependent, dependencies=[low.id])
        queue.enqueue(medium)

        assert queue.optimize_for_high_priority() is True
        assert [t.description for t in queue.get_ready_tasks()] == ["medium", "low"]

    def test_dequeue_named_task_must_be_ready(self):
        """dequeue(task_id) returns None for a blocked task."""
        queue = TaskQueue()
        a, b = task("a"), task("b")
        queue.enqueue(a)
        queue.enqueue(b, dependencies=[a.id])
        assert queue.dequeue(b.id) is None

    def test_cleanup_evicts_finished(self):
        """cleanup_completed_tasks drops finished task objects only."""
        queue = TaskQueue(completed_history_size=1)
        a, b, c = task("a"), task("b"), task("c")
        for t in (a, b, c):
            queue.enqueue(t)
        for _ in range(2):
            queue.mark_completed(queue.dequeue().id)

        assert queue.cleanup_completed_tasks() == 2
        assert queue.get_all_tasks() == [c]
        assert queue.get_stats()["completed"] == 1

    def test_emits_legacy_events(self):
        """Mutations are announced on the emitter."""
        emitter = LegacyEventEmitter()
        seen = []
        for name in ("task:enqueued", "task:dequeued", "task:completed"):
            emitter.on(name, lambda payload, name=name: seen.append(name))
        queue = TaskQueue(emitter=emitter)
        t = task("a")
        queue.enqueue(t)
        queue.dequeue()
        queue.mark_completed(t.id)
        assert seen == ["task:enqueued", "task:dequeued", "task:completed"]


# ═══════════════════════════════════════════════════════════════════════════════
# StateManager
# ═══════════════════════════════════════════════════════════════════════════════


class TestStateManager:
    """Snapshots, change detection and extracted data."""

    def test_section_and_action_heuristics(self):
        """The search page exposes search and navigation affordances."""
        elements = search_page_elements()
        assert "search" in identify_sections(elements)
        assert "search for products" in identify_actions(elements)
        assert "navigate to other pages" in identify_actions(elements)

        results = results_page_elements()
        assert {"results", "filtering", "cart"} <= set(identify_sections(results))
        assert "sort results" in identify_actions(results)

    def test_jaccard(self):
        """Two empty sets are identical."""
        assert jaccard_distance([], []) == 0.0
        assert jaccard_distance(["a"], ["b"]) == 1.0

    @pytest.mark.parametrize("after,changed", [
        (["a", "b", "c", "d", "e"], False),   # distance 0.4
        (["a", "b", "d", "e"], True),         # distance 0.6
    ])
    def test_change_threshold(self, after, changed):
        """Only section changes beyond the threshold count."""
        manager = StateManager(FakeBrowser(), FakeDomService(), change_threshold=0.5)
        before_state = PageState(url="https://shop.example", visible_sections=["a", "b", "c"])
        after_state = PageState(url="https://shop.example", visible_sections=after)
        assert manager.has_state_changed(before_state, after_state) is changed

    def test_url_change_is_significant(self):
        """Any URL change is a state change."""
        manager = StateManager(FakeBrowser(), FakeDomService())
        assert manager.has_state_changed(PageState(url="https://a.example"), PageState(url="https://a.example/b"))

    @pytest.mark.asyncio
    async def test_capture_state(self):
        """capture_state reads URL, title, screenshots and DOM heuristics."""
        browser = FakeBrowser()
        await browser.launch("https://shop.example")
        manager = StateManager(browser, FakeDomService())

        first = await manager.capture_state()
        second = await manager.capture_state()

        assert first.url == "https://shop.example"
        assert first.title == "Shop"
        assert first.pristine_screenshot and first.screenshot
        assert "search" in first.visible_sections
        assert manager.get_previous_state() is first
        assert manager.get_current_state() is second

    def test_merge_is_deep_and_skips_empty(self):
        """Nested dicts merge; None and '' are dropped."""
        manager = StateManager(FakeBrowser(), FakeDomService())
        manager.merge_extracted_data({"product": {"name": "Shoe"}, "note": ""})
        manager.merge_extracted_data({"product": {"price": 10}, "sku": None})
        assert manager.get_all_extracted_data() == {"product": {"name": "Shoe", "price": 10}}

    def test_persistent_data_survives_clear(self):
        """clear_extracted_data keeps persistent values."""
        manager = StateManager(FakeBrowser(), FakeDomService())
        manager.add_extracted_data("price", 10)
        manager.clear_extracted_data()
        assert manager.get_extracted_data("price") is None
        assert manager.get_all_extracted_data() == {"price": 10}
        manager.clear_all_extracted_data()
        assert manager.get_all_extracted_data() == {}

    @pytest.mark.asyncio
    async def test_checkpoints(self):
        """Checkpoints need a current state and carry all extracted data."""
        manager = StateManager(FakeBrowser(), FakeDomService())
        assert manager.create_checkpoint("early") is False
        await manager.capture_state()
        manager.add_extracted_data("price", 10)
        for i in range(7):
            manager.create_checkpoint(f"cp-{i}")

        assert manager.get_checkpoint("cp-6").extracted_data == {"price": 10}
        assert manager.clear_old_checkpoints() == 2
        assert manager.get_checkpoint_names()[0] == "cp-2"

    def test_record_state_merges_data(self):
        """record_state adopts a snapshot and merges its data."""
        manager = StateManager(FakeBrowser(), FakeDomService())
        manager.record_state(PageState(url="https://a.example", extracted_data={"k": "v"}))
        assert manager.get_current_state().url == "https://a.example"
        assert manager.get_all_extracted_data() == {"k": "v"}


# ═══════════════════════════════════════════════════════════════════════════════
# VariableManager
# ═══════════════════════════════════════════════════════════════════════════════


class TestVariableManager:
    """Interpolation and redaction."""

    @pytest.fixture
    def variables(self) -> VariableManager:
        return VariableManager([
            Variable("user", "ann@example.com"),
            Variable("password", "hunter2", is_secret=True),
        ])

    def test_interpolate_uses_raw_values(self, variables):
        """interpolate() substitutes the dangerous value."""
        assert variables.interpolate("{{user}} / {{password}}") == "ann@example.com / hunter2"

    def test_redact_hides_secrets(self, variables):
        """redact() keeps secret placeholders."""
        assert variables.redact("{{user}} / {{password}}") == "ann@example.com / {{password}}"

    def test_unknown_placeholder_untouched(self, variables):
        """Unknown names are left as-is."""
        assert variables.interpolate("{{otp}}") == "{{otp}}"

    def test_contains_secrets(self, variables):
        """Only secret references count."""
        assert variables.contains_secrets("type {{password}}")
        assert not variables.contains_secrets("type {{user}}")

    def test_mutation(self, variables):
        """Variables can be replaced and removed."""
        variables.set_variable(Variable("user", "bob"))
        assert variables.interpolate("{{user}}") == "bob"
        assert variables.remove_variable("user")
        assert not variables.remove_variable("user")
        assert len(variables) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# MemoryService
# ═══════════════════════════════════════════════════════════════════════════════


SEARCH_CONTEXT = MemoryContext(url="https://shop.example/s", goal="Search for running shoes", page_section="search")


class TestMemoryService:
    """Learnings keyed by host, goal and section."""

    def test_context_key(self):
        """hostname:goal_slug:section."""
        assert SEARCH_CONTEXT.key == "shop.example:search_for_running_shoes:search"
        assert MemoryContext("https://x.example", "Go").key == "x.example:go:general"

    def test_goal_similarity(self):
        """Word-level Jaccard of slugs."""
        assert goal_similarity("search_for_running_shoes", "search_for_running_shoes_cheap") == 0.8

    def test_prompt_lists_avoid_and_alternative(self):
        """Failures render with AVOID / TRY INSTEAD hints."""
        memory = MemoryService()
        memory.learn_from_failure(SEARCH_CONTEXT, "click Search", "button disabled", "press Enter")
        prompt = memory.get_memory_prompt(SEARCH_CONTEXT)
        assert prompt.startswith("MEMORY LEARNINGS FROM SIMILAR SITUATIONS:")
        assert "(AVOID: click Search)" in prompt
        assert "(TRY INSTEAD: press Enter)" in prompt

    def test_no_learnings(self):
        """Empty memory yields the placeholder prompt."""
        assert MemoryService().get_memory_prompt(SEARCH_CONTEXT) == "No previous learnings for this context."

    def test_ranking_prefers_exact_then_similar(self):
        """Exact context first, similar contexts next, other hosts never."""
        now = datetime.now()
        similar = MemoryContext("https://shop.example/x", "Search for running shoes cheap", "results")
        other_host = MemoryContext("https://other.example", "Search for running shoes", "search")
        buckets = {
            SEARCH_CONTEXT.key: [MemoryEntry(SEARCH_CONTEXT, "exact", confidence=0.1, timestamp=now)],
            similar.key: [MemoryEntry(similar, f"similar {i}", confidence=0.9, timestamp=now) for i in range(5)],
            other_host.key: [MemoryEntry(other_host, "elsewhere", confidence=1.0, timestamp=now)],
        }

        ranked = [m.learning for m in rank_memories(SEARCH_CONTEXT.key, buckets, now)]

        assert ranked[0] == "exact"
        assert ranked[1:] == ["similar 2", "similar 3", "similar 4"]

    def test_ranking_caps_at_ten(self):
        """At most ten memories are returned."""
        memory = MemoryService()
        for i in range(15):
            memory.add_learning(SEARCH_CONTEXT, f"learning {i}")
        assert len(memory.get_relevant_memories(SEARCH_CONTEXT)) == 10

    def test_repository_backed_memories_are_shared(self):
        """Two services over the same unit-of-work factory see each other's learnings."""
        uow_factory = create_inmemory_uow_factory()
        MemoryService(uow_factory).learn_from_success(SEARCH_CONTEXT, "type query", "results shown")

        fresh = MemoryService(uow_factory)
        memories = fresh.get_relevant_memories(SEARCH_CONTEXT)

        assert [m.learning for m in memories] == ['Action "type query" succeeded: results shown']
        assert fresh.get_stats()["repository_backed"] is True

    def test_prune_old_memories(self):
        """Entries past the cutoff are removed."""
        memory = MemoryService()
        memory.add_learning(SEARCH_CONTEXT, "old")
        memory._memories[SEARCH_CONTEXT.key][0] = MemoryEntry(
            SEARCH_CONTEXT, "old", timestamp=datetime.now() - timedelta(days=30),
        )
        memory.add_learning(SEARCH_CONTEXT, "new")
        assert memory.prune_old_memories(days_to_keep=7) == 1
        assert [m.learning for m in memory.get_relevant_memories(SEARCH_CONTEXT)] == ["new"]

    def test_export_import(self):
        """Exports can be imported into a fresh service."""
        source = MemoryService()
        source.learn_from_failure(SEARCH_CONTEXT, "click", "hidden")
        target = MemoryService()
        assert target.import_memories(source.export_memories()) == 1
        assert target.get_stats()["total_memories"] == 1

    def test_learning_emits_event(self):
        """Each learning is announced on the emitter."""
        emitter = LegacyEventEmitter()
        seen = []
        emitter.on("memory:learning-added", seen.append)
        MemoryService(emitter=emitter).add_learning(SEARCH_CONTEXT, "note")
        assert seen[0]["learning"] == "note"


# ═══════════════════════════════════════════════════════════════════════════════
# PlanningService
# ═══════════════════════════════════════════════════════════════════════════════


def replan_request(**overrides) -> ReplanRequest:
    values = dict(
        goal="Search for X",
        failed_step="Use search box",
        failure_reason="Element not found",
        current_state=PageSnapshot(url="https://shop.example", visible_sections=["search"]),
        completed_steps=["Open search"],
        failed_approaches=["Use search box: Element not found"],
        accumulated_data={"price": "$10"},
    )
    values.update(overrides)
    return ReplanRequest(**values)


class TestPlanningService:
    """Conversion and replan policy."""

    @pytest.fixture
    def workflow(self) -> Workflow:
        return Workflow.create("Search for X", "https://shop.example")

    def test_intent_mapping(self):
        """Strategic intents map onto task intents."""
        planning = PlanningService(ScriptedPlanner([]))
        assert planning.map_intent("search").type == IntentType.TYPE
        assert planning.map_intent("Authenticate").type == IntentType.FILL
        assert planning.map_intent("dance").type == IntentType.CLICK

    def test_strict_mapping_raises(self):
        """Strict mode rejects unknown intents."""
        planning = PlanningService(ScriptedPlanner([]), WorkflowManagerConfig(strict_intent_mapping=True))
        with pytest.raises(UnknownIntentError):
            planning.map_intent("dance")

    def test_build_plan_resolves_dependencies(self, workflow):
        """Known dependencies become task ids; unknown and self references are dropped."""
        steps = strategy("Open search", "Type query", "Read results")
        steps[1].dependencies = ["step-1", "step-9"]
        steps[2].dependencies = ["step-3"]
        planning = PlanningService(ScriptedPlanner(steps))

        conversion = planning.build_plan(workflow.id, PlannerOutput(strategy=steps))

        tasks = [s.tasks[0] for s in conversion.plan.steps]
        assert conversion.dependencies[tasks[1].id] == [tasks[0].id]
        assert conversion.dependencies[tasks[2].id] == []
        assert conversion.plan.steps[0].external_id == "step-1"

    def test_max_attempts_caps_retries(self, workflow):
        """max_attempts=2 means one retry, never above the configured budget."""
        steps = strategy("Open search", "Read results")
        steps[0].max_attempts = 2
        steps[1].max_attempts = 10
        planning = PlanningService(ScriptedPlanner(steps), WorkflowManagerConfig(max_retries=3))

        plan = planning.build_plan(workflow.id, PlannerOutput(strategy=steps)).plan

        assert [s.tasks[0].max_retries for s in plan.steps] == [1, 3]

    @pytest.mark.asyncio
    async def test_initial_plan_failures_are_fatal(self, workflow):
        """Empty strategies and planner crashes raise WorkflowInitializationError."""
        snapshot = PageSnapshot(url="https://shop.example")
        with pytest.raises(WorkflowInitializationError, match="empty strategy"):
            await PlanningService(ScriptedPlanner([])).create_initial_plan(workflow, snapshot)

        class Crashing(ScriptedPlanner):
            async def plan(self, planner_input):
                raise RuntimeError("rate limited by provider")

        with pytest.raises(WorkflowInitializationError, match="Planner failed"):
            await PlanningService(Crashing([])).create_initial_plan(workflow, snapshot)

    @pytest.mark.asyncio
    async def test_replan_builds_continuation_input(self, workflow):
        """The planner receives a continuation request."""
        planner = ScriptedPlanner(strategy("Open search"), replans=[strategy("Use menu")])
        planning = PlanningService(planner)
        current = planning.build_plan(workflow.id, PlannerOutput(strategy=strategy("Open search", "Use search box"))).plan

        conversion = await planning.replan(workflow, current, replan_request())

        planner_input = planner.replan_inputs[0]
        assert planner_input.failed_step == "Use search box"
        assert planner_input.accumulated_data == {"price": "$10"}
        assert "Attempt Number: 1" in planner_input.continuation_prompt
        assert conversion.plan.is_replan
        assert conversion.plan.replaced_plan_id == current.id
        assert planning.total_replans == 1

    @pytest.mark.asyncio
    async def test_per_step_budget(self, workflow):
        """A step can be replanned max_replans_per_step times."""
        planner = ScriptedPlanner([], replans=[strategy("A"), strategy("B"), strategy("C")])
        planning = PlanningService(planner, WorkflowManagerConfig(max_replans_per_step=2))
        current = planning.build_plan(workflow.id, PlannerOutput(strategy=strategy("Use search box"))).plan

        await planning.replan(workflow, current, replan_request())
        await planning.replan(workflow, current, replan_request())
        with pytest.raises(ReplanRefusedError, match="for step"):
            await planning.replan(workflow, current, replan_request())
        assert len(planner.replan_inputs) == 2

    @pytest.mark.asyncio
    async def test_total_budget(self, workflow):
        """The workflow-wide budget applies across steps."""
        planner = ScriptedPlanner([], replans=[strategy("A"), strategy("B")])
        planning = PlanningService(planner, WorkflowManagerConfig(max_total_replans=1))
        current = planning.build_plan(workflow.id, PlannerOutput(strategy=strategy("X"))).plan

        await planning.replan(workflow, current, replan_request(failed_step="first"))
        with pytest.raises(ReplanRefusedError, match="total replans"):
            await planning.replan(workflow, current, replan_request(failed_step="second"))

    @pytest.mark.parametrize("reason", [
        "Page not found", "Authentication required to continue", "ACCESS DENIED", "Rate limited (429)",
    ])
    def test_fundamental_failures(self, reason):
        """Fundamental failures are matched case-insensitively."""
        assert is_fundamental_failure(reason)

    def test_ordinary_failure_is_not_fundamental(self):
        """Element lookups are worth replanning."""
        assert not is_fundamental_failure("Element not found")
        assert not is_fundamental_failure(None)

    @pytest.mark.asyncio
    async def test_planner_crash_during_replan(self, workflow):
        """A crashing planner surfaces as PlanningError."""
        planner = ScriptedPlanner([], replans=[RuntimeError("overloaded")])
        planning = PlanningService(planner)
        current = planning.build_plan(workflow.id, PlannerOutput(strategy=strategy("X"))).plan
        with pytest.raises(PlanningError, match="overloaded"):
            await planning.replan(workflow, current, replan_request())

    def test_continuation_prompt_sections(self):
        """The rendered request lists completed steps, data and failed approaches."""
        prompt = build_continuation_prompt(replan_request())
        assert "COMPLETED STEPS (DO NOT REPEAT THESE):\n- Open search" in prompt
        assert "  - price: $10" in prompt
        assert "1. Use search box: Element not found" in prompt
        assert "No previous learnings for this context." in prompt
