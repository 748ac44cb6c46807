"""
WorkflowManager - the control loop of one browser-automation run.

Drives a goal from an empty browser to a WorkflowResult:
Initializing → Planning → {ExecutingStep ⇄ Replanning} → Completed/Failed.

Design Decisions:
- One manager run owns its Browser session, StateManager, TaskQueue and
  aggregates; nothing mutable is shared with other runs except the
  handlers passed in (keyed by workflow id)
- Only WorkflowInitializationError escapes execute(); every other failure
  is reported through WorkflowResult.status / errors / completion_percentage
- Entity events are published to the bus as they happen and written to
  the event store once, at finalization
- Persistence is best effort: repository errors are reported and swallowed

Usage:
    manager = WorkflowManager(planner, executor, evaluator, browser, dom_service)
    result = await manager.execute("Search for running shoes", "https://shop.example")
    if result.status != WorkflowResultStatus.FAILURE:
        print(result.extracted_data)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
import asyncio
import logging

from browseflow.config import WorkflowManagerConfig
from browseflow.domain.aggregates import ExecutionAggregate, WorkflowAggregate
from browseflow.domain.events import DomainEvent
from browseflow.domain.exceptions import (
    InvalidStateTransition,
    PlanningError,
    ReplanRefusedError,
    WorkflowInitializationError,
)
from browseflow.domain.interfaces.agents import (
    EvaluatorInput,
    EvaluatorOutput,
    ExecutorInput,
    ExecutorOutput,
    IEvaluator,
    IExecutor,
    IPlanner,
    ISummarizer,
    PageSnapshot,
    StepOutcome,
    SummarizerInput,
)
from browseflow.domain.interfaces.browser import IBrowser, IDomService
from browseflow.domain.interfaces.event_handler import IDomainEventHandler
from browseflow.domain.interfaces.event_store import IEventStore
from browseflow.domain.interfaces.reporter import IAgentReporter
from browseflow.domain.interfaces.unit_of_work import IUnitOfWork
from browseflow.domain.models import (
    Evidence,
    ExecutionContext,
    IntentType,
    MemoryContext,
    PageState,
    RetryPolicy,
    Session,
    Task,
    TaskResult,
    TaskStatus,
    Workflow,
    WorkflowResult,
    WorkflowResultStatus,
)
from browseflow.application.sagas.workflow_saga import WorkflowSaga
from browseflow.application.services.memory_service import MemoryService
from browseflow.application.services.planning_service import (
    PlanConversion,
    PlanningService,
    ReplanRequest,
)
from browseflow.application.services.state_manager import StateManager
from browseflow.application.services.task_queue import TaskQueue
from browseflow.application.services.variable_manager import VariableManager
from browseflow.infrastructure.events.event_bus import WorkflowEventBus
from browseflow.infrastructure.events.stuck_handler import (
    RecoveryAction,
    StuckRecommendation,
    WorkflowStuckHandler,
)
from browseflow.infrastructure.reporting import LoggingReporter

logger = logging.getLogger(__name__)


DEFAULT_RETRY_SUGGESTION = "Try a different approach"


def to_snapshot(state: PageState) -> PageSnapshot:
    """PageState → the serializable form handed to collaborators."""
    return PageSnapshot(
        url=state.url,
        title=state.title,
        visible_sections=list(state.visible_sections),
        available_actions=list(state.available_actions),
        extracted_data=state.extracted_data,
    )


def determine_status(
    successful_steps: int,
    total_steps: int,
    config: WorkflowManagerConfig,
    early_exit: bool = False,
) -> WorkflowResultStatus:
    """
    Graceful-degradation policy.

    100% → success; an early exit → success; completion ratio at or above
    `partial_success_ratio` → partial; at least `partial_success_min_steps`
    successes → degraded; anything else → failure.
    """
    if total_steps > 0 and successful_steps >= total_steps:
        return WorkflowResultStatus.SUCCESS
    if early_exit:
        return WorkflowResultStatus.SUCCESS
    ratio = successful_steps / total_steps if total_steps else 0.0
    if successful_steps > 0 and ratio >= config.partial_success_ratio:
        return WorkflowResultStatus.PARTIAL
    if successful_steps >= config.partial_success_min_steps:
        return WorkflowResultStatus.DEGRADED
    return WorkflowResultStatus.FAILURE


@dataclass
class _ReplanTrigger:
    step_description: str
    reason: str
    # failure: a terminal step failure; state_change / explicit otherwise
    kind: str = "failure"


class WorkflowManager:
    """
    Orchestrates planner, executor and evaluator over one browser.

    A manager can run several workflows one after another but never two
    at once; build one manager per concurrent run.
    """

    def __init__(
        self,
        planner: IPlanner,
        executor: IExecutor,
        evaluator: IEvaluator,
        browser: IBrowser,
        dom_service: IDomService,
        config: Optional[WorkflowManagerConfig] = None,
        summarizer: Optional[ISummarizer] = None,
        reporter: Optional[IAgentReporter] = None,
        event_bus: Optional[WorkflowEventBus] = None,
        event_store: Optional[IEventStore] = None,
        uow_factory: Optional[Callable[[], IUnitOfWork]] = None,
        memory_service: Optional[MemoryService] = None,
        stuck_handler: Optional[WorkflowStuckHandler] = None,
        saga: Optional[WorkflowSaga] = None,
        handlers: Optional[List[IDomainEventHandler]] = None,
    ):
        self._planner = planner
        self._executor = executor
        self._evaluator = evaluator
        self._browser = browser
        self._dom_service = dom_service
        self._config = config or WorkflowManagerConfig()
        self._summarizer = summarizer
        self._reporter = reporter or LoggingReporter()
        self._event_bus = event_bus or WorkflowEventBus()
        self._event_store = event_store
        self._uow_factory = uow_factory
        self._memory = memory_service or MemoryService(uow_factory, emitter=self._event_bus.legacy)
        self._stuck_handler = stuck_handler
        self._saga = saga
        self._handlers = list(handlers or [])
        self._retry_policy = RetryPolicy.exponential(
            self._config.max_retries,
            self._config.retry_base_delay_ms,
            self._config.retry_max_delay_ms,
        )
        self._running = False
        self._reset_run_state()

    def _reset_run_state(self) -> None:
        self._workflow: Optional[Workflow] = None
        self._session: Optional[Session] = None
        self._aggregate: Optional[WorkflowAggregate] = None
        self._execution: Optional[ExecutionAggregate] = None
        self._planning: Optional[PlanningService] = None
        self._state_manager: Optional[StateManager] = None
        self._task_queue: Optional[TaskQueue] = None
        self._variables = VariableManager()
        self._published_ids: Set[str] = set()
        self._events_flushed = False
        self._errors: List[str] = []
        self._completed_steps: List[str] = []
        self._failed_steps: List[str] = []
        self._failed_approaches: List[str] = []
        self._confidences: List[float] = []
        self._successes_in_replaced_plans = 0
        self._enqueued_since_cleanup = 0
        self._pending_replan: Optional[_ReplanTrigger] = None
        self._abort_reason: Optional[str] = None
        self._early_exit = False
        self._holds_monitor = False

    # ═══════════════════════════════════════════════════════════════
    # Properties
    # ═══════════════════════════════════════════════════════════════

    @property
    def config(self) -> WorkflowManagerConfig:
        return self._config

    @property
    def event_bus(self) -> WorkflowEventBus:
        return self._event_bus

    @property
    def memory(self) -> MemoryService:
        return self._memory

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def workflow(self) -> Optional[Workflow]:
        return self._workflow

    @property
    def state_manager(self) -> Optional[StateManager]:
        return self._state_manager

    @property
    def execution(self) -> Optional[ExecutionAggregate]:
        return self._execution

    # ═══════════════════════════════════════════════════════════════
    # Control
    # ═══════════════════════════════════════════════════════════════

    def abort(self, reason: str) -> None:
        """Stop at the next task or step boundary and build a partial result."""
        if not self._running or self._abort_reason is not None:
            return
        self._abort_reason = reason
        self._errors.append(f"Aborted: {reason}")
        self._reporter.failure(f"Aborting workflow: {reason}")

    def request_replan(self, reason: str) -> None:
        """Ask for a replan once the current step finishes."""
        if not self._running or self._aggregate is None:
            return
        step = self._aggregate.get_current_step()
        description = step.description if step else (self._completed_steps or [""])[-1]
        self._pending_replan = _ReplanTrigger(description, reason, kind="explicit")
        logger.info(f"Replan requested: {reason}")

    def get_status(self) -> Dict[str, Any]:
        """Progress snapshot of the current run."""
        if self._aggregate is None:
            return {
                "running": self._running,
                "workflow_id": self._workflow.id if self._workflow else None,
            }
        status = self._aggregate.get_execution_status()
        status.update({
            "running": self._running,
            "completion_percentage": self._completion_percentage(),
            "errors": list(self._errors),
            "replan_count": self._planning.total_replans if self._planning else 0,
            "aborted": self._abort_reason is not None,
            "queue": self._task_queue.get_stats() if self._task_queue else {},
        })
        return status

    def _should_stop(self) -> bool:
        return self._abort_reason is not None or self._early_exit

    def _on_stuck(self, recommendation: StuckRecommendation) -> None:
        if self._workflow is None or recommendation.workflow_id != self._workflow.id:
            return
        action = recommendation.action
        if action in (RecoveryAction.REPLAN, RecoveryAction.ALTERNATIVE_APPROACH):
            self.request_replan(f"Workflow stuck: {recommendation.reason}")
        elif action == RecoveryAction.HUMAN_INTERVENTION:
            self._reporter.info(
                f"Workflow {recommendation.workflow_id} needs human intervention: {recommendation.reason}"
            )
        elif action == RecoveryAction.ABORT:
            self.abort(f"Workflow stuck: {recommendation.reason}")

    # ═══════════════════════════════════════════════════════════════
    # Execute
    # ═══════════════════════════════════════════════════════════════

    async def execute(self, goal: str, start_url: str) -> WorkflowResult:
        """
        Run `goal` starting at `start_url`.

        Raises:
            WorkflowInitializationError: Browser launch or initial planning failed
            InvalidStateTransition: If this manager is already running
            ValidationError: If goal or start_url are invalid
        """
        if self._running:
            raise InvalidStateTransition(
                "WorkflowManager is already executing a workflow",
                current_status="running",
                attempted_action="execute",
            )
        self._reset_run_state()
        self._running = True
        try:
            self._initialize(goal, start_url)
            self._attach_handlers()
            await self._launch_browser()
            await self._plan()
            try:
                await self._run_steps()
            except Exception as e:
                logger.exception(f"Workflow {self._workflow.id} stopped by unexpected error")
                self._errors.append(f"Unexpected error: {e}")
            return await self._finalize()
        finally:
            await self._cleanup()
            self._running = False

    # ═══════════════════════════════════════════════════════════════
    # Initializing / Planning
    # ═══════════════════════════════════════════════════════════════

    def _initialize(self, goal: str, start_url: str) -> None:
        self._workflow = Workflow.create(goal, start_url, list(self._config.variables))
        self._session = Session.create(
            self._workflow.id,
            headless=self._config.headless,
            viewport=self._config.viewport,
        )
        self._variables = VariableManager(self._workflow.variables)
        self._task_queue = TaskQueue(emitter=self._event_bus.legacy)
        self._state_manager = StateManager(
            self._browser,
            self._dom_service,
            emitter=self._event_bus.legacy,
            change_threshold=self._config.state_change_threshold,
        )
        self._execution = ExecutionAggregate(
            context=ExecutionContext(
                session_id=self._session.id,
                workflow_id=self._workflow.id,
                viewport=self._session.viewport,
            ),
            state_manager=self._state_manager,
        )
        self._planning = PlanningService(self._planner, self._config, self._reporter)
        logger.info(f"Initialized workflow {self._workflow.id}: {goal}")
        self._save("workflow", lambda uow: uow.workflows.add(self._workflow))

    def _attach_handlers(self) -> None:
        for handler in self._run_handlers():
            self._event_bus.register_handler(handler)
        if self._stuck_handler is not None:
            self._stuck_handler.add_recommendation_listener(self._on_stuck)
        if self._saga is not None:
            self._saga.attach_reporter(self._workflow.id, self._reporter)

    def _run_handlers(self) -> List[IDomainEventHandler]:
        handlers = list(self._handlers)
        for extra in (self._stuck_handler, self._saga):
            if extra is not None and extra not in handlers:
                handlers.append(extra)
        return handlers

    async def _launch_browser(self) -> None:
        url = str(self._workflow.start_url)
        self._reporter.loading(f"Launching browser at {url}")
        try:
            await self._browser.launch(url)
        except Exception as e:
            self._session.record_error(str(e), recoverable=False)
            raise WorkflowInitializationError(f"Browser launch failed: {e}", cause=e)
        self._execution.update_url(url)

    async def _plan(self) -> None:
        self._reporter.loading("Planning workflow")
        try:
            state = await self._state_manager.capture_state()
        except Exception as e:
            raise WorkflowInitializationError(f"Initial page capture failed: {e}", cause=e)
        memory_prompt = self._memory.get_memory_prompt(self._memory_context(state))
        conversion = await self._planning.create_initial_plan(
            self._workflow, to_snapshot(state), memory_prompt,
        )
        self._aggregate = WorkflowAggregate.create(
            self._workflow, conversion.plan, self._session, self._task_queue,
        )
        self._aggregate.start_execution()
        if self._stuck_handler is not None:
            await self._stuck_handler.acquire()
            self._holds_monitor = True
        self._load_plan(conversion)
        self._reporter.success(f"Plan created with {len(conversion.plan.steps)} steps")
        if conversion.reasoning:
            self._reporter.log(f"Planner reasoning: {conversion.reasoning}")
        self._publish_pending()

    def _load_plan(self, conversion: PlanConversion) -> None:
        count = self._aggregate.enqueue_plan(conversion.dependencies)
        self._enqueued_since_cleanup += count
        if self._enqueued_since_cleanup >= self._config.queue_cleanup_interval:
            removed = self._task_queue.cleanup_completed_tasks()
            logger.debug(f"Queue cleanup removed {removed} tasks")
            self._enqueued_since_cleanup = 0
        self._save("plan", lambda uow: uow.plans.add(conversion.plan))

    def _memory_context(self, state: PageState) -> MemoryContext:
        section = state.visible_sections[0] if state.visible_sections else None
        return MemoryContext(url=state.url, goal=self._workflow.goal, page_section=section)

    def _last_known_context(self) -> MemoryContext:
        """Context from the last good capture, for when the page cannot be read."""
        state = self._state_manager.get_current_state()
        if state is not None:
            return self._memory_context(state)
        return MemoryContext(url=str(self._workflow.start_url), goal=self._workflow.goal)

    # ═══════════════════════════════════════════════════════════════
    # ExecutingStep ⇄ Replanning
    # ═══════════════════════════════════════════════════════════════

    async def _run_steps(self) -> None:
        while not self._aggregate.plan.is_complete() and not self._should_stop():
            step = self._aggregate.get_current_step()
            self._reporter.loading(
                f"Step {step.order}/{len(self._aggregate.plan.steps)}: {step.description}"
            )
            outcome = await self._aggregate.execute_next_step(self._run_task, self._should_stop)

            if outcome.success:
                self._completed_steps.append(outcome.description)
                self._reporter.success(f"Step completed: {outcome.description}")
            else:
                self._failed_steps.append(outcome.description)
                if not outcome.stopped:
                    error = outcome.error or "step failed"
                    self._errors.append(f"Step '{outcome.description}' failed: {error}")
                    self._reporter.failure(f"Step failed: {outcome.description}: {error}")
                    if self._config.enable_replanning:
                        self._pending_replan = _ReplanTrigger(outcome.description, error)
            self._publish_pending()
            self._check_saga_timeout()

            if self._pending_replan is not None and not self._should_stop():
                await self._replan(self._pending_replan)
                self._pending_replan = None

        if self._early_exit:
            self._reporter.success(
                f"Early exit at {self._completion_percentage():.0f}% completion"
            )

    async def _run_task(self, task: Task) -> None:
        """Run attempts until the task is terminal or the run is stopped."""
        while True:
            await self._attempt(task)
            self._publish_pending()
            if task.status != TaskStatus.RETRYING:
                return
            delay = self._retry_policy.get_delay_for_attempt(task.retry_count)
            self._reporter.info(
                f"Retrying '{task.description}' (attempt {task.retry_count + 1}/"
                f"{task.max_retries + 1}) in {delay.milliseconds}ms"
            )
            if delay.milliseconds:
                await asyncio.sleep(delay.seconds)
            if self._should_stop():
                return
            task.retry()

    async def _attempt(self, task: Task) -> None:
        task.execute()
        self._execution.start_task(task)
        started = datetime.now()

        try:
            before = await self._state_manager.capture_state()
        except Exception as e:
            self._record_failure(task, self._last_known_context(), started, f"Page capture failed: {e}")
            return
        context = self._memory_context(before)
        memory_prompt = self._memory.get_memory_prompt(context)

        try:
            output = await asyncio.wait_for(
                self._executor.execute(self._executor_input(task, before, memory_prompt)),
                timeout=task.timeout.seconds,
            )
        except asyncio.TimeoutError:
            elapsed = (datetime.now() - started).total_seconds() * 1000
            result = TaskResult(
                task_id=task.id,
                success=False,
                error=f"Task timed out after {task.timeout.milliseconds}ms",
                duration_ms=elapsed,
            )
            self._execution.record_execution(task, result)
            task.time_out()
            self._after_failure(task, context, result.error)
            return
        except Exception as e:
            self._record_failure(task, context, started, f"Executor error: {e}")
            return

        try:
            after, extracted = await self._after_state(output)
        except Exception as e:
            self._record_failure(task, context, started, f"Page capture failed: {e}")
            return
        try:
            evaluation = await self._evaluator.evaluate(
                self._evaluator_input(task, before, after, output)
            )
        except Exception as e:
            self._record_failure(task, context, started, f"Evaluator error: {e}")
            return

        elapsed = (datetime.now() - started).total_seconds() * 1000
        if evaluation.success:
            result = TaskResult(
                task_id=task.id,
                success=True,
                data={"current_url": after.url, "extracted_data": extracted},
                duration_ms=elapsed,
                confidence=int(round(evaluation.confidence * 100)),
            )
            self._execution.record_execution(task, result, self._evidence(evaluation))
            task.complete(result)
            self._after_success(task, context, before, after, extracted, evaluation)
        else:
            reason = evaluation.reason or output.first_error or "Evaluator reported failure"
            result = TaskResult(
                task_id=task.id,
                success=False,
                error=reason,
                duration_ms=elapsed,
                confidence=int(round(evaluation.confidence * 100)),
            )
            self._execution.record_execution(task, result, self._evidence(evaluation))
            task.fail(reason, duration_ms=elapsed)
            self._after_failure(task, context, reason)

    def _executor_input(self, task: Task, before: PageState, memory_prompt: str) -> ExecutorInput:
        return ExecutorInput(
            task_id=task.id,
            description=task.description,
            intent=task.intent.value,
            target_concept=task.target_concept or "",
            input_data=task.input_data,
            expected_outcome=task.expected_outcome or "",
            page_state=to_snapshot(before),
            pristine_screenshot=before.pristine_screenshot,
            highlighted_screenshot=before.screenshot,
            dom_elements=[e.to_dict() for e in before.elements],
            memory_learnings=memory_prompt,
            variable_manager=self._variables,
        )

    def _evaluator_input(self, task: Task, before: PageState, after: PageState,
                         output: ExecutorOutput) -> EvaluatorInput:
        return EvaluatorInput(
            task_id=task.id,
            description=task.description,
            expected_outcome=task.expected_outcome or "",
            before_state=to_snapshot(before),
            after_state=to_snapshot(after),
            micro_actions=list(output.micro_actions),
            results=list(output.results),
            before_screenshot=before.screenshot,
            after_screenshot=after.screenshot,
        )

    async def _after_state(self, output: ExecutorOutput):
        """
        The executor's own final state wins when it carries extracted data,
        so a fresh capture cannot clobber what the step just produced.
        """
        final = output.final_state
        if final is not None and final.extracted_data:
            extracted = dict(final.extracted_data)
            after = PageState(
                url=final.url or self._browser.get_page_url(),
                title=final.title,
                visible_sections=list(final.visible_sections),
                available_actions=list(final.available_actions),
                extracted_data=extracted,
            )
            # merged only once the evaluator accepts the task
            self._state_manager.record_state(PageState(
                url=after.url,
                title=after.title,
                visible_sections=after.visible_sections,
                available_actions=after.available_actions,
            ))
            return after, extracted
        after = await self._state_manager.capture_state()
        return after, {}

    @staticmethod
    def _evidence(evaluation: EvaluatorOutput) -> Optional[Evidence]:
        if not evaluation.evidence.strip():
            return None
        return Evidence.text(evaluation.evidence, source="evaluator",
                             confidence=evaluation.confidence * 100)

    def _record_failure(self, task: Task, context: MemoryContext,
                        started: datetime, reason: str) -> None:
        elapsed = (datetime.now() - started).total_seconds() * 1000
        result = TaskResult(task_id=task.id, success=False, error=reason, duration_ms=elapsed)
        self._execution.record_execution(task, result)
        task.fail(reason, duration_ms=elapsed)
        self._after_failure(task, context, reason)

    def _after_success(self, task: Task, context: MemoryContext, before: PageState,
                       after: PageState, extracted: Dict[str, Any],
                       evaluation: EvaluatorOutput) -> None:
        if extracted:
            self._state_manager.merge_extracted_data(extracted)
        self._state_manager.create_checkpoint(f"task-{task.id}-complete")
        self._state_manager.clear_old_checkpoints()
        self._confidences.append(evaluation.confidence)
        self._memory.learn_from_success(
            context, task.description, evaluation.reason or task.expected_outcome or "completed",
        )
        self._reporter.success(f"Task completed: {task.description}")

        if self._early_exit_reached():
            self._early_exit = True
            return

        if (self._config.enable_replanning
                and self._config.replan_on_state_change
                and task.intent.type != IntentType.NAVIGATE
                and len(self._aggregate.plan.get_remaining_steps()) > 1
                and self._pending_replan is None
                and self._state_manager.has_state_changed(before, after)):
            self._pending_replan = _ReplanTrigger(
                task.description,
                f"Significant page change after '{task.description}'",
                kind="state_change",
            )

    def _after_failure(self, task: Task, context: MemoryContext, reason: str) -> None:
        self._memory.learn_from_failure(context, task.description, reason, DEFAULT_RETRY_SUGGESTION)
        self._failed_approaches.append(f"{task.description}: {reason}")
        if task.is_failed():
            self._reporter.failure(f"Task failed: {task.description}: {reason}")
        else:
            self._reporter.log(f"Attempt failed for '{task.description}': {reason}")

    def _early_exit_reached(self) -> bool:
        if not self._config.allow_early_exit:
            return False
        if self._completion_percentage(include_running=True) < self._config.min_acceptable_completion:
            return False
        return all(self._critical_step_done(c) for c in self._config.critical_steps)

    def _critical_step_done(self, identifier: str) -> bool:
        for plan in self._aggregate.plans:
            for step in plan.steps:
                if step.matches(identifier) and (
                    step.is_completed() or all(t.is_completed() for t in step.tasks)
                ):
                    return True
        return identifier in self._completed_steps

    async def _replan(self, trigger: _ReplanTrigger) -> None:
        current_plan = self._aggregate.plan
        state = self._state_manager.get_current_state()
        if state is None:
            try:
                state = await self._state_manager.capture_state()
            except Exception as e:
                self._replan_refused(trigger, f"Page capture failed: {e}")
                return
        request = ReplanRequest(
            goal=self._workflow.goal,
            failed_step=trigger.step_description,
            failure_reason=trigger.reason,
            current_state=to_snapshot(state),
            completed_steps=list(self._completed_steps),
            failed_approaches=list(self._failed_approaches),
            accumulated_data=self._state_manager.get_all_extracted_data(),
            memory_learnings=self._memory.get_memory_prompt(self._memory_context(state)),
        )
        try:
            conversion = await self._planning.replan(self._workflow, current_plan, request)
        except ReplanRefusedError as e:
            self._replan_refused(trigger, str(e))
            return
        except PlanningError as e:
            logger.warning(f"Replanning failed for workflow {self._workflow.id}: {e}")
            self._replan_refused(trigger, str(e))
            return

        self._successes_in_replaced_plans += len(current_plan.get_completed_steps())
        self._aggregate.replace_plan(conversion.plan)
        self._load_plan(conversion)
        self._reporter.success(
            f"Replanned with {len(conversion.plan.steps)} steps "
            f"(replan {self._planning.total_replans}/{self._config.max_total_replans})"
        )
        self._publish_pending()

    def _replan_refused(self, trigger: _ReplanTrigger, reason: str) -> None:
        # refusals only count as errors when a step actually failed
        if trigger.kind == "failure":
            self._errors.append(f"Replan refused for '{trigger.step_description}': {reason}")
            self._reporter.info(f"Replan refused: {reason}")
        else:
            logger.info(f"Replan ({trigger.kind}) skipped: {reason}")

    def _check_saga_timeout(self) -> None:
        if self._saga is None:
            return
        if self._workflow.id in self._saga.check_timeouts():
            self.abort("Workflow saga timed out")

    # ═══════════════════════════════════════════════════════════════
    # Completion
    # ═══════════════════════════════════════════════════════════════

    def _step_counts(self, include_running: bool = False):
        plan = self._aggregate.plan
        successful = len(plan.get_completed_steps())
        if include_running:
            # the step whose task just finished has not been closed yet
            successful += sum(
                1 for s in plan.steps
                if not s.is_terminal() and s.tasks and all(t.is_completed() for t in s.tasks)
            )
        successful += self._successes_in_replaced_plans
        total = self._successes_in_replaced_plans + len(plan.steps)
        return successful, total

    def _completion_percentage(self, include_running: bool = False) -> float:
        if self._aggregate is None:
            return 0.0
        successful, total = self._step_counts(include_running)
        return successful / total * 100 if total else 0.0

    async def _finalize(self) -> WorkflowResult:
        successful, total = self._step_counts()
        completion = successful / total * 100 if total else 0.0
        status = determine_status(successful, total, self._config, self._early_exit)
        extracted = self._state_manager.get_all_extracted_data()

        summary = f"Completed {successful}/{total} steps ({completion:.0f}%)"
        structured: Optional[Dict[str, Any]] = None
        if status != WorkflowResultStatus.FAILURE:
            structured = await self._summarize(extracted)
            if structured and structured.get("summary"):
                summary = structured["summary"]
            self._aggregate.complete_execution(summary, extracted)
        else:
            self._aggregate.fail_execution("; ".join(self._errors) or "No steps completed")

        self._save("workflow", lambda uow: uow.workflows.update(self._workflow))
        for plan in self._aggregate.plans:
            self._save("plan", lambda uow, plan=plan: uow.plans.update(plan))
        self._flush_events()

        result = WorkflowResult(
            workflow_id=self._workflow.id,
            goal=self._workflow.goal,
            status=status,
            completion_percentage=round(completion, 2),
            extracted_data=extracted,
            errors=list(self._errors),
            completed_steps=list(self._completed_steps),
            failed_steps=list(self._failed_steps),
            summary=summary,
            structured_summary=structured,
            started_at=self._workflow.started_at,
            ended_at=self._workflow.completed_at,
            duration_ms=self._workflow.get_duration_ms(),
            replan_count=self._planning.total_replans,
            early_exit=self._early_exit,
            confidence_score=(
                sum(self._confidences) / len(self._confidences) if self._confidences else None
            ),
        )
        report = self._reporter.success if status != WorkflowResultStatus.FAILURE else self._reporter.failure
        report(f"Workflow {status.value}: {summary}")
        return result

    async def _summarize(self, extracted: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self._summarizer is None:
            return None
        outcomes = [
            StepOutcome(
                step_id=step.external_id or step.id,
                description=step.description,
                status=step.status.value,
                error_reason=step.failure_reason,
            )
            for plan in self._aggregate.plans
            for step in plan.steps
            if step.is_terminal() or plan is self._aggregate.plan
        ]
        try:
            output = await self._summarizer.summarize(SummarizerInput(
                goal=self._workflow.goal,
                plan=outcomes,
                extracted_data=extracted,
                total_duration_ms=self._workflow.get_duration_ms(),
                url=self._browser.get_page_url(),
            ))
        except Exception as e:
            logger.warning(f"Summarizer failed for workflow {self._workflow.id}: {e}")
            return None
        return output.model_dump()

    # ═══════════════════════════════════════════════════════════════
    # Events / Persistence
    # ═══════════════════════════════════════════════════════════════

    def _event_sources(self) -> List[Any]:
        if self._aggregate is not None:
            sources = self._aggregate.get_entities()
        else:
            sources = [e for e in (self._workflow, self._session) if e is not None]
        if self._execution is not None:
            sources.append(self._execution)
        return sources

    def _buffered_events(self) -> List[DomainEvent]:
        events = [e for source in self._event_sources() for e in source.get_domain_events()]
        events.sort(key=lambda e: e.occurred_at)
        return events

    def _publish_pending(self) -> None:
        for event in self._buffered_events():
            if event.event_id in self._published_ids:
                continue
            self._published_ids.add(event.event_id)
            self._event_bus.publish(event)

    def _flush_events(self) -> None:
        """Publish stragglers, store the run's events once, then clear every buffer."""
        if self._events_flushed:
            return
        self._events_flushed = True
        self._publish_pending()
        events = self._buffered_events()
        if self._event_store is not None:
            self._event_store.store_many(events, metadata={"workflow_id": self._workflow.id})
        for source in self._event_sources():
            source.clear_domain_events()
        logger.debug(f"Flushed {len(events)} events for workflow {self._workflow.id}")

    def _save(self, what: str, action: Callable[[IUnitOfWork], Any]) -> None:
        if self._uow_factory is None:
            return
        try:
            with self._uow_factory() as uow:
                action(uow)
                uow.commit()
        except Exception as e:
            logger.warning(f"Failed to persist {what}: {e}")
            self._reporter.log(f"Persistence failed ({what}): {e}")

    # ═══════════════════════════════════════════════════════════════
    # Cleanup
    # ═══════════════════════════════════════════════════════════════

    async def _cleanup(self) -> None:
        if self._workflow is not None:
            self._flush_events()
        try:
            await self._browser.close()
        except Exception as e:
            logger.warning(f"Failed to close browser: {e}")
        if self._stuck_handler is not None:
            if self._workflow is not None:
                self._stuck_handler.stop_monitoring(self._workflow.id)
            self._stuck_handler.remove_recommendation_listener(self._on_stuck)
            if self._holds_monitor:
                await self._stuck_handler.release()
                self._holds_monitor = False
        if self._task_queue is not None:
            self._task_queue.clear()
        for handler in self._run_handlers():
            self._event_bus.unregister_handler(handler)
        if self._saga is not None and self._workflow is not None:
            self._saga.detach_reporter(self._workflow.id)
