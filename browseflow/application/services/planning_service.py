"""
PlanningService - planner invocation, plan conversion and replan policy.

Turns planner output into Plan/Step/Task entities plus the TaskQueue
dependency map, and decides whether a replan may happen at all.

Design Decisions:
- Each strategic step becomes one Step holding one Task
- Strategic intents map onto concrete task intents through a fixed table;
  unknown intents fall back with a warning or raise in strict mode
- Replans are bounded per failed step and per workflow, refused for
  fundamental failures and rejected when they change nothing

Usage:
    planning = PlanningService(planner, config.workflow, reporter)
    conversion = await planning.create_initial_plan(workflow, snapshot, memory_prompt)
    aggregate.enqueue_plan(conversion.dependencies)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

from pydantic import ValidationError as PydanticValidationError

from browseflow.config import WorkflowManagerConfig
from browseflow.domain.exceptions import (
    PlanningError,
    ReplanRefusedError,
    UnknownIntentError,
    ValidationError,
    WorkflowInitializationError,
)
from browseflow.domain.interfaces.agents import (
    IPlanner,
    PageSnapshot,
    PlannerInput,
    PlannerOutput,
    StrategicStep,
)
from browseflow.domain.interfaces.reporter import IAgentReporter
from browseflow.domain.models import (
    Intent,
    IntentType,
    Plan,
    Priority,
    Step,
    Task,
    Timeout,
    Workflow,
)

logger = logging.getLogger(__name__)


STRATEGIC_INTENT_MAP: Dict[str, IntentType] = {
    "search": IntentType.TYPE,
    "filter": IntentType.CLICK,
    "interact": IntentType.CLICK,
    "authenticate": IntentType.FILL,
    "navigate": IntentType.NAVIGATE,
    "extract": IntentType.EXTRACT,
    "verify": IntentType.VERIFY,
}

FUNDAMENTAL_FAILURES = (
    "page not found",
    "authentication required",
    "access denied",
    "rate limited",
)


def is_fundamental_failure(reason: Optional[str]) -> bool:
    """Failures replanning cannot fix."""
    text = (reason or "").lower()
    return any(marker in text for marker in FUNDAMENTAL_FAILURES)


@dataclass
class PlanConversion:
    """A converted plan plus its TaskQueue dependency map (task id → task ids)."""
    plan: Plan
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    reasoning: Optional[str] = None


@dataclass
class ReplanRequest:
    """Everything the continuation prompt is built from."""
    goal: str
    failed_step: str
    failure_reason: str
    current_state: PageSnapshot
    completed_steps: List[str] = field(default_factory=list)
    failed_approaches: List[str] = field(default_factory=list)
    accumulated_data: Dict[str, Any] = field(default_factory=dict)
    memory_learnings: str = ""
    attempt_number: int = 1


def build_continuation_prompt(request: ReplanRequest) -> str:
    """Render the replanning request handed to the planner."""
    state = request.current_state
    completed = "\n".join(f"- {s}" for s in request.completed_steps) or "None completed yet"
    failed = "\n".join(
        f"{i}. {a}" for i, a in enumerate(request.failed_approaches, start=1)
    ) or "No previous failed approaches recorded"
    data = "\n".join(
        f"  - {k}: {v}" for k, v in request.accumulated_data.items()
    ) or "No data extracted yet"

    return "\n".join([
        "REPLANNING REQUEST:",
        "",
        f"Original Goal: {request.goal}",
        "",
        "CURRENT SITUATION:",
        f"- Failed Step: {request.failed_step}",
        f"- Failure Reason: {request.failure_reason}",
        f"- Current Page: {state.url}",
        f"- Page Sections Available: {', '.join(state.visible_sections)}",
        f"- Available Actions: {', '.join(state.available_actions)}",
        f"- Attempt Number: {request.attempt_number}",
        "",
        "COMPLETED STEPS (DO NOT REPEAT THESE):",
        completed,
        "",
        "ACCUMULATED DATA (PRESERVE THIS INFORMATION):",
        data,
        "",
        "FAILED APPROACHES (DO NOT REPEAT THESE):",
        failed,
        "",
        request.memory_learnings or "No previous learnings for this context.",
        "",
        "Create a CONTINUATION plan with only the remaining steps needed to achieve "
        "the original goal, starting from the current page. Do not repeat completed steps.",
    ])


class PlanningService:
    """
    Planner facade owning the replan budget for one workflow run.
    """

    def __init__(
        self,
        planner: IPlanner,
        config: Optional[WorkflowManagerConfig] = None,
        reporter: Optional[IAgentReporter] = None,
    ):
        self._planner = planner
        self._config = config or WorkflowManagerConfig()
        self._reporter = reporter
        self._replans_by_step: Dict[str, int] = {}
        self._total_replans = 0
        self._plan_history: List[Plan] = []

    # ═══════════════════════════════════════════════════════════════
    # Intent mapping and conversion
    # ═══════════════════════════════════════════════════════════════

    def map_intent(self, strategic_intent: str) -> Intent:
        """
        Map a strategic intent onto a concrete task intent.

        Raises:
            UnknownIntentError: If the intent is unknown and strict mapping is on
        """
        key = (strategic_intent or "").strip().lower()
        mapped = STRATEGIC_INTENT_MAP.get(key)
        if mapped is not None:
            return Intent(mapped)
        if self._config.strict_intent_mapping:
            raise UnknownIntentError(strategic_intent)
        fallback = self._config.unknown_intent_fallback
        logger.warning(f"Unknown strategic intent '{strategic_intent}', falling back to '{fallback}'")
        return Intent.create(fallback)

    def _max_retries_for(self, strategic: StrategicStep) -> int:
        if strategic.max_attempts is not None:
            return min(strategic.max_attempts - 1, self._config.max_retries)
        return self._config.max_retries

    def build_plan(
        self,
        workflow_id: str,
        output: PlannerOutput,
        is_replan: bool = False,
        replaced_plan_id: Optional[str] = None,
    ) -> PlanConversion:
        """
        Convert planner output into entities.

        Raises:
            ValidationError: If the strategy is empty
            UnknownIntentError: In strict mode, for an unmapped intent
        """
        if not output.strategy:
            raise ValidationError("Planner returned an empty strategy")

        steps: List[Step] = []
        task_by_strategic_id: Dict[str, Task] = {}
        timeout = Timeout.from_milliseconds(self._config.task_timeout_ms)

        for order, strategic in enumerate(output.strategy, start=1):
            step = Step.create(
                description=strategic.description,
                order=order,
                workflow_id=workflow_id,
                external_id=strategic.id,
                name=strategic.name,
            )
            task = Task.create(
                description=strategic.description,
                intent=self.map_intent(strategic.intent),
                priority=Priority.from_planner_score(strategic.priority),
                max_retries=self._max_retries_for(strategic),
                timeout=timeout,
                step_id=step.id,
                workflow_id=workflow_id,
                strategic_id=strategic.id,
                target_concept=strategic.target_concept,
                input_data=strategic.input_data,
                expected_outcome=strategic.expected_outcome,
                metadata={"strategic_intent": strategic.intent},
            )
            step.add_task(task)
            steps.append(step)
            task_by_strategic_id[strategic.id] = task

        dependencies: Dict[str, List[str]] = {}
        for strategic in output.strategy:
            task = task_by_strategic_id[strategic.id]
            resolved = []
            for dep in strategic.dependencies:
                target = task_by_strategic_id.get(dep)
                if target is None or target is task:
                    logger.warning(f"Step '{strategic.id}' depends on unknown step '{dep}', ignoring")
                    continue
                resolved.append(target.id)
            dependencies[task.id] = resolved

        plan = Plan.create(workflow_id, steps, is_replan=is_replan, replaced_plan_id=replaced_plan_id)
        self._plan_history.append(plan)
        return PlanConversion(plan=plan, dependencies=dependencies, reasoning=output.reasoning)

    # ═══════════════════════════════════════════════════════════════
    # Initial planning
    # ═══════════════════════════════════════════════════════════════

    async def create_initial_plan(
        self,
        workflow: Workflow,
        current_state: PageSnapshot,
        memory_learnings: str = "",
    ) -> PlanConversion:
        """
        Ask the planner for the first plan.

        Raises:
            WorkflowInitializationError: On any planner failure or empty strategy
        """
        planner_input = PlannerInput(
            goal=workflow.goal,
            current_url=current_state.url or (str(workflow.start_url) if workflow.start_url else ""),
            constraints=list(self._config.constraints),
            current_state=current_state,
            memory_learnings=memory_learnings,
        )
        try:
            output = await self._planner.plan(planner_input)
            return self.build_plan(workflow.id, output)
        except (PydanticValidationError, ValidationError, UnknownIntentError, PlanningError) as e:
            raise WorkflowInitializationError(f"Invalid initial plan: {e}", cause=e)
        except Exception as e:
            raise WorkflowInitializationError(f"Planner failed: {e}", cause=e)

    # ═══════════════════════════════════════════════════════════════
    # Replanning
    # ═══════════════════════════════════════════════════════════════

    @property
    def total_replans(self) -> int:
        return self._total_replans

    def replans_for(self, step_description: str) -> int:
        return self._replans_by_step.get(step_description, 0)

    def get_plan_history(self) -> List[Plan]:
        return list(self._plan_history)

    def check_replan_allowed(self, step_description: str, failure_reason: Optional[str]) -> None:
        """
        Raises:
            ReplanRefusedError: When policy forbids another replan
        """
        if not self._config.enable_replanning:
            raise ReplanRefusedError("Replanning is disabled")
        if self._total_replans >= self._config.max_total_replans:
            raise ReplanRefusedError(
                f"Replan budget exhausted ({self._config.max_total_replans} total replans)"
            )
        if self.replans_for(step_description) >= self._config.max_replans_per_step:
            raise ReplanRefusedError(
                f"Replan budget exhausted for step '{step_description}' "
                f"({self._config.max_replans_per_step} replans)"
            )
        if is_fundamental_failure(failure_reason):
            raise ReplanRefusedError(f"Fundamental failure, replanning won't help: {failure_reason}")

    async def replan(self, workflow: Workflow, current_plan: Plan, request: ReplanRequest) -> PlanConversion:
        """
        Ask the planner for a continuation plan.

        Raises:
            ReplanRefusedError: Budget, fundamental failure or no meaningful change
            PlanningError: Planner failure or invalid output
        """
        self.check_replan_allowed(request.failed_step, request.failure_reason)
        self._total_replans += 1
        self._replans_by_step[request.failed_step] = self.replans_for(request.failed_step) + 1
        request.attempt_number = self._total_replans

        if self._reporter:
            self._reporter.loading(f"Replanning after: {request.failure_reason}")

        planner_input = PlannerInput(
            goal=request.goal,
            current_url=request.current_state.url,
            constraints=list(self._config.constraints),
            current_state=request.current_state,
            memory_learnings=request.memory_learnings,
            is_replan=True,
            completed_steps=list(request.completed_steps),
            failed_step=request.failed_step,
            failure_reason=request.failure_reason,
            failed_approaches=list(request.failed_approaches),
            accumulated_data=dict(request.accumulated_data),
            continuation_prompt=build_continuation_prompt(request),
        )
        try:
            output = await self._planner.plan(planner_input)
        except Exception as e:
            raise PlanningError(f"Replanning failed: {e}") from e

        unfinished = [s.description for s in current_plan.steps if not s.is_completed()]
        if [s.description for s in output.strategy] == unfinished:
            raise ReplanRefusedError("Replan produced no meaningful change")

        try:
            return self.build_plan(
                workflow.id, output, is_replan=True, replaced_plan_id=current_plan.id,
            )
        except (ValidationError, UnknownIntentError) as e:
            raise PlanningError(f"Invalid replan output: {e}") from e
