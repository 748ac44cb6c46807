"""
WorkflowAggregate - consistency boundary around Workflow, Plan and Session.

Exposes the coarse-grained operations the orchestrator drives:
start_execution, execute_next_step, replace_plan, complete_execution,
fail_execution.

Design Decisions:
- The TaskQueue is injected; the aggregate enqueues the whole plan up front
  and pulls the current step's ready tasks from it
- Running a task (executor, evaluator, retries) is delegated to the
  `task_runner` coroutine so the aggregate stays free of I/O
- Replaced plans are kept so their buffered events can still be flushed
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING
import logging

from browseflow.domain.events import DomainEvent
from browseflow.domain.exceptions import AggregateInvariantError, InvalidStateTransition
from browseflow.domain.models import (
    Plan,
    Session,
    Step,
    StepExecutionResult,
    Task,
    Workflow,
    WorkflowStatus,
)

if TYPE_CHECKING:
    from browseflow.application.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

TaskRunner = Callable[[Task], Awaitable[Any]]


class WorkflowAggregate:
    """
    Aggregate root wrapper for one workflow execution.

    Usage:
        aggregate = WorkflowAggregate.create(workflow, plan, session, queue)
        aggregate.start_execution()
        aggregate.enqueue_plan(dependencies)
        while not aggregate.plan.is_complete():
            await aggregate.execute_next_step(run_task)
    """

    def __init__(self, workflow: Workflow, plan: Plan, session: Session, task_queue: "TaskQueue"):
        self._workflow = workflow
        self._plan = plan
        self._session = session
        self._task_queue = task_queue
        self._plans: List[Plan] = [plan]
        self._validate_consistency()

    @classmethod
    def create(cls, workflow: Workflow, plan: Plan, session: Session,
               task_queue: "TaskQueue") -> "WorkflowAggregate":
        """
        Raises:
            AggregateInvariantError: If plan or session belong to another
                workflow, or the workflow already finished
        """
        if plan.workflow_id != workflow.id:
            raise AggregateInvariantError("Plan does not belong to the workflow")
        if session.workflow_id != workflow.id:
            raise AggregateInvariantError("Session does not belong to the workflow")
        if workflow.is_terminal():
            raise AggregateInvariantError("Cannot create aggregate for completed or failed workflow")
        return cls(workflow, plan, session, task_queue)

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    @property
    def plan(self) -> Plan:
        return self._plan

    @property
    def session(self) -> Session:
        return self._session

    @property
    def task_queue(self) -> "TaskQueue":
        return self._task_queue

    @property
    def plans(self) -> List[Plan]:
        """Every plan this execution has used, oldest first."""
        return list(self._plans)

    # ═══════════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════════════

    def start_execution(self) -> None:
        if not self._session.is_active():
            raise InvalidStateTransition(
                "Session is not active",
                current_status=self._session.status,
                attempted_action="start_execution",
            )
        self._workflow.start()
        self._workflow.attach_plan(self._plan.id)

    def enqueue_plan(self, dependencies: Optional[Dict[str, List[str]]] = None) -> int:
        """
        Enqueue every task of the current plan.

        Args:
            dependencies: task id -> ids of tasks it depends on

        Returns:
            Number of tasks enqueued
        """
        dependencies = dependencies or {}
        count = 0
        for task in self._plan.get_all_tasks():
            self._task_queue.enqueue(task, dependencies.get(task.id, []))
            count += 1
        return count

    def replace_plan(self, new_plan: Plan) -> None:
        """
        Swap in a replacement plan. Queued tasks of the old plan are dropped.

        Raises:
            AggregateInvariantError: If the plan belongs to another workflow
        """
        if new_plan.workflow_id != self._workflow.id:
            raise AggregateInvariantError("Plan does not belong to the workflow")
        if not self._workflow.is_running():
            raise InvalidStateTransition(
                f"Cannot replan workflow in status {self._workflow.status.value}",
                current_status=self._workflow.status,
                attempted_action="replace_plan",
            )
        self._task_queue.clear()
        self._plan = new_plan
        self._plans.append(new_plan)
        self._workflow.attach_plan(new_plan.id)

    async def execute_next_step(
        self,
        task_runner: TaskRunner,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> StepExecutionResult:
        """
        Run the current step's tasks through `task_runner`, then advance.

        Ready tasks are pulled in optimize_for_high_priority order, one at
        a time. The step fails if a task fails terminally or if tasks are
        left blocked; the plan advances either way.

        Raises:
            AggregateInvariantError: If the plan has no current step
        """
        step = self._plan.get_current_step()
        if step is None:
            raise AggregateInvariantError("No current step available")

        step.start()
        step_task_ids = {t.id for t in step.tasks}
        executed = 0
        stopped = False

        while True:
            if should_stop is not None and should_stop():
                stopped = True
                break
            self._task_queue.optimize_for_high_priority()
            ready = [t for t in self._task_queue.get_ready_tasks() if t.id in step_task_ids]
            if not ready:
                break
            task = self._task_queue.dequeue(ready[0].id)
            await task_runner(task)
            executed += 1
            if task.is_completed():
                self._task_queue.mark_completed(task.id)
            else:
                self._task_queue.mark_failed(task.id, task.last_error or "task failed")

        open_tasks = [t for t in step.tasks if not t.is_terminal()]
        if stopped and open_tasks:
            step.fail("Execution aborted")
        elif open_tasks:
            for task in open_tasks:
                logger.warning(
                    f"Task '{task.description}' blocked by "
                    f"{self._task_queue.get_unmet_dependencies(task.id)}"
                )
            step.fail(f"{len(open_tasks)} tasks blocked by unmet dependencies")
        else:
            step.complete()

        self._plan.advance()
        self._validate_invariants()

        failed = [t for t in step.tasks if t.is_failed()]
        return StepExecutionResult(
            step_id=step.id,
            description=step.description,
            success=step.is_completed(),
            tasks_executed=executed,
            tasks_failed=len(failed),
            blocked_task_ids=[t.id for t in open_tasks] if not stopped else [],
            error=step.failure_reason,
            stopped=stopped,
        )

    def complete_execution(self, summary: str, extracted_data: Optional[Dict[str, Any]] = None) -> None:
        self._workflow.complete(summary, extracted_data)
        if self._session.ended_at is None:
            self._session.end("completed")
        self._validate_invariants()

    def fail_execution(self, reason: str) -> None:
        self._workflow.fail(reason)
        self._session.record_error(reason, recoverable=False)
        if self._session.ended_at is None:
            self._session.end("failed")
        self._validate_invariants()

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def get_current_step(self) -> Optional[Step]:
        return self._plan.get_current_step()

    def get_execution_status(self) -> Dict[str, Any]:
        progress = self._plan.get_progress()
        return {
            "workflow_status": self._workflow.status.value,
            "session_status": self._session.status.value,
            "current_step_index": self._plan.current_step_index,
            "total_steps": progress["total"],
            "completion_percentage": progress["percentage"],
            "plan_count": len(self._plans),
            "queue": self._task_queue.get_stats(),
        }

    def get_entities(self) -> List[Any]:
        """Every event-buffering entity in this aggregate."""
        entities: List[Any] = [self._workflow, self._session]
        for plan in self._plans:
            entities.append(plan)
            for step in plan.steps:
                entities.append(step)
                entities.extend(step.tasks)
        return entities

    def get_domain_events(self) -> List[DomainEvent]:
        """All buffered events, in occurrence order."""
        events = [e for entity in self.get_entities() for e in entity.get_domain_events()]
        events.sort(key=lambda e: e.occurred_at)
        return events

    def clear_domain_events(self) -> None:
        for entity in self.get_entities():
            entity.clear_domain_events()

    # ═══════════════════════════════════════════════════════════════════════════
    # Invariants
    # ═══════════════════════════════════════════════════════════════════════════

    def _validate_consistency(self) -> None:
        if self._plan.workflow_id != self._workflow.id:
            raise AggregateInvariantError("Plan workflow id must match workflow id")
        if self._session.workflow_id != self._workflow.id:
            raise AggregateInvariantError("Session workflow id must match workflow id")

    def _validate_invariants(self) -> None:
        if self._workflow.status == WorkflowStatus.RUNNING and not self._session.is_active():
            raise AggregateInvariantError("Running workflow must have an active session")
        if self._workflow.status == WorkflowStatus.FAILED and self._session.is_active():
            raise AggregateInvariantError("Failed workflow cannot have an active session")
