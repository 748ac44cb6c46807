"""
Workflow Saga - workflow-level consistency after irrecoverable failures.

Tracks one SagaExecution per running workflow and reacts to failure
events with compensation (registered undo actions, run newest first),
recovery attempts, or termination.

Design Decisions:
- Subscribes through the domain event bus like every other handler, so
  it observes progress incrementally during a run.
- Compensation actions are plain callables registered per workflow. A
  failing action is logged and the remaining actions still run.
- Timeouts are checked explicitly via `check_timeouts(now)` instead of
  per-saga timers; the owner decides when to poll.

Failure handling:
- WorkflowFailed: compensate (if enabled and not already compensating),
  else attempt recovery (if enabled and attempts remain), else terminate.
- TaskFailed: once at least `min_tasks_for_failure_rate` tasks finished
  and the failure rate exceeds `task_failure_rate_threshold`, compensate
  (or terminate when compensation is disabled).

Usage:
    saga = WorkflowSaga()
    bus.register_handler(saga)
    saga.attach_reporter(workflow_id, reporter)
    saga.register_compensation(workflow_id, "logout", browser_logout)
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from browseflow.config import SagaConfig
from browseflow.domain.events import (
    DomainEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
    WorkflowStartedEvent,
)
from browseflow.domain.interfaces.event_handler import IDomainEventHandler
from browseflow.domain.interfaces.reporter import IAgentReporter

logger = logging.getLogger(__name__)


CompensationAction = Callable[[], None]


@dataclass
class SagaExecution:
    """Saga state for one workflow."""
    saga_id: str
    workflow_id: str
    started_at: datetime
    timeout_at: datetime
    completed_steps: List[str] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    is_complete: bool = False
    is_failed: bool = False
    is_compensating: bool = False
    retry_count: int = 0
    last_error_message: Optional[str] = None
    compensated_actions: List[str] = field(default_factory=list)

    @property
    def finished_tasks(self) -> int:
        return len(self.completed_steps) + len(self.failed_steps)

    @property
    def failure_rate(self) -> float:
        total = self.finished_tasks
        return len(self.failed_steps) / total if total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saga_id": self.saga_id,
            "workflow_id": self.workflow_id,
            "started_at": self.started_at.isoformat(),
            "timeout_at": self.timeout_at.isoformat(),
            "completed_steps": list(self.completed_steps),
            "failed_steps": list(self.failed_steps),
            "is_complete": self.is_complete,
            "is_failed": self.is_failed,
            "is_compensating": self.is_compensating,
            "retry_count": self.retry_count,
            "last_error_message": self.last_error_message,
            "compensated_actions": list(self.compensated_actions),
        }


class WorkflowSaga(IDomainEventHandler):

    event_types = (
        WorkflowStartedEvent, WorkflowCompletedEvent, WorkflowFailedEvent,
        TaskCompletedEvent, TaskFailedEvent,
    )

    def __init__(
        self,
        reporter: Optional[IAgentReporter] = None,
        policy: Optional[SagaConfig] = None,
        on_recovery: Optional[Callable[[SagaExecution], None]] = None,
    ):
        self._reporter = reporter
        self._reporters: Dict[str, IAgentReporter] = {}
        self._policy = policy or SagaConfig()
        self._on_recovery = on_recovery
        self._active: Dict[str, SagaExecution] = {}
        self._compensations: Dict[str, List[Tuple[str, CompensationAction]]] = {}
        self._total_compensations = 0
        self._total_recoveries = 0
        self._terminated = 0

    @property
    def policy(self) -> SagaConfig:
        return self._policy

    def attach_reporter(self, workflow_id: str, reporter: IAgentReporter) -> None:
        """Narrate `workflow_id`'s saga to `reporter` instead of the default one."""
        self._reporters[workflow_id] = reporter

    def detach_reporter(self, workflow_id: str) -> None:
        self._reporters.pop(workflow_id, None)

    # ═══════════════════════════════════════════════════════════════
    # Event Handling
    # ═══════════════════════════════════════════════════════════════

    def handle(self, event: DomainEvent) -> None:
        if isinstance(event, WorkflowStartedEvent):
            self._on_workflow_started(event)
        elif isinstance(event, WorkflowCompletedEvent):
            self._on_workflow_completed(event)
        elif isinstance(event, WorkflowFailedEvent):
            self._on_workflow_failed(event)
        elif isinstance(event, TaskCompletedEvent):
            execution = self._active.get(event.workflow_id)
            if execution is not None:
                execution.completed_steps.append(event.aggregate_id)
        elif isinstance(event, TaskFailedEvent):
            self._on_task_failed(event)

    def _on_workflow_started(self, event: WorkflowStartedEvent) -> None:
        workflow_id = event.aggregate_id
        started_at = event.occurred_at
        execution = SagaExecution(
            saga_id=f"saga-{workflow_id}-{int(started_at.timestamp() * 1000)}",
            workflow_id=workflow_id,
            started_at=started_at,
            timeout_at=started_at + timedelta(milliseconds=self._policy.max_workflow_timeout_ms),
        )
        self._active[workflow_id] = execution
        self._log(f"Workflow saga started: {execution.saga_id} for workflow {workflow_id}", workflow_id)

    def _on_workflow_completed(self, event: WorkflowCompletedEvent) -> None:
        execution = self._active.pop(event.aggregate_id, None)
        self._compensations.pop(event.aggregate_id, None)
        if execution is None:
            return
        execution.is_complete = True
        self._log(
            f"Workflow saga completed: {execution.saga_id} "
            f"({len(execution.completed_steps)} completed, {len(execution.failed_steps)} failed tasks)",
            execution.workflow_id,
        )

    def _on_workflow_failed(self, event: WorkflowFailedEvent) -> None:
        execution = self._active.get(event.aggregate_id)
        if execution is None or execution.is_complete:
            return
        execution.is_failed = True
        execution.last_error_message = event.reason or "Unknown error"
        logger.warning(f"Workflow saga failed: {execution.saga_id}: {execution.last_error_message}")

        if self._policy.enable_compensation and not execution.is_compensating:
            self._compensate(execution)
        elif self._policy.auto_recovery and execution.retry_count < self._policy.max_retry_attempts:
            self._attempt_recovery(execution)
        else:
            self._terminate(execution)

    def _on_task_failed(self, event: TaskFailedEvent) -> None:
        execution = self._active.get(event.workflow_id)
        if execution is None:
            return
        execution.failed_steps.append(event.aggregate_id)
        execution.last_error_message = event.reason or "Task failed"
        self._log(f"Task failed in saga {execution.saga_id}: {event.aggregate_id}", execution.workflow_id)

        if (execution.finished_tasks >= self._policy.min_tasks_for_failure_rate
                and execution.failure_rate > self._policy.task_failure_rate_threshold):
            logger.warning(
                f"High failure rate in saga {execution.saga_id}: {execution.failure_rate:.1%}"
            )
            if self._policy.enable_compensation and not execution.is_compensating:
                self._compensate(execution)
            elif not self._policy.enable_compensation:
                self._terminate(execution)

    # ═══════════════════════════════════════════════════════════════
    # Compensation / Recovery
    # ═══════════════════════════════════════════════════════════════

    def register_compensation(self, workflow_id: str, name: str, action: CompensationAction) -> None:
        """Register an undo action; actions run newest first."""
        self._compensations.setdefault(workflow_id, []).append((name, action))

    def get_compensations(self, workflow_id: str) -> List[str]:
        return [name for name, _ in self._compensations.get(workflow_id, [])]

    def _compensate(self, execution: SagaExecution) -> None:
        execution.is_compensating = True
        self._total_compensations += 1
        actions = self._compensations.pop(execution.workflow_id, [])
        self._log(
            f"Starting compensation for saga {execution.saga_id}: "
            f"{len(actions)} actions, {len(execution.completed_steps)} completed tasks",
            execution.workflow_id,
        )
        for name, action in reversed(actions):
            try:
                action()
                execution.compensated_actions.append(name)
            except Exception as e:
                logger.error(f"Compensation action {name!r} failed for saga {execution.saga_id}: {e}")
        self._log(f"Compensation completed for saga: {execution.saga_id}", execution.workflow_id)
        self._terminate(execution)

    def _attempt_recovery(self, execution: SagaExecution) -> None:
        execution.retry_count += 1
        self._total_recoveries += 1
        self._log(
            f"Attempting recovery for saga: {execution.saga_id} (attempt {execution.retry_count})",
            execution.workflow_id,
        )
        execution.is_failed = False
        execution.last_error_message = None
        if self._on_recovery is not None:
            try:
                self._on_recovery(execution)
            except Exception as e:
                logger.error(f"Recovery callback failed for saga {execution.saga_id}: {e}")

    def _terminate(self, execution: SagaExecution) -> None:
        self._active.pop(execution.workflow_id, None)
        self._compensations.pop(execution.workflow_id, None)
        self._terminated += 1
        status = "completed" if execution.is_complete else "failed"
        self._log(
            f"Saga terminated: {execution.saga_id} (status={status}, "
            f"retries={execution.retry_count}, compensated={execution.is_compensating})",
            execution.workflow_id,
        )

    def check_timeouts(self, now: Optional[datetime] = None) -> List[str]:
        """Compensate or terminate every saga past its deadline; returns their workflow ids."""
        now = now or datetime.now()
        expired = [e for e in self._active.values() if now >= e.timeout_at]
        for execution in expired:
            execution.last_error_message = "Saga execution timeout"
            logger.warning(f"Saga timeout: {execution.saga_id}")
            if self._policy.enable_compensation and not execution.is_compensating:
                self._compensate(execution)
            else:
                self._terminate(execution)
        return [e.workflow_id for e in expired]

    # ═══════════════════════════════════════════════════════════════
    # Queries / Management
    # ═══════════════════════════════════════════════════════════════

    def get_active_sagas(self) -> List[SagaExecution]:
        return list(self._active.values())

    def get_saga_for_workflow(self, workflow_id: str) -> Optional[SagaExecution]:
        return self._active.get(workflow_id)

    def get_saga_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        executions = list(self._active.values())
        elapsed = [(now - e.started_at).total_seconds() * 1000 for e in executions]
        return {
            "active_sagas": len(executions),
            "pending_timeouts": sum(1 for e in executions if e.timeout_at > now),
            "average_execution_time": sum(elapsed) / len(elapsed) if elapsed else 0.0,
            "total_compensations": self._total_compensations,
            "total_recovery_attempts": self._total_recoveries,
            "terminated_sagas": self._terminated,
        }

    def update_policy(self, **changes: Any) -> None:
        self._policy = replace(self._policy, **changes)
        self._log("Saga policy updated")

    def force_terminate(self, workflow_id: str) -> bool:
        execution = self._active.get(workflow_id)
        if execution is None:
            return False
        logger.warning(f"Force terminating saga: {execution.saga_id}")
        self._terminate(execution)
        return True

    def cleanup(self) -> None:
        for workflow_id in list(self._active):
            self.force_terminate(workflow_id)
        self._compensations.clear()

    def _log(self, message: str, workflow_id: Optional[str] = None) -> None:
        logger.info(message)
        reporter = self._reporters.get(workflow_id, self._reporter)
        if reporter is not None:
            reporter.log(message)
