"""
ExecutionAggregate - ExecutionContext plus the append-only log of attempts.

record_execution() is the single entry point for task attempt outcomes;
it keeps the context counters and current URL in step with the log and
emits browser-level events (navigation, interaction, extraction, errors).
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from browseflow.domain.events import (
    DataExtractionEvent,
    DomainEvent,
    ElementInteractionEvent,
    ExecutionErrorEvent,
    PageNavigationEvent,
)
from browseflow.domain.exceptions import InvalidStateTransition
from browseflow.domain.models import (
    Evidence,
    ExecutionContext,
    ExecutionResult,
    Task,
    TaskResult,
    TaskStatus,
)
from browseflow.domain.models.entity import EventRecordingMixin

if TYPE_CHECKING:
    from browseflow.application.services.state_manager import StateManager

SLOW_EXECUTION_MS = 5000


@dataclass
class ExecutionAggregate(EventRecordingMixin):
    """
    Usage:
        aggregate = ExecutionAggregate(context=ExecutionContext(session.id, workflow.id))
        aggregate.start_task(task)
        aggregate.record_execution(task, result, evidence)
    """
    context: ExecutionContext
    results: List[ExecutionResult] = field(default_factory=list)
    state_manager: Optional["StateManager"] = None

    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    def start_task(self, task: Task) -> None:
        self.context.start_task_execution(task.id)

    def record_execution(
        self,
        task: Task,
        result: TaskResult,
        evidence: Optional[Evidence] = None,
        context: Optional[str] = None,
    ) -> ExecutionResult:
        """
        Append one attempt outcome and update the context.

        The task must still be running (the attempt is recorded before the
        task transitions).

        Raises:
            InvalidStateTransition: If the task is not running
        """
        if task.status != TaskStatus.RUNNING:
            raise InvalidStateTransition(
                "Task must be running to record an execution",
                current_status=task.status,
                attempted_action="record_execution",
            )

        execution = ExecutionResult(
            task_id=task.id,
            result=result,
            evidence=evidence,
            retry_attempt=task.retry_count,
            context=context or self._describe_state(),
        )
        self.context.complete_task_execution(result.success)
        self.results.append(execution)

        self._record(ElementInteractionEvent(
            aggregate_id=self.context.session_id,
            workflow_id=self.context.workflow_id,
            task_id=task.id,
            action=task.intent.value,
            target=task.target_concept or task.description,
            success=result.success,
        ))
        if result.success:
            self._apply_result_data(task, result)
        else:
            self._record(ExecutionErrorEvent(
                aggregate_id=self.context.session_id,
                workflow_id=self.context.workflow_id,
                task_id=task.id,
                error=result.error or "unknown error",
                recoverable=task.can_retry(),
            ))
        return execution

    def update_url(self, url: str) -> None:
        """Track a navigation observed outside a task result."""
        if url and url != self.context.current_url:
            previous = self.context.update_current_url(url)
            self._record(PageNavigationEvent(
                aggregate_id=self.context.session_id,
                workflow_id=self.context.workflow_id,
                from_url=previous,
                to_url=url,
            ))

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def get_successful_executions(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.is_success()]

    def get_failed_executions(self) -> List[ExecutionResult]:
        return [r for r in self.results if not r.is_success()]

    def get_retry_executions(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.is_retry()]

    def get_executions_by_task(self, task_id: str) -> List[ExecutionResult]:
        return [r for r in self.results if r.task_id == task_id]

    def get_recent_executions(self, count: int = 5) -> List[ExecutionResult]:
        return self.results[-count:]

    def get_execution_statistics(self) -> Dict[str, Any]:
        total = len(self.results)
        successful = len(self.get_successful_executions())
        durations = [r.result.duration_ms for r in self.results]
        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": total - successful,
            "retry_executions": len(self.get_retry_executions()),
            "success_rate": successful / total if total else 0.0,
            "average_duration_ms": sum(durations) / total if total else 0.0,
            "slow_executions": sum(1 for d in durations if d > SLOW_EXECUTION_MS),
        }

    def get_task_execution_summary(self, task_id: str) -> Optional[Dict[str, Any]]:
        executions = self.get_executions_by_task(task_id)
        if not executions:
            return None
        successes = sum(1 for r in executions if r.is_success())
        return {
            "task_id": task_id,
            "execution_count": len(executions),
            "success_count": successes,
            "failure_count": len(executions) - successes,
            "average_duration_ms": sum(r.result.duration_ms for r in executions) / len(executions),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    def _apply_result_data(self, task: Task, result: TaskResult) -> None:
        data = result.data or {}
        url = data.get("current_url")
        if url:
            self.update_url(url)
        extracted = data.get("extracted_data")
        if extracted:
            self._record(DataExtractionEvent(
                aggregate_id=self.context.session_id,
                workflow_id=self.context.workflow_id,
                task_id=task.id,
                fields=sorted(extracted.keys()),
            ))

    def _describe_state(self) -> str:
        state = self.state_manager.get_current_state() if self.state_manager else None
        if state is None:
            return f"url={self.context.current_url}"
        return f"url={state.url} sections={','.join(state.visible_sections)}"
