"""
Task entity - one concrete, retryable browser action within a Step.

State machine:

    PENDING ──execute──► RUNNING ──complete──► COMPLETED
                            │
                            ├──fail (retries left)──► RETRYING ──execute──► RUNNING
                            │
                            └──fail (exhausted)────► FAILED

`fail()` retries in place while retry_count < max_retries. With
max_retries=2 three failures go RETRYING → RETRYING → FAILED.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from browseflow.domain.events import (
    DomainEvent,
    TaskCreatedEvent,
    TaskStartedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskTimedOutEvent,
)
from browseflow.domain.exceptions import InvalidStateTransition, ValidationError
from .entity import EventRecordingMixin
from .value_objects import Intent, IntentType, Priority, PriorityLevel, Timeout


class TaskStatus(Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Outcome of one task attempt."""
    task_id: str
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    confidence: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


_BASE_CONFIDENCE = {
    PriorityLevel.CRITICAL: 80,
    PriorityLevel.HIGH: 80,
    PriorityLevel.MEDIUM: 60,
    PriorityLevel.LOW: 50,
}


@dataclass
class Task(EventRecordingMixin):
    """
    Entity - concrete actionable unit (Rich Domain Model).

    The task carries no dependency back-pointers: the dependency graph
    lives in the TaskQueue.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    intent: Intent = field(default_factory=lambda: Intent(IntentType.CLICK))
    description: str = ""
    priority: Priority = field(default_factory=Priority.medium)
    max_retries: int = 3
    retry_count: int = 0
    timeout: Timeout = field(default_factory=Timeout.task_default)
    status: TaskStatus = TaskStatus.PENDING

    # Ownership
    step_id: str = ""
    workflow_id: str = ""

    # Strategic context from the planner
    strategic_id: Optional[str] = None
    target_concept: str = ""
    input_data: Any = None
    expected_outcome: str = ""

    # Outcome
    result: Optional[TaskResult] = None
    last_error: Optional[str] = None

    # Timing
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    metadata: Dict[str, Any] = field(default_factory=dict)
    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        description: str,
        intent: Intent,
        priority: Optional[Priority] = None,
        max_retries: int = 3,
        timeout: Optional[Timeout] = None,
        step_id: str = "",
        workflow_id: str = "",
        **kwargs: Any,
    ) -> "Task":
        """Create a task and record TaskCreatedEvent."""
        if not description or not description.strip():
            raise ValidationError("Task description cannot be empty")
        if max_retries < 0:
            raise ValidationError("Task max_retries cannot be negative")
        task = cls(
            description=description.strip(),
            intent=intent,
            priority=priority or Priority.medium(),
            max_retries=max_retries,
            timeout=timeout or Timeout.task_default(),
            step_id=step_id,
            workflow_id=workflow_id,
            **kwargs,
        )
        task._record(TaskCreatedEvent(
            aggregate_id=task.id,
            workflow_id=workflow_id,
            step_id=step_id,
            description=task.description,
            intent=intent.value,
            priority=task.priority.name,
            max_retries=max_retries,
        ))
        return task

    # ═══════════════════════════════════════════════════════════════════════════
    # State Machine Methods
    # ═══════════════════════════════════════════════════════════════════════════

    def can_execute(self) -> bool:
        return self.status in (TaskStatus.PENDING, TaskStatus.RETRYING)

    def can_retry(self) -> bool:
        return self.retry_count < self.max_retries

    def execute(self) -> None:
        """
        Transition to RUNNING.

        Raises:
            InvalidStateTransition: If not pending or retrying
        """
        if not self.can_execute():
            raise InvalidStateTransition(
                f"Cannot execute task in status {self.status.value}",
                current_status=self.status,
                attempted_action="execute",
            )
        self.status = TaskStatus.RUNNING
        self.started_at = datetime.now()
        self._record(TaskStartedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            description=self.description,
            attempt=self.retry_count + 1,
        ))

    def complete(self, result: TaskResult) -> None:
        """
        Transition RUNNING → COMPLETED with a successful result.

        Raises:
            InvalidStateTransition: If not running
            ValidationError: If the result reports failure
        """
        self._require_running("complete")
        if not result.success:
            raise ValidationError("Use fail() for unsuccessful results")
        self.status = TaskStatus.COMPLETED
        self.result = result
        self.completed_at = datetime.now()
        self._record(TaskCompletedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            description=self.description,
            confidence=self.get_confidence(),
            duration_ms=result.duration_ms,
            data=result.data,
        ))

    def fail(self, reason: str, duration_ms: float = 0.0) -> None:
        """
        Record a failed attempt.

        Moves to RETRYING (incrementing retry_count) while retries remain,
        otherwise to FAILED.

        Raises:
            InvalidStateTransition: If not running
        """
        self._require_running("fail")
        self.last_error = reason
        if self.can_retry():
            self.retry_count += 1
            self.status = TaskStatus.RETRYING
            self._record(TaskRetriedEvent(
                aggregate_id=self.id,
                workflow_id=self.workflow_id,
                step_id=self.step_id,
                description=self.description,
                reason=reason,
                retry_count=self.retry_count,
                max_retries=self.max_retries,
            ))
            return

        self.status = TaskStatus.FAILED
        self.completed_at = datetime.now()
        self.result = TaskResult(
            task_id=self.id, success=False, error=reason, duration_ms=duration_ms,
        )
        self._record(TaskFailedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            description=self.description,
            reason=reason,
            retry_count=self.retry_count,
            duration_ms=duration_ms,
        ))

    def time_out(self) -> None:
        """Record a timeout; it then counts as an ordinary failed attempt."""
        self._require_running("time_out")
        self._record(TaskTimedOutEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            step_id=self.step_id,
            description=self.description,
            timeout_ms=self.timeout.milliseconds,
            attempt=self.retry_count + 1,
        ))
        self.fail(f"Task timed out after {self.timeout.milliseconds}ms",
                  duration_ms=float(self.timeout.milliseconds))

    def retry(self) -> None:
        """Reset a RETRYING task back to PENDING."""
        if self.status != TaskStatus.RETRYING:
            raise InvalidStateTransition(
                f"Cannot retry task in status {self.status.value}",
                current_status=self.status,
                attempted_action="retry",
            )
        self.status = TaskStatus.PENDING

    def _require_running(self, action: str) -> None:
        if self.status != TaskStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot {action} task in status {self.status.value}",
                current_status=self.status,
                attempted_action=action,
            )

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status == TaskStatus.FAILED

    def has_timed_out(self, now: Optional[datetime] = None) -> bool:
        if self.status != TaskStatus.RUNNING or self.started_at is None:
            return False
        now = now or datetime.now()
        return now - self.started_at > timedelta(milliseconds=self.timeout.milliseconds)

    def get_confidence(self) -> int:
        """Result confidence if known, else a priority base minus 10 per retry."""
        if self.result is not None and self.result.confidence is not None:
            return self.result.confidence
        base = _BASE_CONFIDENCE[self.priority.level]
        return max(0, base - 10 * self.retry_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "intent": self.intent.value,
            "description": self.description,
            "priority": self.priority.name,
            "max_retries": self.max_retries,
            "retry_count": self.retry_count,
            "timeout_ms": self.timeout.milliseconds,
            "status": self.status.value,
            "step_id": self.step_id,
            "workflow_id": self.workflow_id,
            "strategic_id": self.strategic_id,
            "target_concept": self.target_concept,
            "expected_outcome": self.expected_outcome,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Rehydrate a stored task. Records no events."""
        return cls(
            id=data["id"],
            intent=Intent.create(data["intent"]),
            description=data.get("description", ""),
            priority=Priority.from_string(data.get("priority", "medium")),
            max_retries=int(data.get("max_retries", 3)),
            retry_count=int(data.get("retry_count", 0)),
            timeout=Timeout.from_milliseconds(data.get("timeout_ms", 30000)),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            step_id=data.get("step_id", ""),
            workflow_id=data.get("workflow_id", ""),
            strategic_id=data.get("strategic_id"),
            target_concept=data.get("target_concept", ""),
            expected_outcome=data.get("expected_outcome", ""),
            last_error=data.get("last_error"),
        )
