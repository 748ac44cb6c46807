"""
Step entity - one strategic unit of work owned by a Plan.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from browseflow.domain.events import (
    DomainEvent,
    StepStartedEvent,
    StepCompletedEvent,
    StepFailedEvent,
)
from browseflow.domain.exceptions import InvalidStateTransition, ValidationError
from .entity import EventRecordingMixin
from .task import Task, TaskStatus
from .value_objects import Confidence, PriorityLevel


class StepStatus(Enum):
    """Step lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


_PRIORITY_WEIGHT = {
    PriorityLevel.CRITICAL: 3,
    PriorityLevel.HIGH: 3,
    PriorityLevel.MEDIUM: 2,
    PriorityLevel.LOW: 1,
}


@dataclass
class Step(EventRecordingMixin):
    """
    Entity - strategic step (Rich Domain Model).

    Tasks may only be added while the step is pending. A step completes
    only once all of its tasks are terminal; any terminally failed task
    fails the step.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    description: str = ""
    order: int = 1
    confidence: Confidence = field(default_factory=Confidence.medium)
    tasks: List[Task] = field(default_factory=list)
    status: StepStatus = StepStatus.PENDING

    plan_id: str = ""
    workflow_id: str = ""
    external_id: Optional[str] = None
    name: str = ""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        description: str,
        order: int,
        confidence: Optional[Confidence] = None,
        workflow_id: str = "",
        external_id: Optional[str] = None,
        name: str = "",
    ) -> "Step":
        if not description or not description.strip():
            raise ValidationError("Step description cannot be empty")
        if order <= 0:
            raise ValidationError(f"Step order must be positive, got {order}")
        return cls(
            description=description.strip(),
            order=order,
            confidence=confidence or Confidence.medium(),
            workflow_id=workflow_id,
            external_id=external_id,
            name=name or description.strip(),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Task management
    # ═══════════════════════════════════════════════════════════════════════════

    def add_task(self, task: Task) -> None:
        if self.status != StepStatus.PENDING:
            raise InvalidStateTransition(
                f"Cannot add tasks to step in status {self.status.value}",
                current_status=self.status,
                attempted_action="add_task",
            )
        if any(t.id == task.id for t in self.tasks):
            raise ValidationError(f"Task {task.id} already belongs to step {self.id}")
        task.step_id = self.id
        task.workflow_id = task.workflow_id or self.workflow_id
        self.tasks.append(task)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    # ═══════════════════════════════════════════════════════════════════════════
    # State Machine Methods
    # ═══════════════════════════════════════════════════════════════════════════

    def can_start(self) -> bool:
        return self.status == StepStatus.PENDING and bool(self.tasks)

    def start(self) -> None:
        """
        Transition to RUNNING.

        Raises:
            InvalidStateTransition: If not pending or the step has no tasks
        """
        if not self.can_start():
            reason = "no tasks" if not self.tasks else f"status {self.status.value}"
            raise InvalidStateTransition(
                f"Cannot start step {self.order}: {reason}",
                current_status=self.status,
                attempted_action="start",
            )
        self.status = StepStatus.RUNNING
        self.started_at = datetime.now()
        self._record(StepStartedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            plan_id=self.plan_id,
            description=self.description,
            order=self.order,
            task_count=len(self.tasks),
        ))

    def complete(self) -> None:
        """
        Finish a running step once every task is terminal.

        Ends COMPLETED if all tasks completed, FAILED otherwise.

        Raises:
            InvalidStateTransition: If not running or tasks are still open
        """
        if self.status != StepStatus.RUNNING:
            raise InvalidStateTransition(
                f"Cannot complete step in status {self.status.value}",
                current_status=self.status,
                attempted_action="complete",
            )
        open_tasks = [t for t in self.tasks if not t.is_terminal()]
        if open_tasks:
            raise InvalidStateTransition(
                f"Cannot complete step {self.order}: {len(open_tasks)} tasks not finished",
                current_status=self.status,
                attempted_action="complete",
            )
        failed = [t for t in self.tasks if t.status == TaskStatus.FAILED]
        if failed:
            self.fail("; ".join(f"{t.description}: {t.last_error}" for t in failed))
            return

        self.status = StepStatus.COMPLETED
        self.completed_at = datetime.now()
        self._record(StepCompletedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            plan_id=self.plan_id,
            description=self.description,
            order=self.order,
            confidence=self.get_overall_confidence().value,
            duration_ms=self.get_duration_ms(),
        ))

    def fail(self, reason: str) -> None:
        """Transition to FAILED from pending or running."""
        if self.is_terminal():
            raise InvalidStateTransition(
                f"Cannot fail step in status {self.status.value}",
                current_status=self.status,
                attempted_action="fail",
            )
        self.status = StepStatus.FAILED
        self.failure_reason = reason
        self.completed_at = datetime.now()
        self._record(StepFailedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            plan_id=self.plan_id,
            description=self.description,
            order=self.order,
            reason=reason,
            duration_ms=self.get_duration_ms(),
        ))

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def is_terminal(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.FAILED)

    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED

    def is_failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def matches(self, identifier: str) -> bool:
        """Whether `identifier` names this step (planner id, name or order)."""
        return identifier in (self.external_id, self.name, self.description, str(self.order))

    def get_overall_confidence(self) -> Confidence:
        """20% planner confidence, 80% priority-weighted task confidence."""
        if not self.tasks:
            return self.confidence
        weights = [_PRIORITY_WEIGHT[t.priority.level] for t in self.tasks]
        weighted = sum(t.get_confidence() * w for t, w in zip(self.tasks, weights))
        task_average = weighted / sum(weights)
        return Confidence.clamp(0.2 * self.confidence.value + 0.8 * task_average)

    def get_duration_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds() * 1000

    def get_progress(self) -> Dict[str, int]:
        return {
            "total": len(self.tasks),
            "completed": sum(1 for t in self.tasks if t.is_completed()),
            "failed": sum(1 for t in self.tasks if t.is_failed()),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "plan_id": self.plan_id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "confidence": self.confidence.value,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        """Rehydrate a stored step and its tasks. Records no events."""
        return cls(
            id=data["id"],
            description=data.get("description", ""),
            order=int(data.get("order", 1)),
            confidence=Confidence.clamp(data.get("confidence", 60)),
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            plan_id=data.get("plan_id", ""),
            workflow_id=data.get("workflow_id", ""),
            external_id=data.get("external_id"),
            name=data.get("name", ""),
            failure_reason=data.get("failure_reason"),
        )
