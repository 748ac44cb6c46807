"""
Workflow entity - aggregate root for one goal-driven automation run.

Status transitions are monotonic:

    PENDING ──start──► RUNNING ──complete──► COMPLETED
                          │
                          └──fail──► FAILED
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from browseflow.domain.events import (
    DomainEvent,
    WorkflowStartedEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
)
from browseflow.domain.exceptions import InvalidStateTransition, ValidationError
from .entity import EventRecordingMixin
from .value_objects import Url, Variable


class WorkflowStatus(Enum):
    """Workflow lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Workflow(EventRecordingMixin):
    """
    Entity - aggregate root (Rich Domain Model).

    Mutated only through start(), complete() and fail().
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    goal: str = ""
    start_url: Optional[Url] = None
    variables: List[Variable] = field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.PENDING

    current_plan_id: Optional[str] = None
    summary: Optional[str] = None
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    failure_reason: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(cls, goal: str, start_url: str, variables: Optional[List[Variable]] = None) -> "Workflow":
        """
        Raises:
            ValidationError: On empty goal or invalid URL
        """
        if not goal or not goal.strip():
            raise ValidationError("Workflow goal cannot be empty")
        return cls(
            goal=goal.strip(),
            start_url=Url.create(start_url),
            variables=list(variables or []),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # State Machine Methods
    # ═══════════════════════════════════════════════════════════════════════════

    def can_start(self) -> bool:
        return self.status == WorkflowStatus.PENDING

    def can_finish(self) -> bool:
        return self.status == WorkflowStatus.RUNNING

    def start(self) -> None:
        if not self.can_start():
            raise InvalidStateTransition(
                f"Cannot start workflow in status {self.status.value}",
                current_status=self.status,
                attempted_action="start",
            )
        self.status = WorkflowStatus.RUNNING
        self.started_at = datetime.now()
        self._record(WorkflowStartedEvent(
            aggregate_id=self.id,
            goal=self.goal,
            start_url=str(self.start_url) if self.start_url else "",
        ))

    def complete(self, summary: str = "", extracted_data: Optional[Dict[str, Any]] = None) -> None:
        """Finish successfully (fully, partially or degraded)."""
        if not self.can_finish():
            raise InvalidStateTransition(
                f"Cannot complete workflow in status {self.status.value}",
                current_status=self.status,
                attempted_action="complete",
            )
        self.status = WorkflowStatus.COMPLETED
        self.completed_at = datetime.now()
        self.summary = summary
        self.extracted_data = dict(extracted_data or {})
        self._record(WorkflowCompletedEvent(
            aggregate_id=self.id,
            summary_text=summary,
            extracted_data=self.extracted_data,
            duration_ms=self.get_duration_ms(),
        ))

    def fail(self, reason: str) -> None:
        if not self.can_finish():
            raise InvalidStateTransition(
                f"Cannot fail workflow in status {self.status.value}",
                current_status=self.status,
                attempted_action="fail",
            )
        self.status = WorkflowStatus.FAILED
        self.completed_at = datetime.now()
        self.failure_reason = reason
        self._record(WorkflowFailedEvent(
            aggregate_id=self.id,
            reason=reason,
            duration_ms=self.get_duration_ms(),
        ))

    def attach_plan(self, plan_id: str) -> None:
        self.current_plan_id = plan_id

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def is_terminal(self) -> bool:
        return self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def is_running(self) -> bool:
        return self.status == WorkflowStatus.RUNNING

    def get_variable(self, name: str) -> Optional[Variable]:
        for variable in self.variables:
            if variable.name == name:
                return variable
        return None

    def get_duration_ms(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at or datetime.now()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form; variables carry public values only."""
        return {
            "id": self.id,
            "goal": self.goal,
            "start_url": str(self.start_url) if self.start_url else None,
            "variables": [v.to_public_dict() for v in self.variables],
            "status": self.status.value,
            "current_plan_id": self.current_plan_id,
            "summary": self.summary,
            "extracted_data": self.extracted_data,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Workflow":
        """
        Rehydrate a stored workflow. Records no events.

        Secret variables come back as their placeholders; their raw values
        are never persisted.
        """
        def _dt(key: str) -> Optional[datetime]:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            id=data["id"],
            goal=data.get("goal", ""),
            start_url=Url.create(data["start_url"]) if data.get("start_url") else None,
            variables=[
                Variable(v["name"], v.get("value", ""), bool(v.get("is_secret", False)))
                for v in data.get("variables", [])
            ],
            status=WorkflowStatus(data.get("status", WorkflowStatus.PENDING.value)),
            current_plan_id=data.get("current_plan_id"),
            summary=data.get("summary"),
            extracted_data=dict(data.get("extracted_data") or {}),
            failure_reason=data.get("failure_reason"),
            created_at=_dt("created_at") or datetime.now(),
            started_at=_dt("started_at"),
            completed_at=_dt("completed_at"),
        )
