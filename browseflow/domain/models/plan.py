"""
Plan entity - the ordered steps produced by one planning round.

A workflow owns one current plan; replanning replaces it wholesale.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import uuid

from browseflow.domain.events import DomainEvent, PlanCreatedEvent
from browseflow.domain.exceptions import InvalidStateTransition, ValidationError
from .entity import EventRecordingMixin
from .step import Step


@dataclass
class Plan(EventRecordingMixin):
    """
    Entity - ordered strategic steps.

    Invariants:
    - at least one step
    - step orders are contiguous starting at 1
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str = ""
    steps: List[Step] = field(default_factory=list)
    current_step_index: int = 0
    is_replan: bool = False
    replaced_plan_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        workflow_id: str,
        steps: List[Step],
        is_replan: bool = False,
        replaced_plan_id: Optional[str] = None,
    ) -> "Plan":
        """
        Create a validated plan and record PlanCreatedEvent.

        Raises:
            ValidationError: If there are no steps or orders are not 1..n
        """
        if not steps:
            raise ValidationError("A plan must contain at least one step")
        ordered = sorted(steps, key=lambda s: s.order)
        expected = list(range(1, len(ordered) + 1))
        actual = [s.order for s in ordered]
        if actual != expected:
            raise ValidationError(f"Step orders must be contiguous from 1, got {actual}")

        plan = cls(
            workflow_id=workflow_id,
            steps=ordered,
            is_replan=is_replan,
            replaced_plan_id=replaced_plan_id,
        )
        for step in ordered:
            step.plan_id = plan.id
            step.workflow_id = workflow_id
        plan._record(PlanCreatedEvent(
            aggregate_id=plan.id,
            workflow_id=workflow_id,
            step_count=len(ordered),
            is_replan=is_replan,
            replaced_plan_id=replaced_plan_id,
        ))
        return plan

    # ═══════════════════════════════════════════════════════════════════════════
    # Navigation
    # ═══════════════════════════════════════════════════════════════════════════

    def get_current_step(self) -> Optional[Step]:
        if self.is_complete():
            return None
        return self.steps[self.current_step_index]

    def advance(self) -> Optional[Step]:
        """
        Move past the current step, which must be terminal.

        Returns:
            The next step, or None when the plan is exhausted
        """
        current = self.get_current_step()
        if current is None:
            raise InvalidStateTransition(
                "Cannot advance a finished plan",
                current_status="complete",
                attempted_action="advance",
            )
        if not current.is_terminal():
            raise InvalidStateTransition(
                f"Cannot advance past step {current.order} in status {current.status.value}",
                current_status=current.status,
                attempted_action="advance",
            )
        self.current_step_index += 1
        return self.get_current_step()

    def is_complete(self) -> bool:
        return self.current_step_index >= len(self.steps)

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def get_remaining_steps(self) -> List[Step]:
        return [s for s in self.steps if not s.is_terminal()]

    def get_completed_steps(self) -> List[Step]:
        return [s for s in self.steps if s.is_completed()]

    def get_failed_steps(self) -> List[Step]:
        return [s for s in self.steps if s.is_failed()]

    def get_all_tasks(self):
        return [t for s in self.steps for t in s.tasks]

    def get_progress(self) -> Dict[str, Any]:
        total = len(self.steps)
        completed = len(self.get_completed_steps())
        return {
            "total": total,
            "completed": completed,
            "failed": len(self.get_failed_steps()),
            "current_step": self.current_step_index + 1 if not self.is_complete() else None,
            "percentage": (completed / total * 100) if total else 0.0,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "current_step_index": self.current_step_index,
            "is_replan": self.is_replan,
            "replaced_plan_id": self.replaced_plan_id,
            "created_at": self.created_at.isoformat(),
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Plan":
        """Rehydrate a stored plan. Records no events."""
        return cls(
            id=data["id"],
            workflow_id=data.get("workflow_id", ""),
            steps=[Step.from_dict(s) for s in data.get("steps", [])],
            current_step_index=int(data.get("current_step_index", 0)),
            is_replan=bool(data.get("is_replan", False)),
            replaced_plan_id=data.get("replaced_plan_id"),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else datetime.now(),
        )
