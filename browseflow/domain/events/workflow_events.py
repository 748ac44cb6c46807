"""
Workflow and plan lifecycle events.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .base import DomainEvent


@dataclass
class WorkflowStartedEvent(DomainEvent):
    """Published when a workflow transitions pending → running."""
    goal: str = ""
    start_url: str = ""

    def summary(self) -> str:
        return f"Workflow started: {self.goal}"


@dataclass
class WorkflowCompletedEvent(DomainEvent):
    """Published when a workflow finishes (fully or partially) without failing."""
    summary_text: str = ""
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def summary(self) -> str:
        return f"Workflow completed: {self.summary_text}"


@dataclass
class WorkflowFailedEvent(DomainEvent):
    """Published when a workflow ends in failure."""
    reason: str = ""
    duration_ms: float = 0.0

    def summary(self) -> str:
        return f"Workflow failed: {self.reason}"


@dataclass
class PlanCreatedEvent(DomainEvent):
    """Published when a plan (initial or replacement) is created."""
    workflow_id: str = ""
    step_count: int = 0
    is_replan: bool = False
    replaced_plan_id: Optional[str] = None

    def summary(self) -> str:
        kind = "Replan" if self.is_replan else "Plan"
        return f"{kind} created with {self.step_count} steps"
