"""
Step lifecycle events.
"""

from dataclasses import dataclass

from .base import DomainEvent


@dataclass
class StepEvent(DomainEvent):
    """Base class for step events. aggregate_id is the step id."""
    workflow_id: str = ""
    plan_id: str = ""
    description: str = ""
    order: int = 0


@dataclass
class StepStartedEvent(StepEvent):
    """Published when a step starts running."""
    task_count: int = 0

    def summary(self) -> str:
        return f"Step {self.order} started: {self.description}"


@dataclass
class StepCompletedEvent(StepEvent):
    """Published when every task of a step succeeded."""
    confidence: int = 0
    duration_ms: float = 0.0

    def summary(self) -> str:
        return f"Step {self.order} completed ({self.confidence}%)"


@dataclass
class StepFailedEvent(StepEvent):
    """Published when a step fails."""
    reason: str = ""
    duration_ms: float = 0.0

    def summary(self) -> str:
        return f"Step {self.order} failed: {self.reason}"
