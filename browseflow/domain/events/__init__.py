"""
Domain Events - facts emitted by entities on every meaningful transition.
"""

from .base import DomainEvent
from .workflow_events import (
    WorkflowStartedEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
    PlanCreatedEvent,
)
from .step_events import (
    StepEvent,
    StepStartedEvent,
    StepCompletedEvent,
    StepFailedEvent,
)
from .task_events import (
    TaskEvent,
    TaskCreatedEvent,
    TaskStartedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskTimedOutEvent,
)
from .execution_events import (
    SessionStartedEvent,
    SessionEndedEvent,
    PageNavigationEvent,
    ElementInteractionEvent,
    DataExtractionEvent,
    ExecutionErrorEvent,
)

__all__ = [
    # Base
    "DomainEvent",
    # Workflow / plan
    "WorkflowStartedEvent",
    "WorkflowCompletedEvent",
    "WorkflowFailedEvent",
    "PlanCreatedEvent",
    # Step
    "StepEvent",
    "StepStartedEvent",
    "StepCompletedEvent",
    "StepFailedEvent",
    # Task
    "TaskEvent",
    "TaskCreatedEvent",
    "TaskStartedEvent",
    "TaskCompletedEvent",
    "TaskFailedEvent",
    "TaskRetriedEvent",
    "TaskTimedOutEvent",
    # Session / execution
    "SessionStartedEvent",
    "SessionEndedEvent",
    "PageNavigationEvent",
    "ElementInteractionEvent",
    "DataExtractionEvent",
    "ExecutionErrorEvent",
]
