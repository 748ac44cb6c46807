"""
Domain Models - value objects and entities.
"""

from .value_objects import (
    Confidence,
    Duration,
    TimeoutType,
    Timeout,
    BackoffStrategy,
    RetryPolicy,
    Url,
    Viewport,
    SelectorType,
    ElementSelector,
    PriorityLevel,
    Priority,
    IntentType,
    Intent,
    Variable,
    EvidenceType,
    Evidence,
)
from .page_state import DomElement, PageState
from .task import Task, TaskStatus, TaskResult
from .step import Step, StepStatus
from .plan import Plan
from .workflow import Workflow, WorkflowStatus
from .session import Session, SessionStatus
from .execution import ExecutionContext, ExecutionResult
from .results import WorkflowResult, WorkflowResultStatus, StepExecutionResult
from .memory import MemoryContext, MemoryEntry, LearnedPattern, slugify_goal

__all__ = [
    # Value objects
    "Confidence",
    "Duration",
    "TimeoutType",
    "Timeout",
    "BackoffStrategy",
    "RetryPolicy",
    "Url",
    "Viewport",
    "SelectorType",
    "ElementSelector",
    "PriorityLevel",
    "Priority",
    "IntentType",
    "Intent",
    "Variable",
    "EvidenceType",
    "Evidence",
    # Page state
    "DomElement",
    "PageState",
    # Entities
    "Task",
    "TaskStatus",
    "TaskResult",
    "Step",
    "StepStatus",
    "Plan",
    "Workflow",
    "WorkflowStatus",
    "Session",
    "SessionStatus",
    "ExecutionContext",
    "ExecutionResult",
    # Results
    "WorkflowResult",
    "WorkflowResultStatus",
    "StepExecutionResult",
    # Memory
    "MemoryContext",
    "MemoryEntry",
    "LearnedPattern",
    "slugify_goal",
]
