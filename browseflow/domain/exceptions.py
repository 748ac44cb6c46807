"""
Domain Exceptions.

Exception hierarchy for the workflow execution engine.

Design Principles:
- Hierarchy: everything inherits from BrowseFlowError
- Fatal vs recoverable is decided by type, not by message parsing
- Rich context: exceptions carry the data needed to explain them
"""

from typing import Any, Optional


class BrowseFlowError(Exception):
    """
    Base exception for the engine.

    Allows catching all engine errors with one handler.
    """
    pass


class ValidationError(BrowseFlowError):
    """
    A value object or entity was built from invalid input.

    Raised by factories (Url.create, Confidence.create, Plan.create, ...)
    so invalid domain objects never exist.
    """
    pass


class InvalidStateTransition(BrowseFlowError):
    """Exception raised when an invalid state transition is attempted."""

    def __init__(self, message: str, current_status: Any, attempted_action: str):
        super().__init__(message)
        self.current_status = current_status
        self.attempted_action = attempted_action


class WorkflowInitializationError(BrowseFlowError):
    """
    Fatal setup failure.

    Raised for empty or malformed planner output, missing collaborators or a
    browser that cannot be launched. No partial result is possible.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class PlanningError(BrowseFlowError):
    """The planner could not produce a usable plan."""
    pass


class ReplanRefusedError(PlanningError):
    """
    Replanning was declined by policy (budget exhausted, fundamental
    failure, or no meaningful change). Execution continues without it.
    """
    pass


class TaskExecutionError(BrowseFlowError):
    """
    Recoverable failure of a single task attempt.

    Collaborators may raise it; the orchestrator treats it as a failed
    attempt that is eligible for retry.
    """

    def __init__(self, message: str, task_id: Optional[str] = None, recoverable: bool = True):
        super().__init__(message)
        self.task_id = task_id
        self.recoverable = recoverable


class UnknownIntentError(BrowseFlowError):
    """A strategic intent has no concrete mapping and strict mapping is on."""

    def __init__(self, intent: str):
        super().__init__(f"Unknown strategic intent: {intent}")
        self.intent = intent


class AggregateInvariantError(BrowseFlowError):
    """A cross-entity invariant does not hold."""
    pass
