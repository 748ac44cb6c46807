"""
Task lifecycle events.

aggregate_id is the task id; workflow_id and step_id locate the task so
handlers can track per-workflow health without entity lookups.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import DomainEvent


@dataclass
class TaskEvent(DomainEvent):
    """Base class for task events."""
    workflow_id: str = ""
    step_id: str = ""
    description: str = ""


@dataclass
class TaskCreatedEvent(TaskEvent):
    intent: str = ""
    priority: str = ""
    max_retries: int = 0


@dataclass
class TaskStartedEvent(TaskEvent):
    attempt: int = 1

    def summary(self) -> str:
        return f"Task started (attempt {self.attempt}): {self.description}"


@dataclass
class TaskCompletedEvent(TaskEvent):
    confidence: int = 0
    duration_ms: float = 0.0
    data: Optional[Dict[str, Any]] = None

    def summary(self) -> str:
        return f"Task completed ({self.confidence}%): {self.description}"


@dataclass
class TaskFailedEvent(TaskEvent):
    """Terminal task failure: retries are exhausted."""
    reason: str = ""
    retry_count: int = 0
    duration_ms: float = 0.0

    def summary(self) -> str:
        return f"Task failed after {self.retry_count} retries: {self.reason}"


@dataclass
class TaskRetriedEvent(TaskEvent):
    """A failed attempt that will be retried."""
    reason: str = ""
    retry_count: int = 0
    max_retries: int = 0

    def summary(self) -> str:
        return f"Task retry {self.retry_count}/{self.max_retries}: {self.reason}"


@dataclass
class TaskTimedOutEvent(TaskEvent):
    timeout_ms: int = 0
    attempt: int = 1

    def summary(self) -> str:
        return f"Task timed out after {self.timeout_ms}ms"
