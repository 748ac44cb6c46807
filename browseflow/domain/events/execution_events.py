"""
Session and browser-execution events.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from .base import DomainEvent


@dataclass
class SessionStartedEvent(DomainEvent):
    """aggregate_id is the session id."""
    workflow_id: str = ""
    headless: bool = True
    viewport: str = ""


@dataclass
class SessionEndedEvent(DomainEvent):
    workflow_id: str = ""
    reason: str = ""
    duration_ms: float = 0.0


@dataclass
class PageNavigationEvent(DomainEvent):
    workflow_id: str = ""
    from_url: str = ""
    to_url: str = ""

    def summary(self) -> str:
        return f"Navigated {self.from_url} -> {self.to_url}"


@dataclass
class ElementInteractionEvent(DomainEvent):
    workflow_id: str = ""
    task_id: str = ""
    action: str = ""
    target: str = ""
    success: bool = True


@dataclass
class DataExtractionEvent(DomainEvent):
    workflow_id: str = ""
    task_id: str = ""
    fields: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return f"Extracted {len(self.fields)} fields"


@dataclass
class ExecutionErrorEvent(DomainEvent):
    workflow_id: str = ""
    task_id: Optional[str] = None
    error: str = ""
    recoverable: bool = True

    def summary(self) -> str:
        return f"Execution error: {self.error}"
