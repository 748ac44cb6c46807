"""
Session entity - one browser session tied to a workflow.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from browseflow.domain.events import DomainEvent, SessionStartedEvent, SessionEndedEvent
from browseflow.domain.exceptions import InvalidStateTransition
from .entity import EventRecordingMixin
from .value_objects import Timeout, Viewport


class SessionStatus(Enum):
    ACTIVE = "active"
    ENDED = "ended"
    ERROR = "error"


@dataclass
class Session(EventRecordingMixin):
    """Browser configuration and lifetime for one workflow execution."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str = ""
    headless: bool = True
    viewport: Viewport = field(default_factory=Viewport)
    timeout: Timeout = field(default_factory=Timeout.page_load)
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    _domain_events: List[DomainEvent] = field(default_factory=list, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        workflow_id: str,
        headless: bool = True,
        viewport: Optional[Viewport] = None,
        timeout: Optional[Timeout] = None,
    ) -> "Session":
        session = cls(
            workflow_id=workflow_id,
            headless=headless,
            viewport=viewport or Viewport(),
            timeout=timeout or Timeout.page_load(),
        )
        session._record(SessionStartedEvent(
            aggregate_id=session.id,
            workflow_id=workflow_id,
            headless=headless,
            viewport=str(session.viewport),
        ))
        return session

    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def record_error(self, error: str, recoverable: bool = True) -> None:
        self.errors.append({
            "error": error,
            "recoverable": recoverable,
            "timestamp": datetime.now().isoformat(),
        })
        if not recoverable and self.status == SessionStatus.ACTIVE:
            self.status = SessionStatus.ERROR

    def end(self, reason: str = "completed") -> None:
        if self.ended_at is not None:
            raise InvalidStateTransition(
                "Session already ended",
                current_status=self.status,
                attempted_action="end",
            )
        self.ended_at = datetime.now()
        if self.status == SessionStatus.ACTIVE:
            self.status = SessionStatus.ENDED
        self._record(SessionEndedEvent(
            aggregate_id=self.id,
            workflow_id=self.workflow_id,
            reason=reason,
            duration_ms=self.get_duration_ms(),
        ))

    def get_duration_ms(self) -> float:
        end = self.ended_at or datetime.now()
        return (end - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "headless": self.headless,
            "viewport": self.viewport.to_dict(),
            "timeout_ms": self.timeout.milliseconds,
            "status": self.status.value,
            "errors": list(self.errors),
        }
