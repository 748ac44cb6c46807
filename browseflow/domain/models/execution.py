"""
Execution records - where execution stands, and what each attempt produced.

ExecutionContext is mutable and updated after every task attempt.
ExecutionResult is an immutable record of one attempt.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from browseflow.domain.exceptions import InvalidStateTransition
from .page_state import PageState
from .task import TaskResult
from .value_objects import Evidence, Viewport


@dataclass
class ExecutionContext:
    """Current URL, page state, viewport, storage and counters for a session."""
    session_id: str
    workflow_id: str
    current_url: str = ""
    page_state: Optional[PageState] = None
    viewport: Viewport = field(default_factory=Viewport)
    cookies: Dict[str, Any] = field(default_factory=dict)
    local_storage: Dict[str, Any] = field(default_factory=dict)
    session_storage: Dict[str, Any] = field(default_factory=dict)

    current_task_id: Optional[str] = None
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_activity_at: datetime = field(default_factory=datetime.now)

    def start_task_execution(self, task_id: str) -> None:
        """Only one task may be in flight per session."""
        if self.current_task_id is not None and self.current_task_id != task_id:
            raise InvalidStateTransition(
                f"Task {self.current_task_id} is already executing",
                current_status=self.current_task_id,
                attempted_action="start_task_execution",
            )
        self.current_task_id = task_id
        self.last_activity_at = datetime.now()

    def complete_task_execution(self, success: bool) -> None:
        self.total_executions += 1
        if success:
            self.successful_executions += 1
        else:
            self.failed_executions += 1
        self.current_task_id = None
        self.last_activity_at = datetime.now()

    def update_current_url(self, url: str) -> str:
        """Set the URL and return the previous one."""
        previous = self.current_url
        self.current_url = url
        return previous

    def update_page_state(self, page_state: PageState) -> None:
        self.page_state = page_state
        if page_state.url:
            self.current_url = page_state.url

    def update_viewport(self, viewport: Viewport) -> None:
        self.viewport = viewport

    def update_storage(
        self,
        cookies: Optional[Dict[str, Any]] = None,
        local_storage: Optional[Dict[str, Any]] = None,
        session_storage: Optional[Dict[str, Any]] = None,
    ) -> None:
        if cookies is not None:
            self.cookies = dict(cookies)
        if local_storage is not None:
            self.local_storage = dict(local_storage)
        if session_storage is not None:
            self.session_storage = dict(session_storage)

    @property
    def success_rate(self) -> float:
        if self.total_executions == 0:
            return 0.0
        return self.successful_executions / self.total_executions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "workflow_id": self.workflow_id,
            "current_url": self.current_url,
            "viewport": self.viewport.to_dict(),
            "current_task_id": self.current_task_id,
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Immutable record of one task attempt."""
    task_id: str
    result: TaskResult
    executed_at: datetime = field(default_factory=datetime.now)
    evidence: Optional[Evidence] = None
    retry_attempt: int = 0
    context: str = ""

    def is_success(self) -> bool:
        return self.result.success

    def is_retry(self) -> bool:
        return self.retry_attempt > 0

    def has_evidence(self) -> bool:
        return self.evidence is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "result": self.result.to_dict(),
            "executed_at": self.executed_at.isoformat(),
            "evidence": self.evidence.to_dict() if self.evidence else None,
            "retry_attempt": self.retry_attempt,
            "context": self.context,
        }
