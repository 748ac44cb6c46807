"""
Workflow outcome types returned by WorkflowManager.execute().
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class WorkflowResultStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    DEGRADED = "degraded"
    FAILURE = "failure"


@dataclass
class StepExecutionResult:
    """Outcome of WorkflowAggregate.execute_next_step()."""
    step_id: str
    description: str
    success: bool
    tasks_executed: int = 0
    tasks_failed: int = 0
    blocked_task_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    stopped: bool = False


@dataclass
class WorkflowResult:
    """
    Everything a caller needs to judge a run.

    Non-fatal failures surface here, never as exceptions: inspect
    `status`, `errors` and `completion_percentage`.
    """
    workflow_id: str
    goal: str
    status: WorkflowResultStatus
    completion_percentage: float = 0.0
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)
    failed_steps: List[str] = field(default_factory=list)
    summary: Optional[str] = None
    structured_summary: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: float = 0.0
    replan_count: int = 0
    early_exit: bool = False
    confidence_score: Optional[float] = None

    @property
    def is_success(self) -> bool:
        return self.status == WorkflowResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "goal": self.goal,
            "status": self.status.value,
            "completion_percentage": self.completion_percentage,
            "extracted_data": self.extracted_data,
            "errors": list(self.errors),
            "completed_steps": list(self.completed_steps),
            "failed_steps": list(self.failed_steps),
            "summary": self.summary,
            "structured_summary": self.structured_summary,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "replan_count": self.replan_count,
            "early_exit": self.early_exit,
            "confidence_score": self.confidence_score,
        }
