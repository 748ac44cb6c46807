"""
Task Failure Handler - per-task failure accounting and retry decisions.

Tracks every failed attempt, decides by policy whether another retry is
warranted, and when it would be due (exponential backoff, optional
jitter). Terminal failures and exhausted budgets are escalated via the
logger. The handler only records decisions; the orchestrator performs
retries.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging
import random

from browseflow.domain.events import (
    DomainEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskTimedOutEvent,
)
from browseflow.domain.interfaces.event_handler import IDomainEventHandler
from browseflow.domain.models import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class TaskFailureRecord:
    """Failure metrics for one task."""
    task_id: str
    workflow_id: str = ""
    description: str = ""
    failure_count: int = 0
    timeout_count: int = 0
    first_failure_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_reason: str = ""
    next_retry_at: Optional[datetime] = None
    escalated: bool = False
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "workflow_id": self.workflow_id,
            "description": self.description,
            "failure_count": self.failure_count,
            "timeout_count": self.timeout_count,
            "first_failure_at": self.first_failure_at.isoformat() if self.first_failure_at else None,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "last_reason": self.last_reason,
            "next_retry_at": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "escalated": self.escalated,
        }


class TaskFailureHandler(IDomainEventHandler):
    """
    Usage:
        handler = TaskFailureHandler(RetryPolicy.exponential(3, 1000, 10000), jitter=True)
        bus.register_handler(handler)
        handler.should_retry(task_id)
    """

    event_types = (TaskRetriedEvent, TaskFailedEvent, TaskTimedOutEvent, TaskCompletedEvent)

    def __init__(self, policy: Optional[RetryPolicy] = None, jitter: bool = False,
                 jitter_ratio: float = 0.1):
        self._policy = policy or RetryPolicy.exponential()
        self._jitter = jitter
        self._jitter_ratio = jitter_ratio
        self._records: Dict[str, TaskFailureRecord] = {}
        self._recovered: int = 0

    def handle(self, event: DomainEvent) -> None:
        if isinstance(event, TaskCompletedEvent):
            if event.aggregate_id in self._records:
                self._recovered += 1
                self._records[event.aggregate_id].next_retry_at = None
            return

        record = self._records.get(event.aggregate_id)
        if record is None:
            record = TaskFailureRecord(
                task_id=event.aggregate_id,
                workflow_id=event.workflow_id,
                description=event.description,
            )
            self._records[event.aggregate_id] = record

        if isinstance(event, TaskTimedOutEvent):
            record.timeout_count += 1
            return

        now = event.occurred_at
        record.failure_count += 1
        record.first_failure_at = record.first_failure_at or now
        record.last_failure_at = now
        record.last_reason = event.reason
        record.reasons.append(event.reason)

        if isinstance(event, TaskRetriedEvent) and self.should_retry(event.aggregate_id):
            delay_ms = self.get_retry_delay_ms(record.failure_count)
            record.next_retry_at = now + timedelta(milliseconds=delay_ms)
            logger.info(
                f"Task {event.aggregate_id} failed ({record.failure_count}x), "
                f"retry scheduled in {delay_ms:.0f}ms: {event.reason}"
            )
            return

        record.next_retry_at = None
        self._escalate(record)

    # ═══════════════════════════════════════════════════════════════
    # Decisions
    # ═══════════════════════════════════════════════════════════════

    def should_retry(self, task_id: str) -> bool:
        record = self._records.get(task_id)
        if record is None:
            return True
        return not record.escalated and self._policy.can_retry(record.failure_count - 1)

    def get_retry_delay_ms(self, attempt: int) -> float:
        delay = float(self._policy.get_delay_for_attempt(attempt).milliseconds)
        if self._jitter and delay > 0:
            delay += random.uniform(0, delay * self._jitter_ratio)
        return delay

    def _escalate(self, record: TaskFailureRecord) -> None:
        if record.escalated:
            return
        record.escalated = True
        logger.error(
            f"Escalating task {record.task_id} ({record.description!r}) after "
            f"{record.failure_count} failures: {record.last_reason}"
        )

    # ═══════════════════════════════════════════════════════════════
    # Queries / maintenance
    # ═══════════════════════════════════════════════════════════════

    def get_task_failures(self, task_id: str) -> Optional[TaskFailureRecord]:
        return self._records.get(task_id)

    def get_all_failures(self) -> List[TaskFailureRecord]:
        return list(self._records.values())

    def clear_task_failures(self, task_id: Optional[str] = None) -> None:
        if task_id is None:
            self._records.clear()
        else:
            self._records.pop(task_id, None)

    def cancel_all_retries(self) -> int:
        cancelled = 0
        for record in self._records.values():
            if record.next_retry_at is not None:
                record.next_retry_at = None
                cancelled += 1
        return cancelled

    def get_retry_statistics(self) -> Dict[str, Any]:
        records = list(self._records.values())
        total_failures = sum(r.failure_count for r in records)
        return {
            "tasks_with_failures": len(records),
            "total_failures": total_failures,
            "total_timeouts": sum(r.timeout_count for r in records),
            "pending_retries": sum(1 for r in records if r.next_retry_at is not None),
            "escalated_tasks": sum(1 for r in records if r.escalated),
            "recovered_tasks": self._recovered,
            "average_failures_per_task": total_failures / len(records) if records else 0.0,
        }
