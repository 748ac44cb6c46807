"""
Workflow Stuck Handler - health monitoring for in-flight workflows.

Tracks activity per workflow from domain events and runs a periodic
health check. A workflow is stuck when any one of these holds:

- no activity for longer than `max_inactivity_ms`
- its current task has run for longer than `max_task_duration_ms`
- its failure rate exceeds `max_failure_rate` after `min_tasks_for_analysis` attempts

Each detection recommends the next rung of the escalation ladder keyed by
the workflow's recovery attempts:

    0 → replan, 1 → alternative approach, 2 → human intervention, ≥3 → abort

The handler only recommends and logs. Acting on a recommendation is the
orchestrator's job, wired through `on_recommendation`.

Usage:
    handler = WorkflowStuckHandler(StuckDetectionConfig(), on_recommendation=manager.on_stuck)
    bus.register_handler(handler)
    await handler.start()
    ...
    await handler.stop()

Runs sharing one handler call acquire() / release() instead, so the
check keeps running until the last in-flight run releases it.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Any, Callable, Deque, Dict, List, Optional
import asyncio
import logging

from browseflow.config import StuckDetectionConfig
from browseflow.domain.events import (
    DomainEvent,
    StepCompletedEvent,
    StepStartedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskStartedEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
    WorkflowStartedEvent,
)
from browseflow.domain.interfaces.event_handler import IDomainEventHandler

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS_KEPT = 1000


class RecoveryAction(Enum):
    REPLAN = "replan"
    ALTERNATIVE_APPROACH = "alternative_approach"
    HUMAN_INTERVENTION = "human_intervention"
    ABORT = "abort"


_LADDER = [
    RecoveryAction.REPLAN,
    RecoveryAction.ALTERNATIVE_APPROACH,
    RecoveryAction.HUMAN_INTERVENTION,
]


def recovery_action_for(attempts: int) -> RecoveryAction:
    return _LADDER[attempts] if attempts < len(_LADDER) else RecoveryAction.ABORT


@dataclass
class WorkflowHealth:
    """Activity tracked for one workflow."""
    workflow_id: str
    started_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    current_task_id: Optional[str] = None
    current_task_started_at: Optional[datetime] = None
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    is_stuck: bool = False
    stuck_reason: Optional[str] = None
    recovery_attempts: int = 0

    @property
    def failure_rate(self) -> float:
        return self.failed_tasks / self.total_tasks if self.total_tasks else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "current_task_id": self.current_task_id,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "failure_rate": self.failure_rate,
            "is_stuck": self.is_stuck,
            "stuck_reason": self.stuck_reason,
            "recovery_attempts": self.recovery_attempts,
        }


@dataclass(frozen=True)
class StuckRecommendation:
    workflow_id: str
    action: RecoveryAction
    reason: str
    attempt: int
    created_at: datetime = field(default_factory=datetime.now)


RecommendationCallback = Callable[[StuckRecommendation], None]


class WorkflowStuckHandler(IDomainEventHandler):

    event_types = (
        WorkflowStartedEvent, WorkflowCompletedEvent, WorkflowFailedEvent,
        StepStartedEvent, StepCompletedEvent,
        TaskStartedEvent, TaskCompletedEvent, TaskFailedEvent, TaskRetriedEvent,
    )

    def __init__(
        self,
        policy: Optional[StuckDetectionConfig] = None,
        on_recommendation: Optional[RecommendationCallback] = None,
    ):
        self._policy = policy or StuckDetectionConfig()
        self._callbacks: List[RecommendationCallback] = []
        if on_recommendation is not None:
            self._callbacks.append(on_recommendation)
        self._health: Dict[str, WorkflowHealth] = {}
        self._lock = Lock()
        self._task: Optional[asyncio.Task] = None
        self._recommendations: Deque[StuckRecommendation] = deque(maxlen=MAX_RECOMMENDATIONS_KEPT)
        self._recommendations_issued = 0
        self._leases = 0
        self._owns_loop = False

    @property
    def policy(self) -> StuckDetectionConfig:
        return self._policy

    def add_recommendation_listener(self, callback: RecommendationCallback) -> None:
        self._callbacks.append(callback)

    def remove_recommendation_listener(self, callback: RecommendationCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ═══════════════════════════════════════════════════════════════
    # Event Handling
    # ═══════════════════════════════════════════════════════════════

    def handle(self, event: DomainEvent) -> None:
        if isinstance(event, WorkflowStartedEvent):
            self.register_workflow(event.aggregate_id, event.occurred_at)
            return
        if isinstance(event, (WorkflowCompletedEvent, WorkflowFailedEvent)):
            self.stop_monitoring(event.aggregate_id)
            return

        with self._lock:
            health = self._health.get(event.workflow_id)
            if health is None:
                return
            now = event.occurred_at
            health.last_activity_at = now
            if health.is_stuck:
                logger.info(f"Workflow {health.workflow_id} shows activity again, clearing stuck flag")
                health.is_stuck = False
                health.stuck_reason = None

            if isinstance(event, TaskStartedEvent):
                health.current_task_id = event.aggregate_id
                health.current_task_started_at = now
            elif isinstance(event, (TaskCompletedEvent, TaskFailedEvent, TaskRetriedEvent)):
                health.total_tasks += 1
                if isinstance(event, TaskCompletedEvent):
                    health.completed_tasks += 1
                else:
                    health.failed_tasks += 1
                if health.current_task_id == event.aggregate_id:
                    health.current_task_id = None
                    health.current_task_started_at = None

    def register_workflow(self, workflow_id: str, started_at: Optional[datetime] = None) -> None:
        started_at = started_at or datetime.now()
        with self._lock:
            self._health[workflow_id] = WorkflowHealth(
                workflow_id=workflow_id, started_at=started_at, last_activity_at=started_at,
            )

    def stop_monitoring(self, workflow_id: str) -> bool:
        with self._lock:
            return self._health.pop(workflow_id, None) is not None

    # ═══════════════════════════════════════════════════════════════
    # Health Check
    # ═══════════════════════════════════════════════════════════════

    def detect_stuck_reason(self, health: WorkflowHealth, now: datetime) -> Optional[str]:
        policy = self._policy
        idle = now - health.last_activity_at
        if idle > timedelta(milliseconds=policy.max_inactivity_ms):
            return f"No activity for {idle.total_seconds():.0f}s"
        if health.current_task_started_at is not None:
            running = now - health.current_task_started_at
            if running > timedelta(milliseconds=policy.max_task_duration_ms):
                return f"Task {health.current_task_id} running for {running.total_seconds():.0f}s"
        if health.total_tasks >= policy.min_tasks_for_analysis and health.failure_rate > policy.max_failure_rate:
            return f"Failure rate {health.failure_rate:.0%} over {health.total_tasks} tasks"
        return None

    def perform_health_check(self, now: Optional[datetime] = None) -> List[StuckRecommendation]:
        """Check every monitored workflow once; returns the recommendations issued."""
        now = now or datetime.now()
        issued: List[StuckRecommendation] = []
        with self._lock:
            for health in self._health.values():
                reason = self.detect_stuck_reason(health, now)
                if reason is None:
                    continue
                action = recovery_action_for(health.recovery_attempts)
                health.is_stuck = True
                health.stuck_reason = reason
                health.recovery_attempts += 1
                issued.append(StuckRecommendation(
                    workflow_id=health.workflow_id,
                    action=action,
                    reason=reason,
                    attempt=health.recovery_attempts,
                    created_at=now,
                ))

        for recommendation in issued:
            logger.warning(
                f"Workflow {recommendation.workflow_id} appears stuck ({recommendation.reason}); "
                f"recommending {recommendation.action.value} (attempt {recommendation.attempt})"
            )
            self._recommendations.append(recommendation)
            self._recommendations_issued += 1
            for callback in list(self._callbacks):
                try:
                    callback(recommendation)
                except Exception as e:
                    logger.error(f"Stuck recommendation callback failed: {e}")
        return issued

    async def start(self) -> None:
        """Start the periodic health check on the running loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def acquire(self) -> None:
        """
        Take a lease on the periodic check for one run.

        The check starts with the first lease unless it is already running
        and is stopped when the last lease is released. A check started
        with start() is left alone.
        """
        self._leases += 1
        if self._leases == 1 and not self.is_running:
            await self.start()
            self._owns_loop = True

    async def release(self) -> None:
        if self._leases == 0:
            return
        self._leases -= 1
        if self._leases == 0 and self._owns_loop:
            self._owns_loop = False
            await self.stop()

    @property
    def active_leases(self) -> int:
        return self._leases

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        interval = self._policy.check_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            self.perform_health_check()

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    def get_workflow_health(self, workflow_id: str) -> Optional[WorkflowHealth]:
        with self._lock:
            health = self._health.get(workflow_id)
            return replace(health) if health else None

    def get_all_workflow_health(self) -> List[WorkflowHealth]:
        with self._lock:
            return [replace(h) for h in self._health.values()]

    def get_recommendations(self, workflow_id: Optional[str] = None) -> List[StuckRecommendation]:
        return [r for r in self._recommendations if workflow_id is None or r.workflow_id == workflow_id]

    def update_policy(self, **changes: Any) -> None:
        self._policy = replace(self._policy, **changes)
        logger.info(f"Stuck detection policy updated: {sorted(changes)}")

    def get_health_statistics(self) -> Dict[str, Any]:
        with self._lock:
            monitored = list(self._health.values())
        return {
            "monitored_workflows": len(monitored),
            "stuck_workflows": sum(1 for h in monitored if h.is_stuck),
            "total_recovery_attempts": sum(h.recovery_attempts for h in monitored),
            "recommendations_issued": self._recommendations_issued,
            "average_failure_rate": (
                sum(h.failure_rate for h in monitored) / len(monitored) if monitored else 0.0
            ),
            "is_running": self.is_running,
        }
