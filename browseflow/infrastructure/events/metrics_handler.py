"""
Metrics Event Handler for Prometheus Integration.

Keeps running totals of workflow, step and task outcomes and mirrors them
into Prometheus counters, histograms and gauges.

Usage:
    from browseflow.infrastructure.events import MetricsEventHandler, WorkflowEventBus

    bus = WorkflowEventBus()
    metrics = MetricsEventHandler()
    bus.register_handler(metrics)

    metrics.get_metrics()["success_rate"]
"""

from typing import Any, Dict
import logging

from prometheus_client import Counter, Gauge, Histogram

from browseflow.domain.events import (
    DomainEvent,
    ExecutionErrorEvent,
    StepCompletedEvent,
    StepFailedEvent,
    StepStartedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskStartedEvent,
    TaskTimedOutEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
    WorkflowStartedEvent,
)
from browseflow.domain.interfaces.event_handler import IDomainEventHandler

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# Prometheus Metrics Definitions
# ═══════════════════════════════════════════════════════════════════════════════

WORKFLOWS_TOTAL = Counter(
    "browseflow_workflows_total",
    "Workflow lifecycle transitions",
    ["status"]
)

WORKFLOW_DURATION_SECONDS = Histogram(
    "browseflow_workflow_duration_seconds",
    "Workflow duration in seconds",
    buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0]
)

ACTIVE_WORKFLOWS = Gauge(
    "browseflow_active_workflows",
    "Currently running workflows"
)

STEPS_TOTAL = Counter(
    "browseflow_steps_total",
    "Step lifecycle transitions",
    ["status"]
)

TASKS_TOTAL = Counter(
    "browseflow_tasks_total",
    "Task lifecycle transitions",
    ["status"]
)

TASK_DURATION_SECONDS = Histogram(
    "browseflow_task_duration_seconds",
    "Task attempt duration in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0]
)

EXECUTION_ERRORS_TOTAL = Counter(
    "browseflow_execution_errors_total",
    "Execution errors by recoverability",
    ["recoverable"]
)


class MetricsEventHandler(IDomainEventHandler):
    """
    Running workflow/step/task totals.

    Attributes:
        _enabled: Mirror updates into Prometheus
        _counters: Running totals keyed by metric name
    """

    event_types = (
        WorkflowStartedEvent, WorkflowCompletedEvent, WorkflowFailedEvent,
        StepStartedEvent, StepCompletedEvent, StepFailedEvent,
        TaskStartedEvent, TaskCompletedEvent, TaskFailedEvent,
        TaskRetriedEvent, TaskTimedOutEvent, ExecutionErrorEvent,
    )

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self._counters: Dict[str, int] = {}
        # running (total_ms, count) per duration kind
        self._durations: Dict[str, list] = {}
        self.reset()

    def reset(self) -> None:
        self._counters = {
            "workflows_started": 0,
            "workflows_completed": 0,
            "workflows_failed": 0,
            "steps_started": 0,
            "steps_completed": 0,
            "steps_failed": 0,
            "tasks_started": 0,
            "tasks_completed": 0,
            "tasks_failed": 0,
            "tasks_retried": 0,
            "tasks_timed_out": 0,
            "execution_errors": 0,
        }
        self._durations = {"workflow": [0.0, 0], "task": [0.0, 0]}

    # ═══════════════════════════════════════════════════════════════════════════
    # Event Handling
    # ═══════════════════════════════════════════════════════════════════════════

    def handle(self, event: DomainEvent) -> None:
        if isinstance(event, WorkflowStartedEvent):
            self._bump("workflows_started")
            if self._enabled:
                WORKFLOWS_TOTAL.labels(status="started").inc()
                ACTIVE_WORKFLOWS.inc()
        elif isinstance(event, (WorkflowCompletedEvent, WorkflowFailedEvent)):
            status = "completed" if isinstance(event, WorkflowCompletedEvent) else "failed"
            self._bump(f"workflows_{status}")
            self._add_duration("workflow", event.duration_ms)
            if self._enabled:
                WORKFLOWS_TOTAL.labels(status=status).inc()
                WORKFLOW_DURATION_SECONDS.observe(event.duration_ms / 1000.0)
                ACTIVE_WORKFLOWS.dec()
        elif isinstance(event, StepStartedEvent):
            self._count_step("started")
        elif isinstance(event, StepCompletedEvent):
            self._count_step("completed")
        elif isinstance(event, StepFailedEvent):
            self._count_step("failed")
        elif isinstance(event, TaskStartedEvent):
            self._count_task("started")
        elif isinstance(event, TaskCompletedEvent):
            self._count_task("completed")
            self._observe_task(event.duration_ms)
        elif isinstance(event, TaskFailedEvent):
            self._count_task("failed")
            self._observe_task(event.duration_ms)
        elif isinstance(event, TaskRetriedEvent):
            self._count_task("retried")
        elif isinstance(event, TaskTimedOutEvent):
            self._count_task("timed_out")
        elif isinstance(event, ExecutionErrorEvent):
            self._bump("execution_errors")
            if self._enabled:
                EXECUTION_ERRORS_TOTAL.labels(recoverable=str(event.recoverable).lower()).inc()

    def _bump(self, name: str) -> None:
        self._counters[name] += 1

    def _add_duration(self, kind: str, duration_ms: float) -> None:
        totals = self._durations[kind]
        totals[0] += duration_ms
        totals[1] += 1

    def _count_step(self, status: str) -> None:
        self._bump(f"steps_{status}")
        if self._enabled:
            STEPS_TOTAL.labels(status=status).inc()

    def _count_task(self, status: str) -> None:
        self._bump(f"tasks_{status}")
        if self._enabled:
            TASKS_TOTAL.labels(status=status).inc()

    def _observe_task(self, duration_ms: float) -> None:
        self._add_duration("task", duration_ms)
        if self._enabled:
            TASK_DURATION_SECONDS.observe(duration_ms / 1000.0)

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def get_metrics(self) -> Dict[str, Any]:
        """Totals, average durations (ms), success and retry rates (%)."""
        c = self._counters
        finished_tasks = c["tasks_completed"] + c["tasks_failed"]
        return {
            **c,
            "average_workflow_duration_ms": self._average("workflow"),
            "average_task_duration_ms": self._average("task"),
            "success_rate": (c["tasks_completed"] / finished_tasks * 100) if finished_tasks else 0.0,
            "retry_rate": (c["tasks_retried"] / c["tasks_started"] * 100) if c["tasks_started"] else 0.0,
        }

    def _average(self, kind: str) -> float:
        total, count = self._durations[kind]
        return total / count if count else 0.0
