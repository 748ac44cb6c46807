"""
Infrastructure Events - event bus, event store and domain event handlers.

Provides:
- WorkflowEventBus: Domain event dispatch with legacy string-event mirroring
- LegacyEventEmitter: `workflow:started`-style observer channel
- InMemoryEventStore: Thread-safe in-process event store
- MetricsEventHandler: Running totals + Prometheus metrics
- LoggingEventHandler: Bounded structured event log
- TaskFailureHandler: Per-task failure accounting and retry decisions
- WorkflowStuckHandler: Periodic health monitoring with escalation ladder
"""

from .event_bus import (
    LEGACY_EVENT_NAMES,
    LegacyEventEmitter,
    WorkflowEventBus,
    legacy_names_for,
    get_event_bus,
    set_event_bus,
    reset_event_bus,
)
from .event_store import InMemoryEventStore, summarize_stored
from .metrics_handler import MetricsEventHandler
from .logging_handler import EventLogEntry, LogLevel, LoggingEventHandler, level_for
from .task_failure_handler import TaskFailureHandler, TaskFailureRecord
from .stuck_handler import (
    RecoveryAction,
    StuckRecommendation,
    WorkflowHealth,
    WorkflowStuckHandler,
    recovery_action_for,
)

__all__ = [
    # Event Bus
    "LEGACY_EVENT_NAMES",
    "LegacyEventEmitter",
    "WorkflowEventBus",
    "legacy_names_for",
    "get_event_bus",
    "set_event_bus",
    "reset_event_bus",
    # Event Store
    "InMemoryEventStore",
    "summarize_stored",
    # Handlers
    "MetricsEventHandler",
    "EventLogEntry",
    "LogLevel",
    "LoggingEventHandler",
    "level_for",
    "TaskFailureHandler",
    "TaskFailureRecord",
    "RecoveryAction",
    "StuckRecommendation",
    "WorkflowHealth",
    "WorkflowStuckHandler",
    "recovery_action_for",
]
