"""
Workflow Event Bus - thread-safe bus for browseflow domain events.

Bridges strongly-typed DomainEvents to (a) registered domain-event
handlers and (b) a flat name/payload bus for external listeners (UI, CLI).
One domain event may fan out to several legacy names.

Design Decisions:
- Thread-safe via RLock; handlers are called outside the lock
- A failing handler is logged and never stops delivery to the others
- Subscriptions match on the event class and its base classes
- Bounded history to prevent memory leaks

Usage:
    bus = WorkflowEventBus()
    bus.register_handler(MetricsEventHandler())
    bus.legacy.on("task:failed", lambda payload: print(payload["reason"]))
    bus.publish(TaskFailedEvent(aggregate_id="task-1", reason="timeout"))
"""

from collections import deque
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Type
import logging

from browseflow.domain.events import (
    DomainEvent,
    WorkflowStartedEvent,
    WorkflowCompletedEvent,
    WorkflowFailedEvent,
    PlanCreatedEvent,
    StepStartedEvent,
    StepCompletedEvent,
    StepFailedEvent,
    TaskStartedEvent,
    TaskCompletedEvent,
    TaskFailedEvent,
    TaskRetriedEvent,
    TaskTimedOutEvent,
    ExecutionErrorEvent,
)
from browseflow.domain.interfaces.event_handler import IDomainEventHandler

logger = logging.getLogger(__name__)

LegacyListener = Callable[[Dict[str, Any]], None]


# ═══════════════════════════════════════════════════════════════════════════════
# Legacy name/payload emitter
# ═══════════════════════════════════════════════════════════════════════════════


class LegacyEventEmitter:
    """
    Flat `name -> payload` emitter.

    Used directly by TaskQueue and StateManager, and fed by
    WorkflowEventBus for translated domain events.
    """

    def __init__(self):
        self._lock = RLock()
        self._listeners: Dict[str, List[LegacyListener]] = {}

    def on(self, name: str, listener: LegacyListener) -> None:
        with self._lock:
            listeners = self._listeners.setdefault(name, [])
            if listener not in listeners:
                listeners.append(listener)

    def off(self, name: str, listener: LegacyListener) -> None:
        with self._lock:
            if listener in self._listeners.get(name, []):
                self._listeners[name].remove(listener)

    def emit(self, name: str, payload: Optional[Dict[str, Any]] = None) -> int:
        """
        Deliver `payload` to every listener of `name`.

        Returns:
            Number of listeners that received the payload without error
        """
        with self._lock:
            listeners = self._listeners.get(name, [])[:]

        delivered = 0
        for listener in listeners:
            try:
                listener(payload or {})
                delivered += 1
            except Exception as e:
                logger.error(f"Error in listener for '{name}': {e}")
        return delivered

    def listener_count(self, name: Optional[str] = None) -> int:
        with self._lock:
            if name is not None:
                return len(self._listeners.get(name, []))
            return sum(len(v) for v in self._listeners.values())

    def remove_all_listeners(self, name: Optional[str] = None) -> None:
        with self._lock:
            if name is None:
                self._listeners.clear()
            else:
                self._listeners.pop(name, None)


# Domain event class -> legacy event names
LEGACY_EVENT_NAMES: Dict[Type[DomainEvent], List[str]] = {
    WorkflowStartedEvent: ["workflow:started"],
    WorkflowCompletedEvent: ["workflow:completed"],
    WorkflowFailedEvent: ["workflow:error", "workflow:failed"],
    StepStartedEvent: ["step:started"],
    StepCompletedEvent: ["step:completed"],
    StepFailedEvent: ["step:failed"],
    TaskStartedEvent: ["task:started"],
    TaskCompletedEvent: ["task:completed"],
    TaskFailedEvent: ["task:failed"],
    TaskRetriedEvent: ["task:retrying"],
    TaskTimedOutEvent: ["task:timeout", "task:failed"],
    PlanCreatedEvent: ["plan:created"],
    ExecutionErrorEvent: ["execution:error"],
}


def legacy_names_for(event: DomainEvent) -> List[str]:
    names = list(LEGACY_EVENT_NAMES.get(type(event), []))
    if isinstance(event, PlanCreatedEvent) and event.is_replan:
        names.append("replan:triggered")
    return names


# ═══════════════════════════════════════════════════════════════════════════════
# Domain event bus
# ═══════════════════════════════════════════════════════════════════════════════


class WorkflowEventBus:
    """
    Thread-safe domain event bus with bounded history and legacy fan-out.

    Thread Safety:
    - All public methods are thread-safe
    - Uses RLock to allow handlers to publish additional events
    """

    def __init__(self, max_history: int = 1000, legacy: Optional[LegacyEventEmitter] = None):
        self._lock = RLock()
        self._subscribers: Dict[Type, List[Callable[[DomainEvent], None]]] = {}
        self._handlers: List[IDomainEventHandler] = []
        self._event_history: deque = deque(maxlen=max_history)
        self._max_history = max_history
        self._legacy = legacy or LegacyEventEmitter()

    @property
    def legacy(self) -> LegacyEventEmitter:
        return self._legacy

    # ═══════════════════════════════════════════════════════════════
    # Core Pub/Sub Operations
    # ═══════════════════════════════════════════════════════════════

    def subscribe(self, event_type: Type[DomainEvent], handler: Callable[[DomainEvent], None]) -> None:
        """
        Subscribe to an event class (and its subclasses).
        """
        with self._lock:
            handlers = self._subscribers.setdefault(event_type, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Callable[[DomainEvent], None]) -> None:
        with self._lock:
            if event_type in self._subscribers:
                try:
                    self._subscribers[event_type].remove(handler)
                except ValueError:
                    pass  # Handler not in list

    def register_handler(self, handler: IDomainEventHandler) -> None:
        """Subscribe a handler to every class in its `event_types`."""
        with self._lock:
            if handler in self._handlers:
                return
            self._handlers.append(handler)
            for event_type in handler.event_types:
                self.subscribe(event_type, handler.handle)

    def unregister_handler(self, handler: IDomainEventHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                return
            self._handlers.remove(handler)
            for event_type in handler.event_types:
                self.unsubscribe(event_type, handler.handle)

    def get_handlers(self) -> List[IDomainEventHandler]:
        with self._lock:
            return list(self._handlers)

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event to subscribers, then to legacy listeners.

        Exceptions in handlers are logged but don't prevent other handlers.
        """
        with self._lock:
            self._event_history.append(event)
            handlers: List[Callable[[DomainEvent], None]] = []
            for event_class in type(event).__mro__:
                for handler in self._subscribers.get(event_class, []):
                    if handler not in handlers:
                        handlers.append(handler)

        # Call handlers outside lock to prevent deadlock
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.event_type}: {e}")

        names = legacy_names_for(event)
        if names:
            payload = event.to_dict()
            for name in names:
                self._legacy.emit(name, payload)

    def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def publish_domain_events(self, entity: Any) -> int:
        """
        Publish everything an entity has buffered.

        The entity's buffer is left intact; clearing it is the caller's call.
        """
        events = entity.get_domain_events()
        self.publish_all(events)
        return len(events)

    # ═══════════════════════════════════════════════════════════════
    # Legacy listener shortcuts
    # ═══════════════════════════════════════════════════════════════

    def on(self, name: str, listener: LegacyListener) -> None:
        self._legacy.on(name, listener)

    def off(self, name: str, listener: LegacyListener) -> None:
        self._legacy.off(name, listener)

    # ═══════════════════════════════════════════════════════════════
    # History and Query Operations
    # ═══════════════════════════════════════════════════════════════

    def get_event_history(self, event_type: Optional[Type[DomainEvent]] = None) -> List[DomainEvent]:
        """Event history (oldest first), optionally filtered by class."""
        with self._lock:
            events = list(self._event_history)
        if event_type is not None:
            events = [e for e in events if isinstance(e, event_type)]
        return events

    def get_history(
        self,
        event_type: Optional[Type[DomainEvent]] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[DomainEvent]:
        """Most recent first."""
        events = self.get_event_history(event_type)
        if since is not None:
            events = [e for e in events if e.timestamp >= since]
        return list(reversed(events[-limit:]))

    def clear_history(self) -> None:
        with self._lock:
            self._event_history.clear()

    def clear(self) -> None:
        """Drop subscribers, handlers, history and legacy listeners."""
        with self._lock:
            self._subscribers.clear()
            self._handlers.clear()
            self._event_history.clear()
        self._legacy.remove_all_listeners()

    def get_subscriber_count(self, event_type: Optional[Type[DomainEvent]] = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._subscribers.get(event_type, []))
            return sum(len(h) for h in self._subscribers.values())


# ═══════════════════════════════════════════════════════════════
# Global Instance Management
# ═══════════════════════════════════════════════════════════════

_global_event_bus: Optional[WorkflowEventBus] = None


def get_event_bus() -> WorkflowEventBus:
    """
    Get the process-wide event bus, creating it on first call.
    """
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = WorkflowEventBus()
    return _global_event_bus


def set_event_bus(bus: WorkflowEventBus) -> None:
    global _global_event_bus
    _global_event_bus = bus


def reset_event_bus() -> None:
    """Next call to get_event_bus() creates a new instance."""
    global _global_event_bus
    _global_event_bus = None
