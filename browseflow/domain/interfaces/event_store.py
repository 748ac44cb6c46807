"""
Event Store Interface.

Append-only storage of domain events for audit and replay.

Design Decisions:
- store/store_many never raise: telemetry faults must not break execution
- payload is event.to_dict(); the store never re-hydrates event classes
- ordering is by occurrence time, then by store id
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from browseflow.domain.events import DomainEvent


@dataclass
class StoredEvent:
    """A persisted domain event."""
    id: int
    aggregate_id: str
    event_type: str
    event_version: int
    occurred_at: datetime
    stored_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_event(cls, event: DomainEvent, store_id: int,
                   metadata: Optional[Dict[str, Any]] = None) -> "StoredEvent":
        return cls(
            id=store_id,
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            event_version=event.version,
            occurred_at=event.occurred_at,
            stored_at=datetime.now(),
            payload=event.to_dict(),
            metadata={**(metadata or {}), "summary": event.summary()},
        )

    @property
    def event_id(self) -> Optional[str]:
        return self.payload.get("event_id")

    def summary(self) -> str:
        return self.metadata.get("summary") or f"{self.event_type} on {self.aggregate_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "aggregate_id": self.aggregate_id,
            "event_type": self.event_type,
            "event_version": self.event_version,
            "occurred_at": self.occurred_at.isoformat(),
            "stored_at": self.stored_at.isoformat(),
            "payload": self.payload,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredEvent":
        return cls(
            id=int(data["id"]),
            aggregate_id=data["aggregate_id"],
            event_type=data["event_type"],
            event_version=int(data.get("event_version", 1)),
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            stored_at=datetime.fromisoformat(data["stored_at"]),
            payload=data.get("payload") or {},
            metadata=data.get("metadata") or {},
        )


@dataclass
class EventQuery:
    """Filter for get_events(). All criteria are ANDed."""
    aggregate_id: Optional[str] = None
    event_type: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: Optional[int] = None
    offset: int = 0

    def matches(self, stored: StoredEvent) -> bool:
        if self.aggregate_id is not None and stored.aggregate_id != self.aggregate_id:
            return False
        if self.event_type is not None and stored.event_type != self.event_type:
            return False
        if self.from_date is not None and stored.occurred_at < self.from_date:
            return False
        if self.to_date is not None and stored.occurred_at > self.to_date:
            return False
        return True


class IEventStore(ABC):
    """
    Append-only domain event store.

    Usage:
        store.store_many(events, metadata={"workflow_id": wf.id})
        timeline = store.get_event_timeline(wf.id)
    """

    @abstractmethod
    def store(self, event: DomainEvent, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Append one event. Errors are logged, never raised."""
        pass

    @abstractmethod
    def store_many(self, events: List[DomainEvent], metadata: Optional[Dict[str, Any]] = None) -> None:
        """Append a batch. Errors are logged, never raised."""
        pass

    @abstractmethod
    def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        pass

    @abstractmethod
    def get_events_for_aggregate(self, aggregate_id: str,
                                 from_version: Optional[int] = None) -> List[StoredEvent]:
        pass

    @abstractmethod
    def get_events_by_type(self, event_type: str, limit: Optional[int] = None) -> List[StoredEvent]:
        """Newest first."""
        pass

    @abstractmethod
    def get_events_by_date_range(self, start: datetime, end: datetime) -> List[StoredEvent]:
        pass

    @abstractmethod
    def get_latest_events(self, count: int = 10) -> List[StoredEvent]:
        """Newest first."""
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def export_events(self) -> str:
        """JSON list of stored events."""
        pass

    @abstractmethod
    def import_events(self, data: str) -> int:
        """Append events from export_events() output; returns the count."""
        pass

    def get_event_timeline(self, aggregate_id: str) -> List[Dict[str, Any]]:
        """Chronological [{timestamp, event_type, summary}] for one aggregate."""
        return [
            {
                "timestamp": stored.occurred_at,
                "event_type": stored.event_type,
                "summary": stored.summary(),
            }
            for stored in self.get_events_for_aggregate(aggregate_id)
        ]
