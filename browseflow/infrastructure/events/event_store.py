"""
In-memory event store.

Thread-safe (RLock) append-only store backing audit and replay within a
process. Store ids are monotonic integers.

Usage:
    store = InMemoryEventStore()
    store.store_many(aggregate.get_domain_events(), metadata={"workflow_id": wf.id})
    store.get_events(EventQuery(aggregate_id=wf.id))
"""

from datetime import datetime
from threading import RLock
from typing import Any, Dict, List, Optional
import json
import logging

from browseflow.domain.events import DomainEvent
from browseflow.domain.interfaces.event_store import EventQuery, IEventStore, StoredEvent

logger = logging.getLogger(__name__)


def _sort_key(stored: StoredEvent):
    return (stored.occurred_at, stored.id)


def summarize_stored(events: List[StoredEvent]) -> Dict[str, Any]:
    """Stats shape shared by every event store."""
    distribution: Dict[str, int] = {}
    for stored in events:
        distribution[stored.event_type] = distribution.get(stored.event_type, 0) + 1
    ordered = sorted(events, key=_sort_key)
    return {
        "total_events": len(events),
        "unique_aggregates": len({e.aggregate_id for e in events}),
        "event_type_distribution": distribution,
        "oldest_event": ordered[0].occurred_at if ordered else None,
        "newest_event": ordered[-1].occurred_at if ordered else None,
    }


class InMemoryEventStore(IEventStore):

    def __init__(self):
        self._events: List[StoredEvent] = []
        self._next_id = 1
        self._lock = RLock()

    # ═══════════════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════════════

    def store(self, event: DomainEvent, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.store_many([event], metadata)

    def store_many(self, events: List[DomainEvent], metadata: Optional[Dict[str, Any]] = None) -> None:
        try:
            with self._lock:
                for event in events:
                    self._events.append(StoredEvent.from_event(event, self._next_id, metadata))
                    self._next_id += 1
            logger.debug(f"Stored {len(events)} events")
        except Exception as e:
            logger.error(f"Failed to store {len(events)} events: {e}")

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._next_id = 1

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        query = query or EventQuery()
        with self._lock:
            matched = sorted((e for e in self._events if query.matches(e)), key=_sort_key)
        end = query.offset + query.limit if query.limit is not None else None
        return matched[query.offset:end]

    def get_events_for_aggregate(self, aggregate_id: str,
                                 from_version: Optional[int] = None) -> List[StoredEvent]:
        events = self.get_events(EventQuery(aggregate_id=aggregate_id))
        if from_version is not None:
            events = [e for e in events if e.event_version >= from_version]
        return events

    def get_events_by_type(self, event_type: str, limit: Optional[int] = None) -> List[StoredEvent]:
        events = list(reversed(self.get_events(EventQuery(event_type=event_type))))
        return events[:limit] if limit is not None else events

    def get_events_by_date_range(self, start: datetime, end: datetime) -> List[StoredEvent]:
        return self.get_events(EventQuery(from_date=start, to_date=end))

    def get_latest_events(self, count: int = 10) -> List[StoredEvent]:
        return list(reversed(self.get_events()))[:count]

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return summarize_stored(list(self._events))

    # ═══════════════════════════════════════════════════════════════
    # Export / Import
    # ═══════════════════════════════════════════════════════════════

    def export_events(self) -> str:
        return json.dumps([e.to_dict() for e in self.get_events()], indent=2, default=str)

    def import_events(self, data: str) -> int:
        """
        Append exported events under fresh store ids.

        Raises:
            ValueError: If the document is not valid JSON
        """
        records = json.loads(data)
        with self._lock:
            for record in records:
                stored = StoredEvent.from_dict(record)
                stored.id = self._next_id
                self._next_id += 1
                self._events.append(stored)
        return len(records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
