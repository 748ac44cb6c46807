"""
SQLAlchemy-backed event store.

Same contract as InMemoryEventStore, persisted through a unit-of-work
factory so it works against SQLite files, in-memory SQLite and server
databases alike.

Usage:
    store = SQLAlchemyEventStore(create_uow_factory("sqlite:///browseflow.db"))
    store.store_many(events, metadata={"workflow_id": wf.id})
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import json
import logging

from browseflow.domain.events import DomainEvent
from browseflow.domain.interfaces.event_store import EventQuery, IEventStore, StoredEvent
from browseflow.domain.interfaces.unit_of_work import IUnitOfWork

logger = logging.getLogger(__name__)


class SQLAlchemyEventStore(IEventStore):

    def __init__(self, uow_factory: Callable[[], IUnitOfWork]):
        self._uow_factory = uow_factory

    # ═══════════════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════════════

    def store(self, event: DomainEvent, metadata: Optional[Dict[str, Any]] = None) -> None:
        self.store_many([event], metadata)

    def store_many(self, events: List[DomainEvent], metadata: Optional[Dict[str, Any]] = None) -> None:
        if not events:
            return
        try:
            with self._uow_factory() as uow:
                for event in events:
                    uow.events.append(StoredEvent.from_event(event, 0, metadata))
                uow.commit()
            logger.debug(f"Stored {len(events)} events")
        except Exception as e:
            logger.error(f"Failed to store {len(events)} events: {e}")

    def clear(self) -> None:
        with self._uow_factory() as uow:
            uow.events.delete_all()
            uow.commit()

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    def get_events(self, query: Optional[EventQuery] = None) -> List[StoredEvent]:
        with self._uow_factory() as uow:
            return uow.events.query(query or EventQuery())

    def get_events_for_aggregate(self, aggregate_id: str,
                                 from_version: Optional[int] = None) -> List[StoredEvent]:
        events = self.get_events(EventQuery(aggregate_id=aggregate_id))
        if from_version is not None:
            events = [e for e in events if e.event_version >= from_version]
        return events

    def get_events_by_type(self, event_type: str, limit: Optional[int] = None) -> List[StoredEvent]:
        if limit is None:
            return list(reversed(self.get_events(EventQuery(event_type=event_type))))
        with self._uow_factory() as uow:
            return uow.events.latest(limit, event_type=event_type)

    def get_events_by_date_range(self, start: datetime, end: datetime) -> List[StoredEvent]:
        return self.get_events(EventQuery(from_date=start, to_date=end))

    def get_latest_events(self, count: int = 10) -> List[StoredEvent]:
        with self._uow_factory() as uow:
            return uow.events.latest(count)

    def get_stats(self) -> Dict[str, Any]:
        with self._uow_factory() as uow:
            total = uow.events.count()
            newest = uow.events.latest(1)
            oldest = uow.events.query(EventQuery(limit=1))
            return {
                "total_events": total,
                "unique_aggregates": uow.events.aggregate_count(),
                "event_type_distribution": uow.events.type_distribution(),
                "oldest_event": oldest[0].occurred_at if oldest else None,
                "newest_event": newest[0].occurred_at if newest else None,
            }

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
        with self._uow_factory() as uow:
            for record in records:
                uow.events.append(StoredEvent.from_dict(record))
            uow.commit()
        return len(records)

    def __len__(self) -> int:
        with self._uow_factory() as uow:
            return uow.events.count()
