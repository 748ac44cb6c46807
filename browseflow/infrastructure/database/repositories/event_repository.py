"""Append-only stored event repository."""

from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from browseflow.domain.interfaces.event_store import EventQuery, StoredEvent
from browseflow.domain.interfaces.repositories import IEventRepository
from ..models import StoredEventORM, json_deserializer, json_serializer


class EventRepository(IEventRepository):
    """SQLAlchemy implementation of the event repository. Store ids come from the autoincrement key."""

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def _to_domain(orm: StoredEventORM) -> StoredEvent:
        return StoredEvent(
            id=orm.id,
            aggregate_id=orm.aggregate_id,
            event_type=orm.event_type,
            event_version=orm.event_version or 1,
            occurred_at=orm.occurred_at,
            stored_at=orm.stored_at,
            payload=json_deserializer(orm.payload, {}),
            metadata=json_deserializer(orm.metadata_, {}),
        )

    def append(self, event: StoredEvent) -> StoredEvent:
        orm = StoredEventORM(
            aggregate_id=event.aggregate_id,
            event_type=event.event_type,
            event_version=event.event_version,
            occurred_at=event.occurred_at,
            stored_at=event.stored_at,
            payload=json_serializer(event.payload),
            metadata_=json_serializer(event.metadata),
        )
        self._session.add(orm)
        self._session.flush()
        event.id = orm.id
        return event

    def query(self, query: EventQuery) -> List[StoredEvent]:
        q = self._session.query(StoredEventORM)
        if query.aggregate_id is not None:
            q = q.filter(StoredEventORM.aggregate_id == query.aggregate_id)
        if query.event_type is not None:
            q = q.filter(StoredEventORM.event_type == query.event_type)
        if query.from_date is not None:
            q = q.filter(StoredEventORM.occurred_at >= query.from_date)
        if query.to_date is not None:
            q = q.filter(StoredEventORM.occurred_at <= query.to_date)
        q = q.order_by(StoredEventORM.occurred_at, StoredEventORM.id)
        if query.offset:
            q = q.offset(query.offset)
        if query.limit is not None:
            q = q.limit(query.limit)
        return [self._to_domain(orm) for orm in q.all()]

    def latest(self, count: int, event_type: Optional[str] = None) -> List[StoredEvent]:
        q = self._session.query(StoredEventORM)
        if event_type is not None:
            q = q.filter(StoredEventORM.event_type == event_type)
        q = q.order_by(StoredEventORM.occurred_at.desc(), StoredEventORM.id.desc()).limit(count)
        return [self._to_domain(orm) for orm in q.all()]

    def count(self) -> int:
        return self._session.query(func.count(StoredEventORM.id)).scalar() or 0

    def type_distribution(self) -> Dict[str, int]:
        rows = (
            self._session.query(StoredEventORM.event_type, func.count(StoredEventORM.id))
            .group_by(StoredEventORM.event_type)
            .all()
        )
        return {event_type: count for event_type, count in rows}

    def aggregate_count(self) -> int:
        return self._session.query(func.count(func.distinct(StoredEventORM.aggregate_id))).scalar() or 0

    def delete_all(self) -> int:
        deleted = self._session.query(StoredEventORM).delete(synchronize_session=False)
        self._session.flush()
        return deleted
