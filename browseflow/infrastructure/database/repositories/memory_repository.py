"""Learned pattern repository implementation."""

from datetime import datetime
from typing import List
from sqlalchemy import or_
from sqlalchemy.orm import Session

from browseflow.domain.interfaces.repositories import IMemoryRepository
from browseflow.domain.models import LearnedPattern
from ..models import LearnedPatternORM, json_deserializer, json_serializer
from .base import BaseRepository


class MemoryRepository(BaseRepository[LearnedPattern, LearnedPatternORM], IMemoryRepository):
    """
    SQLAlchemy implementation of memory repository.

    Tags are a JSON list in a TEXT column, so tag matching happens in
    Python over a LIKE-prefiltered candidate set.
    """

    def __init__(self, session: Session):
        super().__init__(session, LearnedPatternORM)

    def _to_domain(self, orm: LearnedPatternORM) -> LearnedPattern:
        return LearnedPattern(
            id=orm.id,
            context=orm.context,
            pattern=orm.pattern,
            success_rate=orm.success_rate or 0.0,
            usage_count=orm.usage_count or 0,
            created_at=orm.created_at,
            last_used_at=orm.last_used_at,
            tags=json_deserializer(orm.tags, []),
            metadata=json_deserializer(orm.metadata_, {}),
        )

    def _to_orm(self, domain: LearnedPattern) -> LearnedPatternORM:
        return LearnedPatternORM(
            id=domain.id,
            context=domain.context,
            pattern=domain.pattern,
            success_rate=domain.success_rate,
            usage_count=domain.usage_count,
            created_at=domain.created_at,
            last_used_at=domain.last_used_at,
            tags=json_serializer(list(domain.tags)),
            metadata_=json_serializer(domain.metadata),
        )

    def find_by_context(self, context: str) -> List[LearnedPattern]:
        orms = (
            self._session.query(LearnedPatternORM)
            .filter_by(context=context)
            .order_by(LearnedPatternORM.created_at.desc())
            .all()
        )
        return [self._to_domain(orm) for orm in orms]

    def find_by_tags(self, tags: List[str], limit: int = 50) -> List[LearnedPattern]:
        if not tags:
            return []
        candidates = self._session.query(LearnedPatternORM).filter(
            or_(*[LearnedPatternORM.tags.like(f"%{json_serializer(tag)}%") for tag in tags])
        ).order_by(LearnedPatternORM.created_at.desc()).all()

        wanted = set(tags)
        matched = []
        for orm in candidates:
            if wanted & set(json_deserializer(orm.tags, [])):
                matched.append(self._to_domain(orm))
                if len(matched) >= limit:
                    break
        return matched

    def record_usage(self, id: str) -> None:
        orm = self._session.get(LearnedPatternORM, id)
        if orm is None:
            return
        orm.usage_count = (orm.usage_count or 0) + 1
        orm.last_used_at = datetime.now()
        self._session.flush()

    def delete_older_than(self, cutoff: datetime) -> int:
        deleted = (
            self._session.query(LearnedPatternORM)
            .filter(LearnedPatternORM.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self._session.flush()
        return deleted
