"""
Shared CRUD for the SQLAlchemy repositories.

Concrete repositories only map between their entity and ORM row
(`_to_domain` / `_to_orm`) and add their finder queries.
"""

from typing import Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

T = TypeVar('T')
ORM = TypeVar('ORM')


class BaseRepository(Generic[T, ORM]):
    """Entity ⇄ row mapping over one ORM table keyed by string id."""

    def __init__(self, session: Session, orm_class: Type[ORM]):
        self._session = session
        self._orm_class = orm_class

    def _to_domain(self, orm: ORM) -> T:
        raise NotImplementedError

    def _to_orm(self, domain: T) -> ORM:
        raise NotImplementedError

    def get(self, id: str) -> Optional[T]:
        row = self._session.get(self._orm_class, id)
        return None if row is None else self._to_domain(row)

    def list(self, limit: int = 100, offset: int = 0) -> List[T]:
        """Oldest first, paged."""
        stmt = (
            select(self._orm_class)
            .order_by(self._orm_class.created_at)
            .offset(offset)
            .limit(limit)
        )
        return [self._to_domain(row) for row in self._session.scalars(stmt)]

    def count(self) -> int:
        return self._session.scalar(select(func.count()).select_from(self._orm_class)) or 0

    def exists(self, id: str) -> bool:
        return self._session.get(self._orm_class, id) is not None

    def add(self, entity: T) -> T:
        self._session.add(self._to_orm(entity))
        self._session.flush()
        return entity

    def update(self, entity: T) -> T:
        """
        Raises:
            ValueError: If no row with the entity's id exists
        """
        if not self.exists(entity.id):
            raise ValueError(f"{self._orm_class.__name__} {entity.id} not found")
        self._session.merge(self._to_orm(entity))
        self._session.flush()
        return entity

    def delete(self, id: str) -> bool:
        row = self._session.get(self._orm_class, id)
        if row is None:
            return False
        self._session.delete(row)
        self._session.flush()
        return True
