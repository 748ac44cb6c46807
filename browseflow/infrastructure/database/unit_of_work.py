"""
SQLAlchemy Unit of Work Implementation.

Manages transaction boundaries across multiple repositories.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Callable, Optional
import logging

from browseflow.domain.interfaces.unit_of_work import IUnitOfWork
from .models import Base
from .repositories import (
    EventRepository,
    MemoryRepository,
    PlanRepository,
    WorkflowRepository,
)

logger = logging.getLogger(__name__)


def create_db_engine(db_url: str, echo: bool = False) -> Engine:
    """Create an engine and its tables; in-memory SQLite shares one connection."""
    kwargs = {"echo": echo}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


class SQLAlchemyUnitOfWork(IUnitOfWork):
    """
    SQLAlchemy-based Unit of Work implementation.

    Usage:
        with SQLAlchemyUnitOfWork("sqlite:///browseflow.db") as uow:
            uow.workflows.add(workflow)
            uow.plans.add(plan)
            uow.commit()
    """

    def __init__(self, db_url: str = "sqlite:///browseflow.db", echo: bool = False,
                 engine: Optional[Engine] = None):
        """
        Initialize the Unit of Work.

        Args:
            db_url: Database connection URL (ignored when `engine` is given)
            echo: If True, log SQL statements
            engine: Shared engine, see create_uow_factory()
        """
        self._engine = engine or create_db_engine(db_url, echo=echo)
        self._session_factory = sessionmaker(bind=self._engine)
        self._session: Optional[Session] = None

    def __enter__(self) -> "SQLAlchemyUnitOfWork":
        """Begin transaction and initialize repositories."""
        self._session = self._session_factory()
        self.workflows = WorkflowRepository(self._session)
        self.plans = PlanRepository(self._session)
        self.memories = MemoryRepository(self._session)
        self.events = EventRepository(self._session)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """End transaction, rolling back on exception."""
        if exc_type:
            self.rollback()
        if self._session:
            self._session.close()
            self._session = None

    def commit(self):
        if self._session:
            try:
                self._session.commit()
            except Exception:
                self.rollback()
                raise

    def rollback(self):
        if self._session:
            self._session.rollback()

    @property
    def session(self) -> Optional[Session]:
        """Get the current session (for advanced usage)."""
        return self._session


def create_uow_factory(db_url: str, echo: bool = False) -> Callable[[], SQLAlchemyUnitOfWork]:
    """
    Build the engine once and return a factory of units of work bound to it.

    Usage:
        uow_factory = create_uow_factory("sqlite:///:memory:")
        with uow_factory() as uow:
            ...
    """
    engine = create_db_engine(db_url, echo=echo)
    logger.debug(f"Created database engine for {engine.url!r}")
    return lambda: SQLAlchemyUnitOfWork(engine=engine)
