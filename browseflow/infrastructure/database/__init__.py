"""
Database Infrastructure - ORM models, repositories and units of work.

Provides:
- SQLAlchemyUnitOfWork / create_uow_factory: SQL persistence
- InMemoryUnitOfWork / create_inmemory_uow_factory: dict-backed persistence for tests
- SQLAlchemyEventStore: IEventStore on a unit-of-work factory
"""

from .models import (
    Base,
    WorkflowORM,
    PlanORM,
    LearnedPatternORM,
    StoredEventORM,
)
from .unit_of_work import SQLAlchemyUnitOfWork, create_db_engine, create_uow_factory
from .inmemory_unit_of_work import (
    InMemoryStores,
    InMemoryUnitOfWork,
    InMemoryWorkflowRepository,
    InMemoryPlanRepository,
    InMemoryMemoryRepository,
    InMemoryEventRepository,
    create_inmemory_uow_factory,
)
from .sql_event_store import SQLAlchemyEventStore

__all__ = [
    # ORM
    "Base",
    "WorkflowORM",
    "PlanORM",
    "LearnedPatternORM",
    "StoredEventORM",
    # SQLAlchemy
    "SQLAlchemyUnitOfWork",
    "create_db_engine",
    "create_uow_factory",
    # In-memory
    "InMemoryStores",
    "InMemoryUnitOfWork",
    "InMemoryWorkflowRepository",
    "InMemoryPlanRepository",
    "InMemoryMemoryRepository",
    "InMemoryEventRepository",
    "create_inmemory_uow_factory",
    # Event store
    "SQLAlchemyEventStore",
]
