"""
In-Memory Unit of Work Implementation.

For unit tests and fast iteration - no database I/O.
Provides the same interface as SQLAlchemyUnitOfWork but stores data in memory.

Benefits:
- Fast test execution (no I/O)
- Same interface as SQLAlchemyUnitOfWork (LSP compliant)
- Units of work built by one factory share their stores, like sessions on one database
"""

from copy import deepcopy
from datetime import datetime
from itertools import count
from typing import Callable, Dict, List, Optional

from browseflow.domain.interfaces.event_store import EventQuery, StoredEvent
from browseflow.domain.interfaces.repositories import (
    IEventRepository,
    IMemoryRepository,
    IPlanRepository,
    IWorkflowRepository,
)
from browseflow.domain.interfaces.unit_of_work import IUnitOfWork
from browseflow.domain.models import LearnedPattern, Plan, Workflow, WorkflowStatus


def _detached(entity):
    """Deep copy without the buffered domain events."""
    copied = deepcopy(entity)
    if hasattr(copied, "clear_domain_events"):
        copied.clear_domain_events()
    return copied


# ═══════════════════════════════════════════════════════════════════════════════
# In-Memory Repository Implementations
# ═══════════════════════════════════════════════════════════════════════════════


class _InMemoryRepository:

    _label = "Entity"

    def __init__(self, store: Optional[Dict] = None):
        self._store = store if store is not None else {}

    def get(self, id: str):
        entity = self._store.get(id)
        return _detached(entity) if entity else None

    def list(self, limit: int = 100, offset: int = 0):
        ordered = sorted(self._store.values(), key=lambda e: e.created_at)
        return [_detached(e) for e in ordered[offset:offset + limit]]

    def count(self) -> int:
        return len(self._store)

    def exists(self, id: str) -> bool:
        return id in self._store

    def add(self, entity):
        self._store[entity.id] = _detached(entity)
        return entity

    def update(self, entity):
        if entity.id not in self._store:
            raise ValueError(f"{self._label} {entity.id} not found")
        self._store[entity.id] = _detached(entity)
        return entity

    def delete(self, id: str) -> bool:
        if id in self._store:
            del self._store[id]
            return True
        return False


class InMemoryWorkflowRepository(_InMemoryRepository, IWorkflowRepository):
    """In-memory workflow repository. Secret values are masked on write."""

    _label = "Workflow"

    def add(self, entity: Workflow) -> Workflow:
        self._store[entity.id] = self._masked(entity)
        return entity

    def update(self, entity: Workflow) -> Workflow:
        if entity.id not in self._store:
            raise ValueError(f"Workflow {entity.id} not found")
        self._store[entity.id] = self._masked(entity)
        return entity

    @staticmethod
    def _masked(entity: Workflow) -> Workflow:
        return Workflow.from_dict(entity.to_dict())

    def find_by_status(self, status: WorkflowStatus) -> List[Workflow]:
        return [_detached(w) for w in self._store.values() if w.status == status]


class InMemoryPlanRepository(_InMemoryRepository, IPlanRepository):
    """In-memory plan repository."""

    _label = "Plan"

    def find_by_workflow(self, workflow_id: str) -> List[Plan]:
        plans = [p for p in self._store.values() if p.workflow_id == workflow_id]
        plans.sort(key=lambda p: p.created_at)
        return [_detached(p) for p in plans]


class InMemoryMemoryRepository(_InMemoryRepository, IMemoryRepository):
    """In-memory learned pattern repository."""

    _label = "LearnedPattern"

    def find_by_context(self, context: str) -> List[LearnedPattern]:
        matched = [p for p in self._store.values() if p.context == context]
        matched.sort(key=lambda p: p.created_at, reverse=True)
        return [deepcopy(p) for p in matched]

    def find_by_tags(self, tags: List[str], limit: int = 50) -> List[LearnedPattern]:
        wanted = set(tags)
        matched = [p for p in self._store.values() if wanted & set(p.tags)]
        matched.sort(key=lambda p: p.created_at, reverse=True)
        return [deepcopy(p) for p in matched[:limit]]

    def record_usage(self, id: str) -> None:
        pattern = self._store.get(id)
        if pattern is not None:
            pattern.usage_count += 1
            pattern.last_used_at = datetime.now()

    def delete_older_than(self, cutoff: datetime) -> int:
        stale = [id for id, p in self._store.items() if p.created_at < cutoff]
        for id in stale:
            del self._store[id]
        return len(stale)


class InMemoryEventRepository(IEventRepository):
    """In-memory append-only event repository."""

    def __init__(self, store: Optional[List[StoredEvent]] = None, ids=None):
        self._store = store if store is not None else []
        self._ids = ids or count(1)

    def append(self, event: StoredEvent) -> StoredEvent:
        event.id = next(self._ids)
        self._store.append(deepcopy(event))
        return event

    def query(self, query: EventQuery) -> List[StoredEvent]:
        matched = sorted((e for e in self._store if query.matches(e)),
                         key=lambda e: (e.occurred_at, e.id))
        end = query.offset + query.limit if query.limit is not None else None
        return [deepcopy(e) for e in matched[query.offset:end]]

    def latest(self, count: int, event_type: Optional[str] = None) -> List[StoredEvent]:
        events = [e for e in self._store if event_type is None or e.event_type == event_type]
        events.sort(key=lambda e: (e.occurred_at, e.id), reverse=True)
        return [deepcopy(e) for e in events[:count]]

    def count(self) -> int:
        return len(self._store)

    def type_distribution(self) -> Dict[str, int]:
        distribution: Dict[str, int] = {}
        for e in self._store:
            distribution[e.event_type] = distribution.get(e.event_type, 0) + 1
        return distribution

    def aggregate_count(self) -> int:
        return len({e.aggregate_id for e in self._store})

    def delete_all(self) -> int:
        deleted = len(self._store)
        self._store.clear()
        return deleted


# ═══════════════════════════════════════════════════════════════════════════════
# In-Memory Unit of Work
# ═══════════════════════════════════════════════════════════════════════════════


class InMemoryStores:
    """Backing storage shared by the units of work of one factory."""

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}
        self.plans: Dict[str, Plan] = {}
        self.memories: Dict[str, LearnedPattern] = {}
        self.events: List[StoredEvent] = []
        self.event_ids = count(1)


class InMemoryUnitOfWork(IUnitOfWork):
    """
    In-memory Unit of Work for testing.

    Usage:
        uow = InMemoryUnitOfWork()
        with uow:
            uow.workflows.add(workflow)
            uow.commit()  # No-op, data already in memory

    Note: For true isolation between tests, create a new InMemoryUnitOfWork
    (or factory) for each test.
    """

    def __init__(self, stores: Optional[InMemoryStores] = None):
        self._stores = stores or InMemoryStores()
        self.workflows: IWorkflowRepository = InMemoryWorkflowRepository(self._stores.workflows)
        self.plans: IPlanRepository = InMemoryPlanRepository(self._stores.plans)
        self.memories: IMemoryRepository = InMemoryMemoryRepository(self._stores.memories)
        self.events: IEventRepository = InMemoryEventRepository(self._stores.events, self._stores.event_ids)
        self._in_transaction = False

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._in_transaction = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._in_transaction = False

    def commit(self):
        """No-op for in-memory - data is already persisted in dicts."""
        pass

    def rollback(self):
        """No-op for in-memory - writes are applied immediately."""
        pass


def create_inmemory_uow_factory() -> Callable[[], InMemoryUnitOfWork]:
    """Factory whose units of work all see the same stores."""
    stores = InMemoryStores()
    return lambda: InMemoryUnitOfWork(stores)
