"""
Repository Interfaces.

Defines abstract contracts for data access following the Repository pattern.
Follows Interface Segregation Principle with separate read/write interfaces.

Persistence is best-effort for a single run: callers wrap repository
calls and log failures instead of propagating them.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Generic, List, Optional, TypeVar, TYPE_CHECKING

if TYPE_CHECKING:
    from browseflow.domain.models import Workflow, WorkflowStatus, Plan, LearnedPattern
    from .event_store import EventQuery, StoredEvent

T = TypeVar('T')


class IReadRepository(ABC, Generic[T]):
    """
    Read-only repository interface.

    Provides query operations without modifying data.
    """

    @abstractmethod
    def get(self, id: str) -> Optional[T]:
        """
        Get entity by ID.

        Args:
            id: Entity identifier

        Returns:
            Entity if found, None otherwise
        """
        pass

    @abstractmethod
    def list(self, limit: int = 100, offset: int = 0) -> List[T]:
        """Oldest first."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def exists(self, id: str) -> bool:
        pass


class IWriteRepository(ABC, Generic[T]):
    """
    Write repository interface.

    Provides mutation operations.
    """

    @abstractmethod
    def add(self, entity: T) -> T:
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        """
        Update an existing entity.

        Raises:
            ValueError: If the entity does not exist
        """
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """
        Delete an entity.

        Returns:
            True if deleted, False if not found
        """
        pass


class IRepository(IReadRepository[T], IWriteRepository[T]):
    """Combined read/write repository interface."""
    pass


# ═══════════════════════════════════════════════════════════════════════════════
# Domain-Specific Repository Interfaces
# ═══════════════════════════════════════════════════════════════════════════════


class IWorkflowRepository(IRepository["Workflow"]):
    """Repository for Workflow roots. Variables are persisted as public values only."""

    @abstractmethod
    def find_by_status(self, status: "WorkflowStatus") -> List["Workflow"]:
        pass


class IPlanRepository(IRepository["Plan"]):
    """Repository for Plans, stored as JSON step lists."""

    @abstractmethod
    def find_by_workflow(self, workflow_id: str) -> List["Plan"]:
        """All plans of a workflow, oldest first."""
        pass


class IMemoryRepository(IRepository["LearnedPattern"]):
    """Repository for learned patterns with tag-based querying."""

    @abstractmethod
    def find_by_context(self, context: str) -> List["LearnedPattern"]:
        """Patterns stored under an exact context key."""
        pass

    @abstractmethod
    def find_by_tags(self, tags: List[str], limit: int = 50) -> List["LearnedPattern"]:
        """Patterns carrying at least one of `tags`, most recent first."""
        pass

    @abstractmethod
    def record_usage(self, id: str) -> None:
        """Increment usage_count and stamp last_used_at."""
        pass

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete patterns created before `cutoff`; returns the count."""
        pass


class IEventRepository(ABC):
    """Append-only storage backing SQLAlchemyEventStore."""

    @abstractmethod
    def append(self, event: "StoredEvent") -> "StoredEvent":
        """Persist and return the event with its assigned id."""
        pass

    @abstractmethod
    def query(self, query: "EventQuery") -> List["StoredEvent"]:
        """Matching events ordered by occurred_at, then id."""
        pass

    @abstractmethod
    def latest(self, count: int, event_type: Optional[str] = None) -> List["StoredEvent"]:
        """Newest first."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @abstractmethod
    def type_distribution(self) -> Dict[str, int]:
        pass

    @abstractmethod
    def aggregate_count(self) -> int:
        pass

    @abstractmethod
    def delete_all(self) -> int:
        pass
