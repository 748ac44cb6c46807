"""SQLAlchemy repository implementations."""

from .base import BaseRepository
from .workflow_repository import WorkflowRepository, PlanRepository
from .memory_repository import MemoryRepository
from .event_repository import EventRepository

__all__ = [
    "BaseRepository",
    "WorkflowRepository",
    "PlanRepository",
    "MemoryRepository",
    "EventRepository",
]
