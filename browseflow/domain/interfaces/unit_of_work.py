"""
Unit of Work interface.

One transaction spanning the workflow, plan, memory and event
repositories. The orchestrator opens one per save and never keeps it
across awaits.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .repositories import (
        IEventRepository,
        IMemoryRepository,
        IPlanRepository,
        IWorkflowRepository,
    )


class IUnitOfWork(ABC):
    """
    Transaction boundary for browseflow persistence.

    Usage:
        with uow_factory() as uow:
            uow.workflows.update(workflow)
            uow.plans.update(plan)
            uow.commit()

    Nothing is written without commit(); leaving the block through an
    exception rolls back.
    """

    workflows: "IWorkflowRepository"
    plans: "IPlanRepository"
    memories: "IMemoryRepository"
    events: "IEventRepository"

    @abstractmethod
    def __enter__(self) -> "IUnitOfWork":
        pass

    @abstractmethod
    def __exit__(self, exc_type, exc_val, exc_tb):
        pass

    @abstractmethod
    def commit(self):
        pass

    @abstractmethod
    def rollback(self):
        pass
