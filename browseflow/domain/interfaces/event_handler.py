"""
Domain event handler capability.

Handlers form a closed set (metrics, logging, task failure, stuck
detection, saga) registered on the WorkflowEventBus.
"""

from abc import ABC, abstractmethod
from typing import Tuple, Type

from browseflow.domain.events import DomainEvent


class IDomainEventHandler(ABC):
    """
    A handler subscribes to the event classes in `event_types`.
    """

    event_types: Tuple[Type[DomainEvent], ...] = ()

    @abstractmethod
    def handle(self, event: DomainEvent) -> None:
        pass

    def can_handle(self, event: DomainEvent) -> bool:
        return isinstance(event, self.event_types)
