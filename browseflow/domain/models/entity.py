"""
Domain event buffering shared by entities.

Entities record events as they transition; the orchestrator publishes
and flushes them. Buffers are cleared only through clear_domain_events().
"""

from typing import List

from browseflow.domain.events import DomainEvent


class EventRecordingMixin:
    """
    Mixin for dataclass entities that declare a `_domain_events` list field.
    """

    _domain_events: List[DomainEvent]

    def _record(self, event: DomainEvent) -> None:
        self._domain_events.append(event)

    def get_domain_events(self) -> List[DomainEvent]:
        """Buffered events, oldest first (a copy)."""
        return list(self._domain_events)

    def has_domain_events(self) -> bool:
        return bool(self._domain_events)

    def clear_domain_events(self) -> None:
        self._domain_events.clear()
