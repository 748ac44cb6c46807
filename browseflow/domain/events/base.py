"""
Domain event base class.

Every meaningful entity transition produces one of these. Events are
append-only facts: they are buffered by the entity that emitted them,
published to the bus, and finally written to the event store.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict
import uuid


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_serialize(v) for v in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


@dataclass
class DomainEvent:
    """Base class for all domain events."""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=datetime.now)
    aggregate_id: str = ""
    version: int = 1

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    @property
    def timestamp(self) -> datetime:
        return self.occurred_at

    def to_dict(self) -> Dict[str, Any]:
        """Serialize every field plus the event type."""
        data = {f.name: _serialize(getattr(self, f.name)) for f in fields(self)}
        data["event_type"] = self.event_type
        return data

    def summary(self) -> str:
        """One-line human readable description, used by timelines."""
        return f"{self.event_type} on {self.aggregate_id}"
