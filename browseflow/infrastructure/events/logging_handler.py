"""
Logging Event Handler - structured, bounded log of domain events.

Failures, execution errors and timeouts are ERROR, lifecycle starts and
completions are INFO, everything else DEBUG. Every entry is also written
to the module logger at the same level.

Usage:
    handler = LoggingEventHandler(max_entries=500)
    bus.register_handler(handler)

    errors = handler.get_logs(level=LogLevel.ERROR)
    csv_text = handler.export_logs("csv")
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import csv
import io
import json
import logging

from browseflow.domain.events import DomainEvent
from browseflow.domain.interfaces.event_handler import IDomainEventHandler

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_STDLIB_LEVEL = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass
class EventLogEntry:
    """Single structured log entry."""
    timestamp: datetime
    level: LogLevel
    event_type: str
    aggregate_id: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "event_type": self.event_type,
            "aggregate_id": self.aggregate_id,
            "message": self.message,
            "details": self.details,
        }

    def format_display(self) -> str:
        time_str = self.timestamp.strftime("%H:%M:%S.%f")[:-3]
        return f"[{time_str}] {self.level.value.upper():<7} {self.message}"


def level_for(event_type: str) -> LogLevel:
    if event_type.endswith(("FailedEvent", "TimedOutEvent")) or event_type == "ExecutionErrorEvent":
        return LogLevel.ERROR
    if event_type.endswith(("StartedEvent", "CompletedEvent")):
        return LogLevel.INFO
    return LogLevel.DEBUG


class LoggingEventHandler(IDomainEventHandler):
    """Handles every DomainEvent."""

    event_types = (DomainEvent,)

    def __init__(self, max_entries: int = 1000):
        self._max_entries = max_entries
        self._entries: List[EventLogEntry] = []

    def handle(self, event: DomainEvent) -> None:
        level = level_for(event.event_type)
        details = event.to_dict()
        for key in ("event_id", "occurred_at", "aggregate_id", "version", "event_type"):
            details.pop(key, None)
        entry = EventLogEntry(
            timestamp=event.occurred_at,
            level=level,
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
            message=event.summary(),
            details=details,
        )
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            del self._entries[:len(self._entries) - self._max_entries]
        logger.log(_STDLIB_LEVEL[level], entry.message)

    # ═══════════════════════════════════════════════════════════════
    # Query Methods
    # ═══════════════════════════════════════════════════════════════

    def get_logs(
        self,
        level: Optional[LogLevel] = None,
        event_type: Optional[str] = None,
        aggregate_id: Optional[str] = None,
    ) -> List[EventLogEntry]:
        return [
            e for e in self._entries
            if (level is None or e.level == level)
            and (event_type is None or e.event_type == event_type)
            and (aggregate_id is None or e.aggregate_id == aggregate_id)
        ]

    def get_errors(self) -> List[EventLogEntry]:
        return self.get_logs(level=LogLevel.ERROR)

    def get_summary(self) -> Dict[str, Any]:
        by_level = {lvl.value: 0 for lvl in LogLevel}
        by_type: Dict[str, int] = {}
        for entry in self._entries:
            by_level[entry.level.value] += 1
            by_type[entry.event_type] = by_type.get(entry.event_type, 0) + 1
        return {
            "total_entries": len(self._entries),
            "by_level": by_level,
            "by_event_type": by_type,
            "first_entry": self._entries[0].timestamp.isoformat() if self._entries else None,
            "last_entry": self._entries[-1].timestamp.isoformat() if self._entries else None,
        }

    def clear(self) -> None:
        self._entries.clear()

    def export_logs(self, fmt: str = "json") -> str:
        """
        Export entries as "json" or "csv".

        Raises:
            ValueError: For any other format
        """
        if fmt == "json":
            return json.dumps([e.to_dict() for e in self._entries], indent=2, default=str)
        if fmt == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(["timestamp", "level", "event_type", "aggregate_id", "message"])
            for e in self._entries:
                writer.writerow([e.timestamp.isoformat(), e.level.value, e.event_type,
                                 e.aggregate_id, e.message])
            return buffer.getvalue()
        raise ValueError(f"Unsupported export format: {fmt}")

    def format_display(self) -> str:
        return "\n".join(e.format_display() for e in self._entries)
