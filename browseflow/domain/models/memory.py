"""
Memory model - learnings keyed by (site, goal, page section).

MemoryEntry is the in-process form used by MemoryService; LearnedPattern
is the durable form handed to IMemoryRepository.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
import re
import uuid


_SLUG_PATTERN = re.compile(r"[^a-z0-9]")
MAX_GOAL_SLUG_LENGTH = 50


def slugify_goal(goal: str) -> str:
    """Lowercase, non-alphanumerics to `_`, truncated to 50 chars."""
    return _SLUG_PATTERN.sub("_", goal.lower())[:MAX_GOAL_SLUG_LENGTH]


@dataclass(frozen=True)
class MemoryContext:
    """Where a learning applies."""
    url: str
    goal: str
    page_section: Optional[str] = None

    @property
    def hostname(self) -> str:
        return urlparse(self.url).hostname or self.url

    @property
    def goal_slug(self) -> str:
        return slugify_goal(self.goal)

    @property
    def key(self) -> str:
        section = _SLUG_PATTERN.sub("_", self.page_section.lower()) if self.page_section else "general"
        return f"{self.hostname}:{self.goal_slug}:{section}"


def parse_context_key(key: str) -> Dict[str, str]:
    """Split `hostname:goal_slug:section` back into its parts."""
    hostname, _, rest = key.partition(":")
    goal_slug, _, section = rest.rpartition(":")
    return {"hostname": hostname, "goal_slug": goal_slug, "section": section}


@dataclass
class MemoryEntry:
    """A single learning. Never updated in place."""
    context: MemoryContext
    learning: str
    action_to_avoid: Optional[str] = None
    alternative_action: Optional[str] = None
    confidence: float = 0.7
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context": {
                "url": self.context.url,
                "goal": self.context.goal,
                "page_section": self.context.page_section,
            },
            "learning": self.learning,
            "action_to_avoid": self.action_to_avoid,
            "alternative_action": self.alternative_action,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryEntry":
        ctx = data.get("context", {})
        return cls(
            context=MemoryContext(
                url=ctx.get("url", ""),
                goal=ctx.get("goal", ""),
                page_section=ctx.get("page_section"),
            ),
            learning=data["learning"],
            action_to_avoid=data.get("action_to_avoid"),
            alternative_action=data.get("alternative_action"),
            confidence=float(data.get("confidence", 0.7)),
            timestamp=datetime.fromisoformat(data["timestamp"]) if data.get("timestamp") else datetime.now(),
        )


@dataclass
class LearnedPattern:
    """Durable learning as stored by a memory repository."""
    context: str
    pattern: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    success_rate: float = 0.0
    usage_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    last_used_at: Optional[datetime] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "context": self.context,
            "pattern": self.pattern,
            "success_rate": self.success_rate,
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }
