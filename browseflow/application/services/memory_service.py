"""
MemoryService - cross-run learnings keyed by (site, goal, page section).

Learnings are stored under `hostname:goal_slug:section`. Lookups return
exact-context entries plus the last three entries of each similar context
(same host, goal-slug word overlap above 0.7), ranked by

    1000 * is_exact + 100 * confidence - age_ms / 100000

and capped at ten.

Design Decisions:
- An optional Unit of Work factory backs learnings with a memory
  repository; any repository error falls back to the in-memory map
- Both paths rank with the same function, so results are equivalent
- Entries are never edited; corrections are new entries
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple
import json
import logging

from browseflow.domain.interfaces.unit_of_work import IUnitOfWork
from browseflow.domain.models import LearnedPattern, MemoryContext, MemoryEntry
from browseflow.domain.models.memory import parse_context_key
from browseflow.infrastructure.events.event_bus import LegacyEventEmitter

logger = logging.getLogger(__name__)

MAX_RECENT_LEARNINGS = 20
MAX_RELEVANT_MEMORIES = 10
SIMILAR_CONTEXT_TAIL = 3
SIMILARITY_THRESHOLD = 0.7
DEFAULT_CONFIDENCE = 0.7
FAILURE_CONFIDENCE = 0.9
SUCCESS_CONFIDENCE = 0.8
NO_LEARNINGS_PROMPT = "No previous learnings for this context."
_STOPWORDS = {"this", "that", "with", "from", "they", "have", "will"}


def goal_similarity(first_slug: str, second_slug: str) -> float:
    """Jaccard similarity of the `_`-separated words of two goal slugs."""
    a, b = set(first_slug.split("_")), set(second_slug.split("_"))
    union = a | b
    return len(a & b) / len(union) if union else 0.0


def is_similar_context(key: str, other: str) -> bool:
    first, second = parse_context_key(key), parse_context_key(other)
    if first["hostname"] != second["hostname"]:
        return False
    return (first["goal_slug"] == second["goal_slug"]
            or goal_similarity(first["goal_slug"], second["goal_slug"]) > SIMILARITY_THRESHOLD)


def relevance_score(entry: MemoryEntry, is_exact: bool, now: datetime) -> float:
    age_ms = (now - entry.timestamp).total_seconds() * 1000
    return (1000 if is_exact else 0) + 100 * entry.confidence - age_ms / 100000


def rank_memories(context_key: str, buckets: Dict[str, List[MemoryEntry]],
                  now: Optional[datetime] = None) -> List[MemoryEntry]:
    """Exact matches plus the tail of similar contexts, best first."""
    now = now or datetime.now()
    scored: List[Tuple[float, MemoryEntry]] = []
    for entry in buckets.get(context_key, []):
        scored.append((relevance_score(entry, True, now), entry))
    for key, entries in buckets.items():
        if key != context_key and is_similar_context(key, context_key):
            for entry in entries[-SIMILAR_CONTEXT_TAIL:]:
                scored.append((relevance_score(entry, False, now), entry))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [entry for _, entry in scored[:MAX_RELEVANT_MEMORIES]]


def extract_tags(context: MemoryContext) -> List[str]:
    """hostname, 'task', section, then the first three meaningful goal words."""
    tags = [context.hostname, "task"]
    if context.page_section:
        tags.append(context.page_section)
    words = [w for w in context.goal.lower().split() if len(w) > 3 and w not in _STOPWORDS]
    tags.extend(words[:3])
    return tags


class MemoryService:
    """
    Usage:
        memory = MemoryService(uow_factory=create_uow_factory(db_url))
        memory.learn_from_failure(ctx, "click Search", "button disabled", "press Enter")
        prompt = memory.get_memory_prompt(ctx)
    """

    def __init__(
        self,
        uow_factory: Optional[Callable[[], IUnitOfWork]] = None,
        emitter: Optional[LegacyEventEmitter] = None,
    ):
        self._uow_factory = uow_factory
        self._emitter = emitter or LegacyEventEmitter()
        self._memories: Dict[str, List[MemoryEntry]] = {}
        self._recent: List[MemoryEntry] = []

    # ═══════════════════════════════════════════════════════════════
    # Recording
    # ═══════════════════════════════════════════════════════════════

    def add_learning(
        self,
        context: MemoryContext,
        learning: str,
        action_to_avoid: Optional[str] = None,
        alternative_action: Optional[str] = None,
        confidence: float = DEFAULT_CONFIDENCE,
    ) -> MemoryEntry:
        entry = MemoryEntry(
            context=context,
            learning=learning,
            action_to_avoid=action_to_avoid,
            alternative_action=alternative_action,
            confidence=confidence,
        )
        if not self._save_to_repository(entry):
            self._memories.setdefault(context.key, []).append(entry)

        self._recent.insert(0, entry)
        del self._recent[MAX_RECENT_LEARNINGS:]
        self._emitter.emit("memory:learning-added", entry.to_dict())
        return entry

    def learn_from_failure(self, context: MemoryContext, failed_action: str,
                           failure_reason: str, suggestion: Optional[str] = None) -> MemoryEntry:
        return self.add_learning(
            context,
            f'Action "{failed_action}" failed: {failure_reason}',
            action_to_avoid=failed_action,
            alternative_action=suggestion,
            confidence=FAILURE_CONFIDENCE,
        )

    def learn_from_success(self, context: MemoryContext, successful_action: str,
                           outcome: str) -> MemoryEntry:
        return self.add_learning(
            context,
            f'Action "{successful_action}" succeeded: {outcome}',
            confidence=SUCCESS_CONFIDENCE,
        )

    # ═══════════════════════════════════════════════════════════════
    # Retrieval
    # ═══════════════════════════════════════════════════════════════

    def get_relevant_memories(self, context: MemoryContext) -> List[MemoryEntry]:
        buckets = {key: list(entries) for key, entries in self._memories.items()}
        for key, entries in self._load_from_repository(context).items():
            buckets.setdefault(key, [])
            buckets[key] = sorted(buckets[key] + entries, key=lambda e: e.timestamp)
        return rank_memories(context.key, buckets)

    def get_memory_prompt(self, context: MemoryContext) -> str:
        memories = self.get_relevant_memories(context)
        if not memories:
            return NO_LEARNINGS_PROMPT

        lines = []
        for memory in memories:
            line = f"- {memory.learning}"
            if memory.action_to_avoid:
                line += f" (AVOID: {memory.action_to_avoid})"
            if memory.alternative_action:
                line += f" (TRY INSTEAD: {memory.alternative_action})"
            lines.append(line)
        return "MEMORY LEARNINGS FROM SIMILAR SITUATIONS:\n" + "\n".join(lines)

    def get_recent_learnings(self) -> List[MemoryEntry]:
        return list(self._recent)

    # ═══════════════════════════════════════════════════════════════
    # Maintenance
    # ═══════════════════════════════════════════════════════════════

    def prune_old_memories(self, days_to_keep: int = 7) -> int:
        """Drop entries older than the cutoff, and empty context buckets."""
        cutoff = datetime.now() - timedelta(days=days_to_keep)
        removed = 0
        for key in list(self._memories):
            kept = [m for m in self._memories[key] if m.timestamp > cutoff]
            removed += len(self._memories[key]) - len(kept)
            if kept:
                self._memories[key] = kept
            else:
                del self._memories[key]
        self._recent = [m for m in self._recent if m.timestamp > cutoff]

        if self._uow_factory is not None:
            try:
                with self._uow_factory() as uow:
                    removed += uow.memories.delete_older_than(cutoff)
                    uow.commit()
            except Exception as e:
                logger.warning(f"Failed to prune memory repository: {e}")
        return removed

    def export_memories(self) -> str:
        return json.dumps({
            "memories": {k: [m.to_dict() for m in v] for k, v in self._memories.items()},
            "recent_learnings": [m.to_dict() for m in self._recent],
            "export_date": datetime.now().isoformat(),
        }, indent=2)

    def import_memories(self, data: str) -> int:
        """
        Merge an export_memories() document.

        Raises:
            ValueError: If the document is not valid JSON
        """
        document = json.loads(data)
        count = 0
        for key, entries in document.get("memories", {}).items():
            bucket = self._memories.setdefault(key, [])
            for raw in entries:
                bucket.append(MemoryEntry.from_dict(raw))
                count += 1
            bucket.sort(key=lambda e: e.timestamp)
        self._recent = [MemoryEntry.from_dict(r) for r in document.get("recent_learnings", [])]
        del self._recent[MAX_RECENT_LEARNINGS:]
        return count

    def clear(self) -> None:
        self._memories.clear()
        self._recent.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "contexts": len(self._memories),
            "total_memories": sum(len(v) for v in self._memories.values()),
            "recent_learnings": len(self._recent),
            "repository_backed": self._uow_factory is not None,
        }

    # ═══════════════════════════════════════════════════════════════
    # Repository path
    # ═══════════════════════════════════════════════════════════════

    def _save_to_repository(self, entry: MemoryEntry) -> bool:
        if self._uow_factory is None:
            return False
        pattern = LearnedPattern(
            context=entry.context.key,
            pattern=entry.learning,
            success_rate=entry.confidence * 100,
            usage_count=1,
            created_at=entry.timestamp,
            last_used_at=entry.timestamp,
            tags=extract_tags(entry.context),
            metadata={
                "action_to_avoid": entry.action_to_avoid,
                "alternative_action": entry.alternative_action,
                "goal": entry.context.goal,
                "url": entry.context.url,
                "page_section": entry.context.page_section,
            },
        )
        try:
            with self._uow_factory() as uow:
                uow.memories.add(pattern)
                uow.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to save pattern to repository: {e}")
            return False

    def _load_from_repository(self, context: MemoryContext) -> Dict[str, List[MemoryEntry]]:
        if self._uow_factory is None:
            return {}
        try:
            with self._uow_factory() as uow:
                patterns = uow.memories.find_by_tags([context.hostname], limit=500)
        except Exception as e:
            logger.error(f"Failed to get patterns from repository: {e}")
            return {}

        buckets: Dict[str, List[MemoryEntry]] = {}
        for pattern in patterns:
            meta = pattern.metadata or {}
            entry = MemoryEntry(
                context=MemoryContext(
                    url=meta.get("url", context.url),
                    goal=meta.get("goal", ""),
                    page_section=meta.get("page_section"),
                ),
                learning=pattern.pattern,
                action_to_avoid=meta.get("action_to_avoid"),
                alternative_action=meta.get("alternative_action"),
                confidence=pattern.success_rate / 100,
                timestamp=pattern.created_at,
            )
            buckets.setdefault(pattern.context, []).append(entry)
        for entries in buckets.values():
            entries.sort(key=lambda e: e.timestamp)
        return buckets
