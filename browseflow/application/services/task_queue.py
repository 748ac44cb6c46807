"""
TaskQueue - dependency-aware scheduler for the in-flight plan.

The dependency graph lives here, not in Task: `_unmet` maps each queued
task id to the set of dependency ids not yet completed, and is updated
incrementally as tasks complete.

A task whose dependency never completes stays blocked forever. That is
reported through get_blocked_tasks(), not raised, so ready work keeps
flowing.

Usage:
    queue = TaskQueue()
    queue.enqueue(search_task)
    queue.enqueue(extract_task, dependencies=[search_task.id])
    task = queue.dequeue()
    queue.mark_completed(task.id)
"""

from typing import Dict, Iterable, List, Optional, Set
import heapq
import logging

from browseflow.domain.models import Task
from browseflow.infrastructure.events.event_bus import LegacyEventEmitter

logger = logging.getLogger(__name__)

COMPLETED_HISTORY_SIZE = 100


class TaskQueue:
    """
    Holds the plan's tasks and exposes only those whose dependencies are met.

    Every mutation emits a legacy event on `emitter`:
    task:enqueued|dequeued|completed|failed|blocked, queue:optimized|cleanup.
    """

    def __init__(self, emitter: Optional[LegacyEventEmitter] = None,
                 completed_history_size: int = COMPLETED_HISTORY_SIZE):
        self._emitter = emitter or LegacyEventEmitter()
        self._completed_history_size = completed_history_size
        self._tasks: Dict[str, Task] = {}
        self._queued: Dict[str, int] = {}  # task id -> sequence
        self._in_flight: Set[str] = set()
        self._unmet: Dict[str, Set[str]] = {}
        self._dependencies: Dict[str, List[str]] = {}
        self._completed: Dict[str, None] = {}  # ordered set
        self._failed: Dict[str, str] = {}
        self._sequence = 0

    @property
    def emitter(self) -> LegacyEventEmitter:
        return self._emitter

    # ═══════════════════════════════════════════════════════════════════════════
    # Mutations
    # ═══════════════════════════════════════════════════════════════════════════

    def enqueue(self, task: Task, dependencies: Optional[Iterable[str]] = None) -> None:
        """
        Add a task; it stays blocked until every dependency id is completed.

        Raises:
            ValueError: If the task id is already queued or in flight
        """
        if task.id in self._queued or task.id in self._in_flight:
            raise ValueError(f"Task {task.id} is already in the queue")

        deps = list(dict.fromkeys(dependencies or []))
        self._tasks[task.id] = task
        self._queued[task.id] = self._next_sequence()
        self._dependencies[task.id] = deps
        self._unmet[task.id] = {d for d in deps if d not in self._completed}

        self._emit("task:enqueued", {
            "task_id": task.id,
            "queue_size": self.size(),
            "ready_count": len(self.get_ready_tasks()),
            "blocked_count": len(self.get_blocked_tasks()),
        })
        if self._unmet[task.id]:
            self._emit("task:blocked", {
                "task_id": task.id,
                "unmet_dependencies": sorted(self._unmet[task.id]),
            })

    def dequeue(self, task_id: Optional[str] = None) -> Optional[Task]:
        """
        Take the next ready task (or the named one, if it is ready).

        Returns:
            The task, or None when nothing (matching) is ready
        """
        ready = self.get_ready_tasks()
        if task_id is not None:
            ready = [t for t in ready if t.id == task_id]
        if not ready:
            return None

        task = ready[0]
        del self._queued[task.id]
        self._in_flight.add(task.id)
        self._emit("task:dequeued", {"task_id": task.id, "remaining_size": len(self._queued)})
        return task

    def mark_completed(self, task_id: str) -> List[str]:
        """
        Record completion and unblock dependents.

        Returns:
            Ids of tasks that became ready
        """
        self._queued.pop(task_id, None)
        self._in_flight.discard(task_id)
        self._failed.pop(task_id, None)
        self._completed[task_id] = None

        unblocked = []
        for queued_id in self._queued:
            unmet = self._unmet.get(queued_id, set())
            if task_id in unmet:
                unmet.discard(task_id)
                if not unmet:
                    unblocked.append(queued_id)

        self._emit("task:completed", {
            "task_id": task_id,
            "completed_count": len(self._completed),
            "unblocked": unblocked,
        })
        return unblocked

    def mark_failed(self, task_id: str, error: str) -> None:
        """Record a terminal failure. Dependents stay blocked."""
        self._queued.pop(task_id, None)
        self._in_flight.discard(task_id)
        self._failed[task_id] = error
        dependents = [qid for qid in self._queued if task_id in self._unmet.get(qid, set())]
        self._emit("task:failed", {"task_id": task_id, "error": error, "blocked_dependents": dependents})

    def optimize_for_high_priority(self) -> bool:
        """
        Re-sequence queued tasks so higher priority comes first wherever
        dependency order allows.

        Only dependencies between queued tasks constrain the order.

        Returns:
            True if the order changed
        """
        queued = list(self._queued)
        if len(queued) < 2:
            return False

        queued_set = set(queued)
        indegree = {tid: 0 for tid in queued}
        dependents: Dict[str, List[str]] = {tid: [] for tid in queued}
        for tid in queued:
            for dep in self._unmet.get(tid, set()):
                if dep in queued_set:
                    indegree[tid] += 1
                    dependents[dep].append(tid)

        heap = [(-self._tasks[tid].priority.value, self._queued[tid], tid)
                for tid in queued if indegree[tid] == 0]
        heapq.heapify(heap)
        order = []
        while heap:
            _, _, tid = heapq.heappop(heap)
            order.append(tid)
            for child in dependents[tid]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(heap, (-self._tasks[child].priority.value, self._queued[child], child))
        # Cycles never become ready; keep them after everything else
        order.extend(tid for tid in sorted(queued, key=self._queued.get) if tid not in order)

        previous = sorted(queued, key=self._queued.get)
        changed = order != previous
        if changed:
            base = min(self._queued.values())
            self._queued = {tid: base + i for i, tid in enumerate(order)}
        self._emit("queue:optimized", {"changed": changed, "order": order})
        return changed

    def cleanup_completed_tasks(self) -> int:
        """
        Evict finished tasks from working memory.

        Keeps only the most recent completed ids so later dependencies
        on them still resolve.

        Returns:
            Number of task objects evicted
        """
        finished = [tid for tid in self._tasks
                    if tid not in self._queued and tid not in self._in_flight]
        for tid in finished:
            del self._tasks[tid]
            self._dependencies.pop(tid, None)
            self._unmet.pop(tid, None)

        overflow = len(self._completed) - self._completed_history_size
        if overflow > 0:
            for tid in list(self._completed)[:overflow]:
                del self._completed[tid]

        self._emit("queue:cleanup", {"removed": len(finished), "remaining": len(self._tasks)})
        return len(finished)

    def clear(self) -> None:
        self._tasks.clear()
        self._queued.clear()
        self._in_flight.clear()
        self._unmet.clear()
        self._dependencies.clear()
        self._completed.clear()
        self._failed.clear()

    # ═══════════════════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════════════════

    def get_ready_tasks(self) -> List[Task]:
        """Queued tasks with all dependencies met, by priority then sequence."""
        ready = [tid for tid in self._queued if not self._unmet.get(tid)]
        ready.sort(key=lambda tid: (-self._tasks[tid].priority.value, self._queued[tid]))
        return [self._tasks[tid] for tid in ready]

    def get_blocked_tasks(self) -> List[Task]:
        blocked = [tid for tid in self._queued if self._unmet.get(tid)]
        blocked.sort(key=self._queued.get)
        return [self._tasks[tid] for tid in blocked]

    def has_ready_tasks(self) -> bool:
        return any(not self._unmet.get(tid) for tid in self._queued)

    def are_dependencies_met(self, task_id: str) -> bool:
        return not self._unmet.get(task_id)

    def get_unmet_dependencies(self, task_id: str) -> List[str]:
        return sorted(self._unmet.get(task_id, set()))

    def get_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def is_completed(self, task_id: str) -> bool:
        return task_id in self._completed

    def get_failed_tasks(self) -> Dict[str, str]:
        return dict(self._failed)

    def size(self) -> int:
        """Queued plus in-flight tasks."""
        return len(self._queued) + len(self._in_flight)

    def is_empty(self) -> bool:
        return self.size() == 0

    def get_stats(self) -> Dict[str, int]:
        ready = len(self.get_ready_tasks())
        return {
            "total": len(self._tasks),
            "queued": len(self._queued),
            "ready": ready,
            "blocked": len(self._queued) - ready,
            "in_flight": len(self._in_flight),
            "completed": len(self._completed),
            "failed": len(self._failed),
        }

    # ═══════════════════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════════════════

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _emit(self, name: str, payload: Dict) -> None:
        logger.debug(f"{name}: {payload}")
        self._emitter.emit(name, payload)
