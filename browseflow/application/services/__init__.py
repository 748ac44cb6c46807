"""Application services - queue, state, memory, planning and the orchestrator."""

from .task_queue import TaskQueue
from .state_manager import StateManager
from .memory_service import MemoryService
from .variable_manager import VariableManager
from .planning_service import PlanConversion, PlanningService, ReplanRequest
from .workflow_manager import WorkflowManager, determine_status

__all__ = [
    "TaskQueue",
    "StateManager",
    "MemoryService",
    "VariableManager",
    "PlanConversion",
    "PlanningService",
    "ReplanRequest",
    "WorkflowManager",
    "determine_status",
]
