"""
Aggregates - consistency boundaries driven by the orchestrator.
"""

from .workflow_aggregate import WorkflowAggregate, TaskRunner
from .execution_aggregate import ExecutionAggregate

__all__ = [
    "WorkflowAggregate",
    "TaskRunner",
    "ExecutionAggregate",
]
