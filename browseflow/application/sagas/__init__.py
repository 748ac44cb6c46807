"""
Application Sagas - workflow-level compensation and recovery.
"""

from .workflow_saga import CompensationAction, SagaExecution, WorkflowSaga

__all__ = [
    "CompensationAction",
    "SagaExecution",
    "WorkflowSaga",
]
