"""
Application Layer - services, sagas and per-run wiring.

Coordinates the domain entities with the LLM collaborators, the browser
and the infrastructure handlers.
"""

from .services.workflow_manager import WorkflowManager
from .sagas.workflow_saga import WorkflowSaga
from .factories import WorkflowManagerFactory

__all__ = [
    "WorkflowManager",
    "WorkflowSaga",
    "WorkflowManagerFactory",
]
