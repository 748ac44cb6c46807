"""
BrowseFlow - LLM-driven browser-automation workflow engine.

Turns a natural-language goal into a plan of browser tasks and runs it:
- Planner / Executor / Evaluator / Summarizer collaborators behind async interfaces
- Dependency-aware TaskQueue with retries, replanning and early exit
- Graceful degradation: success / partial / degraded / failure results
- Domain events on a bus, batched into an event store per run
- Cross-run learning through MemoryService

Architecture follows:
- Domain-Driven Design (entities, aggregates, domain events)
- Repository + Unit of Work pattern
- Interface-based collaborators
"""

__version__ = "0.1.0"

from browseflow.config import (
    BrowseFlowConfig,
    WorkflowManagerConfig,
    get_config,
    set_config,
    reset_config,
)

from browseflow.domain.exceptions import (
    BrowseFlowError,
    ValidationError,
    InvalidStateTransition,
    WorkflowInitializationError,
    PlanningError,
    TaskExecutionError,
)

from browseflow.domain.models import (
    Workflow,
    Plan,
    Step,
    Task,
    Variable,
    WorkflowResult,
    WorkflowResultStatus,
)

from browseflow.application import (
    WorkflowManager,
    WorkflowManagerFactory,
    WorkflowSaga,
)

from browseflow.infrastructure import LoggingReporter

__all__ = [
    "__version__",
    # Config
    "BrowseFlowConfig",
    "WorkflowManagerConfig",
    "get_config",
    "set_config",
    "reset_config",
    # Errors
    "BrowseFlowError",
    "ValidationError",
    "InvalidStateTransition",
    "WorkflowInitializationError",
    "PlanningError",
    "TaskExecutionError",
    # Models
    "Workflow",
    "Plan",
    "Step",
    "Task",
    "Variable",
    "WorkflowResult",
    "WorkflowResultStatus",
    # Application
    "WorkflowManager",
    "WorkflowManagerFactory",
    "WorkflowSaga",
    # Infrastructure
    "LoggingReporter",
]
