"""
Domain Interfaces - contracts for collaborators and infrastructure.
"""

from .agents import (
    PageSnapshot,
    StrategicStep,
    MicroAction,
    ActionResult,
    PlannerInput,
    PlannerOutput,
    ExecutorInput,
    ExecutorOutput,
    EvaluatorInput,
    EvaluatorOutput,
    StepOutcome,
    SummarizerInput,
    SummarizerOutput,
    IPlanner,
    IExecutor,
    IEvaluator,
    ISummarizer,
)
from .browser import IBrowser, IDomService
from .reporter import IAgentReporter
from .event_store import IEventStore, EventQuery, StoredEvent
from .event_handler import IDomainEventHandler
from .repositories import (
    IReadRepository,
    IWriteRepository,
    IRepository,
    IWorkflowRepository,
    IPlanRepository,
    IMemoryRepository,
    IEventRepository,
)
from .unit_of_work import IUnitOfWork

__all__ = [
    # Agents
    "PageSnapshot",
    "StrategicStep",
    "MicroAction",
    "ActionResult",
    "PlannerInput",
    "PlannerOutput",
    "ExecutorInput",
    "ExecutorOutput",
    "EvaluatorInput",
    "EvaluatorOutput",
    "StepOutcome",
    "SummarizerInput",
    "SummarizerOutput",
    "IPlanner",
    "IExecutor",
    "IEvaluator",
    "ISummarizer",
    # Browser
    "IBrowser",
    "IDomService",
    # Reporting
    "IAgentReporter",
    # Events
    "IEventStore",
    "EventQuery",
    "StoredEvent",
    "IDomainEventHandler",
    # Persistence
    "IReadRepository",
    "IWriteRepository",
    "IRepository",
    "IWorkflowRepository",
    "IPlanRepository",
    "IMemoryRepository",
    "IEventRepository",
    "IUnitOfWork",
]
