"""
Application Factories.

Wires WorkflowManager instances from a BrowseFlowConfig.

Shared across every manager a factory builds (process-wide, keyed by
workflow id): the unit-of-work factory, the event store, MemoryService,
and the metrics / logging / task-failure / stuck / saga handlers.
Built fresh per manager: the event bus and everything the manager
creates for a run (TaskQueue, StateManager, aggregates).

Usage:
    factory = WorkflowManagerFactory(BrowseFlowConfig.for_development())
    manager = factory.create(planner, executor, evaluator, browser, dom_service)
    result = await manager.execute(goal, start_url)
"""

from dataclasses import replace
from typing import Callable, List, Optional
import logging

from browseflow.config import BrowseFlowConfig, WorkflowManagerConfig, get_config
from browseflow.domain.interfaces.agents import IEvaluator, IExecutor, IPlanner, ISummarizer
from browseflow.domain.interfaces.browser import IBrowser, IDomService
from browseflow.domain.interfaces.event_handler import IDomainEventHandler
from browseflow.domain.interfaces.event_store import IEventStore
from browseflow.domain.interfaces.reporter import IAgentReporter
from browseflow.domain.interfaces.unit_of_work import IUnitOfWork
from browseflow.domain.models import RetryPolicy
from browseflow.infrastructure.database import (
    SQLAlchemyEventStore,
    create_inmemory_uow_factory,
    create_uow_factory,
)
from browseflow.infrastructure.events import (
    InMemoryEventStore,
    LoggingEventHandler,
    MetricsEventHandler,
    TaskFailureHandler,
    WorkflowEventBus,
    WorkflowStuckHandler,
)
from browseflow.infrastructure.reporting import LoggingReporter

from .sagas.workflow_saga import WorkflowSaga
from .services.memory_service import MemoryService
from .services.workflow_manager import WorkflowManager

logger = logging.getLogger(__name__)


def build_uow_factory(config: BrowseFlowConfig) -> Callable[[], IUnitOfWork]:
    """Unit-of-work factory for `config.storage_mode`."""
    if config.storage_mode == "sqlalchemy":
        _ensure_sqlite_dir(config)
        return create_uow_factory(config.db_url, echo=config.log_sql)
    if config.storage_mode != "inmemory":
        raise ValueError(f"Unknown storage mode: {config.storage_mode}")
    return create_inmemory_uow_factory()


def build_event_store(
    config: BrowseFlowConfig,
    uow_factory: Optional[Callable[[], IUnitOfWork]] = None,
) -> IEventStore:
    """Event store for `config.event_store_mode`."""
    if config.event_store_mode == "sqlalchemy":
        if uow_factory is None or config.storage_mode != "sqlalchemy":
            _ensure_sqlite_dir(config)
            uow_factory = create_uow_factory(config.db_url, echo=config.log_sql)
        return SQLAlchemyEventStore(uow_factory)
    if config.event_store_mode != "inmemory":
        raise ValueError(f"Unknown event store mode: {config.event_store_mode}")
    return InMemoryEventStore()


def _ensure_sqlite_dir(config: BrowseFlowConfig) -> None:
    if config.db_url and config.db_url.startswith("sqlite:///") and ":memory:" not in config.db_url:
        config.ensure_data_dir()


class WorkflowManagerFactory:
    """
    Builds WorkflowManagers that share persistence and handlers.

    Each manager gets its own WorkflowEventBus, so legacy listeners and
    bus history never mix between concurrent runs.
    """

    def __init__(self, config: Optional[BrowseFlowConfig] = None):
        self._config = config or get_config()
        self._uow_factory = build_uow_factory(self._config)
        self._event_store = build_event_store(self._config, self._uow_factory)
        self._memory = MemoryService(self._uow_factory)
        self._metrics = MetricsEventHandler(enabled=self._config.metrics_enabled)
        self._event_log = LoggingEventHandler(max_entries=self._config.event_history_size)
        self._task_failures = TaskFailureHandler(RetryPolicy.exponential(
            self._config.workflow.max_retries,
            self._config.workflow.retry_base_delay_ms,
            self._config.workflow.retry_max_delay_ms,
        ))
        self._stuck_handler = WorkflowStuckHandler(self._config.stuck_detection)
        self._saga = WorkflowSaga(policy=self._config.saga)
        logger.debug(
            f"WorkflowManagerFactory ready (storage={self._config.storage_mode}, "
            f"events={self._config.event_store_mode})"
        )

    # ═══════════════════════════════════════════════════════════════
    # Shared components
    # ═══════════════════════════════════════════════════════════════

    @property
    def config(self) -> BrowseFlowConfig:
        return self._config

    @property
    def uow_factory(self) -> Callable[[], IUnitOfWork]:
        return self._uow_factory

    @property
    def event_store(self) -> IEventStore:
        return self._event_store

    @property
    def memory(self) -> MemoryService:
        return self._memory

    @property
    def metrics(self) -> MetricsEventHandler:
        return self._metrics

    @property
    def event_log(self) -> LoggingEventHandler:
        return self._event_log

    @property
    def task_failures(self) -> TaskFailureHandler:
        return self._task_failures

    @property
    def stuck_handler(self) -> WorkflowStuckHandler:
        return self._stuck_handler

    @property
    def saga(self) -> WorkflowSaga:
        """Shared saga; each run attaches its own reporter for its workflow."""
        return self._saga

    def workflow_config(self) -> WorkflowManagerConfig:
        """Workflow settings with the browser section applied."""
        return replace(
            self._config.workflow,
            headless=self._config.browser.headless,
            viewport=self._config.browser.viewport,
        )

    # ═══════════════════════════════════════════════════════════════
    # Creation
    # ═══════════════════════════════════════════════════════════════

    def create(
        self,
        planner: IPlanner,
        executor: IExecutor,
        evaluator: IEvaluator,
        browser: IBrowser,
        dom_service: IDomService,
        summarizer: Optional[ISummarizer] = None,
        reporter: Optional[IAgentReporter] = None,
        extra_handlers: Optional[List[IDomainEventHandler]] = None,
    ) -> WorkflowManager:
        reporter = reporter or LoggingReporter()
        bus = WorkflowEventBus(max_history=self._config.event_history_size)
        handlers: List[IDomainEventHandler] = [self._metrics, self._event_log, self._task_failures]
        handlers.extend(extra_handlers or [])
        return WorkflowManager(
            planner=planner,
            executor=executor,
            evaluator=evaluator,
            browser=browser,
            dom_service=dom_service,
            config=self.workflow_config(),
            summarizer=summarizer,
            reporter=reporter,
            event_bus=bus,
            event_store=self._event_store,
            uow_factory=self._uow_factory,
            memory_service=self._memory,
            stuck_handler=self._stuck_handler,
            saga=self._saga,
            handlers=handlers,
        )
