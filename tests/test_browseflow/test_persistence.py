"""
Tests for the units of work and repositories.

The same scenarios run against the in-memory unit of work and against
SQLAlchemy on an in-memory SQLite database.
"""

from datetime import datetime, timedelta

import pytest

from browseflow.domain.models import (
    Intent,
    IntentType,
    LearnedPattern,
    Plan,
    Step,
    Task,
    Variable,
    Workflow,
    WorkflowStatus,
)
from browseflow.infrastructure.database import (
    SQLAlchemyUnitOfWork,
    create_inmemory_uow_factory,
    create_uow_factory,
)


@pytest.fixture(params=["inmemory", "sqlalchemy"])
def uow_factory(request):
    if request.param == "inmemory":
        return create_inmemory_uow_factory()
    return create_uow_factory("sqlite:///:memory:")


def make_workflow() -> Workflow:
    return Workflow.create(
        "Log in and read the balance", "https://bank.example",
        [Variable("user", "ann"), Variable("password", "hunter2", is_secret=True)],
    )


def make_plan(workflow_id: str) -> Plan:
    steps = []
    for order, description in enumerate(["Open login", "Read balance"], start=1):
        step = Step.create(description, order, workflow_id=workflow_id)
        step.add_task(Task.create(description, Intent(IntentType.CLICK), step_id=step.id, workflow_id=workflow_id))
        steps.append(step)
    return Plan.create(workflow_id, steps)


class TestWorkflowRepository:
    """Workflow persistence."""

    def test_add_and_get_masks_secrets(self, uow_factory):
        """Secret variable values never reach storage."""
        workflow = make_workflow()
        with uow_factory() as uow:
            uow.workflows.add(workflow)
            uow.commit()

        with uow_factory() as uow:
            loaded = uow.workflows.get(workflow.id)

        assert loaded.goal == workflow.goal
        assert loaded.get_variable("password").value == "{{password}}"
        assert loaded.get_variable("user").value == "ann"
        assert workflow.get_variable("password").value == "hunter2"

    def test_update_status(self, uow_factory):
        """Updates persist status and results."""
        workflow = make_workflow()
        with uow_factory() as uow:
            uow.workflows.add(workflow)
            uow.commit()

        workflow.start()
        workflow.complete("Balance read", {"balance": "$10"})
        with uow_factory() as uow:
            uow.workflows.update(workflow)
            uow.commit()

        with uow_factory() as uow:
            completed = uow.workflows.find_by_status(WorkflowStatus.COMPLETED)
        assert [w.id for w in completed] == [workflow.id]
        assert completed[0].extracted_data == {"balance": "$10"}
        assert completed[0].summary == "Balance read"

    def test_update_missing_raises(self, uow_factory):
        """Updating an unknown workflow raises ValueError."""
        with uow_factory() as uow:
            with pytest.raises(ValueError):
                uow.workflows.update(make_workflow())

    def test_list_oldest_first(self, uow_factory):
        """list() pages by creation time; count() sees every row."""
        workflows = [make_workflow() for _ in range(3)]
        for offset, workflow in enumerate(workflows):
            workflow.created_at = datetime(2024, 1, 1) + timedelta(minutes=offset)
        with uow_factory() as uow:
            for workflow in reversed(workflows):
                uow.workflows.add(workflow)
            uow.commit()

        with uow_factory() as uow:
            assert uow.workflows.count() == 3
            page = uow.workflows.list(limit=2, offset=1)
        assert [w.id for w in page] == [w.id for w in workflows[1:]]

    def test_delete(self, uow_factory):
        """delete() reports whether anything was removed."""
        workflow = make_workflow()
        with uow_factory() as uow:
            uow.workflows.add(workflow)
            uow.commit()
        with uow_factory() as uow:
            assert uow.workflows.delete(workflow.id)
            assert not uow.workflows.delete(workflow.id)
            uow.commit()
        with uow_factory() as uow:
            assert not uow.workflows.exists(workflow.id)


class TestPlanRepository:
    """Plan persistence."""

    def test_plans_by_workflow(self, uow_factory):
        """Plans round-trip with their steps and tasks."""
        plan = make_plan("wf-1")
        with uow_factory() as uow:
            uow.plans.add(plan)
            uow.plans.add(make_plan("wf-2"))
            uow.commit()

        with uow_factory() as uow:
            plans = uow.plans.find_by_workflow("wf-1")

        assert [p.id for p in plans] == [plan.id]
        assert [s.description for s in plans[0].steps] == ["Open login", "Read balance"]
        assert plans[0].steps[0].tasks[0].intent.type == IntentType.CLICK

    def test_loaded_plans_have_no_events(self, uow_factory):
        """Rehydrated plans carry no buffered events."""
        plan = make_plan("wf-1")
        with uow_factory() as uow:
            uow.plans.add(plan)
            uow.commit()
        with uow_factory() as uow:
            assert uow.plans.get(plan.id).get_domain_events() == []


class TestMemoryRepository:
    """Learned pattern persistence."""

    def test_find_by_tags_and_context(self, uow_factory):
        """Patterns are found by any overlapping tag, newest first."""
        now = datetime.now()
        old = LearnedPattern(context="bank.example:login:general", pattern="old",
                             created_at=now - timedelta(days=10), tags=["bank.example", "task"])
        new = LearnedPattern(context="bank.example:login:general", pattern="new",
                             created_at=now, tags=["bank.example", "login"])
        other = LearnedPattern(context="shop.example:buy:general", pattern="other",
                               created_at=now, tags=["shop.example"])
        with uow_factory() as uow:
            for pattern in (old, new, other):
                uow.memories.add(pattern)
            uow.commit()

        with uow_factory() as uow:
            by_tag = uow.memories.find_by_tags(["bank.example"])
            by_context = uow.memories.find_by_context("bank.example:login:general")

        assert [p.pattern for p in by_tag] == ["new", "old"]
        assert [p.pattern for p in by_context] == ["new", "old"]

    def test_usage_and_pruning(self, uow_factory):
        """Usage is recorded; old patterns are deleted."""
        pattern = LearnedPattern(context="c", pattern="p", tags=["h"],
                                 created_at=datetime.now() - timedelta(days=30))
        with uow_factory() as uow:
            uow.memories.add(pattern)
            uow.memories.record_usage(pattern.id)
            uow.commit()
        with uow_factory() as uow:
            assert uow.memories.get(pattern.id).usage_count == 1
            assert uow.memories.delete_older_than(datetime.now() - timedelta(days=7)) == 1
            uow.commit()
        with uow_factory() as uow:
            assert uow.memories.find_by_tags(["h"]) == []

    def test_empty_tags(self, uow_factory):
        """No tags match nothing."""
        with uow_factory() as uow:
            assert uow.memories.find_by_tags([]) == []


class TestSQLAlchemyUnitOfWork:
    """Transaction boundaries."""

    def test_exception_rolls_back(self):
        """Uncommitted work is discarded when the block raises."""
        uow_factory = create_uow_factory("sqlite:///:memory:")
        workflow = make_workflow()
        with pytest.raises(RuntimeError):
            with uow_factory() as uow:
                uow.workflows.add(workflow)
                raise RuntimeError("boom")

        with uow_factory() as uow:
            assert uow.workflows.get(workflow.id) is None

    def test_file_database(self, tmp_path):
        """A file URL persists across engines."""
        db_url = f"sqlite:///{tmp_path}/browseflow.db"
        workflow = make_workflow()
        with SQLAlchemyUnitOfWork(db_url) as uow:
            uow.workflows.add(workflow)
            uow.commit()

        with SQLAlchemyUnitOfWork(db_url) as uow:
            assert uow.workflows.get(workflow.id).goal == workflow.goal
            assert uow.session is not None
