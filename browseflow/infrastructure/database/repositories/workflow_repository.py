"""Workflow and plan repository implementations."""

from typing import List
from sqlalchemy.orm import Session

from browseflow.domain.interfaces.repositories import IPlanRepository, IWorkflowRepository
from browseflow.domain.models import Plan, Workflow, WorkflowStatus
from ..models import PlanORM, WorkflowORM, json_deserializer, json_serializer
from .base import BaseRepository


class WorkflowRepository(BaseRepository[Workflow, WorkflowORM], IWorkflowRepository):
    """SQLAlchemy implementation of workflow repository."""

    def __init__(self, session: Session):
        super().__init__(session, WorkflowORM)

    def _to_domain(self, orm: WorkflowORM) -> Workflow:
        return Workflow.from_dict({
            "id": orm.id,
            "goal": orm.goal,
            "start_url": orm.start_url,
            "status": orm.status,
            "current_plan_id": orm.current_plan_id,
            "variables": json_deserializer(orm.variables, []),
            "summary": orm.summary,
            "extracted_data": json_deserializer(orm.extracted_data, {}),
            "failure_reason": orm.failure_reason,
            "created_at": orm.created_at.isoformat() if orm.created_at else None,
            "started_at": orm.started_at.isoformat() if orm.started_at else None,
            "completed_at": orm.completed_at.isoformat() if orm.completed_at else None,
        })

    def _to_orm(self, domain: Workflow) -> WorkflowORM:
        data = domain.to_dict()
        return WorkflowORM(
            id=domain.id,
            goal=domain.goal,
            start_url=data["start_url"],
            status=domain.status.value,
            current_plan_id=domain.current_plan_id,
            variables=json_serializer(data["variables"]),
            summary=domain.summary,
            extracted_data=json_serializer(domain.extracted_data),
            failure_reason=domain.failure_reason,
            created_at=domain.created_at,
            started_at=domain.started_at,
            completed_at=domain.completed_at,
        )

    def find_by_status(self, status: WorkflowStatus) -> List[Workflow]:
        orms = self._session.query(WorkflowORM).filter_by(status=status.value).all()
        return [self._to_domain(orm) for orm in orms]


class PlanRepository(BaseRepository[Plan, PlanORM], IPlanRepository):
    """SQLAlchemy implementation of plan repository."""

    def __init__(self, session: Session):
        super().__init__(session, PlanORM)

    def _to_domain(self, orm: PlanORM) -> Plan:
        return Plan.from_dict({
            "id": orm.id,
            "workflow_id": orm.workflow_id,
            "is_replan": orm.is_replan,
            "replaced_plan_id": orm.replaced_plan_id,
            "current_step_index": orm.current_step_index,
            "created_at": orm.created_at.isoformat() if orm.created_at else None,
            "steps": json_deserializer(orm.steps, []),
        })

    def _to_orm(self, domain: Plan) -> PlanORM:
        return PlanORM(
            id=domain.id,
            workflow_id=domain.workflow_id,
            is_replan=domain.is_replan,
            replaced_plan_id=domain.replaced_plan_id,
            current_step_index=domain.current_step_index,
            steps=json_serializer([s.to_dict() for s in domain.steps]),
            created_at=domain.created_at,
        )

    def find_by_workflow(self, workflow_id: str) -> List[Plan]:
        orms = (
            self._session.query(PlanORM)
            .filter_by(workflow_id=workflow_id)
            .order_by(PlanORM.created_at)
            .all()
        )
        return [self._to_domain(orm) for orm in orms]
