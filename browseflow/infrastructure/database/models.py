"""
SQLAlchemy ORM Models for browseflow.

JSON payloads are stored as TEXT so the schema works on any backend.
"""

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Float,
    Boolean,
    DateTime,
    Index,
)
from sqlalchemy.orm import declarative_base
from datetime import datetime
import json

Base = declarative_base()


# ═══════════════════════════════════════════════════════════════════════════════
# Helper for JSON serialization
# ═══════════════════════════════════════════════════════════════════════════════

def json_serializer(obj):
    """Serialize object to JSON string."""
    if obj is None:
        return None
    return json.dumps(obj, default=str)


def json_deserializer(s, default=None):
    """Deserialize JSON string to object."""
    if s is None:
        return default
    return json.loads(s)


# ═══════════════════════════════════════════════════════════════════════════════
# Core Models
# ═══════════════════════════════════════════════════════════════════════════════

class WorkflowORM(Base):
    """ORM model for bf_workflows table. Variables hold public values only."""

    __tablename__ = 'bf_workflows'

    id = Column(String(64), primary_key=True)
    goal = Column(Text, nullable=False)
    start_url = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default='pending')
    current_plan_id = Column(String(64), nullable=True)
    variables = Column(Text, nullable=True)  # JSON: [{name, value, is_secret}]
    summary = Column(Text, nullable=True)
    extracted_data = Column(Text, nullable=True)  # JSON
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_bf_workflows_status', 'status'),
    )


class PlanORM(Base):
    """ORM model for bf_plans table."""

    __tablename__ = 'bf_plans'

    id = Column(String(64), primary_key=True)
    workflow_id = Column(String(64), nullable=False)
    is_replan = Column(Boolean, default=False)
    replaced_plan_id = Column(String(64), nullable=True)
    current_step_index = Column(Integer, default=0)
    steps = Column(Text, nullable=False)  # JSON: list of step dicts
    created_at = Column(DateTime, default=datetime.now)

    __table_args__ = (
        Index('idx_bf_plans_workflow', 'workflow_id'),
    )


class LearnedPatternORM(Base):
    """ORM model for bf_learned_patterns table."""

    __tablename__ = 'bf_learned_patterns'

    id = Column(String(64), primary_key=True)
    context = Column(String(512), nullable=False)
    pattern = Column(Text, nullable=False)
    success_rate = Column(Float, default=0.0)
    usage_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now)
    last_used_at = Column(DateTime, nullable=True)
    tags = Column(Text, nullable=True)  # JSON list
    metadata_ = Column('metadata', Text, nullable=True)  # JSON

    __table_args__ = (
        Index('idx_bf_patterns_context', 'context'),
        Index('idx_bf_patterns_created', 'created_at'),
    )


class StoredEventORM(Base):
    """ORM model for bf_events table (append-only)."""

    __tablename__ = 'bf_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    aggregate_id = Column(String(64), nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1)
    occurred_at = Column(DateTime, nullable=False)
    stored_at = Column(DateTime, default=datetime.now)
    payload = Column(Text, nullable=False)  # JSON: event.to_dict()
    metadata_ = Column('metadata', Text, nullable=True)  # JSON

    __table_args__ = (
        Index('idx_bf_events_aggregate', 'aggregate_id'),
        Index('idx_bf_events_type', 'event_type'),
        Index('idx_bf_events_occurred', 'occurred_at'),
    )
