"""SQLAlchemy database models for the workflow engine."""

from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, JSON
from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowModel(Base):
    """Database model for workflow definitions."""
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    version = Column(String, nullable=False, default="1.0.0")
    definition = Column(JSON, nullable=False)  # Complete workflow in wire form
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class WorkflowExecutionModel(Base):
    """Database model for archived execution snapshots."""
    __tablename__ = "workflow_executions"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False)  # running, paused, cancelled, completed, failed
    snapshot = Column(JSON, nullable=False)  # WorkflowExecution in wire form
    started_at = Column(DateTime)
    ended_at = Column(DateTime)
    error = Column(Text)
