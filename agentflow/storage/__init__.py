"""Database models and storage layer."""

from .database import Base, Database
from .models import WorkflowModel, WorkflowExecutionModel
from .repository import ExecutionRepository

__all__ = [
    "Base",
    "Database",
    "WorkflowModel",
    "WorkflowExecutionModel",
    "ExecutionRepository",
]
