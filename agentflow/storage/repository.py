"""Archive for workflow definitions and execution snapshots."""

from typing import List, Optional

from pydantic_core import PydanticSerializationError, to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import StorageError
from ..core.logging import get_logger
from ..models.core import Workflow, WorkflowExecution
from .database import Database
from .models import WorkflowModel, WorkflowExecutionModel

logger = get_logger(__name__)


class ExecutionRepository:
    """
    Stores workflows and execution snapshots through SQLAlchemy.

    Every SQLAlchemy error is re-raised as StorageError.
    """

    def __init__(self, database: Database):
        self.database = database

    def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow definition."""
        try:
            with self.database.session() as db:
                model = db.get(WorkflowModel, workflow.id)
                if model is None:
                    model = WorkflowModel(id=workflow.id)
                    db.add(model)
                model.name = workflow.name or workflow.id
                model.version = workflow.version
                model.definition = workflow.model_dump(mode="json", by_alias=True, exclude_none=True)
            logger.debug(f"Saved workflow {workflow.id}")
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save workflow {workflow.id}: {e}", operation="save_workflow", table="workflows") from e

    def get_workflow(self, workflow_id: str) -> Optional[Workflow]:
        try:
            with self.database.session() as db:
                model = db.get(WorkflowModel, workflow_id)
                return Workflow.model_validate(model.definition) if model else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load workflow {workflow_id}: {e}", operation="get_workflow", table="workflows") from e

    def list_workflows(self) -> List[Workflow]:
        try:
            with self.database.session() as db:
                models = db.query(WorkflowModel).order_by(WorkflowModel.created_at).all()
                return [Workflow.model_validate(model.definition) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list workflows: {e}", operation="list_workflows", table="workflows") from e

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow definition; returns False if it did not exist."""
        try:
            with self.database.session() as db:
                model = db.get(WorkflowModel, workflow_id)
                if model is None:
                    return False
                db.delete(model)
            logger.debug(f"Deleted workflow {workflow_id}")
            return True
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete workflow {workflow_id}: {e}", operation="delete_workflow", table="workflows") from e

    def save_execution(self, execution: WorkflowExecution) -> None:
        """Insert or replace an execution snapshot."""
        try:
            with self.database.session() as db:
                model = db.get(WorkflowExecutionModel, execution.id)
                if model is None:
                    model = WorkflowExecutionModel(id=execution.id)
                    db.add(model)
                model.workflow_id = execution.workflow_id
                model.status = execution.status.value
                model.snapshot = to_jsonable_python(execution.model_dump(by_alias=True), fallback=str)
                model.started_at = execution.start_time
                model.ended_at = execution.end_time
                model.error = execution.error
            logger.debug(f"Archived execution {execution.id} with status {execution.status.value}")
        except (SQLAlchemyError, PydanticSerializationError) as e:
            raise StorageError(
                f"Failed to save execution {execution.id}: {e}",
                operation="save_execution",
                table="workflow_executions"
            ) from e

    def get_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        try:
            with self.database.session() as db:
                model = db.get(WorkflowExecutionModel, execution_id)
                return WorkflowExecution.model_validate(model.snapshot) if model else None
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to load execution {execution_id}: {e}",
                operation="get_execution",
                table="workflow_executions"
            ) from e

    def list_executions(self, workflow_id: Optional[str] = None) -> List[WorkflowExecution]:
        try:
            with self.database.session() as db:
                query = db.query(WorkflowExecutionModel)
                if workflow_id is not None:
                    query = query.filter(WorkflowExecutionModel.workflow_id == workflow_id)
                models = query.order_by(WorkflowExecutionModel.started_at).all()
                return [WorkflowExecution.model_validate(model.snapshot) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to list executions: {e}",
                operation="list_executions",
                table="workflow_executions"
            ) from e
